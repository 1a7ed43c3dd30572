from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List

from .models import Player, Upgrade


class Outcome(str, Enum):
    OK = "ok"
    INELIGIBLE = "ineligible"
    NOT_FOUND = "not_found"
    BANNED = "banned"


@dataclass(frozen=True)
class ActionResult:
    """Result of a reducer transition.

    On any outcome other than OK, ``player`` and ``upgrades`` are the inputs,
    unchanged.
    """

    player: Player
    upgrades: List[Upgrade]
    outcome: Outcome = Outcome.OK
    reason: str = ""
    credited: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


class ExternalFailure(Exception):
    """A collaborator (store, ad network, Telegram) failed or refused."""
