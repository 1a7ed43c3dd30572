from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from .config import DEFAULTS
from .game import escalated_cost
from .loop import reset_daily_flags
from .models import Catalogs, Player, PlayerIdentity, Upgrade
from .schema import GameStateBlob, PlayerRow, SavedUpgrade, row_to_player
from .timing import elapsed_seconds, passive_income_accrued


logger = logging.getLogger(__name__)

# Fields another writer (admin, referral bookkeeping) may change under a live session.
PUSH_FIELDS = ("referral_count", "stars", "level", "is_banned")


@dataclass
class LoadResult:
    player: Player
    upgrades: List[Upgrade]
    catalogs: Catalogs
    offline_earnings: float = 0.0
    is_new: bool = False


def new_player(identity: PlayerIdentity, now: int) -> Player:
    return Player(
        id=identity.id,
        display_name=identity.display_name,
        avatar_ref=identity.avatar_ref,
        invited_by=identity.invited_by,
        balance=0.0,
        current_energy=float(DEFAULTS.max_energy),
        max_energy=DEFAULTS.max_energy,
        level=1,
        stars=DEFAULTS.start_stars,
        last_update=now,
    )


def merge_upgrade_levels(
    global_upgrades: List[Upgrade], saved: List[SavedUpgrade]
) -> List[Upgrade]:
    """Catalog cost and effect win; only the saved level survives."""
    levels = {s.id: s.level for s in saved}
    merged: List[Upgrade] = []
    for upgrade in global_upgrades:
        level = min(upgrade.max_level, max(0, levels.get(upgrade.id, 0)))
        merged.append(
            replace(
                upgrade,
                level=level,
                cost=escalated_cost(upgrade.cost, level, upgrade.cost_growth_factor),
            )
        )
    return merged


def offline_earnings(player: Player, now: int) -> float:
    if not player.has_offline_earnings_unlocked or player.passive_income_per_hour <= 0:
        return 0.0
    offline = elapsed_seconds(now, player.last_update)
    if offline <= DEFAULTS.offline_min_seconds:
        return 0.0
    return passive_income_accrued(player.passive_income_per_hour, offline)


def parse_row(raw: Mapping[str, Any]) -> PlayerRow:
    """Validate a stored row; a corrupt game-state blob falls back to defaults."""
    try:
        return PlayerRow.model_validate(raw)
    except ValidationError:
        logger.warning("Player %s has an invalid game state, using defaults", raw.get("telegram_id"))
        data = dict(raw)
        data["gamestate"] = GameStateBlob().model_dump()
        return PlayerRow.model_validate(data)


def reconcile(
    raw: Optional[Mapping[str, Any]],
    identity: PlayerIdentity,
    catalogs: Catalogs,
    now: int,
) -> LoadResult:
    if raw is None:
        player = new_player(identity, now)
        upgrades = merge_upgrade_levels(catalogs.upgrades, [])
        logger.info("Created player %s", identity.id)
        return LoadResult(player, upgrades, catalogs, is_new=True)

    row = parse_row(raw)
    player = row_to_player(row, now)
    if not player.display_name:
        player.display_name = identity.display_name
    if identity.avatar_ref:
        player.avatar_ref = identity.avatar_ref
    upgrades = merge_upgrade_levels(catalogs.upgrades, row.gamestate.upgrades)

    earnings = offline_earnings(player, now)
    player = reset_daily_flags(player, now)
    player = player.copy(last_update=now)
    if earnings:
        logger.info("Player %s has %.0f offline earnings to claim", player.id, earnings)
    return LoadResult(player, upgrades, catalogs, offline_earnings=earnings)


def merge_push(player: Player, delta: Mapping[str, Any]) -> Player:
    changes: Dict[str, Any] = {}
    for name in PUSH_FIELDS:
        if name in delta and delta[name] is not None:
            changes[name] = delta[name]
    if "level" in changes:
        changes["level"] = min(DEFAULTS.level_cap, max(1, int(changes["level"])))
    if not changes:
        return player
    return player.copy(**changes)
