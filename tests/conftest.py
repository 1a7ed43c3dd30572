from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import pytest

from clicker.catalog import GameData
from clicker.models import Player, Upgrade, UpgradeEffect
from clicker.reconcile import merge_upgrade_levels


T0 = 1_700_000_000_000


def make_player(**changes) -> Player:
    base = Player(id="42", display_name="nova", last_update=T0)
    return base.copy(**changes) if changes else base


def make_upgrade(**changes) -> Upgrade:
    fields = dict(
        id="m1",
        name="Asteroid Drill",
        cost=1500,
        max_level=20,
        effect=UpgradeEffect(passive_add=100),
    )
    fields.update(changes)
    return Upgrade(**fields)


class FakeStore:
    """In-memory PlayerStore with switchable failures."""

    def __init__(self, rows: Optional[Dict[str, Dict[str, Any]]] = None):
        self.rows: Dict[str, Dict[str, Any]] = dict(rows or {})
        self.settings: Optional[Dict[str, Any]] = None
        self.persisted: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.fail_fetch = False
        self.fail_persist = False
        self.fail_delete = False
        self.subscribers: List[Callable[[str, Dict[str, Any]], None]] = []

    async def fetch_player_snapshot(self, player_id: str) -> Optional[Dict[str, Any]]:
        if self.fail_fetch:
            raise ConnectionError("store offline")
        return self.rows.get(player_id)

    async def persist_player(self, player_id: str, row: Dict[str, Any]) -> None:
        if self.fail_persist:
            raise ConnectionError("store offline")
        self.rows[player_id] = row
        self.persisted.append(row)

    async def fetch_owned_fields(self, player_id: str) -> Optional[Dict[str, Any]]:
        row = self.rows.get(player_id)
        if row is None:
            return None
        return {"referral_count": row["referral_count"], "is_banned": row["is_banned"]}

    async def update_player_fields(self, player_id: str, **fields: Any) -> bool:
        if player_id not in self.rows:
            return False
        self.rows[player_id] = {**self.rows[player_id], **fields}
        self.push(player_id, fields)
        return True

    async def fetch_global_catalogs(self) -> Optional[Dict[str, Any]]:
        return self.settings

    async def delete_player(self, player_id: str) -> None:
        if self.fail_delete:
            raise ConnectionError("store offline")
        self.rows.pop(player_id, None)
        self.deleted.append(player_id)

    def subscribe(self, callback):
        self.subscribers.append(callback)
        return lambda: self.subscribers.remove(callback)

    def push(self, player_id: str, delta: Dict[str, Any]) -> None:
        for callback in list(self.subscribers):
            callback(player_id, delta)

    async def fetch_leaderboard(self, limit: int) -> List[Dict[str, Any]]:
        return sorted(self.rows.values(), key=lambda r: -r["balance"])[:limit]

    async def fetch_rank_for(self, balance: float) -> int:
        return 1 + sum(1 for r in self.rows.values() if r["balance"] > balance)


class Clock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def game_data() -> GameData:
    return GameData()


@pytest.fixture
def upgrades(game_data: GameData) -> List[Upgrade]:
    return merge_upgrade_levels(game_data.upgrades, [])


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def clock() -> Clock:
    return Clock()
