from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import aiosqlite

from .config import DB_PATH, DEFAULTS


logger = logging.getLogger(__name__)

PushCallback = Callable[[str, Dict[str, Any]], None]

# Row columns other writers may change; each change is pushed to live sessions.
PUSHED_COLUMNS = ("referral_count", "stars", "level", "is_banned", "username")
# Owned by admin and referral writes; a session save never overwrites them.
OWNED_COLUMNS = ("referral_count", "is_banned")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    def __init__(self, path=DB_PATH):
        self.path = str(path)
        self.conn: Optional[aiosqlite.Connection] = None
        self._subscribers: List[PushCallback] = []

    async def connect(self) -> None:
        self.conn = await aiosqlite.connect(self.path)
        self.conn.row_factory = aiosqlite.Row
        await self.conn.execute("PRAGMA journal_mode = WAL")
        await self.conn.commit()

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None

    async def init(self) -> None:
        assert self.conn is not None
        await self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS players (
                telegram_id TEXT PRIMARY KEY,
                username TEXT NOT NULL DEFAULT '',
                balance REAL NOT NULL DEFAULT 0,
                level INTEGER NOT NULL DEFAULT 1,
                stars INTEGER NOT NULL DEFAULT 0,
                referral_count INTEGER NOT NULL DEFAULT 0,
                invited_by TEXT,
                is_banned INTEGER NOT NULL DEFAULT 0,
                gamestate_json TEXT NOT NULL DEFAULT '{}',
                last_updated TEXT
            );

            CREATE INDEX IF NOT EXISTS players_balance_idx
                ON players(balance DESC);

            CREATE TABLE IF NOT EXISTS game_settings (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                settings_json TEXT NOT NULL,
                last_updated TEXT
            );
            """
        )
        await self.conn.commit()

    # push feed

    def subscribe(self, callback: PushCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, player_id: str, delta: Dict[str, Any]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(player_id, delta)
            except Exception:
                logger.exception("Push subscriber failed for player %s", player_id)

    # players

    async def fetch_player_snapshot(self, player_id: str) -> Optional[Dict[str, Any]]:
        row = await self._fetchone(
            "SELECT * FROM players WHERE telegram_id = ?",
            (str(player_id),),
        )
        if not row:
            return None
        return self._row_to_snapshot(row)

    async def persist_player(self, player_id: str, row: Dict[str, Any]) -> None:
        assert self.conn is not None
        await self.conn.execute(
            """
            INSERT INTO players (
                telegram_id, username, balance, level, stars, referral_count,
                invited_by, is_banned, gamestate_json, last_updated
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(telegram_id) DO UPDATE SET
                username = excluded.username,
                balance = excluded.balance,
                level = excluded.level,
                stars = excluded.stars,
                invited_by = excluded.invited_by,
                gamestate_json = excluded.gamestate_json,
                last_updated = excluded.last_updated
            """,
            (
                str(player_id),
                row.get("username") or "",
                float(row.get("balance") or 0),
                int(row.get("level") or 1),
                int(row.get("stars") or 0),
                int(row.get("referral_count") or 0),
                row.get("invited_by"),
                1 if row.get("is_banned") else 0,
                json.dumps(row.get("gamestate") or {}, ensure_ascii=False),
                _utcnow(),
            ),
        )
        await self.conn.commit()

    async def fetch_owned_fields(self, player_id: str) -> Optional[Dict[str, Any]]:
        """Current values of the columns other writers own, e.g. another process's ban."""
        row = await self._fetchone(
            f"SELECT {', '.join(OWNED_COLUMNS)} FROM players WHERE telegram_id = ?",
            (str(player_id),),
        )
        if not row:
            return None
        return {
            "referral_count": row["referral_count"],
            "is_banned": bool(row["is_banned"]),
        }

    async def delete_player(self, player_id: str) -> None:
        assert self.conn is not None
        await self.conn.execute(
            "DELETE FROM players WHERE telegram_id = ?",
            (str(player_id),),
        )
        await self.conn.commit()

    async def update_player_fields(self, player_id: str, **fields: Any) -> bool:
        """Admin and referral writes; live sessions receive the change as a push."""
        assert self.conn is not None
        unknown = set(fields) - set(PUSHED_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")
        if not fields:
            return False
        values = [int(v) if isinstance(v, bool) else v for v in fields.values()]
        cols = ", ".join(f"{k} = ?" for k in fields.keys())
        cursor = await self.conn.execute(
            f"UPDATE players SET {cols}, last_updated = ? WHERE telegram_id = ?",
            (*values, _utcnow(), str(player_id)),
        )
        await self.conn.commit()
        if cursor.rowcount == 0:
            return False
        self._publish(str(player_id), dict(fields))
        return True

    async def set_banned(self, player_id: str, banned: bool) -> bool:
        return await self.update_player_fields(player_id, is_banned=banned)

    async def fetch_leaderboard(self, limit: int = DEFAULTS.leaderboard_limit) -> List[Dict[str, Any]]:
        rows = await self._fetchall(
            """
            SELECT telegram_id, username, balance, level
            FROM players
            WHERE is_banned = 0
            ORDER BY balance DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [dict(row) for row in rows]

    async def fetch_rank_for(self, balance: float) -> int:
        row = await self._fetchone(
            "SELECT COUNT(*) AS ahead FROM players WHERE is_banned = 0 AND balance > ?",
            (balance,),
        )
        return (row["ahead"] if row else 0) + 1

    async def count_players(self) -> int:
        row = await self._fetchone("SELECT COUNT(*) AS total FROM players", ())
        return row["total"] if row else 0

    # global settings

    async def fetch_global_catalogs(self) -> Optional[Dict[str, Any]]:
        row = await self._fetchone(
            "SELECT settings_json FROM game_settings WHERE id = 1",
            (),
        )
        if not row:
            return None
        try:
            return json.loads(row["settings_json"])
        except json.JSONDecodeError:
            logger.warning("Stored game settings are not valid JSON, ignoring them")
            return None

    async def save_game_settings(self, settings: Dict[str, Any]) -> None:
        assert self.conn is not None
        await self.conn.execute(
            """
            INSERT INTO game_settings (id, settings_json, last_updated)
            VALUES (1, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                settings_json = excluded.settings_json,
                last_updated = excluded.last_updated
            """,
            (json.dumps(settings, ensure_ascii=False), _utcnow()),
        )
        await self.conn.commit()

    def _row_to_snapshot(self, row: aiosqlite.Row) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {
            "telegram_id": row["telegram_id"],
            "username": row["username"] or "",
            "balance": row["balance"],
            "level": row["level"],
            "stars": row["stars"],
            "referral_count": row["referral_count"],
            "invited_by": row["invited_by"],
            "is_banned": bool(row["is_banned"]),
        }
        try:
            snapshot["gamestate"] = json.loads(row["gamestate_json"] or "{}")
        except json.JSONDecodeError:
            logger.warning("Player %s has a corrupt game state", row["telegram_id"])
        return snapshot

    async def _fetchone(self, query: str, params: tuple) -> Optional[aiosqlite.Row]:
        assert self.conn is not None
        async with self.conn.execute(query, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, query: str, params: tuple) -> List[aiosqlite.Row]:
        assert self.conn is not None
        async with self.conn.execute(query, params) as cursor:
            return await cursor.fetchall()
