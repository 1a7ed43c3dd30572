from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from .config import DEFAULTS
from .loop import Ticker


logger = logging.getLogger(__name__)

PushCallback = Callable[[str, Dict[str, Any]], None]
RowProvider = Callable[[], Optional[Dict[str, Any]]]
RefreshCallback = Callable[[Dict[str, Any]], None]


class PlayerStore(Protocol):
    async def fetch_player_snapshot(self, player_id: str) -> Optional[Dict[str, Any]]: ...

    async def persist_player(self, player_id: str, row: Dict[str, Any]) -> None: ...

    async def fetch_owned_fields(self, player_id: str) -> Optional[Dict[str, Any]]: ...

    async def update_player_fields(self, player_id: str, **fields: Any) -> bool: ...

    async def fetch_global_catalogs(self) -> Optional[Dict[str, Any]]: ...

    async def delete_player(self, player_id: str) -> None: ...

    def subscribe(self, callback: PushCallback) -> Callable[[], None]: ...

    async def fetch_leaderboard(self, limit: int) -> List[Dict[str, Any]]: ...

    async def fetch_rank_for(self, balance: float) -> int: ...


class PersistenceBridge:
    """Saves one player's row periodically and on demand.

    The row is built synchronously when a save is requested; the store call
    runs as a background task. Failures are logged and not retried; the next
    periodic save carries the latest state anyway.
    """

    def __init__(
        self,
        store: PlayerStore,
        player_id: str,
        row_provider: RowProvider,
        interval: float = DEFAULTS.save_interval_seconds,
        on_refresh: Optional[RefreshCallback] = None,
    ):
        self.store = store
        self.player_id = player_id
        self.row_provider = row_provider
        self.on_refresh = on_refresh
        self.deleting = False
        self.enabled = False
        self._ticker = Ticker(interval, self._periodic_save, name=f"save:{player_id}")
        self._pending: Set[asyncio.Task[None]] = set()

    def enable(self) -> None:
        self.enabled = True
        self._ticker.start()

    async def _periodic_save(self) -> None:
        await self.refresh()
        await self.save_now()

    async def refresh(self) -> bool:
        """Pull the columns other processes own before they can be saved over."""
        if not self.enabled or self.deleting or self.on_refresh is None:
            return False
        try:
            fields = await self.store.fetch_owned_fields(self.player_id)
        except Exception:
            logger.exception("Failed to refresh player %s", self.player_id)
            return False
        if not fields:
            return False
        self.on_refresh(fields)
        return True

    async def save_now(self) -> bool:
        if not self.enabled or self.deleting:
            return False
        row = self.row_provider()
        if row is None:
            return False
        return await self._persist(row)

    async def _persist(self, row: Dict[str, Any]) -> bool:
        if self.deleting:
            return False
        try:
            await self.store.persist_player(self.player_id, row)
        except Exception:
            logger.exception("Failed to persist player %s", self.player_id)
            return False
        return True

    def request_save(self) -> Optional[asyncio.Task[None]]:
        if not self.enabled or self.deleting:
            return None
        row = self.row_provider()
        if row is None:
            return None
        task = asyncio.create_task(self._persist_detached(row))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _persist_detached(self, row: Dict[str, Any]) -> None:
        await self._persist(row)

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def shutdown(self, final_save: bool = True) -> None:
        await self._ticker.stop()
        await self.flush()
        if final_save:
            await self.save_now()
        self.enabled = False

