from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from .boosts import effective_passive_addend, prune_expired
from .config import DEFAULTS
from .models import Player
from .timing import elapsed_seconds, is_new_utc_day, passive_income_accrued, regenerate_energy


logger = logging.getLogger(__name__)

TickCallback = Callable[[], Union[None, Awaitable[None]]]


def advance(player: Player, now: int, paused: bool = False) -> Player:
    """One simulation step: passive income, energy regen and boost pruning."""
    if player.is_banned or paused:
        return player.copy(last_update=now)
    elapsed = elapsed_seconds(now, player.last_update)
    boosts = prune_expired(player.active_boosts, now)
    rate = player.passive_income_per_hour + effective_passive_addend(boosts, now)
    updated = player.copy(
        balance=player.balance + passive_income_accrued(rate, elapsed),
        current_energy=regenerate_energy(
            player.current_energy,
            player.max_energy,
            DEFAULTS.energy_refill_seconds,
            elapsed,
        ),
        active_boosts=boosts,
        last_update=now,
    )
    return updated


def reset_daily_flags(player: Player, now: int) -> Player:
    if player.daily_cipher_solved_today and is_new_utc_day(player.last_cipher_solved_at, now):
        return player.copy(daily_cipher_solved_today=False)
    return player


class Ticker:
    """Runs a callback every ``interval`` seconds on the running event loop."""

    def __init__(self, interval: float, callback: TickCallback, name: str = "ticker"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task[Any]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self.callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s tick failed", self.name)
