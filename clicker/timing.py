from __future__ import annotations

import time
from typing import Optional


MS_PER_SECOND = 1000
MS_PER_DAY = 86_400_000
SECONDS_PER_HOUR = 3600


def now_ms() -> int:
    return int(time.time() * MS_PER_SECOND)


def elapsed_seconds(now: int, last: int) -> float:
    return max(0.0, (now - last) / MS_PER_SECOND)


def passive_income_accrued(rate_per_hour: float, elapsed: float) -> float:
    return rate_per_hour / SECONDS_PER_HOUR * elapsed


def energy_regenerated(max_energy: float, refill_seconds: float, elapsed: float) -> float:
    if refill_seconds <= 0:
        return float(max_energy)
    return (max_energy / refill_seconds) * elapsed


def regenerate_energy(
    current: float, max_energy: float, refill_seconds: float, elapsed: float
) -> float:
    return min(max_energy, current + energy_regenerated(max_energy, refill_seconds, elapsed))


def remaining_cooldown(last_event_at: Optional[int], cooldown: int, now: int) -> int:
    """Milliseconds left before the action is available again; 0 means available."""
    if last_event_at is None:
        return 0
    return max(0, last_event_at + cooldown - now)


def utc_day_index(timestamp_ms: int) -> int:
    return timestamp_ms // MS_PER_DAY


def is_different_utc_day(a: int, b: int) -> bool:
    return utc_day_index(a) != utc_day_index(b)


def is_new_utc_day(last: Optional[int], now: int) -> bool:
    if last is None:
        return False
    return utc_day_index(last) < utc_day_index(now)


def format_countdown(ms: int) -> str:
    total = max(0, int(ms) // MS_PER_SECOND)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
