from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet
import os

from dotenv import load_dotenv


load_dotenv()


BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", Path(__file__).resolve().parent / "data"))
DB_PATH = Path(os.getenv("DB_PATH", BASE_DIR / "clicker.db"))
BOT_TOKEN = os.getenv("BOT_TOKEN", "").strip()
WEB_APP_URL = os.getenv("WEB_APP_URL", "").strip()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
WEBAPP_AUTH_MAX_AGE = int(os.getenv("WEBAPP_AUTH_MAX_AGE", "86400"))


def _parse_ids(raw: str) -> FrozenSet[str]:
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


ADMIN_IDS = _parse_ids(os.getenv("ADMIN_IDS", ""))


@dataclass(frozen=True)
class BalanceDefaults:
    max_energy: int = 1000
    energy_refill_seconds: float = 500.0
    start_energy: int = 1000
    start_stars: int = 5
    start_earn_rate: int = 1
    hold_tick_ms: int = 100
    hold_energy_drain_per_tick: float = 1.0
    hold_earn_factor: float = 0.2
    upgrade_cost_growth: float = 1.6
    level_cap: int = 25
    offline_min_seconds: float = 300.0
    daily_reward_cooldown_ms: int = 86_400_000
    withdrawal_cooldown_ms: int = 86_400_000
    energy_booster_cooldown_ms: int = 3_600_000
    save_interval_seconds: float = 5.0
    midnight_check_seconds: float = 60.0
    loop_tick_seconds: float = 0.2
    dust_to_ton_rate: int = 100_000
    min_ton_address_length: int = 24
    offline_upgrade_id: str = "s5"
    default_secret_code: str = "1234"
    leaderboard_limit: int = 50
    demo_ad_delay_seconds: float = 0.5
    session_idle_seconds: float = 900.0
    session_sweep_seconds: float = 60.0


DEFAULTS = BalanceDefaults()


LEVEL_BALANCE_REQUIREMENTS: Dict[int, int] = {
    1: 0,
    2: 2_500,
    3: 7_500,
    4: 15_000,
    5: 30_000,
    6: 60_000,
    7: 100_000,
    8: 150_000,
    9: 250_000,
    10: 400_000,
    11: 600_000,
    12: 850_000,
    13: 1_100_000,
    14: 1_500_000,
    15: 2_000_000,
    16: 2_750_000,
    17: 3_500_000,
    18: 4_500_000,
    19: 5_500_000,
    20: 6_500_000,
    21: 7_500_000,
    22: 8_250_000,
    23: 9_000_000,
    24: 9_500_000,
    25: 10_000_000,
}


def level_up_ads_required(level: int) -> int:
    # Level 1 -> 2 is free; afterwards one more ad every two levels, capped.
    if level <= 1:
        return 0
    return min(10, (level + 1) // 2)
