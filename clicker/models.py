from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from .config import DEFAULTS


TAP_MULTIPLIER = "multiplier-on-tap"
PASSIVE_ADDEND = "passive-income-addend"
BOOST_KINDS = (TAP_MULTIPLIER, PASSIVE_ADDEND)

CURRENCY_PRIMARY = "primary"
CURRENCY_PREMIUM = "premium"
COST_AD = "ad"

REWARD_ENERGY = "energy_boost"
REWARD_STARDUST = "stardust_boost"
REWARD_CPT = "cpt_boost"
REWARD_PASSIVE = "passive_income_boost"
REWARD_FREE_UPGRADE = "free_upgrade"
DEAL_REWARD_KINDS = (
    REWARD_ENERGY,
    REWARD_STARDUST,
    REWARD_CPT,
    REWARD_PASSIVE,
    REWARD_FREE_UPGRADE,
)

TASK_TELEGRAM = "telegram"
TASK_YOUTUBE_VIDEO = "youtube-video"
TASK_YOUTUBE_SHORTS = "youtube-shorts"
TASK_ADS = "ads"
TASK_KINDS = (TASK_TELEGRAM, TASK_YOUTUBE_VIDEO, TASK_YOUTUBE_SHORTS, TASK_ADS)

WITHDRAWAL_PENDING = "pending"
WITHDRAWAL_PAID = "paid"
WITHDRAWAL_REJECTED = "rejected"


@dataclass(frozen=True)
class Boost:
    source_id: str
    kind: str
    magnitude: float
    expires_at: int


@dataclass(frozen=True)
class UpgradeEffect:
    passive_add: float = 0.0
    tap_add: int = 0
    hold_multiplier_add: float = 0.0


@dataclass(frozen=True)
class Upgrade:
    id: str
    name: str
    cost: int
    max_level: int
    effect: UpgradeEffect = field(default_factory=UpgradeEffect)
    level: int = 0
    cost_currency: str = CURRENCY_PRIMARY
    cost_growth_factor: float = DEFAULTS.upgrade_cost_growth
    unlock_level: Optional[int] = None
    category: str = "Market"
    description: str = ""

    @property
    def is_maxed(self) -> bool:
        return self.level >= self.max_level


@dataclass(frozen=True)
class Deal:
    id: str
    title: str
    cost_kind: str
    cost: float
    reward_kind: str
    reward_value: float
    reward_duration_ms: Optional[int] = None
    cooldown_ms: Optional[int] = None
    unlock_level: Optional[int] = None
    description: str = ""


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    kind: str
    reward: float
    daily_limit: Optional[int] = None
    link: Optional[str] = None
    secret_code: Optional[str] = None
    chat_id: Optional[str] = None

    @property
    def limit(self) -> int:
        return self.daily_limit or 1


@dataclass(frozen=True)
class Withdrawal:
    id: str
    player_id: str
    username: str
    method: str
    address: str
    amount_ton: float
    amount_stardust: float
    timestamp: int
    status: str = WITHDRAWAL_PENDING


@dataclass(frozen=True)
class WithdrawalRequest:
    method: str
    address: str
    amount_stardust: float


@dataclass(frozen=True)
class DailyReward:
    kind: str
    amount: float


@dataclass(frozen=True)
class AdUnit:
    id: str
    name: str
    network: str
    block_id: str
    type: str = "rewarded"
    active: bool = True


@dataclass(frozen=True)
class AdminConfig:
    daily_cipher_word: str = "STAR"
    min_withdrawal_ton: float = 1.0
    referral_reward_stars: int = 10
    daily_reward_base: float = 1.0
    daily_cipher_reward: float = 25_000.0
    ad_units: List[AdUnit] = field(default_factory=list)
    maintenance_mode: bool = False
    maintenance_end_time: Optional[int] = None
    demo_mode: bool = False


@dataclass
class Catalogs:
    upgrades: List[Upgrade]
    deals: List[Deal]
    tasks: List[Task]
    daily_rewards: List[DailyReward]
    admin: AdminConfig = field(default_factory=AdminConfig)

    def get_deal(self, deal_id: str) -> Optional[Deal]:
        return next((d for d in self.deals if d.id == deal_id), None)

    def get_task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)


@dataclass(frozen=True)
class PlayerIdentity:
    id: str
    display_name: str
    avatar_ref: Optional[str] = None
    invited_by: Optional[str] = None


@dataclass
class Player:
    id: str
    display_name: str
    avatar_ref: Optional[str] = None
    invited_by: Optional[str] = None
    balance: float = 0.0
    earn_rate_per_tap: int = DEFAULTS.start_earn_rate
    passive_income_per_hour: float = 0.0
    hold_earn_multiplier: float = 1.0
    current_energy: float = float(DEFAULTS.start_energy)
    max_energy: int = DEFAULTS.max_energy
    last_update: int = 0
    level: int = 1
    level_up_ad_watch_count: int = 0
    stars: int = DEFAULTS.start_stars
    last_daily_reward_claimed_at: Optional[int] = None
    last_cipher_solved_at: Optional[int] = None
    last_energy_boost_claimed_at: Optional[int] = None
    last_ad_watched_at: Optional[int] = None
    last_withdrawal_at: Optional[int] = None
    consecutive_daily_claims: int = 0
    daily_cipher_solved_today: bool = False
    has_offline_earnings_unlocked: bool = False
    has_completed_follow_task: bool = False
    is_banned: bool = False
    referral_count: int = 0
    task_progress_by_id: Dict[str, int] = field(default_factory=dict)
    active_boosts: List[Boost] = field(default_factory=list)
    last_deal_purchase_at_by_id: Dict[str, int] = field(default_factory=dict)
    withdrawal_history: List[Withdrawal] = field(default_factory=list)

    def copy(self, **changes) -> "Player":
        base = replace(
            self,
            task_progress_by_id=dict(self.task_progress_by_id),
            active_boosts=list(self.active_boosts),
            last_deal_purchase_at_by_id=dict(self.last_deal_purchase_at_by_id),
            withdrawal_history=list(self.withdrawal_history),
        )
        return replace(base, **changes) if changes else base
