"""Wire schema for everything that crosses the store boundary.

Rows and settings payloads are validated here; each field has an explicit
default so a partially written blob still loads.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import DEFAULTS
from .models import (
    CURRENCY_PRIMARY,
    AdminConfig,
    AdUnit,
    Boost,
    DailyReward,
    Deal,
    Player,
    Task,
    Upgrade,
    UpgradeEffect,
    Withdrawal,
)


LEGACY_CURRENCIES = {"stardust": "primary", "stars": "premium"}


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BoostModel(_Model):
    source_id: str
    kind: Literal["multiplier-on-tap", "passive-income-addend"]
    magnitude: float
    expires_at: int


class WithdrawalModel(_Model):
    id: str
    player_id: str = ""
    username: str = ""
    method: Literal["TON", "UPI"]
    address: str
    amount_ton: float = 0.0
    amount_stardust: float = 0.0
    timestamp: int
    status: Literal["pending", "paid", "rejected"] = "pending"


class SavedUpgrade(_Model):
    id: str
    level: int = 0
    cost: Optional[int] = None


class GameStateBlob(_Model):
    avatar_ref: Optional[str] = None
    earn_rate_per_tap: int = DEFAULTS.start_earn_rate
    passive_income_per_hour: float = 0.0
    hold_earn_multiplier: float = 1.0
    current_energy: float = float(DEFAULTS.start_energy)
    max_energy: int = DEFAULTS.max_energy
    last_update: Optional[int] = None
    level_up_ad_watch_count: int = 0
    last_daily_reward_claimed_at: Optional[int] = None
    last_cipher_solved_at: Optional[int] = None
    last_energy_boost_claimed_at: Optional[int] = None
    last_ad_watched_at: Optional[int] = None
    last_withdrawal_at: Optional[int] = None
    consecutive_daily_claims: int = 0
    daily_cipher_solved_today: bool = False
    has_offline_earnings_unlocked: bool = False
    has_completed_follow_task: bool = False
    task_progress_by_id: Dict[str, int] = Field(default_factory=dict)
    active_boosts: List[BoostModel] = Field(default_factory=list)
    last_deal_purchase_at_by_id: Dict[str, int] = Field(default_factory=dict)
    withdrawal_history: List[WithdrawalModel] = Field(default_factory=list)
    upgrades: List[SavedUpgrade] = Field(default_factory=list)

    @model_validator(mode="after")
    def _clamp(self) -> "GameStateBlob":
        self.earn_rate_per_tap = max(1, self.earn_rate_per_tap)
        self.passive_income_per_hour = max(0.0, self.passive_income_per_hour)
        self.hold_earn_multiplier = max(1.0, self.hold_earn_multiplier)
        self.max_energy = max(1, self.max_energy)
        self.current_energy = min(float(self.max_energy), max(0.0, self.current_energy))
        self.level_up_ad_watch_count = max(0, self.level_up_ad_watch_count)
        self.consecutive_daily_claims = max(0, self.consecutive_daily_claims)
        return self


class PlayerRow(_Model):
    telegram_id: str
    username: str = ""
    balance: float = 0.0
    level: int = 1
    stars: int = 0
    referral_count: int = 0
    invited_by: Optional[str] = None
    is_banned: bool = False
    gamestate: GameStateBlob = Field(default_factory=GameStateBlob)

    @field_validator("level")
    @classmethod
    def _level_range(cls, value: int) -> int:
        return min(DEFAULTS.level_cap, max(1, value))

    @field_validator("stars", "referral_count")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, value)


class UpgradeModel(_Model):
    id: str
    name: str = ""
    description: str = ""
    cost: int
    max_level: int = Field(validation_alias=AliasChoices("max_level", "maxLevel"))
    passive_add: float = Field(0.0, validation_alias=AliasChoices("passive_add", "profitPerHour"))
    tap_add: int = Field(0, validation_alias=AliasChoices("tap_add", "cptBoost"))
    hold_multiplier_add: float = Field(
        0.0, validation_alias=AliasChoices("hold_multiplier_add", "holdMultiplierBoost")
    )
    cost_currency: Literal["primary", "premium"] = CURRENCY_PRIMARY
    cost_growth_factor: float = DEFAULTS.upgrade_cost_growth
    unlock_level: Optional[int] = Field(None, validation_alias=AliasChoices("unlock_level", "unlockLevel"))
    category: str = "Market"

    def to_upgrade(self) -> Upgrade:
        return Upgrade(
            id=self.id,
            name=self.name or self.id,
            description=self.description,
            cost=self.cost,
            max_level=self.max_level,
            effect=UpgradeEffect(
                passive_add=self.passive_add,
                tap_add=self.tap_add,
                hold_multiplier_add=self.hold_multiplier_add,
            ),
            cost_currency=self.cost_currency,
            cost_growth_factor=self.cost_growth_factor,
            unlock_level=self.unlock_level,
            category=self.category,
        )


class DealModel(_Model):
    id: str
    title: str = ""
    description: str = ""
    cost_kind: Literal["ad", "primary", "premium"] = Field(
        validation_alias=AliasChoices("cost_kind", "costType")
    )
    cost: float = 0.0
    reward_kind: Literal[
        "energy_boost", "stardust_boost", "cpt_boost", "passive_income_boost", "free_upgrade"
    ] = Field(validation_alias=AliasChoices("reward_kind", "rewardType"))
    reward_value: float = Field(0.0, validation_alias=AliasChoices("reward_value", "rewardValue"))
    reward_duration_ms: Optional[int] = Field(
        None, validation_alias=AliasChoices("reward_duration_ms", "rewardDuration")
    )
    cooldown_ms: Optional[int] = Field(None, validation_alias=AliasChoices("cooldown_ms", "cooldown"))
    unlock_level: Optional[int] = Field(None, validation_alias=AliasChoices("unlock_level", "unlockLevel"))

    @field_validator("cost_kind", mode="before")
    @classmethod
    def _legacy_currency(cls, value: Any) -> Any:
        # admin consoles name the currencies after the coins
        return LEGACY_CURRENCIES.get(value, value)

    def to_deal(self) -> Deal:
        return Deal(
            id=self.id,
            title=self.title or self.id,
            description=self.description,
            cost_kind=self.cost_kind,
            cost=self.cost,
            reward_kind=self.reward_kind,
            reward_value=self.reward_value,
            reward_duration_ms=self.reward_duration_ms,
            cooldown_ms=self.cooldown_ms,
            unlock_level=self.unlock_level,
        )


class TaskModel(_Model):
    id: str
    title: str = ""
    kind: Literal["telegram", "youtube-video", "youtube-shorts", "ads"] = Field(
        validation_alias=AliasChoices("kind", "type")
    )
    reward: float = 0.0
    daily_limit: Optional[int] = Field(None, validation_alias=AliasChoices("daily_limit", "dailyLimit"))
    link: Optional[str] = None
    secret_code: Optional[str] = Field(None, validation_alias=AliasChoices("secret_code", "secretCode"))
    chat_id: Optional[str] = Field(None, validation_alias=AliasChoices("chat_id", "chatId"))

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.replace("_", "-")
        return value

    def to_task(self) -> Task:
        return Task(
            id=self.id,
            title=self.title or self.id,
            kind=self.kind,
            reward=self.reward,
            daily_limit=self.daily_limit,
            link=self.link,
            secret_code=self.secret_code,
            chat_id=self.chat_id,
        )


class DailyRewardModel(_Model):
    kind: Literal["stardust", "stars"] = Field(validation_alias=AliasChoices("kind", "type"))
    amount: float

    def to_reward(self) -> DailyReward:
        return DailyReward(kind=self.kind, amount=self.amount)


class AdUnitModel(_Model):
    id: str
    name: str = ""
    network: str
    block_id: str = Field(validation_alias=AliasChoices("block_id", "blockId"))
    type: str = "rewarded"
    active: bool = True


class AdminConfigModel(_Model):
    daily_cipher_word: str = Field("STAR", validation_alias=AliasChoices("daily_cipher_word", "dailyCipherWord"))
    min_withdrawal_ton: float = Field(1.0, validation_alias=AliasChoices("min_withdrawal_ton", "minWithdrawalTon"))
    referral_reward_stars: int = Field(10, validation_alias=AliasChoices("referral_reward_stars", "referralRewardStars"))
    daily_reward_base: float = Field(1.0, validation_alias=AliasChoices("daily_reward_base", "dailyRewardBase"))
    daily_cipher_reward: float = Field(
        25_000.0, validation_alias=AliasChoices("daily_cipher_reward", "dailyCipherReward")
    )
    ad_units: List[AdUnitModel] = Field(default_factory=list, validation_alias=AliasChoices("ad_units", "adUnits"))
    maintenance_mode: bool = Field(False, validation_alias=AliasChoices("maintenance_mode", "maintenanceMode"))
    maintenance_end_time: Optional[int] = Field(
        None, validation_alias=AliasChoices("maintenance_end_time", "maintenanceEndTime")
    )
    demo_mode: bool = Field(False, validation_alias=AliasChoices("demo_mode", "demoMode"))

    def to_config(self) -> AdminConfig:
        return AdminConfig(
            daily_cipher_word=self.daily_cipher_word,
            min_withdrawal_ton=self.min_withdrawal_ton,
            referral_reward_stars=self.referral_reward_stars,
            daily_reward_base=self.daily_reward_base,
            daily_cipher_reward=self.daily_cipher_reward,
            ad_units=[AdUnit(**unit.model_dump()) for unit in self.ad_units],
            maintenance_mode=self.maintenance_mode,
            maintenance_end_time=self.maintenance_end_time,
            demo_mode=self.demo_mode,
        )


class SettingsPayload(_Model):
    upgrades: Optional[List[UpgradeModel]] = None
    deals: Optional[List[DealModel]] = Field(None, validation_alias=AliasChoices("deals", "stellarDeals"))
    tasks: Optional[List[TaskModel]] = None
    daily_rewards: Optional[List[DailyRewardModel]] = Field(
        None, validation_alias=AliasChoices("daily_rewards", "dailyRewards")
    )
    admin_config: Optional[AdminConfigModel] = Field(
        None, validation_alias=AliasChoices("admin_config", "adminConfig")
    )


def boost_to_model(boost: Boost) -> BoostModel:
    return BoostModel(
        source_id=boost.source_id,
        kind=boost.kind,
        magnitude=boost.magnitude,
        expires_at=boost.expires_at,
    )


def withdrawal_to_model(withdrawal: Withdrawal) -> WithdrawalModel:
    return WithdrawalModel(
        id=withdrawal.id,
        player_id=withdrawal.player_id,
        username=withdrawal.username,
        method=withdrawal.method,
        address=withdrawal.address,
        amount_ton=withdrawal.amount_ton,
        amount_stardust=withdrawal.amount_stardust,
        timestamp=withdrawal.timestamp,
        status=withdrawal.status,
    )


def player_to_row(player: Player, upgrades: List[Upgrade]) -> PlayerRow:
    blob = GameStateBlob(
        avatar_ref=player.avatar_ref,
        earn_rate_per_tap=player.earn_rate_per_tap,
        passive_income_per_hour=player.passive_income_per_hour,
        hold_earn_multiplier=player.hold_earn_multiplier,
        current_energy=player.current_energy,
        max_energy=player.max_energy,
        last_update=player.last_update,
        level_up_ad_watch_count=player.level_up_ad_watch_count,
        last_daily_reward_claimed_at=player.last_daily_reward_claimed_at,
        last_cipher_solved_at=player.last_cipher_solved_at,
        last_energy_boost_claimed_at=player.last_energy_boost_claimed_at,
        last_ad_watched_at=player.last_ad_watched_at,
        last_withdrawal_at=player.last_withdrawal_at,
        consecutive_daily_claims=player.consecutive_daily_claims,
        daily_cipher_solved_today=player.daily_cipher_solved_today,
        has_offline_earnings_unlocked=player.has_offline_earnings_unlocked,
        has_completed_follow_task=player.has_completed_follow_task,
        task_progress_by_id=dict(player.task_progress_by_id),
        active_boosts=[boost_to_model(b) for b in player.active_boosts],
        last_deal_purchase_at_by_id=dict(player.last_deal_purchase_at_by_id),
        withdrawal_history=[withdrawal_to_model(w) for w in player.withdrawal_history],
        upgrades=[SavedUpgrade(id=u.id, level=u.level, cost=u.cost) for u in upgrades],
    )
    return PlayerRow(
        telegram_id=player.id,
        username=player.display_name,
        balance=player.balance,
        level=player.level,
        stars=player.stars,
        referral_count=player.referral_count,
        invited_by=player.invited_by,
        is_banned=player.is_banned,
        gamestate=blob,
    )


def row_to_player(row: PlayerRow, now: int) -> Player:
    """Row-level fields win; nested simulation state comes from the blob."""
    blob = row.gamestate
    return Player(
        id=row.telegram_id,
        display_name=row.username,
        avatar_ref=blob.avatar_ref,
        invited_by=row.invited_by,
        balance=row.balance,
        earn_rate_per_tap=blob.earn_rate_per_tap,
        passive_income_per_hour=blob.passive_income_per_hour,
        hold_earn_multiplier=blob.hold_earn_multiplier,
        current_energy=blob.current_energy,
        max_energy=blob.max_energy,
        last_update=blob.last_update if blob.last_update is not None else now,
        level=row.level,
        level_up_ad_watch_count=blob.level_up_ad_watch_count,
        stars=row.stars,
        last_daily_reward_claimed_at=blob.last_daily_reward_claimed_at,
        last_cipher_solved_at=blob.last_cipher_solved_at,
        last_energy_boost_claimed_at=blob.last_energy_boost_claimed_at,
        last_ad_watched_at=blob.last_ad_watched_at,
        last_withdrawal_at=blob.last_withdrawal_at,
        consecutive_daily_claims=blob.consecutive_daily_claims,
        daily_cipher_solved_today=blob.daily_cipher_solved_today,
        has_offline_earnings_unlocked=blob.has_offline_earnings_unlocked,
        has_completed_follow_task=blob.has_completed_follow_task,
        is_banned=row.is_banned,
        referral_count=row.referral_count,
        task_progress_by_id=dict(blob.task_progress_by_id),
        active_boosts=[
            Boost(b.source_id, b.kind, b.magnitude, b.expires_at)
            for b in blob.active_boosts
        ],
        last_deal_purchase_at_by_id=dict(blob.last_deal_purchase_at_by_id),
        withdrawal_history=[Withdrawal(**w.model_dump()) for w in blob.withdrawal_history],
    )
