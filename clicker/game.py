from __future__ import annotations

import logging
import math
import re
import secrets
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from .boosts import upsert
from .config import DEFAULTS, LEVEL_BALANCE_REQUIREMENTS, level_up_ads_required
from .errors import ActionResult, Outcome
from .models import (
    COST_AD,
    CURRENCY_PREMIUM,
    CURRENCY_PRIMARY,
    PASSIVE_ADDEND,
    REWARD_CPT,
    REWARD_ENERGY,
    REWARD_FREE_UPGRADE,
    REWARD_PASSIVE,
    REWARD_STARDUST,
    TAP_MULTIPLIER,
    WITHDRAWAL_PAID,
    WITHDRAWAL_PENDING,
    WITHDRAWAL_REJECTED,
    AdminConfig,
    Boost,
    DailyReward,
    Deal,
    Player,
    Upgrade,
    Withdrawal,
    WithdrawalRequest,
)
from .timing import remaining_cooldown


logger = logging.getLogger(__name__)

UPI_PATTERN = re.compile(r"^[\w.-]+@[\w.-]+$")


def _accept(player: Player, upgrades: List[Upgrade], credited: float = 0.0) -> ActionResult:
    return ActionResult(player=player, upgrades=upgrades, credited=credited)


def _reject(
    player: Player,
    upgrades: List[Upgrade],
    outcome: Outcome,
    reason: str,
) -> ActionResult:
    if outcome is Outcome.NOT_FOUND:
        logger.warning("Player %s: %s", player.id, reason)
    else:
        logger.debug("Player %s: %s rejected (%s)", player.id, outcome.value, reason)
    return ActionResult(player=player, upgrades=upgrades, outcome=outcome, reason=reason)


def _banned(player: Player, upgrades: List[Upgrade]) -> ActionResult:
    return _reject(player, upgrades, Outcome.BANNED, "Account is banned.")


def next_upgrade_cost(cost: float, growth: float = DEFAULTS.upgrade_cost_growth) -> int:
    return int(math.floor(cost * growth))


def escalated_cost(
    base_cost: float, level: int, growth: float = DEFAULTS.upgrade_cost_growth
) -> int:
    cost = int(base_cost)
    for _ in range(max(0, level)):
        cost = next_upgrade_cost(cost, growth)
    return cost


def is_unlocked(unlock_level: Optional[int], player_level: int) -> bool:
    return not unlock_level or player_level >= unlock_level


def can_afford(player: Player, currency: str, cost: float) -> bool:
    if currency == CURRENCY_PREMIUM:
        return player.stars >= cost
    return player.balance >= cost


def _spend(player: Player, currency: str, cost: float) -> None:
    if currency == CURRENCY_PREMIUM:
        player.stars -= int(cost)
    else:
        player.balance -= cost


def _apply_upgrade_level(
    player: Player, upgrades: List[Upgrade], upgrade: Upgrade
) -> List[Upgrade]:
    effect = upgrade.effect
    player.passive_income_per_hour += effect.passive_add
    player.earn_rate_per_tap += effect.tap_add
    player.hold_earn_multiplier += effect.hold_multiplier_add
    if upgrade.id == DEFAULTS.offline_upgrade_id:
        player.has_offline_earnings_unlocked = True
    bumped = replace(
        upgrade,
        level=upgrade.level + 1,
        cost=next_upgrade_cost(upgrade.cost, upgrade.cost_growth_factor),
    )
    return [bumped if u.id == upgrade.id else u for u in upgrades]


def purchase_upgrade(
    player: Player, upgrades: List[Upgrade], upgrade_id: str
) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    upgrade = next((u for u in upgrades if u.id == upgrade_id), None)
    if upgrade is None:
        return _reject(player, upgrades, Outcome.NOT_FOUND, f"Unknown upgrade {upgrade_id}.")
    if upgrade.is_maxed:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Upgrade is at max level.")
    if not is_unlocked(upgrade.unlock_level, player.level):
        return _reject(
            player, upgrades, Outcome.INELIGIBLE, f"Unlocks at level {upgrade.unlock_level}."
        )
    if not can_afford(player, upgrade.cost_currency, upgrade.cost):
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Not enough funds.")

    updated = player.copy()
    _spend(updated, upgrade.cost_currency, upgrade.cost)
    return _accept(updated, _apply_upgrade_level(updated, upgrades, upgrade))


def cheapest_upgrade(player: Player, upgrades: Sequence[Upgrade]) -> Optional[Upgrade]:
    available = [
        u for u in upgrades if not u.is_maxed and is_unlocked(u.unlock_level, player.level)
    ]
    if not available:
        return None
    # min() keeps the first of equal costs, i.e. catalog order.
    return min(available, key=lambda u: u.cost)


def deal_cooldown_remaining(player: Player, deal: Deal, now: int) -> int:
    if not deal.cooldown_ms:
        return 0
    return remaining_cooldown(
        player.last_deal_purchase_at_by_id.get(deal.id), deal.cooldown_ms, now
    )


def deal_rejection(
    player: Player, deal: Deal, now: int, ad_confirmed: bool = False
) -> Optional[str]:
    if not is_unlocked(deal.unlock_level, player.level):
        return f"Unlocks at level {deal.unlock_level}."
    if deal_cooldown_remaining(player, deal, now) > 0:
        return "Deal is on cooldown."
    if deal.cost_kind == COST_AD:
        if not ad_confirmed:
            return "Watch an ad to claim this deal."
        return None
    if not can_afford(player, deal.cost_kind, deal.cost):
        return "Not enough funds."
    return None


def purchase_deal(
    player: Player,
    upgrades: List[Upgrade],
    deal: Deal,
    now: int,
    ad_confirmed: bool = False,
) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    reason = deal_rejection(player, deal, now, ad_confirmed)
    if reason:
        return _reject(player, upgrades, Outcome.INELIGIBLE, reason)

    updated = player.copy()
    if deal.cost_kind in (CURRENCY_PRIMARY, CURRENCY_PREMIUM):
        _spend(updated, deal.cost_kind, deal.cost)

    new_upgrades = upgrades
    credited = 0.0
    if deal.reward_kind == REWARD_ENERGY:
        updated.current_energy = min(
            updated.max_energy, updated.current_energy + deal.reward_value
        )
    elif deal.reward_kind == REWARD_STARDUST:
        updated.balance += deal.reward_value
        credited = deal.reward_value
    elif deal.reward_kind in (REWARD_CPT, REWARD_PASSIVE):
        kind = TAP_MULTIPLIER if deal.reward_kind == REWARD_CPT else PASSIVE_ADDEND
        boost = Boost(
            source_id=deal.id,
            kind=kind,
            magnitude=deal.reward_value,
            expires_at=now + int(deal.reward_duration_ms or 0),
        )
        updated.active_boosts = upsert(updated.active_boosts, boost)
    elif deal.reward_kind == REWARD_FREE_UPGRADE:
        target = cheapest_upgrade(player, upgrades)
        if target is not None:
            new_upgrades = _apply_upgrade_level(updated, upgrades, target)
    else:
        logger.warning("Deal %s has unknown reward kind %s", deal.id, deal.reward_kind)

    if deal.cooldown_ms:
        updated.last_deal_purchase_at_by_id[deal.id] = now
    return _accept(updated, new_upgrades, credited)


def is_daily_reward_available(player: Player, now: int) -> bool:
    last = player.last_daily_reward_claimed_at
    return last is None or now - last > DEFAULTS.daily_reward_cooldown_ms


def next_daily_reward(player: Player, rewards: Sequence[DailyReward]) -> Optional[DailyReward]:
    if not rewards:
        return None
    return rewards[player.consecutive_daily_claims % len(rewards)]


def claim_daily_reward(
    player: Player,
    upgrades: List[Upgrade],
    rewards: Sequence[DailyReward],
    admin: AdminConfig,
    now: int,
) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    if not is_daily_reward_available(player, now):
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Daily reward already claimed.")
    reward = next_daily_reward(player, rewards)
    if reward is None:
        return _reject(player, upgrades, Outcome.NOT_FOUND, "Daily reward table is empty.")

    updated = player.copy()
    credited = 0.0
    if reward.kind == "stars":
        updated.stars += int(reward.amount)
    else:
        credited = reward.amount * admin.daily_reward_base
        updated.balance += credited
    updated.last_daily_reward_claimed_at = now
    updated.consecutive_daily_claims += 1
    return _accept(updated, upgrades, credited)


def check_cipher_word(word: str, attempt: str) -> bool:
    return bool(word) and attempt.strip().upper() == word.strip().upper()


def solve_cipher(
    player: Player, upgrades: List[Upgrade], admin: AdminConfig, now: int
) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    if player.daily_cipher_solved_today:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Cipher already solved today.")
    updated = player.copy(
        balance=player.balance + admin.daily_cipher_reward,
        daily_cipher_solved_today=True,
        last_cipher_solved_at=now,
    )
    return _accept(updated, upgrades, admin.daily_cipher_reward)


def energy_booster_remaining(player: Player, now: int) -> int:
    return remaining_cooldown(
        player.last_energy_boost_claimed_at, DEFAULTS.energy_booster_cooldown_ms, now
    )


def activate_energy_booster(player: Player, upgrades: List[Upgrade], now: int) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    if energy_booster_remaining(player, now) > 0:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Energy booster is recharging.")
    updated = player.copy(
        current_energy=float(player.max_energy),
        last_energy_boost_claimed_at=now,
    )
    return _accept(updated, upgrades)


def level_up_requirements(level: int) -> Tuple[Optional[int], int]:
    return LEVEL_BALANCE_REQUIREMENTS.get(level), level_up_ads_required(level)


def try_level_up(player: Player, upgrades: List[Upgrade]) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    if player.level >= DEFAULTS.level_cap:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Max level reached.")
    balance_req, ads_req = level_up_requirements(player.level)
    if balance_req is None or player.balance < balance_req:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Balance below level threshold.")
    if player.level_up_ad_watch_count < ads_req:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "More ads required to level up.")
    updated = player.copy(level=player.level + 1, level_up_ad_watch_count=0)
    logger.info("Player %s reached level %s", player.id, updated.level)
    return _accept(updated, upgrades)


def record_level_up_ad(player: Player, upgrades: List[Upgrade]) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    counted = player.copy(level_up_ad_watch_count=player.level_up_ad_watch_count + 1)
    leveled = try_level_up(counted, upgrades)
    return _accept(leveled.player, upgrades)


def stardust_to_ton(amount_stardust: float) -> float:
    return amount_stardust / DEFAULTS.dust_to_ton_rate


def withdrawal_cooldown_remaining(player: Player, now: int) -> int:
    return remaining_cooldown(player.last_withdrawal_at, DEFAULTS.withdrawal_cooldown_ms, now)


def validate_withdrawal(
    player: Player, request: WithdrawalRequest, admin: AdminConfig, now: int
) -> Optional[str]:
    address = request.address.strip()
    if not address:
        return "Enter a wallet address." if request.method == "TON" else "Enter a valid UPI ID."
    if withdrawal_cooldown_remaining(player, now) > 0:
        return "Withdrawal cooldown is active."
    if request.method == "UPI":
        if not UPI_PATTERN.match(address):
            return "Invalid UPI format."
    elif request.method == "TON":
        if len(address) < DEFAULTS.min_ton_address_length:
            return "Invalid TON address."
    else:
        return f"Unsupported method {request.method}."
    if request.amount_stardust <= 0 or request.amount_stardust > player.balance:
        return "Insufficient balance."
    if stardust_to_ton(request.amount_stardust) < admin.min_withdrawal_ton:
        return f"Minimum withdrawal is {admin.min_withdrawal_ton} TON."
    return None


def initiate_withdrawal(
    player: Player,
    upgrades: List[Upgrade],
    request: WithdrawalRequest,
    admin: AdminConfig,
    now: int,
) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    reason = validate_withdrawal(player, request, admin, now)
    if reason:
        return _reject(player, upgrades, Outcome.INELIGIBLE, reason)
    withdrawal = Withdrawal(
        id=f"wd_{now}_{secrets.token_hex(3)}",
        player_id=player.id,
        username=player.display_name,
        method=request.method,
        address=request.address.strip(),
        amount_ton=stardust_to_ton(request.amount_stardust),
        amount_stardust=request.amount_stardust,
        timestamp=now,
        status=WITHDRAWAL_PENDING,
    )
    updated = player.copy(
        balance=player.balance - request.amount_stardust,
        last_withdrawal_at=now,
    )
    updated.withdrawal_history.insert(0, withdrawal)
    return _accept(updated, upgrades)


def set_withdrawal_status(
    player: Player, upgrades: List[Upgrade], withdrawal_id: str, status: str
) -> ActionResult:
    if status not in (WITHDRAWAL_PAID, WITHDRAWAL_REJECTED):
        return _reject(player, upgrades, Outcome.INELIGIBLE, f"Unknown withdrawal status {status}.")
    target = next((w for w in player.withdrawal_history if w.id == withdrawal_id), None)
    if target is None:
        return _reject(player, upgrades, Outcome.NOT_FOUND, f"Unknown withdrawal {withdrawal_id}.")
    if target.status != WITHDRAWAL_PENDING:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Withdrawal already settled.")
    updated = player.copy()
    updated.withdrawal_history = [
        replace(w, status=status) if w.id == withdrawal_id else w
        for w in updated.withdrawal_history
    ]
    return _accept(updated, upgrades)


def set_banned(player: Player, upgrades: List[Upgrade], banned: bool) -> ActionResult:
    return _accept(player.copy(is_banned=banned), upgrades)


def credit_claim(player: Player, upgrades: List[Upgrade], amount: float) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    if amount <= 0:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Nothing to claim.")
    return _accept(player.copy(balance=player.balance + amount), upgrades, amount)
