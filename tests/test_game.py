from dataclasses import replace

import pytest

from clicker import game
from clicker.config import DEFAULTS, LEVEL_BALANCE_REQUIREMENTS, level_up_ads_required
from clicker.errors import Outcome
from clicker.models import (
    AdminConfig,
    DailyReward,
    Deal,
    UpgradeEffect,
    WithdrawalRequest,
)
from clicker.timing import MS_PER_DAY

from conftest import T0, make_player, make_upgrade


TON_ADDRESS = "UQBvW8Z5huBkMJYdnfAEM5JqTNkuWX3diqYENkWsIL0XggGG"
REWARDS = [DailyReward("stardust", 500), DailyReward("stars", 1)]


def energy_deal(**changes) -> Deal:
    fields = dict(
        id="d_energy",
        title="Energy Cell",
        cost_kind="ad",
        cost=0,
        reward_kind="energy_boost",
        reward_value=500,
        cooldown_ms=1_800_000,
    )
    fields.update(changes)
    return Deal(**fields)


def test_cost_escalation_is_floored_per_step():
    assert game.next_upgrade_cost(1500) == 2400
    assert game.escalated_cost(1500, 2) == 3840
    assert game.escalated_cost(1000, 3) == 4096
    assert game.escalated_cost(777, 0) == 777


def test_purchase_upgrade_twice():
    player = make_player(balance=10_000)
    upgrades = [make_upgrade()]

    first = game.purchase_upgrade(player, upgrades, "m1")
    assert first.ok
    assert (first.upgrades[0].level, first.upgrades[0].cost) == (1, 2400)

    second = game.purchase_upgrade(first.player, first.upgrades, "m1")
    assert (second.upgrades[0].level, second.upgrades[0].cost) == (2, 3840)
    assert second.player.balance == 10_000 - 1500 - 2400
    assert second.player.passive_income_per_hour == 200
    assert player.balance == 10_000


def test_purchase_upgrade_rejections_leave_player_unchanged():
    player = make_player(balance=100)
    upgrades = [make_upgrade(), make_upgrade(id="m9", max_level=1, level=1)]

    poor = game.purchase_upgrade(player, upgrades, "m1")
    assert poor.outcome is Outcome.INELIGIBLE
    assert poor.player is player
    assert poor.upgrades is upgrades

    assert game.purchase_upgrade(player, upgrades, "nope").outcome is Outcome.NOT_FOUND
    assert game.purchase_upgrade(make_player(balance=1e9), upgrades, "m9").outcome is Outcome.INELIGIBLE


def test_locked_upgrade_requires_level():
    upgrades = [make_upgrade(unlock_level=3)]
    result = game.purchase_upgrade(make_player(balance=1e6, level=2), upgrades, "m1")
    assert result.outcome is Outcome.INELIGIBLE
    assert game.purchase_upgrade(make_player(balance=1e6, level=3), upgrades, "m1").ok


def test_premium_upgrade_spends_stars():
    upgrades = [make_upgrade(id="s3", cost=3, cost_currency="premium", effect=UpgradeEffect(tap_add=2))]
    result = game.purchase_upgrade(make_player(stars=5, balance=0), upgrades, "s3")
    assert result.ok
    assert result.player.stars == 2
    assert result.player.earn_rate_per_tap == 3


def test_offline_upgrade_sets_flag():
    upgrades = [make_upgrade(id=DEFAULTS.offline_upgrade_id, cost=10, max_level=1, effect=UpgradeEffect())]
    result = game.purchase_upgrade(make_player(balance=10), upgrades, DEFAULTS.offline_upgrade_id)
    assert result.player.has_offline_earnings_unlocked
    assert result.upgrades[0].is_maxed


def test_energy_deal_clamps_to_max():
    player = make_player(current_energy=800.0)
    result = game.purchase_deal(player, [], energy_deal(), T0, ad_confirmed=True)
    assert result.ok
    assert result.player.current_energy == 1000
    assert result.player.last_deal_purchase_at_by_id["d_energy"] == T0


def test_ad_deal_needs_confirmed_ad_and_respects_cooldown():
    player = make_player()
    assert game.purchase_deal(player, [], energy_deal(), T0).outcome is Outcome.INELIGIBLE

    bought = game.purchase_deal(player, [], energy_deal(), T0, ad_confirmed=True).player
    again = game.purchase_deal(bought, [], energy_deal(), T0 + 60_000, ad_confirmed=True)
    assert again.outcome is Outcome.INELIGIBLE
    assert game.deal_cooldown_remaining(bought, energy_deal(), T0 + 60_000) == 1_740_000
    assert game.purchase_deal(bought, [], energy_deal(), T0 + 1_800_000, ad_confirmed=True).ok


def test_boost_deal_replaces_same_kind():
    deal = Deal("d_tap", "Overclock", "premium", 5, "cpt_boost", 2, reward_duration_ms=600_000)
    player = make_player(stars=20)
    first = game.purchase_deal(player, [], deal, T0)
    second = game.purchase_deal(first.player, [], replace(deal, reward_value=3), T0 + 1000)
    assert second.player.stars == 10
    assert len(second.player.active_boosts) == 1
    assert second.player.active_boosts[0].magnitude == 3
    assert second.player.active_boosts[0].expires_at == T0 + 601_000


def test_free_upgrade_levels_cheapest_available():
    upgrades = [
        make_upgrade(id="a", cost=5000),
        make_upgrade(id="b", cost=2000, effect=UpgradeEffect(tap_add=1)),
        make_upgrade(id="c", cost=100, unlock_level=9),
    ]
    deal = Deal("d_free", "Engineer Visit", "ad", 0, "free_upgrade", 1)
    result = game.purchase_deal(make_player(balance=0), upgrades, deal, T0, ad_confirmed=True)
    levels = {u.id: u.level for u in result.upgrades}
    assert levels == {"a": 0, "b": 1, "c": 0}
    assert result.player.earn_rate_per_tap == 2
    assert result.player.balance == 0


def test_free_upgrade_with_everything_maxed_still_consumes_deal():
    upgrades = [make_upgrade(level=20)]
    deal = Deal("d_free", "Engineer Visit", "ad", 0, "free_upgrade", 1, cooldown_ms=1000)
    result = game.purchase_deal(make_player(), upgrades, deal, T0, ad_confirmed=True)
    assert result.ok
    assert result.upgrades == upgrades
    assert result.player.last_deal_purchase_at_by_id["d_free"] == T0


def test_daily_reward_is_idempotent_within_a_day():
    admin = AdminConfig()
    first = game.claim_daily_reward(make_player(), [], REWARDS, admin, T0)
    assert first.ok
    assert first.player.balance == 500
    assert first.player.consecutive_daily_claims == 1

    same_day = game.claim_daily_reward(first.player, [], REWARDS, admin, T0 + 1000)
    assert same_day.outcome is Outcome.INELIGIBLE
    exactly_a_day = game.claim_daily_reward(first.player, [], REWARDS, admin, T0 + MS_PER_DAY)
    assert exactly_a_day.outcome is Outcome.INELIGIBLE

    next_day = game.claim_daily_reward(first.player, [], REWARDS, admin, T0 + MS_PER_DAY + 1)
    assert next_day.ok
    assert next_day.player.stars == DEFAULTS.start_stars + 1
    assert next_day.player.consecutive_daily_claims == 2


def test_daily_reward_cycles_table_and_streak_never_resets():
    player = make_player(consecutive_daily_claims=2, last_daily_reward_claimed_at=T0 - 30 * MS_PER_DAY)
    assert game.next_daily_reward(player, REWARDS) == REWARDS[0]
    result = game.claim_daily_reward(player, [], REWARDS, AdminConfig(daily_reward_base=2.0), T0)
    assert result.credited == 1000
    assert result.player.consecutive_daily_claims == 3


def test_cipher_once_per_day():
    admin = AdminConfig(daily_cipher_word="Nova", daily_cipher_reward=25_000)
    assert game.check_cipher_word(admin.daily_cipher_word, " nova ")
    assert not game.check_cipher_word(admin.daily_cipher_word, "star")

    solved = game.solve_cipher(make_player(), [], admin, T0)
    assert solved.player.balance == 25_000
    assert solved.player.daily_cipher_solved_today
    assert game.solve_cipher(solved.player, [], admin, T0 + 5).outcome is Outcome.INELIGIBLE


def test_energy_booster_refills_and_recharges():
    player = make_player(current_energy=3.0)
    result = game.activate_energy_booster(player, [], T0)
    assert result.player.current_energy == 1000
    assert game.activate_energy_booster(result.player, [], T0 + 1000).outcome is Outcome.INELIGIBLE
    assert game.activate_energy_booster(result.player, [], T0 + DEFAULTS.energy_booster_cooldown_ms).ok


def test_level_up_from_five_to_six():
    required = LEVEL_BALANCE_REQUIREMENTS[5]
    ads = level_up_ads_required(5)
    assert ads == 3

    player = make_player(level=5, balance=required, level_up_ad_watch_count=0)
    one_ad = game.record_level_up_ad(player, [])
    assert one_ad.player.level == 5
    assert one_ad.player.level_up_ad_watch_count == 1
    assert one_ad.player.balance == required

    ready = make_player(level=5, balance=required, level_up_ad_watch_count=ads - 1)
    leveled = game.record_level_up_ad(ready, [])
    assert leveled.player.level == 6
    assert leveled.player.level_up_ad_watch_count == 0


def test_level_up_needs_balance_threshold():
    player = make_player(level=5, balance=LEVEL_BALANCE_REQUIREMENTS[5] - 1, level_up_ad_watch_count=10)
    assert game.try_level_up(player, []).outcome is Outcome.INELIGIBLE
    assert game.try_level_up(make_player(level=1), []).ok
    capped = make_player(level=DEFAULTS.level_cap, balance=1e12, level_up_ad_watch_count=99)
    assert game.try_level_up(capped, []).outcome is Outcome.INELIGIBLE


def test_withdrawal_deducts_and_prepends_history():
    player = make_player(balance=300_000)
    request = WithdrawalRequest("TON", TON_ADDRESS, 200_000)
    result = game.initiate_withdrawal(player, [], request, AdminConfig(), T0)
    assert result.ok
    assert result.player.balance == 100_000
    assert result.player.last_withdrawal_at == T0
    entry = result.player.withdrawal_history[0]
    assert entry.status == "pending"
    assert entry.amount_ton == pytest.approx(2.0)
    assert entry.id.startswith(f"wd_{T0}_")


def test_withdrawal_cooldown():
    admin = AdminConfig()
    first = game.initiate_withdrawal(
        make_player(balance=1_000_000), [], WithdrawalRequest("TON", TON_ADDRESS, 100_000), admin, T0
    )
    request = WithdrawalRequest("UPI", "nova@okaxis", 100_000)
    blocked = game.initiate_withdrawal(first.player, [], request, admin, T0 + 1000)
    assert blocked.outcome is Outcome.INELIGIBLE
    assert blocked.reason == "Withdrawal cooldown is active."
    later = game.initiate_withdrawal(first.player, [], request, admin, T0 + DEFAULTS.withdrawal_cooldown_ms)
    assert later.ok
    assert [w.method for w in later.player.withdrawal_history] == ["UPI", "TON"]


@pytest.mark.parametrize(
    "request_, reason",
    [
        (WithdrawalRequest("TON", "   ", 200_000), "Enter a wallet address."),
        (WithdrawalRequest("UPI", "not-an-upi", 200_000), "Invalid UPI format."),
        (WithdrawalRequest("TON", "short", 200_000), "Invalid TON address."),
        (WithdrawalRequest("TON", TON_ADDRESS, 900_000), "Insufficient balance."),
        (WithdrawalRequest("TON", TON_ADDRESS, 50_000), "Minimum withdrawal is 1.0 TON."),
    ],
)
def test_withdrawal_validation(request_, reason):
    player = make_player(balance=500_000)
    result = game.initiate_withdrawal(player, [], request_, AdminConfig(), T0)
    assert result.outcome is Outcome.INELIGIBLE
    assert result.reason == reason
    assert result.player is player


def test_banned_player_cannot_act():
    player = make_player(balance=1e6, is_banned=True)
    upgrades = [make_upgrade()]
    assert game.purchase_upgrade(player, upgrades, "m1").outcome is Outcome.BANNED
    assert game.claim_daily_reward(player, [], REWARDS, AdminConfig(), T0).outcome is Outcome.BANNED
    assert game.credit_claim(player, [], 10).outcome is Outcome.BANNED
    assert game.set_banned(player, [], False).player.is_banned is False


def test_set_withdrawal_status_only_settles_pending():
    player = game.initiate_withdrawal(
        make_player(balance=500_000), [], WithdrawalRequest("TON", TON_ADDRESS, 100_000), AdminConfig(), T0
    ).player
    wid = player.withdrawal_history[0].id
    paid = game.set_withdrawal_status(player, [], wid, "paid")
    assert paid.player.withdrawal_history[0].status == "paid"
    assert game.set_withdrawal_status(paid.player, [], wid, "rejected").outcome is Outcome.INELIGIBLE
    assert game.set_withdrawal_status(player, [], "missing", "paid").outcome is Outcome.NOT_FOUND


def test_set_withdrawal_status_rejects_unknown_status():
    player = game.initiate_withdrawal(
        make_player(balance=500_000), [], WithdrawalRequest("TON", TON_ADDRESS, 100_000), AdminConfig(), T0
    ).player
    wid = player.withdrawal_history[0].id
    for status in ("pending", "refunded"):
        result = game.set_withdrawal_status(player, [], wid, status)
        assert result.outcome is Outcome.INELIGIBLE
        assert result.player is player
    assert player.withdrawal_history[0].status == "pending"
