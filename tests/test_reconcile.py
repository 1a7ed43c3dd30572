import pytest

from clicker.catalog import merge_catalogs
from clicker.config import DEFAULTS
from clicker.models import PlayerIdentity
from clicker.reconcile import merge_push, merge_upgrade_levels, offline_earnings, reconcile
from clicker.schema import PlayerRow, SavedUpgrade, player_to_row, row_to_player
from clicker.timing import MS_PER_DAY

from conftest import T0, make_player, make_upgrade


IDENTITY = PlayerIdentity(id="42", display_name="nova", avatar_ref="https://t.me/i/nova.jpg")
HOUR_MS = 3_600_000


def stored_row(player, upgrades):
    return player_to_row(player, upgrades).model_dump(mode="json")


def test_new_player_defaults(game_data):
    result = reconcile(None, IDENTITY, game_data.catalogs(), T0)
    assert result.is_new
    player = result.player
    assert (player.balance, player.level, player.stars) == (0.0, 1, DEFAULTS.start_stars)
    assert player.current_energy == player.max_energy == DEFAULTS.max_energy
    assert all(u.level == 0 for u in result.upgrades)


def test_offline_income_for_one_hour_equals_rate():
    player = make_player(passive_income_per_hour=1200, has_offline_earnings_unlocked=True)
    assert offline_earnings(player, T0 + HOUR_MS) == pytest.approx(1200)


def test_offline_income_needs_unlock_and_threshold():
    unlocked = make_player(passive_income_per_hour=1200, has_offline_earnings_unlocked=True)
    assert offline_earnings(unlocked, T0 + 300_000) == 0.0
    assert offline_earnings(make_player(passive_income_per_hour=1200), T0 + HOUR_MS) == 0.0


def test_reload_reports_offline_earnings_without_crediting(game_data, upgrades):
    player = make_player(balance=50.0, passive_income_per_hour=3600, has_offline_earnings_unlocked=True)
    result = reconcile(stored_row(player, upgrades), IDENTITY, game_data.catalogs(), T0 + HOUR_MS)
    assert result.offline_earnings == pytest.approx(3600)
    assert result.player.balance == 50.0
    assert result.player.last_update == T0 + HOUR_MS
    assert not result.is_new


def test_reload_resets_cipher_after_midnight(game_data, upgrades):
    day = 19_700 * MS_PER_DAY
    player = make_player(
        last_update=day + 1000, daily_cipher_solved_today=True, last_cipher_solved_at=day + 1000
    )
    result = reconcile(stored_row(player, upgrades), IDENTITY, game_data.catalogs(), day + MS_PER_DAY + 5)
    assert result.player.daily_cipher_solved_today is False


def test_upgrade_levels_are_clamped_and_cost_recomputed():
    catalog = [make_upgrade(cost=1500, max_level=3), make_upgrade(id="m2", cost=100)]
    saved = [SavedUpgrade(id="m1", level=7, cost=1), SavedUpgrade(id="gone", level=2)]
    merged = {u.id: u for u in merge_upgrade_levels(catalog, saved)}
    assert merged["m1"].level == 3
    assert merged["m1"].cost == 6144
    assert (merged["m2"].level, merged["m2"].cost) == (0, 100)
    assert "gone" not in merged


def test_row_round_trip(upgrades):
    player = make_player(balance=1234.5, stars=9, level=4, referral_count=2, task_progress_by_id={"t_ads": 2})
    row = PlayerRow.model_validate(stored_row(player, upgrades))
    restored = row_to_player(row, T0 + 99)
    assert restored == player


def test_row_level_fields_win_and_blob_is_clamped():
    raw = {
        "telegram_id": "42",
        "username": "nova",
        "balance": 10.0,
        "level": 99,
        "stars": -3,
        "gamestate": {"current_energy": 5000, "max_energy": 1000, "earn_rate_per_tap": 0},
    }
    player = row_to_player(PlayerRow.model_validate(raw), T0)
    assert player.level == DEFAULTS.level_cap
    assert player.stars == 0
    assert player.current_energy == 1000
    assert player.earn_rate_per_tap == 1
    assert player.last_update == T0


def test_corrupt_game_state_falls_back_to_defaults(game_data):
    raw = {"telegram_id": "42", "username": "nova", "balance": 77.0, "gamestate": {"active_boosts": "nope"}}
    result = reconcile(raw, IDENTITY, game_data.catalogs(), T0)
    assert result.player.balance == 77.0
    assert result.player.active_boosts == []


def test_push_merge_never_clobbers_local_simulation():
    player = make_player(balance=500.0, current_energy=321.0, stars=1)
    merged = merge_push(
        player,
        {"stars": 11, "referral_count": 3, "is_banned": True, "balance": 0, "current_energy": 1000},
    )
    assert (merged.stars, merged.referral_count, merged.is_banned) == (11, 3, True)
    assert (merged.balance, merged.current_energy) == (500.0, 321.0)
    assert merge_push(player, {"username": "x"}) is player


def test_global_settings_override_catalogs(game_data):
    payload = {
        "upgrades": [{"id": "m1", "name": "Drill", "cost": 99, "maxLevel": 5, "profitPerHour": 7, "level": 4}],
        "stellarDeals": [],
        "adminConfig": {"dailyCipherWord": "COMET", "maintenanceMode": True},
    }
    catalogs = merge_catalogs(game_data, payload)
    assert [(u.id, u.level, u.cost, u.max_level) for u in catalogs.upgrades] == [("m1", 0, 1500, 5)]
    assert catalogs.upgrades[0].effect.passive_add == 7
    assert catalogs.deals == []
    assert catalogs.admin.daily_cipher_word == "COMET"
    assert catalogs.admin.maintenance_mode
    assert catalogs.tasks == game_data.tasks
