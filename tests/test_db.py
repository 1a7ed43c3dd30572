import pytest

from clicker.db import Database
from clicker.models import PlayerIdentity
from clicker.session import GameSession


def row(player_id: str, balance: float, **extra):
    data = {
        "telegram_id": player_id,
        "username": f"player{player_id}",
        "balance": balance,
        "level": 2,
        "stars": 5,
        "referral_count": 0,
        "invited_by": None,
        "is_banned": False,
        "gamestate": {"current_energy": 750.0, "task_progress_by_id": {"t_ads": 2}},
    }
    data.update(extra)
    return data


@pytest.fixture
async def db(tmp_path):
    database = Database(tmp_path / "test.db")
    await database.connect()
    await database.init()
    yield database
    await database.close()


async def test_persist_and_fetch_snapshot(db):
    await db.persist_player("1", row("1", 1234.5))
    snapshot = await db.fetch_player_snapshot("1")
    assert snapshot["balance"] == 1234.5
    assert snapshot["is_banned"] is False
    assert snapshot["gamestate"]["task_progress_by_id"] == {"t_ads": 2}
    assert await db.fetch_player_snapshot("2") is None


async def test_persist_is_an_upsert(db):
    await db.persist_player("1", row("1", 10))
    await db.persist_player("1", row("1", 20, level=3))
    snapshot = await db.fetch_player_snapshot("1")
    assert snapshot["balance"] == 20
    assert snapshot["level"] == 3
    assert await db.count_players() == 1


async def test_leaderboard_skips_banned_players(db):
    await db.persist_player("1", row("1", 100))
    await db.persist_player("2", row("2", 300))
    await db.persist_player("3", row("3", 200))
    await db.persist_player("4", row("4", 900, is_banned=True))

    top = await db.fetch_leaderboard(2)
    assert [r["telegram_id"] for r in top] == ["2", "3"]
    assert await db.fetch_rank_for(150) == 3
    assert await db.fetch_rank_for(1000) == 1


async def test_field_update_is_pushed_to_subscribers(db):
    await db.persist_player("1", row("1", 0))
    received = []
    unsubscribe = db.subscribe(lambda pid, delta: received.append((pid, delta)))

    assert await db.update_player_fields("1", stars=50)
    assert await db.set_banned("1", True)
    assert not await db.set_banned("missing", True)
    assert received == [("1", {"stars": 50}), ("1", {"is_banned": True})]

    unsubscribe()
    await db.update_player_fields("1", stars=60)
    assert len(received) == 2
    snapshot = await db.fetch_player_snapshot("1")
    assert snapshot["stars"] == 60
    assert snapshot["is_banned"] is True


async def test_local_simulation_columns_cannot_be_updated(db):
    with pytest.raises(ValueError):
        await db.update_player_fields("1", balance=10)


async def test_delete_player(db):
    await db.persist_player("1", row("1", 0))
    await db.delete_player("1")
    assert await db.fetch_player_snapshot("1") is None


async def test_game_settings_round_trip(db):
    assert await db.fetch_global_catalogs() is None
    await db.save_game_settings({"adminConfig": {"demoMode": True}})
    await db.save_game_settings({"adminConfig": {"demoMode": False}})
    assert await db.fetch_global_catalogs() == {"adminConfig": {"demoMode": False}}


async def test_session_save_keeps_ban_from_another_process(tmp_path, game_data):
    path = tmp_path / "shared.db"
    webapp_db, bot_db = Database(path), Database(path)
    for database in (webapp_db, bot_db):
        await database.connect()
    await webapp_db.init()

    session = GameSession(webapp_db, PlayerIdentity("42", "nova"), data=game_data)
    await session.load(start_loops=False)
    await session.bridge.flush()

    assert await bot_db.set_banned("42", True)
    assert await bot_db.update_player_fields("42", referral_count=4)
    assert not session.player.is_banned

    assert await session.bridge.save_now()
    snapshot = await bot_db.fetch_player_snapshot("42")
    assert snapshot["is_banned"] is True
    assert snapshot["referral_count"] == 4

    assert await session.bridge.refresh()
    assert session.player.is_banned
    assert session.player.referral_count == 4

    await session.close()
    await bot_db.close()
    await webapp_db.close()


async def test_owned_fields(db):
    assert await db.fetch_owned_fields("1") is None
    await db.persist_player("1", row("1", 0, referral_count=2))
    assert await db.fetch_owned_fields("1") == {"referral_count": 2, "is_banned": False}
