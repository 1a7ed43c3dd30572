import hashlib
import hmac
import json
import time
from urllib.parse import urlencode

import pytest

from clicker.models import PlayerIdentity
from clicker.session import GameSession
from clicker_webapp import app as webapp


TOKEN = "123456:TEST-TOKEN"


def sign(fields, token=TOKEN):
    check = "\n".join(f"{k}={fields[k]}" for k in sorted(fields))
    secret = hmac.new(b"WebAppData", token.encode(), hashlib.sha256).digest()
    digest = hmac.new(secret, check.encode(), hashlib.sha256).hexdigest()
    return urlencode({**fields, "hash": digest})


def init_fields(**user):
    user.setdefault("id", 42)
    return {
        "auth_date": str(int(time.time())),
        "query_id": "AAE",
        "user": json.dumps(user),
    }


@pytest.fixture(autouse=True)
def bot_token(monkeypatch):
    monkeypatch.setattr(webapp, "BOT_TOKEN", TOKEN)


def test_valid_init_data_is_accepted():
    pairs = webapp._validate_init_data(sign(init_fields(username="nova")))
    assert pairs is not None
    user = webapp._parse_user(pairs)
    assert user.id == 42
    assert user.display_name == "nova"


def test_tampered_init_data_is_rejected():
    signed = sign(init_fields())
    assert webapp._validate_init_data(signed.replace("42", "43")) is None
    assert webapp._validate_init_data(sign(init_fields(), token="other:token")) is None
    assert webapp._validate_init_data("") is None
    assert webapp._validate_init_data("user=1") is None


def test_stale_init_data_is_rejected():
    fields = init_fields()
    fields["auth_date"] = str(int(time.time()) - webapp.WEBAPP_AUTH_MAX_AGE - 60)
    assert webapp._validate_init_data(sign(fields)) is None


def test_missing_token_rejects_everything(monkeypatch):
    monkeypatch.setattr(webapp, "BOT_TOKEN", "")
    assert webapp._validate_init_data(sign(init_fields())) is None


def test_display_name_falls_back_to_full_name():
    user = webapp._parse_user({"user": json.dumps({"id": 7, "first_name": "Ada", "last_name": "L"})})
    assert user.display_name == "Ada L"
    assert webapp._parse_user({"user": json.dumps({"id": 8})}).display_name == "player8"
    assert webapp._parse_user({"user": "not json"}) is None


async def test_state_payload_describes_the_session(store, clock, game_data):
    session = GameSession(store, PlayerIdentity("42", "nova"), data=game_data, clock=clock)
    await session.load(start_loops=False)

    state = webapp.build_state(session)
    assert state["player"]["id"] == "42"
    assert state["player"]["balance"] == 0
    assert state["hold"]["phase"] == "idle"
    assert state["daily"]["available"] is True
    assert {t["id"] for t in state["tasks"]} == {t.id for t in game_data.tasks}
    assert state["maintenance"]["active"] is False

    reply = webapp._reply(session, session.solve_cipher("wrong"))
    assert reply == {"ok": False, "message": "Wrong word, try again.", "state": reply["state"]}
    await session.close()


async def test_idle_sessions_are_closed_and_saved(store, clock, game_data):
    now = [1000.0]
    registry = webapp.SessionRegistry(idle_seconds=60, clock=lambda: now[0])
    sessions = {}
    for player_id, seen in (("41", 900.0), ("42", 990.0)):
        session = GameSession(store, PlayerIdentity(player_id, "nova"), data=game_data, clock=clock)
        await session.load(start_loops=False)
        await session.bridge.flush()
        registry.sessions[player_id] = session
        registry.last_seen[player_id] = seen
        sessions[player_id] = session
    saved = len(store.persisted)

    assert await registry.evict_idle() == 1
    assert list(registry.sessions) == ["42"]
    assert list(registry.last_seen) == ["42"]
    assert not sessions["41"].bridge.enabled
    assert len(store.persisted) == saved + 1
    assert store.persisted[-1]["telegram_id"] == "41"

    now[0] = 2000.0
    assert await registry.evict_idle() == 1
    assert registry.sessions == {}
    await registry.close_all()
