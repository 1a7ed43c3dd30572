from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Literal, Optional
from urllib.parse import parse_qsl

from aiogram import Bot
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from clicker import game, tasks
from clicker.ads import ReportedAdProvider
from clicker.boosts import remaining_ms
from clicker.catalog import GameData
from clicker.config import BOT_TOKEN, DB_PATH, DEFAULTS, LOG_LEVEL, WEBAPP_AUTH_MAX_AGE
from clicker.db import Database
from clicker.errors import ActionResult, ExternalFailure
from clicker.loop import Ticker
from clicker.membership import TelegramMembership
from clicker.models import PASSIVE_ADDEND, TAP_MULTIPLIER, PlayerIdentity, WithdrawalRequest
from clicker.session import GameSession


logger = logging.getLogger(__name__)

app = FastAPI(title="Stardust Clicker Web App")

db = Database(DB_PATH)
data = GameData()
bot: Optional[Bot] = None


@dataclass
class TgUser:
    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.username:
            return self.username
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or f"player{self.id}"


class SessionRegistry:
    """One live GameSession per Telegram user in this process."""

    def __init__(
        self,
        idle_seconds: float = DEFAULTS.session_idle_seconds,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sessions: Dict[str, GameSession] = {}
        self.last_seen: Dict[str, float] = {}
        self.idle_seconds = idle_seconds
        self.clock = clock
        self._lock = asyncio.Lock()
        self._sweeper = Ticker(DEFAULTS.session_sweep_seconds, self.evict_idle, name="sessions:evict")

    def start(self) -> None:
        self._sweeper.start()

    async def get(self, identity: PlayerIdentity) -> GameSession:
        async with self._lock:
            self.last_seen[identity.id] = self.clock()
            session = self.sessions.get(identity.id)
            if session is not None:
                return session
            session = GameSession(
                db,
                identity,
                data=data,
                membership=TelegramMembership(bot) if bot is not None else None,
            )
            await session.load()
            self.sessions[identity.id] = session
            return session

    def forget(self, player_id: str) -> None:
        self.sessions.pop(player_id, None)
        self.last_seen.pop(player_id, None)

    async def evict_idle(self) -> int:
        """Close and drop sessions nobody has used for ``idle_seconds``."""
        cutoff = self.clock() - self.idle_seconds
        async with self._lock:
            idle = [pid for pid, seen in self.last_seen.items() if seen < cutoff]
            sessions = [self.sessions.pop(pid) for pid in idle if pid in self.sessions]
            for pid in idle:
                del self.last_seen[pid]
        for session in sessions:
            await session.close()
        if sessions:
            logger.info("Closed %s idle sessions, %s still open", len(sessions), len(self.sessions))
        return len(sessions)

    async def close_all(self) -> None:
        await self._sweeper.stop()
        async with self._lock:
            sessions, self.sessions = list(self.sessions.values()), {}
            self.last_seen.clear()
        for session in sessions:
            await session.close()


registry = SessionRegistry()


class InitDataRequest(BaseModel):
    init_data: str


class AdRequest(InitDataRequest):
    ad_watched: bool = False
    ad_error: Optional[str] = None


class UpgradeRequest(InitDataRequest):
    upgrade_id: str


class DealRequest(AdRequest):
    deal_id: str


class CipherRequest(InitDataRequest):
    word: str


class TaskRequest(AdRequest):
    task_id: str
    code: Optional[str] = None


class WithdrawRequest(InitDataRequest):
    method: Literal["TON", "UPI"]
    address: str
    amount_stardust: float = Field(gt=0)


class LeaderboardRequest(InitDataRequest):
    limit: int = Field(DEFAULTS.leaderboard_limit, ge=1, le=100)


@app.on_event("startup")
async def startup() -> None:
    global bot
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await db.connect()
    await db.init()
    registry.start()
    if BOT_TOKEN:
        bot = Bot(BOT_TOKEN)
    else:
        logger.warning("BOT_TOKEN is not set, channel tasks cannot be verified")


@app.on_event("shutdown")
async def shutdown() -> None:
    await registry.close_all()
    if bot is not None:
        await bot.session.close()
    await db.close()


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    return {"status": "ok"}


def _validate_init_data(init_data: str) -> Optional[Dict[str, str]]:
    if not init_data or not BOT_TOKEN:
        return None
    try:
        pairs = dict(parse_qsl(init_data, strict_parsing=True))
    except ValueError:
        return None
    received_hash = pairs.pop("hash", None)
    if not received_hash:
        return None
    data_check_string = "\n".join(f"{k}={pairs[k]}" for k in sorted(pairs))
    secret = hmac.new(
        b"WebAppData",
        BOT_TOKEN.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    calculated_hash = hmac.new(
        secret, data_check_string.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    if not hmac.compare_digest(calculated_hash, received_hash):
        return None
    auth_date = pairs.get("auth_date")
    if auth_date and WEBAPP_AUTH_MAX_AGE > 0:
        try:
            if abs(time.time() - int(auth_date)) > WEBAPP_AUTH_MAX_AGE:
                return None
        except ValueError:
            return None
    return pairs


def _parse_user(pairs: Dict[str, str]) -> Optional[TgUser]:
    raw_user = pairs.get("user")
    if not raw_user:
        return None
    try:
        payload = json.loads(raw_user)
    except json.JSONDecodeError:
        return None
    user_id = payload.get("id")
    if not user_id:
        return None
    return TgUser(
        id=int(user_id),
        username=payload.get("username"),
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
        photo_url=payload.get("photo_url"),
    )


async def _authorize(payload: InitDataRequest) -> GameSession:
    pairs = _validate_init_data(payload.init_data)
    user = _parse_user(pairs) if pairs else None
    if not user:
        raise HTTPException(status_code=401, detail="unauthorized")
    identity = PlayerIdentity(
        id=str(user.id),
        display_name=user.display_name,
        avatar_ref=user.photo_url,
    )
    return await registry.get(identity)


def _ads(payload: AdRequest) -> ReportedAdProvider:
    return ReportedAdProvider(payload.ad_watched, payload.ad_error)


def build_state(session: GameSession) -> Dict[str, Any]:
    player = session.player
    now = session.clock()
    balance_req, ads_req = game.level_up_requirements(player.level)
    reward = game.next_daily_reward(player, session.catalogs.daily_rewards)
    admin = session.catalogs.admin
    return {
        "player": {
            "id": player.id,
            "username": player.display_name,
            "avatar": player.avatar_ref,
            "balance": player.balance,
            "stars": player.stars,
            "level": player.level,
            "earn_rate_per_tap": player.earn_rate_per_tap,
            "passive_income_per_hour": player.passive_income_per_hour,
            "hold_earn_multiplier": player.hold_earn_multiplier,
            "current_energy": player.current_energy,
            "max_energy": player.max_energy,
            "level_up_ad_watch_count": player.level_up_ad_watch_count,
            "is_banned": player.is_banned,
            "referral_count": player.referral_count,
        },
        "level_up": {
            "balance_required": balance_req,
            "ads_required": ads_req,
            "max_level": player.level >= DEFAULTS.level_cap,
        },
        "boosts": {
            "tap_multiplier_ms": remaining_ms(player.active_boosts, TAP_MULTIPLIER, now),
            "passive_addend_ms": remaining_ms(player.active_boosts, PASSIVE_ADDEND, now),
        },
        "hold": {
            "phase": session.hold_state.phase.value,
            "accumulated": session.hold_state.accumulated,
        },
        "offline_earnings": session.offline_earnings,
        "upgrades": [
            {
                "id": u.id,
                "name": u.name,
                "category": u.category,
                "description": u.description,
                "level": u.level,
                "max_level": u.max_level,
                "cost": u.cost,
                "cost_currency": u.cost_currency,
                "unlocked": game.is_unlocked(u.unlock_level, player.level),
                "unlock_level": u.unlock_level,
            }
            for u in session.upgrades
        ],
        "deals": [
            {
                "id": d.id,
                "title": d.title,
                "description": d.description,
                "cost_kind": d.cost_kind,
                "cost": d.cost,
                "reward_kind": d.reward_kind,
                "reward_value": d.reward_value,
                "cooldown_ms": game.deal_cooldown_remaining(player, d, now),
                "unlocked": game.is_unlocked(d.unlock_level, player.level),
            }
            for d in session.catalogs.deals
        ],
        "tasks": [
            {
                "id": t.id,
                "title": t.title,
                "kind": t.kind,
                "reward": t.reward,
                "progress": tasks.progress_text(player, t),
                "completed": tasks.is_task_completed(player, t),
                "pending": t.id in session.pending_tasks,
                "link": tasks.task_link(t),
            }
            for t in session.catalogs.tasks
        ],
        "daily": {
            "available": game.is_daily_reward_available(player, now),
            "streak": player.consecutive_daily_claims,
            "next": asdict(reward) if reward else None,
        },
        "cipher": {
            "solved_today": player.daily_cipher_solved_today,
            "reward": admin.daily_cipher_reward,
        },
        "booster_ms": game.energy_booster_remaining(player, now),
        "withdrawal": {
            "cooldown_ms": game.withdrawal_cooldown_remaining(player, now),
            "min_ton": admin.min_withdrawal_ton,
            "history": [asdict(w) for w in player.withdrawal_history],
        },
        "maintenance": {
            "active": admin.maintenance_mode,
            "end_time": admin.maintenance_end_time,
        },
    }


def _reply(session: GameSession, result: ActionResult) -> Dict[str, Any]:
    if not result.ok:
        return {"ok": False, "message": result.reason, "state": build_state(session)}
    return {"ok": True, "credited": result.credited, "state": build_state(session)}


def _failure(session: GameSession, error: ExternalFailure) -> Dict[str, Any]:
    return {"ok": False, "message": str(error), "state": build_state(session)}


@app.post("/api/state")
async def state(payload: InitDataRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    session.tick()
    return {"ok": True, "state": build_state(session)}


@app.post("/api/hold/start")
async def hold_start(payload: InitDataRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    if not session.start_hold():
        return {"ok": False, "message": "Cannot start harvesting now.", "state": build_state(session)}
    return {"ok": True, "state": build_state(session)}


@app.post("/api/hold/end")
async def hold_end(payload: InitDataRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    pending = session.end_hold()
    return {"ok": True, "pending": pending, "state": build_state(session)}


@app.post("/api/hold/claim")
async def hold_claim(payload: AdRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    try:
        credited = await session.request_hold_claim(_ads(payload))
    except ExternalFailure as e:
        return _failure(session, e)
    return {"ok": credited > 0, "credited": credited, "state": build_state(session)}


@app.post("/api/hold/cancel")
async def hold_cancel(payload: InitDataRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    session.cancel_hold_claim()
    return {"ok": True, "state": build_state(session)}


@app.post("/api/offline/claim")
async def offline_claim(payload: InitDataRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    return _reply(session, session.claim_offline_earnings())


@app.post("/api/upgrade/buy")
async def upgrade_buy(payload: UpgradeRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    return _reply(session, session.purchase_upgrade(payload.upgrade_id))


@app.post("/api/deal/buy")
async def deal_buy(payload: DealRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    try:
        result = await session.request_deal(payload.deal_id, _ads(payload))
    except ExternalFailure as e:
        return _failure(session, e)
    return _reply(session, result)


@app.post("/api/daily/claim")
async def daily_claim(payload: InitDataRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    return _reply(session, session.claim_daily_reward())


@app.post("/api/cipher/solve")
async def cipher_solve(payload: CipherRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    return _reply(session, session.solve_cipher(payload.word))


@app.post("/api/booster/activate")
async def booster_activate(payload: InitDataRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    return _reply(session, session.activate_booster())


@app.post("/api/levelup/ad")
async def levelup_ad(payload: AdRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    try:
        result = await session.watch_level_up_ad(_ads(payload))
    except ExternalFailure as e:
        return _failure(session, e)
    return _reply(session, result)


@app.post("/api/task/initiate")
async def task_initiate(payload: TaskRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    try:
        result, link = await session.initiate_task(payload.task_id, _ads(payload))
    except ExternalFailure as e:
        return _failure(session, e)
    reply = _reply(session, result)
    reply["link"] = link
    return reply


@app.post("/api/task/claim")
async def task_claim(payload: TaskRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    return _reply(session, session.claim_task(payload.task_id, payload.code or ""))


@app.post("/api/task/cancel")
async def task_cancel(payload: TaskRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    session.cancel_task(payload.task_id)
    return {"ok": True, "state": build_state(session)}


@app.post("/api/withdraw")
async def withdraw(payload: WithdrawRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    request = WithdrawalRequest(
        method=payload.method,
        address=payload.address,
        amount_stardust=payload.amount_stardust,
    )
    return _reply(session, session.withdraw(request))


@app.post("/api/account/delete")
async def account_delete(payload: InitDataRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    try:
        await session.delete_account()
    except ExternalFailure as e:
        return _failure(session, e)
    registry.forget(session.player.id)
    return {"ok": True}


@app.post("/api/leaderboard")
async def leaderboard(payload: LeaderboardRequest) -> Dict[str, Any]:
    session = await _authorize(payload)
    rows = await db.fetch_leaderboard(payload.limit)
    position = next(
        (i for i, row in enumerate(rows, start=1) if row["telegram_id"] == session.player.id),
        None,
    )
    if position is None:
        position = await db.fetch_rank_for(session.player.balance)
    return {"ok": True, "rows": rows, "rank": position}
