from __future__ import annotations

import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from . import game, hold, tasks
from .ads import AdProvider, provider_for, watch_ad
from .catalog import GameData, merge_catalogs
from .config import DEFAULTS
from .errors import ActionResult, ExternalFailure, Outcome
from .loop import Ticker, advance, reset_daily_flags
from .membership import MembershipVerifier
from .models import (
    COST_AD,
    TASK_ADS,
    TASK_TELEGRAM,
    Catalogs,
    Player,
    PlayerIdentity,
    Upgrade,
    WithdrawalRequest,
)
from .persistence import PersistenceBridge, PlayerStore
from .reconcile import merge_push, merge_upgrade_levels, new_player, reconcile
from .schema import player_to_row
from .timing import now_ms


logger = logging.getLogger(__name__)

Clock = Callable[[], int]


class GameSession:
    """Single owner of one player's state.

    Every mutation goes through a reducer call on the event loop; awaits only
    happen around ads, membership checks and the store.
    """

    def __init__(
        self,
        store: PlayerStore,
        identity: PlayerIdentity,
        data: Optional[GameData] = None,
        ads: Optional[AdProvider] = None,
        membership: Optional[MembershipVerifier] = None,
        clock: Clock = now_ms,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.identity = identity
        self.data = data or GameData()
        self.membership = membership
        self.clock = clock
        self.on_error = on_error
        self._ads = ads

        self.catalogs: Catalogs = self.data.catalogs()
        self.player: Player = new_player(identity, clock())
        self.upgrades: List[Upgrade] = merge_upgrade_levels(self.catalogs.upgrades, [])
        self.hold_state = hold.IDLE
        self.pending_tasks: FrozenSet[str] = frozenset()
        self.offline_earnings = 0.0
        self.loaded = False

        self.bridge = PersistenceBridge(store, identity.id, self._row, on_refresh=self._apply_owned)
        self._tick_loop = Ticker(DEFAULTS.loop_tick_seconds, self.tick, name=f"tick:{identity.id}")
        self._midnight_loop = Ticker(
            DEFAULTS.midnight_check_seconds, self.check_midnight, name=f"midnight:{identity.id}"
        )
        self._hold_loop = Ticker(
            DEFAULTS.hold_tick_ms / 1000, self.hold_tick, name=f"hold:{identity.id}"
        )
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def ads(self) -> AdProvider:
        if self._ads is None:
            return provider_for(self.catalogs.admin)
        return self._ads

    @property
    def paused(self) -> bool:
        return self.catalogs.admin.maintenance_mode or self.bridge.deleting

    def _row(self) -> Optional[Dict[str, Any]]:
        if not self.loaded:
            return None
        return player_to_row(self.player, self.upgrades).model_dump(mode="json")

    def _report(self, message: str) -> None:
        if self.on_error is not None:
            self.on_error(message)

    async def load(self, start_loops: bool = True) -> None:
        now = self.clock()
        try:
            settings = await self.store.fetch_global_catalogs()
        except Exception:
            logger.exception("Failed to fetch global settings, using built-in catalogs")
            settings = None
        self.catalogs = merge_catalogs(self.data, settings)

        try:
            snapshot = await self.store.fetch_player_snapshot(self.identity.id)
        except Exception:
            # Play locally but never overwrite the stored row with a fresh one.
            logger.exception("Failed to load player %s, saving disabled", self.identity.id)
            self.player = new_player(self.identity, now)
            self.upgrades = merge_upgrade_levels(self.catalogs.upgrades, [])
            self.loaded = True
            self._report("Could not load your progress.")
        else:
            result = reconcile(snapshot, self.identity, self.catalogs, now)
            self.player = result.player
            self.upgrades = result.upgrades
            self.offline_earnings = result.offline_earnings
            self.loaded = True
            self.bridge.enable()
            if result.is_new:
                self.bridge.request_save()

        self._unsubscribe = self.store.subscribe(self.apply_push)
        if start_loops:
            self._tick_loop.start()
            self._midnight_loop.start()

    async def close(self, final_save: bool = True) -> None:
        self._hold_loop.cancel()
        await self._tick_loop.stop()
        await self._midnight_loop.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.bridge.enabled:
            self.tick()
        await self.bridge.shutdown(final_save=final_save and not self.bridge.deleting)

    def tick(self) -> None:
        balance = self.player.balance
        self.player = advance(self.player, self.clock(), paused=self.paused)
        if self.player.balance != balance:
            leveled = game.try_level_up(self.player, self.upgrades)
            if leveled.ok:
                self.player = leveled.player
                self.bridge.request_save()

    def check_midnight(self) -> None:
        self.player = reset_daily_flags(self.player, self.clock())

    def _commit(self, result: ActionResult, save: bool = True) -> ActionResult:
        if not result.ok:
            return result
        self.player = result.player
        self.upgrades = result.upgrades
        leveled = game.try_level_up(self.player, self.upgrades)
        if leveled.ok:
            self.player = leveled.player
        if save:
            self.bridge.request_save()
        return result

    def _blocked(self) -> Optional[ActionResult]:
        if self.catalogs.admin.maintenance_mode:
            return ActionResult(
                self.player, self.upgrades, Outcome.INELIGIBLE, "Maintenance in progress."
            )
        return None

    def _settle(self) -> None:
        """Bring passive income and energy up to now before an action."""
        self.tick()

    # hold to earn

    def start_hold(self) -> bool:
        if self._blocked():
            return False
        self._settle()
        state = hold.start_hold(self.hold_state, self.player)
        if state is self.hold_state:
            logger.debug("Player %s cannot start a hold", self.player.id)
            return False
        self.hold_state = state
        self._hold_loop.start()
        return True

    def hold_tick(self) -> float:
        step = hold.hold_tick(self.hold_state, self.player, self.clock())
        self.hold_state = step.state
        self.player = step.player
        if self.hold_state.phase is not hold.HoldPhase.HOLDING:
            self._hold_loop.cancel()
        return step.earned

    def end_hold(self) -> Optional[float]:
        self._hold_loop.cancel()
        self.hold_state = hold.end_hold(self.hold_state)
        return self.hold_state.pending_amount

    def confirm_hold_claim(self) -> float:
        amount = self.hold_state.pending_amount
        if amount is None:
            return 0.0
        # a banned player forfeits the pending amount
        self.hold_state = hold.IDLE
        result = self._commit(game.credit_claim(self.player, self.upgrades, amount))
        return result.credited

    def cancel_hold_claim(self) -> None:
        self.hold_state = hold.cancel_hold_claim(self.hold_state)

    def _reset_hold(self) -> None:
        self._hold_loop.cancel()
        self.hold_state = hold.IDLE

    async def request_hold_claim(self, ads: Optional[AdProvider] = None) -> float:
        if self.hold_state.phase is not hold.HoldPhase.PENDING_CLAIM:
            return 0.0
        if self.player.is_banned:
            self._reset_hold()
            return 0.0
        await self._watch(ads)
        return self.confirm_hold_claim()

    async def _watch(self, ads: Optional[AdProvider]) -> None:
        try:
            await watch_ad(ads or self.ads)
        except ExternalFailure as e:
            logger.warning("Ad failed for player %s: %s", self.player.id, e)
            self._report(str(e))
            raise

    # reducer actions

    def claim_offline_earnings(self) -> ActionResult:
        amount, self.offline_earnings = self.offline_earnings, 0.0
        return self._commit(game.credit_claim(self.player, self.upgrades, amount))

    def purchase_upgrade(self, upgrade_id: str) -> ActionResult:
        blocked = self._blocked()
        if blocked:
            return blocked
        self._settle()
        return self._commit(game.purchase_upgrade(self.player, self.upgrades, upgrade_id))

    def buy_deal(self, deal_id: str, ad_confirmed: bool = False) -> ActionResult:
        blocked = self._blocked()
        if blocked:
            return blocked
        deal = self.catalogs.get_deal(deal_id)
        if deal is None:
            return game._reject(self.player, self.upgrades, Outcome.NOT_FOUND, f"Unknown deal {deal_id}.")
        self._settle()
        return self._commit(
            game.purchase_deal(self.player, self.upgrades, deal, self.clock(), ad_confirmed)
        )

    async def request_deal(self, deal_id: str, ads: Optional[AdProvider] = None) -> ActionResult:
        deal = self.catalogs.get_deal(deal_id)
        if deal is None or deal.cost_kind != COST_AD:
            return self.buy_deal(deal_id)
        if self.player.is_banned:
            return game._banned(self.player, self.upgrades)
        # check everything but the ad before showing one
        reason = game.deal_rejection(self.player, deal, self.clock(), ad_confirmed=True)
        if reason:
            return game._reject(self.player, self.upgrades, Outcome.INELIGIBLE, reason)
        await self._watch(ads)
        return self.buy_deal(deal_id, ad_confirmed=True)

    def claim_daily_reward(self) -> ActionResult:
        blocked = self._blocked()
        if blocked:
            return blocked
        self._settle()
        return self._commit(
            game.claim_daily_reward(
                self.player,
                self.upgrades,
                self.catalogs.daily_rewards,
                self.catalogs.admin,
                self.clock(),
            )
        )

    def solve_cipher(self, attempt: str) -> ActionResult:
        blocked = self._blocked()
        if blocked:
            return blocked
        if not game.check_cipher_word(self.catalogs.admin.daily_cipher_word, attempt):
            return game._reject(self.player, self.upgrades, Outcome.INELIGIBLE, "Wrong word, try again.")
        self._settle()
        return self._commit(
            game.solve_cipher(self.player, self.upgrades, self.catalogs.admin, self.clock())
        )

    def activate_booster(self) -> ActionResult:
        blocked = self._blocked()
        if blocked:
            return blocked
        self._settle()
        return self._commit(game.activate_energy_booster(self.player, self.upgrades, self.clock()))

    async def watch_level_up_ad(self, ads: Optional[AdProvider] = None) -> ActionResult:
        blocked = self._blocked()
        if blocked:
            return blocked
        await self._watch(ads)
        self._settle()
        return self._commit(game.record_level_up_ad(self.player, self.upgrades))

    def withdraw(self, request: WithdrawalRequest) -> ActionResult:
        blocked = self._blocked()
        if blocked:
            return blocked
        self._settle()
        return self._commit(
            game.initiate_withdrawal(
                self.player, self.upgrades, request, self.catalogs.admin, self.clock()
            )
        )

    # tasks

    def _task_or_reject(self, task_id: str):
        task = self.catalogs.get_task(task_id)
        if task is None:
            return None, game._reject(
                self.player, self.upgrades, Outcome.NOT_FOUND, f"Unknown task {task_id}."
            )
        return task, None

    async def initiate_task(
        self, task_id: str, ads: Optional[AdProvider] = None
    ) -> Tuple[ActionResult, Optional[str]]:
        """First interaction opens the task; telegram tasks verify on the second."""
        blocked = self._blocked()
        if blocked:
            return blocked, None
        task, rejected = self._task_or_reject(task_id)
        if rejected:
            return rejected, None
        if tasks.is_task_completed(self.player, task):
            return game._reject(self.player, self.upgrades, Outcome.INELIGIBLE, "Task already completed."), None

        if task.kind == TASK_ADS:
            await self._watch(ads)
            self._settle()
            return self._commit(tasks.record_ad_task_view(self.player, self.upgrades, task, self.clock())), None

        link = tasks.task_link(task)
        if task.kind == TASK_TELEGRAM and task.id in self.pending_tasks:
            return await self._verify_channel(task), link
        self.pending_tasks = tasks.mark_pending(self.pending_tasks, task.id)
        return ActionResult(self.player, self.upgrades), link

    async def _verify_channel(self, task) -> ActionResult:
        if self.membership is None or not task.chat_id:
            raise ExternalFailure("Channel verification is not available.")
        try:
            joined = await self.membership.is_member(task.chat_id, self.player.id)
        except ExternalFailure as e:
            logger.warning("Membership check failed for %s: %s", self.player.id, e)
            self._report(str(e))
            raise
        if not joined:
            message = "You have not joined the channel yet."
            self._report(message)
            raise ExternalFailure(message)
        self._settle()
        result = self._commit(tasks.complete_telegram_task(self.player, self.upgrades, task))
        if result.ok:
            self.pending_tasks = tasks.clear_pending(self.pending_tasks, task.id)
        return result

    def claim_task(self, task_id: str, code: str) -> ActionResult:
        blocked = self._blocked()
        if blocked:
            return blocked
        task, rejected = self._task_or_reject(task_id)
        if rejected:
            return rejected
        self._settle()
        result = self._commit(tasks.claim_video_task(self.player, self.upgrades, task, code))
        if result.ok:
            self.pending_tasks = tasks.clear_pending(self.pending_tasks, task.id)
        return result

    def cancel_task(self, task_id: str) -> None:
        self.pending_tasks = tasks.clear_pending(self.pending_tasks, task_id)

    # sync and account

    def apply_push(self, player_id: str, delta: Dict[str, Any]) -> None:
        if player_id != self.player.id:
            return
        self.player = merge_push(self.player, delta)
        if self.player.is_banned:
            self._reset_hold()

    def _apply_owned(self, fields: Dict[str, Any]) -> None:
        self.apply_push(self.player.id, fields)

    async def set_banned(self, banned: bool) -> ActionResult:
        result = self._commit(game.set_banned(self.player, self.upgrades, banned), save=False)
        if self.player.is_banned:
            self._reset_hold()
        # row saves leave is_banned alone, so the flag is written on its own
        try:
            await self.store.update_player_fields(self.player.id, is_banned=banned)
        except Exception as e:
            logger.exception("Failed to store ban flag for player %s", self.player.id)
            raise ExternalFailure("Could not update the ban.") from e
        return result

    async def delete_account(self) -> None:
        self.bridge.deleting = True
        try:
            await self.store.delete_player(self.player.id)
        except Exception as e:
            self.bridge.deleting = False
            logger.exception("Failed to delete player %s", self.player.id)
            raise ExternalFailure("Could not delete the account.") from e
        logger.info("Deleted player %s", self.player.id)
        await self.close(final_save=False)
