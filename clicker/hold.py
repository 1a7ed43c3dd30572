"""Press-and-hold earning.

A hold session accumulates a reward locally while the player keeps the button
pressed. Releasing (or running out of energy) parks the amount as a pending
claim that is merged into the balance only after the ad collaborator confirms,
or discarded when the player cancels.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .boosts import effective_tap_multiplier
from .config import DEFAULTS
from .models import Player


class HoldPhase(str, Enum):
    IDLE = "idle"
    HOLDING = "holding"
    PENDING_CLAIM = "pending_claim"


@dataclass(frozen=True)
class HoldState:
    phase: HoldPhase = HoldPhase.IDLE
    accumulated: float = 0.0
    ticks: int = 0

    @property
    def pending_amount(self) -> Optional[float]:
        if self.phase is HoldPhase.PENDING_CLAIM:
            return self.accumulated
        return None


IDLE = HoldState()


@dataclass(frozen=True)
class HoldStep:
    state: HoldState
    player: Player
    earned: float = 0.0


def can_start_hold(state: HoldState, player: Player) -> bool:
    return (
        state.phase is HoldPhase.IDLE
        and player.current_energy > 0
        and not player.is_banned
    )


def start_hold(state: HoldState, player: Player) -> HoldState:
    if not can_start_hold(state, player):
        return state
    return HoldState(phase=HoldPhase.HOLDING)


def per_tick_earnings(player: Player, now: int) -> float:
    tap_multiplier = effective_tap_multiplier(player.active_boosts, now)
    return (
        player.earn_rate_per_tap
        * tap_multiplier
        * DEFAULTS.hold_earn_factor
        * player.hold_earn_multiplier
    )


def end_hold(state: HoldState) -> HoldState:
    if state.phase is not HoldPhase.HOLDING:
        return state
    if state.accumulated > 0:
        return HoldState(
            phase=HoldPhase.PENDING_CLAIM,
            accumulated=state.accumulated,
            ticks=state.ticks,
        )
    return IDLE


def hold_tick(state: HoldState, player: Player, now: int) -> HoldStep:
    if state.phase is not HoldPhase.HOLDING:
        return HoldStep(state, player)
    if player.current_energy <= 0 or player.is_banned:
        return HoldStep(end_hold(state), player)

    earned = per_tick_earnings(player, now)
    energy = max(0.0, player.current_energy - DEFAULTS.hold_energy_drain_per_tick)
    updated = player.copy(current_energy=energy)
    next_state = HoldState(
        phase=HoldPhase.HOLDING,
        accumulated=state.accumulated + earned,
        ticks=state.ticks + 1,
    )
    if energy == 0:
        next_state = end_hold(next_state)
    return HoldStep(next_state, updated, earned)


def confirm_hold_claim(state: HoldState, player: Player) -> HoldStep:
    if state.phase is not HoldPhase.PENDING_CLAIM:
        return HoldStep(state, player)
    if player.is_banned:
        return HoldStep(IDLE, player)
    updated =player.copy(balance=player.balance + state.accumulated)
    return HoldStep(IDLE, updated, state.accumulated)


def cancel_hold_claim(state: HoldState) -> HoldState:
    if state.phase is not HoldPhase.PENDING_CLAIM:
        return state
    return IDLE
