from __future__ import annotations

from typing import Iterable, List

from .models import PASSIVE_ADDEND, TAP_MULTIPLIER, Boost


def prune_expired(boosts: Iterable[Boost], now: int) -> List[Boost]:
    return [boost for boost in boosts if boost.expires_at > now]


def upsert(boosts: Iterable[Boost], new_boost: Boost) -> List[Boost]:
    kept = [boost for boost in boosts if boost.kind != new_boost.kind]
    kept.append(new_boost)
    return kept


def effective_tap_multiplier(boosts: Iterable[Boost], now: int) -> float:
    for boost in prune_expired(boosts, now):
        if boost.kind == TAP_MULTIPLIER:
            return boost.magnitude
    return 1.0


def effective_passive_addend(boosts: Iterable[Boost], now: int) -> float:
    return sum(
        boost.magnitude
        for boost in prune_expired(boosts, now)
        if boost.kind == PASSIVE_ADDEND
    )


def remaining_ms(boosts: Iterable[Boost], kind: str, now: int) -> int:
    for boost in prune_expired(boosts, now):
        if boost.kind == kind:
            return boost.expires_at - now
    return 0
