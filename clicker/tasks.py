from __future__ import annotations

from typing import FrozenSet, List, Optional

from .config import DEFAULTS
from .errors import ActionResult, Outcome
from .game import _accept, _banned, _reject
from .models import (
    TASK_ADS,
    TASK_TELEGRAM,
    TASK_YOUTUBE_SHORTS,
    TASK_YOUTUBE_VIDEO,
    Player,
    Task,
    Upgrade,
)


VIDEO_KINDS = (TASK_YOUTUBE_VIDEO, TASK_YOUTUBE_SHORTS)


def task_progress(player: Player, task: Task) -> int:
    return player.task_progress_by_id.get(task.id, 0)


def is_task_completed(player: Player, task: Task) -> bool:
    if task.kind == TASK_TELEGRAM:
        return player.has_completed_follow_task or task_progress(player, task) > 0
    return task_progress(player, task) >= task.limit


def progress_text(player: Player, task: Task) -> str:
    if task.kind == TASK_TELEGRAM:
        return "1/1" if is_task_completed(player, task) else "0/1"
    return f"{min(task_progress(player, task), task.limit)}/{task.limit}"


def task_link(task: Task) -> Optional[str]:
    if task.link:
        return task.link
    chat_id = (task.chat_id or "").lstrip("@")
    if chat_id and not chat_id.startswith("-"):
        return f"https://t.me/{chat_id}"
    return None


def mark_pending(pending: FrozenSet[str], task_id: str) -> FrozenSet[str]:
    return pending | {task_id}


def clear_pending(pending: FrozenSet[str], task_id: str) -> FrozenSet[str]:
    return pending - {task_id}


def complete_telegram_task(player: Player, upgrades: List[Upgrade], task: Task) -> ActionResult:
    """Credit a channel-follow task once membership has been verified."""
    if player.is_banned:
        return _banned(player, upgrades)
    if task.kind != TASK_TELEGRAM:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Not a channel task.")
    if is_task_completed(player, task):
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Task already completed.")
    updated = player.copy(
        balance=player.balance + task.reward,
        has_completed_follow_task=True,
    )
    updated.task_progress_by_id[task.id] = 1
    return _accept(updated, upgrades, task.reward)


def claim_video_task(
    player: Player, upgrades: List[Upgrade], task: Task, code: str
) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    if task.kind not in VIDEO_KINDS:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Task has no secret code.")
    if is_task_completed(player, task):
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Task limit reached.")
    expected = task.secret_code or DEFAULTS.default_secret_code
    if code.strip() != expected:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Wrong code, try again.")
    updated = player.copy(balance=player.balance + task.reward)
    updated.task_progress_by_id[task.id] = task_progress(player, task) + 1
    return _accept(updated, upgrades, task.reward)


def record_ad_task_view(
    player: Player, upgrades: List[Upgrade], task: Task, now: int
) -> ActionResult:
    if player.is_banned:
        return _banned(player, upgrades)
    if task.kind != TASK_ADS:
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Not an ad task.")
    if is_task_completed(player, task):
        return _reject(player, upgrades, Outcome.INELIGIBLE, "Task limit reached.")
    progress = task_progress(player, task) + 1
    updated = player.copy(last_ad_watched_at=now)
    updated.task_progress_by_id[task.id] = progress
    credited = 0.0
    if progress == task.limit:
        updated.balance += task.reward
        credited = task.reward
    return _accept(updated, upgrades, credited)
