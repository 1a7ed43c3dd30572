from __future__ import annotations

import asyncio
import html
import logging
from typing import Any, Dict, List, Optional

from aiogram import Bot, Dispatcher, F
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest, TelegramNetworkError, TelegramRetryAfter
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message

from .config import ADMIN_IDS, BOT_TOKEN, DEFAULTS, LOG_LEVEL, WEB_APP_URL
from .db import Database
from .keyboards import admin_player_keyboard, leaderboard_keyboard, menu_keyboard, profile_keyboard


logger = logging.getLogger(__name__)

db = Database()
dp = Dispatcher()
TOP_LIMIT = 10
DUST_EMOJI = "✨"
MEDALS = {1: "🥇", 2: "🥈", 3: "🥉"}


def mention_by_id(user_id: str, name: str) -> str:
    safe_name = html.escape(name or "player")
    return f'<a href="tg://user?id={user_id}">{safe_name}</a>'


def fmt_dust(amount: float) -> str:
    return f"{int(amount):,} {DUST_EMOJI}"


def is_bot_admin(user_id: int) -> bool:
    return str(user_id) in ADMIN_IDS


def render_menu(name: str) -> str:
    return (
        f"Welcome, <b>{html.escape(name)}</b>!\n\n"
        "Tap and hold to harvest stardust, buy upgrades for passive income "
        "and climb the leaderboard."
    )


def render_leaderboard(rows: List[Dict[str, Any]]) -> str:
    if not rows:
        return "<b>Leaderboard</b>\n\nNobody is here yet. Be the first!"
    lines = ["<b>Leaderboard</b>", ""]
    for pos, row in enumerate(rows, start=1):
        prefix = MEDALS.get(pos, f"{pos}.")
        name = mention_by_id(row["telegram_id"], row["username"])
        lines.append(f"{prefix} {name} · lvl {row['level']} · {fmt_dust(row['balance'])}")
    return "\n".join(lines)


def render_profile(snapshot: Dict[str, Any], rank: int) -> str:
    status = " (banned)" if snapshot.get("is_banned") else ""
    return (
        f"<b>{html.escape(snapshot.get('username') or 'player')}</b>{status}\n\n"
        f"Balance: {fmt_dust(snapshot.get('balance', 0))}\n"
        f"Level: {snapshot.get('level', 1)}\n"
        f"Stars: {snapshot.get('stars', 0)}\n"
        f"Referrals: {snapshot.get('referral_count', 0)}\n"
        f"Rank: #{rank}"
    )


async def safe_edit_text(
    message: Message,
    text: str,
    reply_markup: Optional[InlineKeyboardMarkup] = None,
) -> str:
    try:
        await message.edit_text(text, reply_markup=reply_markup)
        return "edited"
    except TelegramRetryAfter as e:
        await asyncio.sleep(int(e.retry_after))
        try:
            await message.edit_text(text, reply_markup=reply_markup)
            return "edited"
        except TelegramBadRequest as e2:
            if "message is not modified" in str(e2).lower():
                return "same"
            raise
        except TelegramNetworkError:
            return "network"
    except TelegramBadRequest as e:
        if "message is not modified" in str(e).lower():
            return "same"
        if "message to edit not found" in str(e).lower():
            return "missing"
        raise
    except TelegramNetworkError:
        return "network"


async def profile_text(user_id: int) -> Optional[str]:
    snapshot = await db.fetch_player_snapshot(str(user_id))
    if not snapshot:
        return None
    rank = await db.fetch_rank_for(snapshot["balance"])
    return render_profile(snapshot, rank)


@dp.message(Command("start"))
async def start_command(message: Message) -> None:
    name = message.from_user.full_name or message.from_user.username or "player"
    await message.answer(
        render_menu(name),
        reply_markup=menu_keyboard(WEB_APP_URL or None).as_markup(),
    )


@dp.message(Command("top"))
async def top_command(message: Message) -> None:
    rows = await db.fetch_leaderboard(TOP_LIMIT)
    await message.answer(
        render_leaderboard(rows),
        reply_markup=leaderboard_keyboard().as_markup(),
    )


@dp.message(Command("me"))
async def me_command(message: Message) -> None:
    text = await profile_text(message.from_user.id)
    if text is None:
        await message.reply("You have not played yet. Open the game with /start.")
        return
    await message.answer(text, reply_markup=profile_keyboard(WEB_APP_URL or None).as_markup())


async def _set_ban(message: Message, command: CommandObject, banned: bool) -> None:
    if not is_bot_admin(message.from_user.id):
        await message.reply("Admins only.")
        return
    target = (command.args or "").strip()
    if not target.isdigit():
        await message.reply(f"Usage: /{command.command} <telegram id>")
        return
    if not await db.set_banned(target, banned):
        await message.reply("Player not found.")
        return
    logger.info("Admin %s set banned=%s for %s", message.from_user.id, banned, target)
    await message.reply(
        f"Player {target} {'banned' if banned else 'unbanned'}.",
        reply_markup=admin_player_keyboard(target, banned).as_markup(),
    )


@dp.message(Command("ban"))
async def ban_command(message: Message, command: CommandObject) -> None:
    await _set_ban(message, command, True)


@dp.message(Command("unban"))
async def unban_command(message: Message, command: CommandObject) -> None:
    await _set_ban(message, command, False)


@dp.callback_query(F.data.startswith("menu:"))
async def menu_handler(cb: CallbackQuery) -> None:
    action = cb.data.split(":")[1]
    if action == "top":
        rows = await db.fetch_leaderboard(TOP_LIMIT)
        await safe_edit_text(
            cb.message,
            render_leaderboard(rows),
            reply_markup=leaderboard_keyboard().as_markup(),
        )
    elif action == "me":
        text = await profile_text(cb.from_user.id)
        if text is None:
            await cb.answer("You have not played yet.", show_alert=True)
            return
        await safe_edit_text(
            cb.message,
            text,
            reply_markup=profile_keyboard(WEB_APP_URL or None).as_markup(),
        )
    else:
        name = cb.from_user.full_name or cb.from_user.username or "player"
        await safe_edit_text(
            cb.message,
            render_menu(name),
            reply_markup=menu_keyboard(WEB_APP_URL or None).as_markup(),
        )
    await cb.answer()


@dp.callback_query(F.data.startswith("admin:"))
async def admin_handler(cb: CallbackQuery) -> None:
    if not is_bot_admin(cb.from_user.id):
        await cb.answer("Admins only.", show_alert=True)
        return
    parts = cb.data.split(":")
    if len(parts) != 3 or parts[1] not in ("ban", "unban"):
        await cb.answer()
        return
    banned = parts[1] == "ban"
    target = parts[2]
    if not await db.set_banned(target, banned):
        await cb.answer("Player not found.", show_alert=True)
        return
    await safe_edit_text(
        cb.message,
        f"Player {target} {'banned' if banned else 'unbanned'}.",
        reply_markup=admin_player_keyboard(target, banned).as_markup(),
    )
    await cb.answer()


async def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not BOT_TOKEN:
        raise RuntimeError("BOT_TOKEN is not set. Put it in .env")
    bot = Bot(
        BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    await db.connect()
    await db.init()
    logger.info("Bot started, %s players, leaderboard limit %s", await db.count_players(), DEFAULTS.leaderboard_limit)
    try:
        await dp.start_polling(bot)
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
