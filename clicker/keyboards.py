from __future__ import annotations

from typing import Optional

from aiogram.types import WebAppInfo
from aiogram.utils.keyboard import InlineKeyboardBuilder


def menu_keyboard(web_app_url: Optional[str] = None) -> InlineKeyboardBuilder:
    builder = InlineKeyboardBuilder()
    if web_app_url:
        builder.button(text="🚀 Play", web_app=WebAppInfo(url=web_app_url))
    builder.button(text="🏆 Leaderboard", callback_data="menu:top")
    builder.button(text="👤 Profile", callback_data="menu:me")
    if web_app_url:
        builder.adjust(1, 2)
    else:
        builder.adjust(2)
    return builder


def leaderboard_keyboard() -> InlineKeyboardBuilder:
    builder = InlineKeyboardBuilder()
    builder.button(text="Refresh", callback_data="menu:top")
    builder.button(text="Back", callback_data="menu:main")
    builder.adjust(2)
    return builder


def profile_keyboard(web_app_url: Optional[str] = None) -> InlineKeyboardBuilder:
    builder = InlineKeyboardBuilder()
    if web_app_url:
        builder.button(text="Open game", web_app=WebAppInfo(url=web_app_url))
    builder.button(text="Back", callback_data="menu:main")
    builder.adjust(1)
    return builder


def admin_player_keyboard(player_id: str, banned: bool) -> InlineKeyboardBuilder:
    builder = InlineKeyboardBuilder()
    if banned:
        builder.button(text="Unban", callback_data=f"admin:unban:{player_id}")
    else:
        builder.button(text="Ban", callback_data=f"admin:ban:{player_id}")
    builder.adjust(1)
    return builder
