from __future__ import annotations

import logging
from typing import Protocol, Union

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest, TelegramNetworkError

from .errors import ExternalFailure


logger = logging.getLogger(__name__)

JOINED_STATUSES = ("creator", "administrator", "member", "restricted")


class MembershipVerifier(Protocol):
    async def is_member(self, chat_id: str, user_id: str) -> bool: ...


def _chat_ref(chat_id: str) -> Union[int, str]:
    chat_id = chat_id.strip()
    if chat_id.lstrip("-").isdigit():
        return int(chat_id)
    if not chat_id.startswith("@"):
        return f"@{chat_id}"
    return chat_id


class TelegramMembership:
    def __init__(self, bot: Bot):
        self.bot = bot

    async def is_member(self, chat_id: str, user_id: str) -> bool:
        try:
            member = await self.bot.get_chat_member(_chat_ref(chat_id), int(user_id))
        except TelegramBadRequest as e:
            # user never joined, or the bot is not an admin of the channel
            logger.info("Membership check for %s in %s refused: %s", user_id, chat_id, e)
            return False
        except (TelegramNetworkError, TelegramAPIError) as e:
            raise ExternalFailure("Verification failed. Please try again later.") from e
        return member.status in JOINED_STATUSES
