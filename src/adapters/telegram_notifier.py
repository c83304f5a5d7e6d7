"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.helpers import escape_markdown, mention_markdown

logger = logging.getLogger(__name__)


def format_turn_message(member_id: int, display_name: str) -> str:
    """MarkdownV2 message announcing whose turn it is, with a mention.

    The display name is escaped, so names like ``John_Doe*`` still parse.
    """
    mention = mention_markdown(member_id, display_name, version=2)
    tail = escape_markdown("'s turn to clean this week", version=2)
    return f"It's {mention}{tail}"


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(
        self, chat_id: int, text: str, parse_mode: str | None = None,
    ) -> None:
        await self._bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode)

    async def notify_member(
        self, chat_id: int, member_id: int, display_name: str,
    ) -> None:
        await self._bot.send_message(
            chat_id=chat_id,
            text=format_turn_message(member_id, display_name),
            parse_mode=ParseMode.MARKDOWN_V2,
        )
        logger.info("Notified household %d: member %d is up", chat_id, member_id)
