"""Notification port — abstract interface for messaging a household's chat.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(
        self, chat_id: int, text: str, parse_mode: str | None = None,
    ) -> None: ...

    async def notify_member(
        self, chat_id: int, member_id: int, display_name: str,
    ) -> None: ...
