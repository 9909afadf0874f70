"""Registry of live WhatsApp sessions, one per bot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zapgpt.messenger.base import WhatsAppConnection
    from zapgpt.storage.models import Bot


@dataclass
class LiveSession:
    bot: Bot
    connection: WhatsAppConnection


class ConnectionRegistry:
    """Tracks the live connection of every running bot."""

    def __init__(self) -> None:
        self._sessions: dict[str, LiveSession] = {}

    def add_if_absent(self, session: LiveSession) -> bool:
        """Insert *session* unless its bot is already tracked. Returns True if inserted."""
        if session.bot.id in self._sessions:
            return False
        self._sessions[session.bot.id] = session
        return True

    def get(self, bot_id: str) -> LiveSession | None:
        return self._sessions.get(bot_id)

    def pop(self, bot_id: str) -> LiveSession | None:
        return self._sessions.pop(bot_id, None)

    def __contains__(self, bot_id: object) -> bool:
        return bot_id in self._sessions

    def ids(self) -> list[str]:
        return list(self._sessions.keys())
