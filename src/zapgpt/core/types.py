"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum
from typing import NamedTuple


class AIModel(StrEnum):
    GEMINI_FLASH = "gemini-2.0-flash"
    GPT_4 = "gpt-4"
    GPT_35_TURBO = "gpt-3.5-turbo"
    CLAUDE_SONNET = "claude-sonnet-4-20250514"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class SessionStatus(StrEnum):
    """Status strings reported by WPPConnect's statusFind callback."""

    IS_LOGGED = "isLogged"
    IN_CHAT = "inChat"
    NOT_LOGGED = "notLogged"
    BROWSER_CLOSE = "browserClose"
    QR_READ_SUCCESS = "qrReadSuccess"
    QR_READ_FAIL = "qrReadFail"
    AUTOCLOSE_CALLED = "autocloseCalled"
    DISCONNECTED_MOBILE = "desconnectedMobile"


CONNECTED_STATUSES = frozenset({SessionStatus.IN_CHAT, SessionStatus.IS_LOGGED})
DISCONNECTED_STATUSES = frozenset({SessionStatus.NOT_LOGGED, SessionStatus.BROWSER_CLOSE})


class ConversationKey(NamedTuple):
    """Identifies one contact's thread with one bot."""

    bot_id: str
    contact_id: str

    def __str__(self) -> str:
        return f"{self.bot_id}:{self.contact_id}"
