"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class ApiKeys:
    openai_key: Optional[str] = None
    openai_assistant_id: Optional[str] = None
    gemini_key: Optional[str] = None
    anthropic_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApiKeys:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v}


@dataclass
class User:
    id: str
    name: str
    email: str
    plan: str = "starter"  # "starter" | "pro" | "enterprise"
    api_keys: ApiKeys = field(default_factory=ApiKeys)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Bot:
    id: str
    user_id: str
    name: str
    model: str
    prompt: str
    session_name: str
    is_active: bool = False
    is_connected: bool = False
    message_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Conversation:
    id: str
    bot_id: str
    user_id: str
    contact_name: str
    contact_phone: str
    last_message: str = ""
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    message_count: int = 0
    created_at: Optional[datetime] = None


@dataclass
class Message:
    conversation_id: str
    role: str  # "user" | "assistant"
    content: str
    created_at: Optional[datetime] = None
    id: Optional[int] = None
