"""Shared fixtures: a temporary database, an in-memory WhatsApp transport and scripted AI backends."""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from zapgpt.ai.client import AssistantBackend, ChatBackend
from zapgpt.ai.memory import ChatTurn
from zapgpt.ai.router import AIRouter
from zapgpt.config import EngineConfig
from zapgpt.errors import TransportError
from zapgpt.messenger.base import QRCallback, StatusCallback, WhatsAppConnection, WhatsAppTransport
from zapgpt.messenger.models import InboundMessage
from zapgpt.storage.database import Database
from zapgpt.storage.models import ApiKeys
from zapgpt.storage.repository import Repository


class FakeConnection(WhatsAppConnection):
    def __init__(self, session_name: str):
        super().__init__(session_name)
        self.sent: list[tuple[str, str]] = []
        self.failing_texts: set[str] = set()
        self.closed = False

    async def send_text(self, contact_id: str, text: str) -> None:
        if text in self.failing_texts:
            raise TransportError(f"cannot send {text!r}")
        self.sent.append((contact_id, text))

    async def close(self) -> None:
        self.closed = True

    def receive(self, contact_id: str, text: str, is_group: bool = False, chat_id: str = "") -> None:
        self._emit_message(
            InboundMessage(contact_id=contact_id, text=text, is_group=is_group, chat_id=chat_id or contact_id)
        )


class FakeTransport(WhatsAppTransport):
    def __init__(self) -> None:
        self.connections: dict[str, FakeConnection] = {}
        self.callbacks: dict[str, tuple[QRCallback, StatusCallback]] = {}
        self.connect_calls = 0
        self.fail_connect = False

    async def connect(self, session_name: str, on_qr: QRCallback, on_status: StatusCallback) -> WhatsAppConnection:
        self.connect_calls += 1
        if self.fail_connect:
            raise TransportError("WPPConnect unreachable")
        connection = FakeConnection(session_name)
        self.connections[session_name] = connection
        self.callbacks[session_name] = (on_qr, on_status)
        return connection

    def emit_qr(self, session_name: str, qr_base64: str, qr_ascii: str = "") -> None:
        self.callbacks[session_name][0](qr_base64, qr_ascii)

    def emit_status(self, session_name: str, status: str) -> None:
        self.callbacks[session_name][1](status)


class ScriptedChatBackend(ChatBackend):
    """Returns (or raises) the scripted items in order, then echoes."""

    def __init__(self, script: list[Any] | None = None):
        self.script = list(script or [])
        self.calls: list[dict[str, Any]] = []

    async def complete(self, api_key: str, model: str, history: list[ChatTurn], message: str) -> str:
        self.calls.append({"api_key": api_key, "model": model, "history": list(history), "message": message})
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return f"echo: {message}"


class FakeAssistantBackend(AssistantBackend):
    def __init__(self) -> None:
        self.threads_created = 0
        self.sent: list[tuple[str, str, str, str]] = []

    async def create_thread(self, api_key: str) -> str:
        self.threads_created += 1
        return f"thread_{self.threads_created}"

    async def send(self, api_key: str, assistant_id: str, thread_id: str, message: str) -> str:
        self.sent.append((api_key, assistant_id, thread_id, message))
        return f"assistant reply on {thread_id}"


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(debounce_seconds=0.05, typing_delay_per_char=0.0)


@pytest.fixture
def chat_backend() -> ScriptedChatBackend:
    return ScriptedChatBackend()


@pytest.fixture
def assistant_backend() -> FakeAssistantBackend:
    return FakeAssistantBackend()


@pytest.fixture
def router(chat_backend, assistant_backend, engine_config) -> AIRouter:
    return AIRouter(
        chat_backends={"gemini": chat_backend, "anthropic": chat_backend},
        assistant_backend=assistant_backend,
        greeting_text=engine_config.greeting_text,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "zapgpt.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def repo(db) -> Repository:
    return Repository(db)


@pytest_asyncio.fixture
async def owner(repo):
    return await repo.create_user(
        "Ana",
        "ana@example.com",
        api_keys=ApiKeys(gemini_key="gm-key", openai_key="sk-test", openai_assistant_id="asst_1"),
    )


@pytest_asyncio.fixture
async def bot(repo, owner):
    return await repo.create_bot(
        owner.id,
        "Ana Bot",
        "gemini-2.0-flash",
        "You are Ana, a friendly bakery assistant.",
        session_name="zapgpt_test_session",
    )
