"""Per-conversation provider context: chat histories and assistant threads."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from zapgpt.core.types import ConversationKey, Role


@dataclass(frozen=True, slots=True)
class ChatTurn:
    role: Role
    text: str


class HistoryStore(ABC):
    """Turn histories for chat-family providers, keyed by conversation.

    Subclasses decide retention. ``InMemoryHistoryStore`` keeps everything;
    a capped or summarizing store only needs to override ``append``.
    """

    @abstractmethod
    def get(self, key: ConversationKey) -> list[ChatTurn] | None:
        ...

    @abstractmethod
    def set(self, key: ConversationKey, turns: list[ChatTurn]) -> None:
        ...

    @abstractmethod
    def clear_bot(self, bot_id: str) -> int:
        """Forget every history of *bot_id*. Returns how many were dropped."""
        ...

    def get_or_seed(self, key: ConversationKey, system_prompt: str, greeting: str) -> list[ChatTurn]:
        """Return the history of *key*, seeding it with the persona on first use."""
        history = self.get(key)
        if history is None:
            history = [ChatTurn(Role.USER, system_prompt), ChatTurn(Role.ASSISTANT, greeting)]
            self.set(key, history)
        return list(history)

    def append(self, key: ConversationKey, message: str, reply: str) -> None:
        history = self.get(key) or []
        self.set(key, [*history, ChatTurn(Role.USER, message), ChatTurn(Role.ASSISTANT, reply)])


class InMemoryHistoryStore(HistoryStore):
    """Unbounded in-process histories."""

    def __init__(self) -> None:
        self._histories: dict[ConversationKey, list[ChatTurn]] = {}

    def get(self, key: ConversationKey) -> list[ChatTurn] | None:
        return self._histories.get(key)

    def set(self, key: ConversationKey, turns: list[ChatTurn]) -> None:
        self._histories[key] = turns

    def clear_bot(self, bot_id: str) -> int:
        keys = [k for k in self._histories if k.bot_id == bot_id]
        for k in keys:
            del self._histories[k]
        return len(keys)


class ThreadStore(ABC):
    """Provider thread ids for assistant-family providers, keyed by conversation."""

    @abstractmethod
    def get(self, key: ConversationKey) -> str | None:
        ...

    @abstractmethod
    def set(self, key: ConversationKey, thread_id: str) -> None:
        ...

    @abstractmethod
    def clear_bot(self, bot_id: str) -> int:
        ...


class InMemoryThreadStore(ThreadStore):
    def __init__(self) -> None:
        self._threads: dict[ConversationKey, str] = {}

    def get(self, key: ConversationKey) -> str | None:
        return self._threads.get(key)

    def set(self, key: ConversationKey, thread_id: str) -> None:
        self._threads[key] = thread_id

    def clear_bot(self, bot_id: str) -> int:
        keys = [k for k in self._threads if k.bot_id == bot_id]
        for k in keys:
            del self._threads[k]
        return len(keys)
