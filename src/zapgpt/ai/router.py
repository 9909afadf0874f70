"""Route a turn to the AI backend configured for the bot."""

from __future__ import annotations

from dataclasses import dataclass

from zapgpt.ai.client import (
    AnthropicBackend,
    AssistantBackend,
    ChatBackend,
    GeminiBackend,
    OpenAIAssistantBackend,
)
from zapgpt.ai.memory import (
    HistoryStore,
    InMemoryHistoryStore,
    InMemoryThreadStore,
    ThreadStore,
)
from zapgpt.config import ProvidersConfig
from zapgpt.core.types import ConversationKey
from zapgpt.errors import ConfigurationError
from zapgpt.log import get_logger
from zapgpt.storage.models import ApiKeys, Bot

logger = get_logger(__name__)

SETTINGS_HINT = "Configure it in Settings → API Keys."


@dataclass(frozen=True, slots=True)
class ChatVendor:
    name: str
    model_prefix: str
    key_field: str


CHAT_VENDORS = (
    ChatVendor("gemini", "gemini-", "gemini_key"),
    ChatVendor("anthropic", "claude-", "anthropic_key"),
)
ASSISTANT_MODEL_PREFIX = "gpt-"


class AIRouter:
    """Dispatches by model family and keeps per-conversation provider context.

    Chat family (Gemini, Claude): an in-process history seeded with the bot's
    persona. Assistant family (GPT): a provider thread per conversation.
    """

    def __init__(
        self,
        chat_backends: dict[str, ChatBackend],
        assistant_backend: AssistantBackend,
        greeting_text: str,
        histories: HistoryStore | None = None,
        threads: ThreadStore | None = None,
    ):
        self._chat_backends = chat_backends
        self._assistant_backend = assistant_backend
        self._greeting_text = greeting_text
        self._histories = histories or InMemoryHistoryStore()
        self._threads = threads or InMemoryThreadStore()

    @classmethod
    def from_config(cls, config: ProvidersConfig, greeting_text: str) -> AIRouter:
        return cls(
            chat_backends={
                "gemini": GeminiBackend(),
                "anthropic": AnthropicBackend(config.anthropic),
            },
            assistant_backend=OpenAIAssistantBackend(config.openai),
            greeting_text=greeting_text,
        )

    @property
    def histories(self) -> HistoryStore:
        return self._histories

    @property
    def threads(self) -> ThreadStore:
        return self._threads

    async def call_ai(self, bot: Bot, api_keys: ApiKeys, key: ConversationKey, message: str) -> str:
        """Return the reply of the bot's model to *message*.

        Raises ConfigurationError when the owner lacks the credentials the
        model needs; provider failures propagate unchanged.
        """
        for vendor in CHAT_VENDORS:
            if bot.model.startswith(vendor.model_prefix):
                return await self._call_chat(vendor, bot, api_keys, key, message)

        if bot.model.startswith(ASSISTANT_MODEL_PREFIX):
            return await self._call_assistant(api_keys, key, message)

        raise ConfigurationError(f"Unsupported AI model '{bot.model}'")

    async def aclose(self) -> None:
        """Close every backend's provider clients."""
        backends = {id(b): b for b in (*self._chat_backends.values(), self._assistant_backend)}
        for backend in backends.values():
            await backend.aclose()

    def clear_bot(self, bot_id: str) -> None:
        histories = self._histories.clear_bot(bot_id)
        threads = self._threads.clear_bot(bot_id)
        if histories or threads:
            logger.info("ai_memory_cleared", bot_id=bot_id, histories=histories, threads=threads)

    async def _call_chat(
        self,
        vendor: ChatVendor,
        bot: Bot,
        api_keys: ApiKeys,
        key: ConversationKey,
        message: str,
    ) -> str:
        api_key = getattr(api_keys, vendor.key_field)
        if not api_key:
            raise ConfigurationError(
                f"{vendor.name.title()} API key not configured. {SETTINGS_HINT}"
            )

        backend = self._chat_backends[vendor.name]
        history = self._histories.get_or_seed(key, bot.prompt, self._greeting_text)
        reply = await backend.complete(api_key, bot.model, history, message)
        self._histories.append(key, message, reply)
        return reply

    async def _call_assistant(self, api_keys: ApiKeys, key: ConversationKey, message: str) -> str:
        if not api_keys.openai_key or not api_keys.openai_assistant_id:
            raise ConfigurationError(f"OpenAI credentials not configured. {SETTINGS_HINT}")

        thread_id = self._threads.get(key)
        if thread_id is None:
            thread_id = await self._assistant_backend.create_thread(api_keys.openai_key)
            self._threads.set(key, thread_id)

        return await self._assistant_backend.send(
            api_keys.openai_key, api_keys.openai_assistant_id, thread_id, message
        )
