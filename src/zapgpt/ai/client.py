"""AI backends: Gemini and Anthropic chat models, OpenAI assistants."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from zapgpt.ai.memory import ChatTurn
from zapgpt.config import AnthropicConfig, OpenAIConfig
from zapgpt.core.types import Role
from zapgpt.errors import ProviderError, RunTimeoutError
from zapgpt.log import get_logger

logger = get_logger(__name__)

_RUN_FAILED_STATUSES = frozenset({"failed", "cancelled", "expired"})


class _ClientPool:
    """One SDK client per API key, reused across calls until aclose()."""

    def __init__(
        self,
        name: str,
        factory: Callable[[str], Any],
        closer: Callable[[Any], Awaitable[None]],
    ):
        self._name = name
        self._factory = factory
        self._closer = closer
        self._clients: dict[str, Any] = {}

    def get(self, api_key: str) -> Any:
        client = self._clients.get(api_key)
        if client is None:
            client = self._factory(api_key)
            self._clients[api_key] = client
        return client

    def __len__(self) -> int:
        return len(self._clients)

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            try:
                await self._closer(client)
            except Exception as e:
                logger.warning("ai_client_close_failed", provider=self._name, error=str(e))


class ChatBackend(ABC):
    """A chat-completion provider that is sent the whole history on every call."""

    @abstractmethod
    async def complete(
        self,
        api_key: str,
        model: str,
        history: list[ChatTurn],
        message: str,
    ) -> str:
        """Return the model's reply to *message* given the prior *history*."""
        ...

    async def aclose(self) -> None:
        """Close the provider clients this backend opened."""


class GeminiBackend(ChatBackend):
    """Google Gemini through the google-genai SDK."""

    def __init__(self, client_factory: Callable[[str], Any] | None = None):
        self._clients = _ClientPool(
            "gemini", client_factory or self._default_client, lambda client: client.aio.aclose()
        )

    @staticmethod
    def _default_client(api_key: str) -> Any:
        from google import genai

        return genai.Client(api_key=api_key)

    async def aclose(self) -> None:
        await self._clients.aclose()

    async def complete(
        self,
        api_key: str,
        model: str,
        history: list[ChatTurn],
        message: str,
    ) -> str:
        from google.genai import types

        contents = [
            types.Content(
                role="model" if turn.role == Role.ASSISTANT else "user",
                parts=[types.Part(text=turn.text)],
            )
            for turn in history
        ]
        contents.append(types.Content(role="user", parts=[types.Part(text=message)]))

        client = self._clients.get(api_key)
        logger.debug("gemini_request", model=model, turns=len(contents))
        response = await client.aio.models.generate_content(model=model, contents=contents)
        text = response.text
        if not text:
            raise ProviderError("Gemini returned an empty response")
        return text


class AnthropicBackend(ChatBackend):
    """Anthropic Messages API using the official SDK."""

    def __init__(
        self,
        config: AnthropicConfig,
        client_factory: Callable[[str], Any] | None = None,
    ):
        self._config = config
        self._clients = _ClientPool(
            "anthropic", client_factory or self._default_client, lambda client: client.close()
        )

    def _default_client(self, api_key: str) -> Any:
        import anthropic

        return anthropic.AsyncAnthropic(api_key=api_key, base_url=self._config.base_url)

    async def aclose(self) -> None:
        await self._clients.aclose()

    async def complete(
        self,
        api_key: str,
        model: str,
        history: list[ChatTurn],
        message: str,
    ) -> str:
        messages = [{"role": turn.role.value, "content": turn.text} for turn in history]
        messages.append({"role": "user", "content": message})

        client = self._clients.get(api_key)
        logger.debug("anthropic_request", model=model, message_count=len(messages))
        response = await client.messages.create(
            model=model,
            max_tokens=self._config.max_tokens,
            messages=messages,
        )
        logger.debug(
            "anthropic_response",
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        text = "".join(block.text for block in response.content if block.type == "text")
        if not text:
            raise ProviderError("Anthropic returned no text content")
        return text


class AssistantBackend(ABC):
    """A provider that keeps the conversation in a server-side thread."""

    @abstractmethod
    async def create_thread(self, api_key: str) -> str:
        ...

    @abstractmethod
    async def send(self, api_key: str, assistant_id: str, thread_id: str, message: str) -> str:
        """Append *message* to the thread, run the assistant and return its reply."""
        ...

    async def aclose(self) -> None:
        """Close the provider clients this backend opened."""


class OpenAIAssistantBackend(AssistantBackend):
    """OpenAI Assistants API: threads, runs and run-status polling."""

    def __init__(
        self,
        config: OpenAIConfig,
        client_factory: Callable[[str], Any] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config
        self._clients = _ClientPool(
            "openai", client_factory or self._default_client, lambda client: client.close()
        )
        self._sleep = sleep

    def _default_client(self, api_key: str) -> Any:
        import openai

        return openai.AsyncOpenAI(api_key=api_key, base_url=self._config.base_url)

    async def aclose(self) -> None:
        await self._clients.aclose()

    async def create_thread(self, api_key: str) -> str:
        client = self._clients.get(api_key)
        thread = await client.beta.threads.create()
        logger.info("openai_thread_created", thread_id=thread.id)
        return thread.id

    async def send(self, api_key: str, assistant_id: str, thread_id: str, message: str) -> str:
        client = self._clients.get(api_key)

        assistant = await client.beta.assistants.retrieve(assistant_id)
        await client.beta.threads.messages.create(thread_id, role="user", content=message)

        run_kwargs: dict[str, Any] = {"thread_id": thread_id, "assistant_id": assistant.id}
        if assistant.instructions:
            run_kwargs["instructions"] = assistant.instructions
        run = await client.beta.threads.runs.create(**run_kwargs)

        messages = await self._poll_run(client, thread_id, run.id)
        if not messages.data:
            raise ProviderError("OpenAI thread has no messages")

        latest = messages.data[0]
        block = latest.content[0] if latest.content else None
        if block is None or block.type != "text":
            raise ProviderError("Unexpected response type from OpenAI")
        return block.text.value

    async def _poll_run(self, client: Any, thread_id: str, run_id: str) -> Any:
        for _ in range(self._config.max_polls):
            run = await client.beta.threads.runs.retrieve(run_id, thread_id=thread_id)

            if run.status == "completed":
                return await client.beta.threads.messages.list(thread_id)

            if run.status in _RUN_FAILED_STATUSES:
                last_error = getattr(run, "last_error", None)
                reason = getattr(last_error, "message", None) or "unknown"
                raise ProviderError(f"OpenAI run {run.status}: {reason}")

            await self._sleep(self._config.poll_interval)

        raise RunTimeoutError("OpenAI run timed out")
