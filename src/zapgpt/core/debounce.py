"""Collapse bursts of inbound messages into one conversational turn."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from zapgpt.core.types import ConversationKey
from zapgpt.log import get_logger

logger = get_logger(__name__)

FlushHandler = Callable[[ConversationKey, str], Awaitable[None]]


class DebounceBuffer:
    """Per-conversation fragment buffer with a quiet-window flush timer.

    Every push restarts the key's timer. When the window elapses without new
    input the fragments are joined in arrival order and handed to the flush
    handler once. Turns of the same key run one after another; turns of
    different keys run concurrently.
    """

    def __init__(
        self,
        handler: FlushHandler,
        quiet_seconds: float = 15.0,
        separator: str = " \n ",
    ):
        self._handler = handler
        self._quiet_seconds = quiet_seconds
        self._separator = separator
        self._fragments: dict[ConversationKey, list[str]] = {}
        self._timers: dict[ConversationKey, asyncio.TimerHandle] = {}
        self._turns: dict[ConversationKey, asyncio.Task[None]] = {}

    def push(self, key: ConversationKey, text: str) -> None:
        """Buffer *text* for *key* and (re)start its flush timer."""
        self._fragments.setdefault(key, []).append(text)

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self._quiet_seconds, self._flush, key)
        logger.debug("message_buffered", key=str(key), fragments=len(self._fragments[key]))

    def pending(self, key: ConversationKey) -> list[str]:
        return list(self._fragments.get(key, ()))

    def has_pending(self, bot_id: str) -> bool:
        return any(key.bot_id == bot_id for key in self._fragments)

    def discard_bot(self, bot_id: str) -> int:
        """Drop buffered fragments and timers of every conversation of *bot_id*.

        The flush handler is not invoked. Returns the number of discarded keys.
        """
        keys = [key for key in self._fragments if key.bot_id == bot_id]
        for key in keys:
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            self._fragments.pop(key, None)
        if keys:
            logger.info("buffer_discarded", bot_id=bot_id, conversations=len(keys))
        return len(keys)

    async def close(self) -> None:
        """Cancel all timers and in-flight turns."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._fragments.clear()

        turns = list(self._turns.values())
        for task in turns:
            task.cancel()
        if turns:
            await asyncio.gather(*turns, return_exceptions=True)
        self._turns.clear()

    def _flush(self, key: ConversationKey) -> None:
        self._timers.pop(key, None)
        fragments = self._fragments.pop(key, None)
        if not fragments:
            return

        combined = self._separator.join(fragments)
        previous = self._turns.get(key)
        task = asyncio.get_running_loop().create_task(self._run_turn(key, combined, previous))
        self._turns[key] = task
        task.add_done_callback(lambda t: self._turn_done(key, t))

    def _turn_done(self, key: ConversationKey, task: asyncio.Task[None]) -> None:
        if self._turns.get(key) is task:
            del self._turns[key]

    async def _run_turn(
        self,
        key: ConversationKey,
        combined: str,
        previous: asyncio.Task[None] | None,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

        try:
            await self._handler(key, combined)
        except Exception as e:
            logger.error("turn_failed", key=str(key), error=str(e), exc_info=True)
