from __future__ import annotations

import asyncio

import pytest

from zapgpt.core.debounce import DebounceBuffer
from zapgpt.core.types import ConversationKey

KEY = ConversationKey("bot-1", "5511999")


@pytest.mark.asyncio
async def test_burst_is_flushed_once_in_arrival_order():
    calls: list[tuple[ConversationKey, str]] = []

    async def handler(key, text):
        calls.append((key, text))

    buffer = DebounceBuffer(handler, quiet_seconds=0.05)
    buffer.push(KEY, "hi")
    buffer.push(KEY, "are you open")
    buffer.push(KEY, "today?")
    assert buffer.pending(KEY) == ["hi", "are you open", "today?"]

    await asyncio.sleep(0.2)

    assert calls == [(KEY, "hi \n are you open \n today?")]
    assert buffer.pending(KEY) == []
    await buffer.close()


@pytest.mark.asyncio
async def test_each_push_restarts_the_window():
    calls: list[str] = []

    async def handler(key, text):
        calls.append(text)

    buffer = DebounceBuffer(handler, quiet_seconds=0.15)
    buffer.push(KEY, "a")
    await asyncio.sleep(0.1)
    buffer.push(KEY, "b")
    await asyncio.sleep(0.1)
    assert calls == []

    await asyncio.sleep(0.2)
    assert calls == ["a \n b"]
    await buffer.close()


@pytest.mark.asyncio
async def test_conversations_are_independent():
    calls: list[tuple[ConversationKey, str]] = []

    async def handler(key, text):
        calls.append((key, text))

    other = ConversationKey("bot-1", "5511888")
    buffer = DebounceBuffer(handler, quiet_seconds=0.05)
    buffer.push(KEY, "from first")
    buffer.push(other, "from second")

    await asyncio.sleep(0.2)

    assert sorted(calls) == sorted([(KEY, "from first"), (other, "from second")])
    await buffer.close()


@pytest.mark.asyncio
async def test_discard_bot_drops_pending_without_flushing():
    calls: list[str] = []

    async def handler(key, text):
        calls.append(text)

    other_bot = ConversationKey("bot-2", "5511999")
    buffer = DebounceBuffer(handler, quiet_seconds=0.05)
    buffer.push(KEY, "lost")
    buffer.push(other_bot, "kept")

    assert buffer.discard_bot("bot-1") == 1
    assert not buffer.has_pending("bot-1")
    assert buffer.has_pending("bot-2")

    await asyncio.sleep(0.2)
    assert calls == ["kept"]
    await buffer.close()


@pytest.mark.asyncio
async def test_turns_of_one_conversation_never_overlap():
    release = asyncio.Event()
    active = 0
    max_active = 0
    seen: list[str] = []

    async def handler(key, text):
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        seen.append(text)
        if text == "first":
            await release.wait()
        active -= 1

    buffer = DebounceBuffer(handler, quiet_seconds=0.02)
    buffer.push(KEY, "first")
    await asyncio.sleep(0.08)
    buffer.push(KEY, "second")
    await asyncio.sleep(0.08)

    assert seen == ["first"]
    release.set()
    await asyncio.sleep(0.05)

    assert seen == ["first", "second"]
    assert max_active == 1
    await buffer.close()


@pytest.mark.asyncio
async def test_failing_turn_is_contained():
    calls: list[str] = []

    async def handler(key, text):
        calls.append(text)
        if text == "boom":
            raise RuntimeError("handler exploded")

    buffer = DebounceBuffer(handler, quiet_seconds=0.02)
    buffer.push(KEY, "boom")
    await asyncio.sleep(0.08)
    buffer.push(KEY, "after")
    await asyncio.sleep(0.08)

    assert calls == ["boom", "after"]
    await buffer.close()


@pytest.mark.asyncio
async def test_close_cancels_pending_timers():
    calls: list[str] = []

    async def handler(key, text):
        calls.append(text)

    buffer = DebounceBuffer(handler, quiet_seconds=0.05)
    buffer.push(KEY, "never")
    await buffer.close()

    await asyncio.sleep(0.1)
    assert calls == []
