from __future__ import annotations

import pytest

from conftest import FakeConnection, ScriptedChatBackend
from zapgpt.ai.handler import TurnHandler
from zapgpt.core.types import ConversationKey
from zapgpt.errors import ProviderError
from zapgpt.storage.models import ApiKeys


@pytest.mark.asyncio
async def test_reply_succeeds_on_third_attempt(repo, router, chat_backend, engine_config, bot):
    chat_backend.script = [ProviderError("503"), ProviderError("503"), "Finally here."]
    handler = TurnHandler(repo, router, engine_config)

    reply = await handler.generate_reply(bot, ApiKeys(gemini_key="gm"), ConversationKey(bot.id, "c"), "hi")

    assert reply == "Finally here."
    assert len(chat_backend.calls) == 3


@pytest.mark.asyncio
async def test_exhausted_attempts_fall_back_to_apology(repo, router, chat_backend, engine_config, bot):
    chat_backend.script = [ProviderError("down")] * 5
    handler = TurnHandler(repo, router, engine_config)

    reply = await handler.generate_reply(bot, ApiKeys(gemini_key="gm"), ConversationKey(bot.id, "c"), "hi")

    assert reply == engine_config.apology_text
    assert len(chat_backend.calls) == engine_config.max_ai_attempts


@pytest.mark.asyncio
async def test_missing_credentials_are_not_retried(repo, router, chat_backend, engine_config, bot):
    handler = TurnHandler(repo, router, engine_config)

    reply = await handler.generate_reply(bot, ApiKeys(), ConversationKey(bot.id, "c"), "hi")

    assert reply == engine_config.apology_text
    assert chat_backend.calls == []


@pytest.mark.asyncio
async def test_turn_persists_both_messages_and_sends_chunks(repo, router, chat_backend, engine_config, bot):
    chat_backend.script = ["We open at nine. See you soon!"]
    handler = TurnHandler(repo, router, engine_config)
    connection = FakeConnection(bot.session_name)

    await handler.handle(bot, connection, "5511999", "hi \n are you open?", is_live=lambda: True)

    assert connection.sent == [("5511999", "We open at nine."), ("5511999", "See you soon!")]

    [conversation] = await repo.find_conversations_by_bot_id(bot.id)
    assert conversation.contact_phone == "5511999"
    assert conversation.last_message == "We open at nine. See you soon!"
    assert conversation.unread_count == 1
    assert conversation.message_count == 1

    messages = await repo.list_messages(conversation.id)
    assert [(m.role, m.content) for m in messages] == [
        ("user", "hi \n are you open?"),
        ("assistant", "We open at nine. See you soon!"),
    ]
    assert (await repo.find_bot_by_id(bot.id)).message_count == 1


@pytest.mark.asyncio
async def test_apology_turn_is_stored_like_any_other(repo, router, chat_backend, engine_config, bot):
    chat_backend.script = [ProviderError("down")] * 3
    handler = TurnHandler(repo, router, engine_config)
    connection = FakeConnection(bot.session_name)

    await handler.handle(bot, connection, "5511999", "hello", is_live=lambda: True)
    await handler.handle(bot, connection, "5511999", "anyone?", is_live=lambda: True)

    [conversation] = await repo.find_conversations_by_bot_id(bot.id)
    assert conversation.message_count == 2
    messages = await repo.list_messages(conversation.id)
    assert [m.role for m in messages] == ["user", "assistant", "user", "assistant"]
    assert messages[1].content == engine_config.apology_text
    assert (await repo.find_bot_by_id(bot.id)).message_count == 2
    assert connection.sent


@pytest.mark.asyncio
async def test_reply_for_stopped_session_is_dropped(repo, router, engine_config, bot):
    handler = TurnHandler(repo, router, engine_config)
    connection = FakeConnection(bot.session_name)

    await handler.handle(bot, connection, "5511999", "hello", is_live=lambda: False)

    assert connection.sent == []
    assert await repo.find_conversations_by_bot_id(bot.id) == []
    assert (await repo.find_bot_by_id(bot.id)).message_count == 0
