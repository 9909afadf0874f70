"""Turn handler: combined inbound text -> AI reply -> storage -> paced WhatsApp messages."""

from __future__ import annotations

from typing import Callable

from zapgpt.ai.router import AIRouter
from zapgpt.config import EngineConfig
from zapgpt.core.types import ConversationKey, Role
from zapgpt.errors import ConfigurationError
from zapgpt.log import get_logger
from zapgpt.messenger.base import WhatsAppConnection
from zapgpt.messenger.pacing import send_with_delay
from zapgpt.messenger.splitter import split_messages
from zapgpt.storage.models import ApiKeys, Bot
from zapgpt.storage.repository import Repository

logger = get_logger(__name__)


class TurnHandler:
    """Runs one conversational turn end-to-end."""

    def __init__(self, repo: Repository, router: AIRouter, config: EngineConfig):
        self._repo = repo
        self._router = router
        self._config = config

    async def generate_reply(
        self,
        bot: Bot,
        api_keys: ApiKeys,
        key: ConversationKey,
        text: str,
    ) -> str:
        """Call the bot's AI with sequential retries, falling back to the apology text.

        The contact always gets an answer: provider failures are retried up to
        ``max_ai_attempts`` times and then masked. Missing credentials are not
        retried.
        """
        attempts = self._config.max_ai_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self._router.call_ai(bot, api_keys, key, text)
            except ConfigurationError as e:
                logger.error("ai_not_configured", bot_id=bot.id, model=bot.model, error=str(e))
                break
            except Exception as e:
                logger.warning(
                    "ai_error",
                    bot_id=bot.id,
                    model=bot.model,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )
        return self._config.apology_text

    async def handle(
        self,
        bot: Bot,
        connection: WhatsAppConnection,
        contact_id: str,
        text: str,
        is_live: Callable[[], bool],
    ) -> None:
        """Answer *text* from *contact_id*.

        *is_live* reports whether the bot's session is still tracked; a reply
        that arrives after the session stopped is dropped.
        """
        logger.info("turn_started", bot_id=bot.id, contact_id=contact_id, length=len(text))

        user = await self._repo.find_user_by_id(bot.user_id)
        if user is None:
            logger.error("turn_owner_missing", bot_id=bot.id, user_id=bot.user_id)
            return

        key = ConversationKey(bot.id, contact_id)
        answer = await self.generate_reply(bot, user.api_keys, key, text)

        if not is_live():
            logger.info("turn_discarded", bot_id=bot.id, contact_id=contact_id)
            return

        conversation = await self._repo.upsert_conversation(
            bot_id=bot.id,
            user_id=bot.user_id,
            contact_name=contact_id,
            contact_phone=contact_id,
            last_message=answer,
            unread_increment=1,
            message_increment=1,
        )
        await self._repo.create_message(conversation.id, Role.USER.value, text)
        await self._repo.create_message(conversation.id, Role.ASSISTANT.value, answer)
        await self._repo.increment_bot_message_count(bot.id)

        chunks = split_messages(answer)
        delivered = await send_with_delay(
            connection,
            chunks,
            contact_id,
            delay_per_char=self._config.typing_delay_per_char,
        )
        logger.info(
            "turn_completed",
            bot_id=bot.id,
            contact_id=contact_id,
            chunks=len(chunks),
            delivered=delivered,
        )
