"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

import asyncio

from zapgpt.ai.handler import TurnHandler
from zapgpt.ai.router import AIRouter
from zapgpt.config import AppConfig
from zapgpt.core.session import SessionManager
from zapgpt.log import get_logger
from zapgpt.messenger.base import WhatsAppTransport
from zapgpt.messenger.wppconnect import WPPConnectTransport
from zapgpt.storage.database import Database
from zapgpt.storage.models import Bot
from zapgpt.storage.repository import Repository

logger = get_logger(__name__)


class ZapGPTApp:
    """Top-level application orchestrator.

    Constructed once per process; request handlers receive it by reference.
    """

    def __init__(
        self,
        config: AppConfig,
        transport: WhatsAppTransport | None = None,
        ai_router: AIRouter | None = None,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.repo = Repository(self.db)
        self.transport = transport or WPPConnectTransport(config.whatsapp)
        self.ai_router = ai_router or AIRouter.from_config(
            config.providers, greeting_text=config.engine.greeting_text
        )
        self.turn_handler = TurnHandler(self.repo, self.ai_router, config.engine)
        self.session_manager = SessionManager(
            repo=self.repo,
            transport=self.transport,
            turn_handler=self.turn_handler,
            router=self.ai_router,
            config=config.engine,
        )
        self._launches: set[asyncio.Task[bool]] = set()

    async def start(self) -> None:
        """Initialize storage and the transport."""
        await self.db.initialize()
        await self.transport.start()
        logger.info("zapgpt_started", db_path=self.config.storage.db_path)

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        for task in list(self._launches):
            task.cancel()
        if self._launches:
            await asyncio.gather(*self._launches, return_exceptions=True)

        await self.session_manager.stop_all()
        await self.ai_router.aclose()
        await self.transport.stop()
        await self.db.close()
        logger.info("zapgpt_stopped")

    async def connect_bot(self, bot: Bot) -> bool:
        """Start the bot's session; on failure reset its flags. Returns True on success."""
        try:
            await self.session_manager.start_session(bot)
            return True
        except Exception as e:
            logger.error("session_start_failed", bot_id=bot.id, error=str(e))
            await self.repo.update_bot(bot.id, is_connected=False, is_active=False)
            return False

    def launch_session(self, bot: Bot) -> asyncio.Task[bool]:
        """Run connect_bot in the background; QR codes arrive through the event bus."""
        task = asyncio.get_running_loop().create_task(self.connect_bot(bot))
        self._launches.add(task)
        task.add_done_callback(self._launches.discard)
        return task

    async def delete_bot(self, bot_id: str) -> bool:
        """Tear down the live session, then delete the bot."""
        if self.session_manager.is_running(bot_id):
            await self.session_manager.stop_session(bot_id)
        return await self.repo.delete_bot(bot_id)
