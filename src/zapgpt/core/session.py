"""Session manager: one live WhatsApp connection per bot."""

from __future__ import annotations

import asyncio
from typing import Callable

from zapgpt.ai.handler import TurnHandler
from zapgpt.ai.router import AIRouter
from zapgpt.config import EngineConfig
from zapgpt.core.bot_registry import ConnectionRegistry, LiveSession
from zapgpt.core.debounce import DebounceBuffer
from zapgpt.core.events import EventBus, QRCodeEvent, SessionEvent
from zapgpt.core.types import CONNECTED_STATUSES, DISCONNECTED_STATUSES, ConversationKey
from zapgpt.log import get_logger
from zapgpt.messenger.base import WhatsAppTransport
from zapgpt.messenger.models import InboundMessage
from zapgpt.storage.models import Bot
from zapgpt.storage.repository import Repository

logger = get_logger(__name__)


class SessionManager:
    """Owns the bot connections and everything that flows through them.

    Inbound messages are debounced per conversation and answered by the
    turn handler. QR codes and status changes are broadcast to every
    subscriber, and status changes that mean logged-in / logged-out are
    persisted on the bot.
    """

    def __init__(
        self,
        repo: Repository,
        transport: WhatsAppTransport,
        turn_handler: TurnHandler,
        router: AIRouter,
        config: EngineConfig,
    ):
        self._repo = repo
        self._transport = transport
        self._turn_handler = turn_handler
        self._router = router
        self._registry = ConnectionRegistry()
        self._starting: set[str] = set()
        self._buffer = DebounceBuffer(
            self._on_flush,
            quiet_seconds=config.debounce_seconds,
            separator=config.fragment_separator,
        )
        self._qr_bus: EventBus[QRCodeEvent] = EventBus("qr")
        self._status_bus: EventBus[SessionEvent] = EventBus("status")
        self._background: set[asyncio.Task[None]] = set()

    @property
    def buffer(self) -> DebounceBuffer:
        return self._buffer

    # -- subscriptions -----------------------------------------------------

    def on_qr_code(self, listener: Callable[[QRCodeEvent], None]) -> Callable[[], None]:
        """Receive every QR code event of every bot. Returns an unsubscribe function."""
        return self._qr_bus.subscribe(listener)

    def on_session_update(self, listener: Callable[[SessionEvent], None]) -> Callable[[], None]:
        """Receive every status event of every bot. Returns an unsubscribe function."""
        return self._status_bus.subscribe(listener)

    # -- lifecycle ---------------------------------------------------------

    def is_running(self, bot_id: str) -> bool:
        return bot_id in self._registry

    def running_bot_ids(self) -> list[str]:
        return self._registry.ids()

    async def start_session(self, bot: Bot) -> None:
        """Open the bot's WhatsApp session. No-op if it is already running or starting.

        Connection errors propagate; the caller resets the bot's flags.
        """
        if bot.id in self._registry or bot.id in self._starting:
            logger.info("session_already_running", bot_id=bot.id)
            return

        logger.info("session_starting", bot_id=bot.id, bot_name=bot.name, session=bot.session_name)
        self._starting.add(bot.id)
        try:
            connection = await self._transport.connect(
                bot.session_name,
                on_qr=lambda qr_base64, qr_ascii: self._qr_bus.publish(
                    QRCodeEvent(bot.id, qr_base64, qr_ascii)
                ),
                on_status=lambda status: self._handle_status(bot, status),
            )
        finally:
            self._starting.discard(bot.id)

        connection.on_message(lambda message: self._handle_inbound(bot.id, message))
        if not self._registry.add_if_absent(LiveSession(bot, connection)):
            logger.warning("session_duplicate_discarded", bot_id=bot.id)
            await connection.close()
            return
        logger.info("session_ready", bot_id=bot.id, bot_name=bot.name)

    async def stop_session(self, bot_id: str) -> None:
        """Close the bot's session and drop its buffered messages. No-op if not running."""
        live = self._registry.pop(bot_id)
        if live is None:
            return

        self._buffer.discard_bot(bot_id)
        self._router.clear_bot(bot_id)
        try:
            await live.connection.close()
        except Exception as e:
            logger.error("session_close_failed", bot_id=bot_id, error=str(e))

        await self._repo.update_bot(bot_id, is_connected=False, is_active=False)
        logger.info("session_stopped", bot_id=bot_id)

    async def stop_all(self) -> None:
        for bot_id in self._registry.ids():
            try:
                await self.stop_session(bot_id)
            except Exception as e:
                logger.error("session_stop_error", bot_id=bot_id, error=str(e))
        await self._buffer.close()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # -- transport callbacks -----------------------------------------------

    def _handle_status(self, bot: Bot, status: str) -> None:
        logger.info("session_status", bot_id=bot.id, bot_name=bot.name, status=status)
        self._status_bus.publish(SessionEvent(bot.id, status))

        if status in CONNECTED_STATUSES:
            self._persist_flags(bot.id, connected=True)
        elif status in DISCONNECTED_STATUSES:
            self._persist_flags(bot.id, connected=False)

    def _persist_flags(self, bot_id: str, connected: bool) -> None:
        """Schedule the flag update without blocking the status callback."""
        task = asyncio.get_running_loop().create_task(
            self._repo.update_bot(bot_id, is_connected=connected, is_active=connected)
        )
        self._background.add(task)
        task.add_done_callback(lambda t: self._flags_persisted(bot_id, t))

    def _flags_persisted(self, bot_id: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("bot_status_update_failed", bot_id=bot_id, error=str(error))

    def _handle_inbound(self, bot_id: str, message: InboundMessage) -> None:
        if message.is_group or message.is_status_broadcast or not message.text:
            return
        if bot_id not in self._registry:
            return
        self._buffer.push(ConversationKey(bot_id, message.contact_id), message.text)

    async def _on_flush(self, key: ConversationKey, text: str) -> None:
        live = self._registry.get(key.bot_id)
        if live is None:
            logger.info("turn_dropped", key=str(key))
            return

        await self._turn_handler.handle(
            live.bot,
            live.connection,
            key.contact_id,
            text,
            is_live=lambda: self._registry.get(key.bot_id) is live,
        )
