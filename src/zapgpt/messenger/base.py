"""Abstract WhatsApp transport interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from zapgpt.messenger.models import InboundMessage

QRCallback = Callable[[str, str], None]
StatusCallback = Callable[[str], None]
MessageCallback = Callable[[InboundMessage], None]


class WhatsAppConnection(ABC):
    """One live WhatsApp session.

    Implementations invoke the callback registered with on_message() for
    every inbound message of the session.
    """

    def __init__(self, session_name: str):
        self.session_name = session_name
        self._message_callback: MessageCallback | None = None

    @abstractmethod
    async def send_text(self, contact_id: str, text: str) -> None:
        """Send a text message. Raises on failure."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the session."""
        ...

    def on_message(self, callback: MessageCallback) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    def _emit_message(self, message: InboundMessage) -> None:
        if self._message_callback is not None:
            self._message_callback(message)


class WhatsAppTransport(ABC):
    """Factory of connections. To add a new bridge, subclass this and WhatsAppConnection."""

    async def start(self) -> None:
        """Acquire shared resources (HTTP pools etc.)."""

    async def stop(self) -> None:
        """Release shared resources."""

    @abstractmethod
    async def connect(
        self,
        session_name: str,
        on_qr: QRCallback,
        on_status: StatusCallback,
    ) -> WhatsAppConnection:
        """Open (or resume) the session named *session_name*."""
        ...
