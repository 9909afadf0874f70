"""QR code and session-status fan-out."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from zapgpt.log import get_logger

logger = get_logger(__name__)

E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class QRCodeEvent:
    bot_id: str
    qr_base64: str
    qr_ascii: str


@dataclass(frozen=True, slots=True)
class SessionEvent:
    bot_id: str
    status: str


class EventBus(Generic[E]):
    """Broadcasts every event to every listener.

    Listeners filter by bot themselves. Publishing iterates over a snapshot,
    so a listener may subscribe or unsubscribe while a broadcast is running.
    """

    def __init__(self, name: str):
        self._name = name
        self._listeners: list[Callable[[E], None]] = []

    def subscribe(self, listener: Callable[[E], None]) -> Callable[[], None]:
        """Register *listener*; call the returned function to unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            self._listeners = [l for l in self._listeners if l is not listener]

        return _unsubscribe

    def publish(self, event: E) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("event_listener_error", bus=self._name, error=str(e))

    def __len__(self) -> int:
        return len(self._listeners)
