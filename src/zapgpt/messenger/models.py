"""Message models exchanged with the WhatsApp transport."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class InboundMessage:
    contact_id: str
    text: str
    is_group: bool = False
    chat_id: str = ""

    @property
    def is_status_broadcast(self) -> bool:
        return self.chat_id == "status@broadcast"
