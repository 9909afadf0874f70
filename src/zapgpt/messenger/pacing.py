"""Send reply chunks with a human-like typing delay."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from zapgpt.log import get_logger
from zapgpt.messenger.base import WhatsAppConnection

logger = get_logger(__name__)


async def send_with_delay(
    connection: WhatsAppConnection,
    chunks: list[str],
    contact_id: str,
    delay_per_char: float = 0.1,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """Send *chunks* one at a time, waiting len(chunk) * delay_per_char before each.

    A failed send is logged and does not stop the remaining chunks.
    Returns the number of chunks delivered.
    """
    delivered = 0
    for chunk in chunks:
        await sleep(len(chunk) * delay_per_char)
        try:
            await connection.send_text(contact_id, chunk)
            delivered += 1
        except Exception as e:
            logger.error(
                "message_send_failed",
                session=connection.session_name,
                contact_id=contact_id,
                error=str(e),
            )
    return delivered
