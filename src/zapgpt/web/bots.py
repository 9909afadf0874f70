"""Bot session endpoints and the per-bot server-sent event channel."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import Response, StreamingResponse

from zapgpt.app import ZapGPTApp
from zapgpt.core.events import QRCodeEvent, SessionEvent
from zapgpt.core.types import CONNECTED_STATUSES
from zapgpt.log import get_logger
from zapgpt.storage.models import Bot
from zapgpt.web.errors import ApiError

logger = get_logger(__name__)

router = APIRouter(prefix="/api/bots", tags=["bots"])


def get_zap(request: Request) -> ZapGPTApp:
    return request.app.state.zap


async def _require_bot(zap: ZapGPTApp, bot_id: str) -> Bot:
    bot = await zap.repo.find_bot_by_id(bot_id)
    if bot is None:
        raise ApiError.not_found("Bot not found")
    return bot


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


@router.post("/{bot_id}/connect")
async def connect_bot(bot_id: str, zap: ZapGPTApp = Depends(get_zap)) -> dict[str, Any]:
    """Start the WhatsApp session in the background; the QR code arrives on /events."""
    bot = await _require_bot(zap, bot_id)
    if zap.session_manager.is_running(bot.id):
        return {"success": True, "data": {"message": "Session already running", "bot": jsonable_encoder(bot)}}

    zap.launch_session(bot)
    return {
        "success": True,
        "data": {"message": f"Connection started. Listen to /api/bots/{bot.id}/events for the QR code."},
    }


@router.post("/{bot_id}/disconnect")
async def disconnect_bot(bot_id: str, zap: ZapGPTApp = Depends(get_zap)) -> dict[str, Any]:
    bot = await _require_bot(zap, bot_id)
    await zap.session_manager.stop_session(bot.id)
    updated = await zap.repo.find_bot_by_id(bot.id)
    return {"success": True, "data": jsonable_encoder(updated)}


@router.delete("/{bot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bot(bot_id: str, zap: ZapGPTApp = Depends(get_zap)) -> Response:
    bot = await _require_bot(zap, bot_id)
    await zap.delete_bot(bot.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{bot_id}/conversations")
async def list_conversations(bot_id: str, zap: ZapGPTApp = Depends(get_zap)) -> dict[str, Any]:
    bot = await _require_bot(zap, bot_id)
    conversations = await zap.repo.find_conversations_by_bot_id(bot.id)
    return {"success": True, "data": jsonable_encoder(conversations)}


@router.get("/{bot_id}/events")
async def bot_events(
    bot_id: str,
    request: Request,
    zap: ZapGPTApp = Depends(get_zap),
) -> StreamingResponse:
    """Relay the bot's QR codes and status changes until the client goes away."""
    bot = await _require_bot(zap, bot_id)
    keepalive = zap.config.server.keepalive_seconds

    async def stream() -> AsyncIterator[str]:
        queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue()

        def on_qr(event: QRCodeEvent) -> None:
            if event.bot_id != bot.id:
                return
            queue.put_nowait(("qr", {"qrBase64": event.qr_base64, "qrAscii": event.qr_ascii}))

        def on_status(event: SessionEvent) -> None:
            if event.bot_id != bot.id:
                return
            queue.put_nowait(("status", {"status": event.status}))

        unsubscribe_qr = zap.session_manager.on_qr_code(on_qr)
        unsubscribe_status = zap.session_manager.on_session_update(on_status)
        logger.info("event_stream_opened", bot_id=bot.id)
        try:
            while not await request.is_disconnected():
                try:
                    name, data = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue

                if name == "status" and data["status"] in CONNECTED_STATUSES:
                    updated = await zap.repo.find_bot_by_id(bot.id)
                    if updated is not None:
                        # the flag write for this status may still be in flight
                        updated = replace(updated, is_connected=True, is_active=True)
                        data["bot"] = jsonable_encoder(updated)
                yield format_sse(name, data)
        finally:
            unsubscribe_qr()
            unsubscribe_status()
            logger.info("event_stream_closed", bot_id=bot.id)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
