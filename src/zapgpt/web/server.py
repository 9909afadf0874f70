"""FastAPI application: bot session endpoints, event stream and transport webhook."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import Body, FastAPI

from zapgpt.app import ZapGPTApp
from zapgpt.log import get_logger
from zapgpt.messenger.wppconnect import WPPConnectTransport
from zapgpt.web.bots import router as bots_router
from zapgpt.web.errors import ApiError, api_error_handler

logger = get_logger(__name__)


def create_app(zap: ZapGPTApp) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await zap.start()
        try:
            yield
        finally:
            await zap.stop()

    app = FastAPI(title="ZapGPT", version="0.1.0", lifespan=lifespan)
    app.state.zap = zap
    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.include_router(bots_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sessions": len(zap.session_manager.running_bot_ids()),
        }

    @app.post("/webhooks/wppconnect")
    async def wppconnect_webhook(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        """Receive QR, status and message events from the WPPConnect server."""
        if not isinstance(zap.transport, WPPConnectTransport):
            raise ApiError.not_found("WPPConnect transport is not enabled")
        handled = zap.transport.dispatch_webhook(payload)
        return {"success": True, "handled": handled}

    return app
