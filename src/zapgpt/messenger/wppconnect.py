"""WhatsApp transport backed by a WPPConnect server.

The server runs the WhatsApp Web client; this module talks to its REST API
with httpx and receives QR codes, status changes and inbound messages
through the webhook the HTTP relay exposes at ``/webhooks/wppconnect``.
"""

from __future__ import annotations

from typing import Any

import httpx

from zapgpt.config import WhatsAppConfig
from zapgpt.errors import TransportError
from zapgpt.log import get_logger
from zapgpt.messenger.base import (
    QRCallback,
    StatusCallback,
    WhatsAppConnection,
    WhatsAppTransport,
)
from zapgpt.messenger.models import InboundMessage

logger = get_logger(__name__)


class WPPConnectConnection(WhatsAppConnection):
    """A session on the WPPConnect server, authenticated by a bearer token."""

    def __init__(
        self,
        transport: WPPConnectTransport,
        session_name: str,
        token: str,
        on_qr: QRCallback,
        on_status: StatusCallback,
    ):
        super().__init__(session_name)
        self._transport = transport
        self._token = token
        self._on_qr = on_qr
        self._on_status = on_status

    @property
    def token(self) -> str:
        return self._token

    async def send_text(self, contact_id: str, text: str) -> None:
        await self._transport._call(
            self,
            "send-message",
            {"phone": contact_id, "message": text, "isGroup": False},
        )

    async def close(self) -> None:
        self._transport._forget(self.session_name)
        await self._transport._call(self, "close-session", {})
        logger.info("wppconnect_session_closed", session=self.session_name)

    def handle_event(self, payload: dict[str, Any]) -> bool:
        """Route one webhook payload to the registered callbacks."""
        event = payload.get("event")
        if event == "qrcode":
            self._on_qr(str(payload.get("qrcode", "")), str(payload.get("asciiQR", "")))
            return True
        if event == "status-find":
            self._on_status(str(payload.get("status", "")))
            return True
        if event == "onmessage":
            if payload.get("type") != "chat":
                return False
            self._emit_message(
                InboundMessage(
                    contact_id=str(payload.get("from", "")),
                    text=str(payload.get("body") or ""),
                    is_group=bool(payload.get("isGroupMsg", False)),
                    chat_id=str(payload.get("chatId", "")),
                )
            )
            return True
        return False


class WPPConnectTransport(WhatsAppTransport):
    """Opens sessions on a WPPConnect server and dispatches its webhook events."""

    def __init__(self, config: WhatsAppConfig, http_client: httpx.AsyncClient | None = None):
        self._config = config
        self._client = http_client
        self._owns_client = http_client is None
        self._connections: dict[str, WPPConnectConnection] = {}

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url, timeout=self._config.timeout
            )
        logger.info("wppconnect_transport_started", base_url=self._config.base_url)

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._connections.clear()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Transport not started. Call start() first.")
        return self._client

    async def connect(
        self,
        session_name: str,
        on_qr: QRCallback,
        on_status: StatusCallback,
    ) -> WhatsAppConnection:
        token = await self._generate_token(session_name)
        connection = WPPConnectConnection(self, session_name, token, on_qr, on_status)
        # Registered before start-session so early QR webhooks are not lost.
        self._connections[session_name] = connection
        try:
            await self._call(
                connection,
                "start-session",
                {"webhook": self._config.webhook_url, "waitQrCode": False},
            )
        except Exception:
            self._forget(session_name)
            raise
        logger.info("wppconnect_session_starting", session=session_name)
        return connection

    def dispatch_webhook(self, payload: dict[str, Any]) -> bool:
        """Deliver a webhook payload to its session. Returns False if it was ignored."""
        session_name = payload.get("session")
        connection = self._connections.get(session_name) if session_name else None
        if connection is None:
            logger.debug("wppconnect_webhook_unknown_session", session=session_name)
            return False
        return connection.handle_event(payload)

    def _forget(self, session_name: str) -> None:
        self._connections.pop(session_name, None)

    async def _generate_token(self, session_name: str) -> str:
        path = f"/api/{session_name}/{self._config.secret_key}/generate-token"
        try:
            response = await self.client.post(path)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"generate-token failed for {session_name}: {e}") from e
        token = response.json().get("token")
        if not token:
            raise TransportError(f"WPPConnect returned no token for session {session_name}")
        return token

    async def _call(
        self, connection: WPPConnectConnection, action: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        try:
            response = await self.client.post(
                f"/api/{connection.session_name}/{action}",
                json=body,
                headers={"Authorization": f"Bearer {connection.token}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"{action} failed for {connection.session_name}: {e}") from e
        return response.json() if response.content else {}
