from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeTransport
from zapgpt.app import ZapGPTApp
from zapgpt.config import AppConfig, StorageConfig, WhatsAppConfig
from zapgpt.messenger.wppconnect import WPPConnectTransport
from zapgpt.web.bots import bot_events, format_sse
from zapgpt.web.server import create_app


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(storage=StorageConfig(db_path=str(tmp_path / "web.db")))


@pytest.fixture
def zap(app_config, router) -> ZapGPTApp:
    return ZapGPTApp(app_config, transport=FakeTransport(), ai_router=router)


def _seed_bot(client: TestClient, zap: ZapGPTApp):
    user = client.portal.call(zap.repo.create_user, "Ana", "ana@example.com")
    return client.portal.call(zap.repo.create_bot, user.id, "Ana Bot", "gemini-2.0-flash", "You are Ana.")


def test_health(zap):
    with TestClient(create_app(zap)) as client:
        response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["sessions"] == 0


def test_unknown_bot_is_404(zap):
    with TestClient(create_app(zap)) as client:
        response = client.post("/api/bots/missing/connect")

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": {"message": "Bot not found", "code": "NOT_FOUND"}}


def test_connect_then_disconnect(zap):
    with TestClient(create_app(zap)) as client:
        bot = _seed_bot(client, zap)

        started = client.post(f"/api/bots/{bot.id}/connect")
        assert started.status_code == 200
        assert f"/api/bots/{bot.id}/events" in started.json()["data"]["message"]

        stopped = client.post(f"/api/bots/{bot.id}/disconnect")
        assert stopped.status_code == 200
        data = stopped.json()["data"]
        assert data["id"] == bot.id
        assert data["is_active"] is False
        assert data["is_connected"] is False


def test_delete_bot(zap):
    with TestClient(create_app(zap)) as client:
        bot = _seed_bot(client, zap)

        assert client.delete(f"/api/bots/{bot.id}").status_code == 204
        assert client.get(f"/api/bots/{bot.id}/conversations").status_code == 404


def test_conversations_listing(zap):
    with TestClient(create_app(zap)) as client:
        bot = _seed_bot(client, zap)
        client.portal.call(zap.repo.upsert_conversation, bot.id, bot.user_id, "5511999", "5511999", "hello")

        response = client.get(f"/api/bots/{bot.id}/conversations")

    assert response.status_code == 200
    [conversation] = response.json()["data"]
    assert conversation["contact_phone"] == "5511999"
    assert conversation["last_message"] == "hello"


def test_webhook_requires_wppconnect_transport(zap):
    with TestClient(create_app(zap)) as client:
        response = client.post("/webhooks/wppconnect", json={"session": "s1", "event": "qrcode"})

    assert response.status_code == 404


def test_webhook_for_unknown_session_is_not_handled(app_config, router):
    mock = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        base_url="http://wpp.test",
    )
    transport = WPPConnectTransport(WhatsAppConfig(base_url="http://wpp.test"), http_client=mock)
    zap = ZapGPTApp(app_config, transport=transport, ai_router=router)

    with TestClient(create_app(zap)) as client:
        response = client.post("/webhooks/wppconnect", json={"session": "ghost", "event": "qrcode"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "handled": False}


def test_format_sse():
    frame = format_sse("qr", {"qrBase64": "AAA", "qrAscii": "█"})

    assert frame.startswith("event: qr\ndata: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame.split("data: ", 1)[1]) == {"qrBase64": "AAA", "qrAscii": "█"}


class _StreamClient:
    """Stands in for the request of an open event stream."""

    def __init__(self) -> None:
        self.gone = False

    async def is_disconnected(self) -> bool:
        return self.gone


def _decode_frame(frame: str) -> tuple[str, dict]:
    lines = frame.strip().splitlines()
    assert lines[0].startswith("event: ")
    assert lines[1].startswith("data: ")
    return lines[0][len("event: ") :], json.loads(lines[1][len("data: ") :])


@pytest.mark.asyncio
async def test_event_stream_relays_only_its_bot_until_client_leaves(zap):
    await zap.start()
    try:
        user = await zap.repo.create_user("Ana", "ana@example.com")
        mine = await zap.repo.create_bot(user.id, "Ana Bot", "gemini-2.0-flash", "You are Ana.")
        other = await zap.repo.create_bot(user.id, "Bia Bot", "gemini-2.0-flash", "You are Bia.")
        manager = zap.session_manager
        await manager.start_session(mine)
        await manager.start_session(other)
        client = _StreamClient()

        response = await bot_events(mine.id, client, zap)
        frames = response.body_iterator
        first = asyncio.ensure_future(frames.__anext__())
        await asyncio.sleep(0.01)
        assert len(manager._qr_bus) == 1
        assert len(manager._status_bus) == 1

        zap.transport.emit_qr(other.session_name, "data:image/png;base64,OTHER")
        zap.transport.emit_status(other.session_name, "isLogged")
        zap.transport.emit_qr(mine.session_name, "data:image/png;base64,AAA", "##")

        assert _decode_frame(await first) == ("qr", {"qrBase64": "data:image/png;base64,AAA", "qrAscii": "##"})

        zap.transport.emit_status(mine.session_name, "isLogged")
        event, data = _decode_frame(await frames.__anext__())
        assert event == "status"
        assert data["status"] == "isLogged"
        assert data["bot"]["id"] == mine.id
        assert data["bot"]["is_connected"] is True
        assert data["bot"]["is_active"] is True

        client.gone = True
        with pytest.raises(StopAsyncIteration):
            await frames.__anext__()

        assert len(manager._qr_bus) == 0
        assert len(manager._status_bus) == 0
    finally:
        await zap.stop()


@pytest.mark.asyncio
async def test_event_stream_plain_status_has_no_bot_record(zap):
    await zap.start()
    try:
        user = await zap.repo.create_user("Ana", "ana@example.com")
        bot = await zap.repo.create_bot(user.id, "Ana Bot", "gemini-2.0-flash", "You are Ana.")
        await zap.session_manager.start_session(bot)

        response = await bot_events(bot.id, _StreamClient(), zap)
        frames = response.body_iterator
        pending = asyncio.ensure_future(frames.__anext__())
        await asyncio.sleep(0.01)
        zap.transport.emit_status(bot.session_name, "qrReadSuccess")

        assert _decode_frame(await pending) == ("status", {"status": "qrReadSuccess"})

        await frames.aclose()
        assert len(zap.session_manager._status_bus) == 0
    finally:
        await zap.stop()
