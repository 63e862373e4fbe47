"""
WebSocket 连接管理与端点测试
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from langland import __version__
from langland.api import websocket_router, health_router, ConnectionManager
from langland.api.websocket import handle_text_message
from langland.core.relay import StreamRelay
from langland.handlers import HandlerRouter
from langland.models.protocol import (
    FamiliarityStatus,
    RequestFrame,
    UpdateWordStatus,
    WordIgnored,
    WordStatusUpdated,
)


def fake_websocket(fail: bool = False):
    ws = MagicMock()
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock(side_effect=RuntimeError("closed") if fail else None)
    return ws


def sent_frames(ws):
    return [json.loads(c.args[0]) for c in ws.send_text.call_args_list]


# ── ConnectionManager ───────────────────────────────────


@pytest.mark.asyncio
async def test_connect_assigns_id():
    manager = ConnectionManager()
    ws = fake_websocket()

    conn = await manager.connect(ws)

    ws.accept.assert_awaited_once()
    assert manager.get_connection(conn.client_id) is conn
    assert len(conn.client_id) == 8


@pytest.mark.asyncio
async def test_broadcast_skips_broken_connections():
    manager = ConnectionManager()
    good, broken = fake_websocket(), fake_websocket(fail=True)
    await manager.connect(good, "good")
    conn_broken = await manager.connect(broken, "broken")

    sent = await manager.broadcast(WordIgnored(word="run"))

    assert sent == 1
    assert conn_broken.alive is False
    assert sent_frames(good) == [{"kind": "event", "message": {"type": "WORD_IGNORED", "word": "run"}}]

    # 已标记不可用的连接不再尝试发送
    await manager.broadcast(WordIgnored(word="go"))
    assert broken.send_text.await_count == 1


@pytest.mark.asyncio
async def test_send_event_to_unknown_client():
    manager = ConnectionManager()
    assert await manager.send_event("nobody", WordIgnored(word="run")) is False
    assert await manager.send_response("nobody", "r1", {"success": True}) is False


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_requests():
    manager = ConnectionManager()
    conn = await manager.connect(fake_websocket(), "c1")
    started = asyncio.Event()

    async def slow():
        started.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(slow())
    conn.track(task)
    await started.wait()

    await manager.disconnect("c1")

    assert task.cancelled()
    assert manager.get_connection("c1") is None
    assert conn.alive is False


@pytest.mark.asyncio
async def test_handle_text_message_replies_with_same_id():
    manager = ConnectionManager()
    ws = fake_websocket()
    conn = await manager.connect(ws, "c1")
    handler_router = MagicMock()
    handler_router.handle = AsyncMock(return_value={"success": True, "data": {}})

    frame = RequestFrame.of(UpdateWordStatus(word="run", familiarity_level=2), request_id="r42")
    await handle_text_message(conn, frame.to_json(), handler_router, manager)
    await asyncio.gather(*conn.tasks)

    handler_router.handle.assert_awaited_once_with(frame.message, "c1")
    assert sent_frames(ws) == [{"kind": "response", "id": "r42", "response": {"success": True, "data": {}}}]


@pytest.mark.asyncio
async def test_slow_request_gets_timeout_response():
    manager = ConnectionManager()
    ws = fake_websocket()
    conn = await manager.connect(ws, "c1")

    async def hang(message, client_id):
        await asyncio.sleep(10)

    handler_router = MagicMock()
    handler_router.handle = hang

    frame = RequestFrame.of(UpdateWordStatus(word="run", familiarity_level=2), request_id="r7")
    await handle_text_message(conn, frame.to_json(), handler_router, manager, timeout=0.05)
    await asyncio.gather(*conn.tasks)

    [sent] = sent_frames(ws)
    assert sent["id"] == "r7"
    assert sent["response"]["success"] is False
    assert sent["response"]["error"]


@pytest.mark.asyncio
async def test_handle_text_message_drops_malformed_frames():
    manager = ConnectionManager()
    ws = fake_websocket()
    conn = await manager.connect(ws, "c1")
    handler_router = MagicMock()
    handler_router.handle = AsyncMock()

    await handle_text_message(conn, "not json", handler_router, manager)
    await handle_text_message(conn, '{"kind": "event", "message": {}}', handler_router, manager)

    assert conn.tasks == set()
    handler_router.handle.assert_not_called()
    ws.send_text.assert_not_called()


# ── 端点 ────────────────────────────────────────────────


@pytest.fixture
def app(store, dictionary_service, ai_service, tracker):
    app = FastAPI()
    app.include_router(websocket_router)
    app.include_router(health_router)

    manager = ConnectionManager()
    relay = StreamRelay(manager.send_event, send_timeout=1.0)
    app.state.connection_manager = manager
    app.state.stream_relay = relay
    app.state.handler_router = HandlerRouter(
        store, dictionary_service, ai_service, relay, notifier=manager, tracker=tracker,
    )
    return app


def receive_until_response(ws):
    events = []
    while True:
        frame = ws.receive_json()
        if frame["kind"] == "response":
            return frame, events
        events.append(frame)


def test_websocket_update_broadcasts_and_responds(app, store):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        frame = RequestFrame.of(UpdateWordStatus(word="running", familiarity_level=3), request_id="r1")
        ws.send_text(frame.to_json())

        response, events = receive_until_response(ws)

    assert response["id"] == "r1"
    assert response["response"]["success"] is True
    assert response["response"]["data"]["familyRoot"] == "run"
    assert events == [{
        "kind": "event",
        "message": WordStatusUpdated(
            word="running",
            status=FamiliarityStatus.LEARNING,
            familiarity_level=3,
            family_root="run",
        ).to_dict(),
    }]
    assert store.records[1].familiarity_level == 3


def test_websocket_unknown_type_gets_failure(app):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_text(json.dumps({"kind": "request", "id": "r2", "message": {"type": "NOPE"}}))
        response, _ = receive_until_response(ws)

    assert response["id"] == "r2"
    assert response["response"]["success"] is False
    assert "NOPE" in response["response"]["error"]


# ── 健康检查 ────────────────────────────────────────────


def test_health(app):
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


def test_health_detail_reports_components(app, ai_service):
    app.state.ai_service = ai_service
    redis_service = MagicMock()
    redis_service.health_check = AsyncMock(return_value={"status": "healthy"})
    app.state.redis_service = redis_service

    body = TestClient(app).get("/api/v1/health/detail").json()

    assert body["success"] is True
    data = body["data"]
    assert data["status"] == "healthy"
    assert data["components"]["redis"] == {"status": "healthy"}
    assert data["components"]["ai"] == {"status": "healthy"}
    assert data["components"]["database"] == {"status": "unknown"}
    assert data["clients"] == 0
    assert data["streams"] == 0
