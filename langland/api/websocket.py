"""
WebSocket API - content script 通信

每个页面的 content script 建立一条连接，交换 JSON 文本帧:
- request:  {"kind": "request", "id": ..., "message": {...}}
- response: {"kind": "response", "id": ..., "response": {...}}
- event:    {"kind": "event", "message": {...}}
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..models.protocol import (
    Envelope,
    RequestFrame,
    ResponseFrame,
    EventFrame,
    parse_frame,
)
from ..models.response import LangLandError, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_REQUEST_TIMEOUT = 30.0
REQUEST_TIMEOUT_MESSAGE = "请求处理超时，请稍后再试"


@dataclass
class ClientConnection:
    """客户端连接状态"""
    client_id: str
    websocket: WebSocket

    # 通道可用标记，发送失败或断开后置为 False
    alive: bool = True

    # 正在处理的请求任务
    tasks: Set[asyncio.Task] = field(default_factory=set)

    # 同一连接的发送串行化
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send_text(self, text: str) -> bool:
        """发送文本帧，失败时标记通道不可用"""
        if not self.alive:
            return False
        async with self._send_lock:
            try:
                await self.websocket.send_text(text)
                return True
            except Exception as e:
                logger.warning(f"发送失败，标记连接不可用: {e}", extra={"client_id": self.client_id})
                self.alive = False
                return False

    def track(self, task: asyncio.Task):
        """登记请求任务，完成后自动移除"""
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)


class ConnectionManager:
    """WebSocket 连接管理器"""

    def __init__(self):
        self.connections: Dict[str, ClientConnection] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> ClientConnection:
        """建立连接"""
        await websocket.accept()
        client_id = client_id or str(uuid.uuid4())[:8]

        async with self._lock:
            conn = ClientConnection(client_id=client_id, websocket=websocket)
            self.connections[client_id] = conn

        logger.info(f"客户端连接 (在线 {len(self.connections)})", extra={"client_id": client_id})
        return conn

    async def disconnect(self, client_id: str):
        """断开连接，取消未完成的请求任务"""
        async with self._lock:
            conn = self.connections.pop(client_id, None)

        if conn is None:
            return

        conn.alive = False
        pending = [t for t in conn.tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)

        logger.info(f"客户端断开 (取消 {len(pending)} 个请求)", extra={"client_id": client_id})

    def get_connection(self, client_id: str) -> Optional[ClientConnection]:
        """获取连接"""
        return self.connections.get(client_id)

    async def send_response(self, client_id: str, request_id: str, response: Dict[str, Any]) -> bool:
        """发送响应帧"""
        conn = self.get_connection(client_id)
        if not conn:
            logger.warning(
                "客户端未连接，丢弃响应", extra={"client_id": client_id, "request_id": request_id}
            )
            return False
        return await conn.send_text(ResponseFrame(id=request_id, response=response).to_json())

    async def send_event(self, client_id: str, envelope: Envelope) -> bool:
        """发送通知帧到指定客户端"""
        conn = self.get_connection(client_id)
        if not conn:
            return False
        return await conn.send_text(EventFrame.of(envelope).to_json())

    async def broadcast(self, envelope: Envelope) -> int:
        """广播通知到所有客户端，返回成功发送数"""
        text = EventFrame.of(envelope).to_json()
        sent = 0
        # 遍历快照，发送期间的连接/断开不影响本次广播
        for conn in list(self.connections.values()):
            if await conn.send_text(text):
                sent += 1
        logger.debug(f"广播 {envelope.type.value}: {sent}/{len(self.connections)}")
        return sent


async def dispatch_request(
    conn: ClientConnection,
    frame: RequestFrame,
    handler_router,
    manager: ConnectionManager,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
):
    """处理单个请求并回复响应，超时也要回复"""
    try:
        response = await asyncio.wait_for(
            handler_router.handle(frame.message, conn.client_id), timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.warning("请求处理超时", extra={"client_id": conn.client_id, "request_id": frame.id})
        response = MessageResponse.fail(REQUEST_TIMEOUT_MESSAGE).to_dict()
    await manager.send_response(conn.client_id, frame.id, response)


async def handle_text_message(
    conn: ClientConnection,
    text: str,
    handler_router,
    manager: ConnectionManager,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
):
    """处理文本帧，请求在独立任务中处理，不阻塞接收循环"""
    try:
        frame = parse_frame(text)
    except LangLandError as e:
        logger.warning(f"无法解析的消息: {e.message}, {text[:100]}", extra={"client_id": conn.client_id})
        return

    if isinstance(frame, RequestFrame):
        task = asyncio.create_task(
            dispatch_request(conn, frame, handler_router, manager, timeout),
            name=f"request-{conn.client_id}-{frame.id}",
        )
        conn.track(task)
    else:
        logger.debug(f"忽略客户端发来的 {type(frame).__name__}", extra={"client_id": conn.client_id})


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket 端点"""
    state = websocket.app.state
    manager: ConnectionManager = state.connection_manager
    handler_router = state.handler_router
    relay = state.stream_relay
    timeout = getattr(state, "request_timeout", DEFAULT_REQUEST_TIMEOUT)

    conn = await manager.connect(websocket)

    try:
        while True:
            text = await websocket.receive_text()
            await handle_text_message(conn, text, handler_router, manager, timeout)

    except WebSocketDisconnect:
        logger.info("客户端断开连接", extra={"client_id": conn.client_id})
    except Exception as e:
        logger.error(f"WebSocket 错误: {e}", exc_info=True, extra={"client_id": conn.client_id})
    finally:
        conn.alive = False
        await relay.cancel_client(conn.client_id)
        await manager.disconnect(conn.client_id)
