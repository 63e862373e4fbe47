"""
LangLand API 层

包含:
- WebSocket: content script 通信
- HTTP: 健康检查
"""

from .websocket import router as websocket_router, ConnectionManager, ClientConnection
from .routes import health_router

__all__ = [
    "websocket_router",
    "health_router",
    "ConnectionManager",
    "ClientConnection",
]
