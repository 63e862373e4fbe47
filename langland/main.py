"""
LangLand Server - 主应用入口

词汇插件的后台协调服务
content script 通过 WebSocket (/ws) 与后台交换消息
"""

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from . import __version__
from .config import get_settings
from .api import websocket_router, health_router, ConnectionManager
from .core.llm import AIService
from .core.relay import StreamRelay
from .core.encounters import EncounterTracker
from .services.redis_service import init_redis_service, close_redis_service
from .services.vocabulary_service import VocabularyStore
from .services.dictionary_service import DictionaryService
from .handlers import HandlerRouter
from .models.response import LangLandError, error_response
from .utils.logger import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    settings = get_settings()

    logger.info("=" * 50)
    logger.info("LangLand Server 启动中...")
    logger.info("=" * 50)

    # 1. 初始化数据库连接
    logger.info("初始化数据库连接...")
    engine = create_async_engine(
        settings.database.url,
        pool_size=settings.database.pool_size,
        pool_recycle=settings.database.pool_recycle,
        echo=False
    )
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    # 2. 初始化 Redis (查词计数)
    logger.info("初始化 Redis 服务...")
    redis_service = await init_redis_service(settings.redis)

    # 3. 初始化 AI 服务
    ai_service = AIService(settings.llm)

    # 4. 初始化持久化协作者
    store = VocabularyStore(session_factory, settings.vocabulary.user_id)
    dictionary_service = DictionaryService(session_factory, store, ai_service)
    tracker = EncounterTracker(
        redis_service,
        settings.vocabulary.user_id,
        threshold=settings.vocabulary.encounter_threshold,
        window_seconds=settings.vocabulary.encounter_window_seconds,
    )

    # 5. 连接管理 + 流式中继 + 消息路由
    connection_manager = ConnectionManager()
    stream_relay = StreamRelay(
        connection_manager.send_event,
        send_timeout=settings.relay.send_timeout,
    )
    handler_router = HandlerRouter(
        store,
        dictionary_service,
        ai_service,
        stream_relay,
        notifier=connection_manager,
        tracker=tracker,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.redis_service = redis_service
    app.state.ai_service = ai_service
    app.state.connection_manager = connection_manager
    app.state.stream_relay = stream_relay
    app.state.handler_router = handler_router
    app.state.request_timeout = settings.relay.request_timeout

    logger.info(
        f"LangLand Server 启动完成: ws://{settings.server.host}:{settings.server.port}/ws "
        f"(查词阈值 {settings.vocabulary.encounter_threshold})"
    )

    yield

    # 清理资源
    logger.info("LangLand Server 关闭中...")
    await stream_relay.close()
    await ai_service.close()
    await close_redis_service()
    await engine.dispose()
    logger.info("LangLand Server 已关闭")


def create_app() -> FastAPI:
    """创建 FastAPI 应用"""
    settings = get_settings()
    setup_logging(
        level=settings.server.log_level,
        structured=settings.server.structured_logging,
    )

    app = FastAPI(
        title="LangLand Server",
        description="词汇插件后台协调服务",
        version=__version__,
        lifespan=lifespan,
        debug=settings.server.debug
    )

    # CORS 中间件 (扩展页面跨域访问)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # request_id 中间件
    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # 全局异常处理器
    @app.exception_handler(LangLandError)
    async def langland_exception_handler(request: Request, exc: LangLandError):
        return JSONResponse(status_code=200, content=error_response(exc.message))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(f"未处理异常: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content=error_response("服务内部错误"))

    # 注册路由
    app.include_router(websocket_router, tags=["WebSocket"])
    app.include_router(health_router, tags=["Health"])

    return app


def run():
    """命令行入口"""
    settings = get_settings()
    uvicorn.run(
        "langland.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.debug,
        log_level="info"
    )


if __name__ == "__main__":
    run()
