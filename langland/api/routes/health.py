"""
健康检查路由
"""

import logging

from fastapi import APIRouter, Request
from sqlalchemy import text

from ... import __version__
from ...models.schemas import HealthResponse
from ...models.response import success_response

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """健康检查接口"""
    return HealthResponse(
        status="ok",
        version=__version__,
    )


@router.get("/api/v1/health/detail")
async def health_detail(request: Request):
    """详细健康检查 (各组件状态)"""
    state = request.app.state
    components = {
        "database": {"status": "unknown"},
        "redis": {"status": "unknown"},
        "ai": {"status": "unknown"},
    }

    # 检查数据库
    engine = getattr(state, "engine", None)
    if engine is not None:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            components["database"] = {"status": "healthy"}
        except Exception as e:
            components["database"] = {"status": "unhealthy", "error": str(e)}

    # 检查 Redis
    redis_service = getattr(state, "redis_service", None)
    if redis_service is not None:
        components["redis"] = await redis_service.health_check()

    # AI 只检查是否配置
    ai_service = getattr(state, "ai_service", None)
    if ai_service is not None:
        components["ai"] = {"status": "healthy" if ai_service.is_configured else "unconfigured"}

    all_healthy = all(
        c.get("status") in ("healthy", "unknown") for c in components.values()
    )

    relay = getattr(state, "stream_relay", None)
    manager = getattr(state, "connection_manager", None)

    return success_response(data={
        "status": "healthy" if all_healthy else "degraded",
        "version": __version__,
        "components": components,
        "clients": len(manager.connections) if manager else 0,
        "streams": relay.active_sessions if relay else 0,
    })
