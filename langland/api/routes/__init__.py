"""
HTTP 路由子模块
"""

from .health import router as health_router

__all__ = ["health_router"]
