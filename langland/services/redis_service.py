"""
Redis 服务

提供连接池管理和计数器操作，用于查词次数统计
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from ..config import RedisConfig

logger = logging.getLogger(__name__)


class RedisService:
    """
    Redis 服务

    Key 命名规范: langland:{业务}:{标识}
    例如:
    - langland:encounter:1:42     # 用户 1 词族 42 的查词计数
    """

    KEY_PREFIX = "langland"

    def __init__(self, config: RedisConfig):
        self.config = config
        self.pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    async def initialize(self):
        """初始化 Redis 连接池"""
        try:
            self.pool = ConnectionPool.from_url(
                self.config.url,
                max_connections=self.config.max_connections,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self.pool)

            # 测试连接
            await self._client.ping()
            logger.info(f"Redis connected: {self.config.host}:{self.config.port}")
        except Exception as e:
            logger.error(f"Failed to connect Redis: {e}")
            raise

    async def close(self):
        """关闭 Redis 连接"""
        if self._client:
            await self._client.aclose()
        if self.pool:
            await self.pool.disconnect()
        logger.info("Redis connection closed")

    @property
    def client(self) -> redis.Redis:
        """获取 Redis 客户端"""
        if not self._client:
            raise RuntimeError("Redis not initialized")
        return self._client

    def key(self, *parts) -> str:
        return ":".join([self.KEY_PREFIX, *[str(p) for p in parts]])

    # =====================================================
    # 计数器
    # =====================================================

    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        """计数加一；ttl 仅在计数首次创建时设置 (固定窗口)"""
        value = await self.client.incr(key)
        if ttl and ttl > 0 and value == 1:
            await self.client.expire(key, ttl)
        return value

    async def delete(self, *keys: str) -> int:
        """删除键"""
        if not keys:
            return 0
        return await self.client.delete(*keys)

    async def health_check(self) -> dict:
        """健康检查"""
        try:
            await self.client.ping()
            return {"status": "healthy"}
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}


_redis_service: Optional[RedisService] = None


async def init_redis_service(config: RedisConfig) -> RedisService:
    """初始化 Redis 服务"""
    global _redis_service
    _redis_service = RedisService(config)
    await _redis_service.initialize()
    return _redis_service


async def close_redis_service():
    """关闭 Redis 服务"""
    global _redis_service
    if _redis_service:
        await _redis_service.close()
        _redis_service = None
