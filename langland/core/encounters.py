"""
查词计数

被动查词 (AUTO_INCREASE_FAMILIARITY) 达到阈值后才提升熟练度
计数存放在 Redis，窗口为 0 时累计不过期
"""

import logging

from redis.exceptions import RedisError

from ..models.response import ErrorCode, PersistenceFailure
from ..services.redis_service import RedisService

logger = logging.getLogger(__name__)


class EncounterTracker:
    """
    词族查词计数器

    策略:
    - threshold: 累计多少次查词提升一级
    - window_seconds: 计数窗口，首次计数时开始，过期后重新计数
    """

    def __init__(
        self,
        redis_service: RedisService,
        user_id: int,
        threshold: int = 1,
        window_seconds: int = 0,
    ):
        if threshold < 1:
            raise ValueError(f"threshold 必须大于 0: {threshold}")
        self.redis = redis_service
        self.user_id = user_id
        self.threshold = threshold
        self.window_seconds = max(0, window_seconds)

    def _key(self, family_id: int) -> str:
        return self.redis.key("encounter", self.user_id, family_id)

    async def record(self, family_id: int) -> bool:
        """
        记录一次查词

        Returns:
            是否达到阈值 (达到后计数清零)
        """
        if self.threshold == 1:
            return True

        key = self._key(family_id)
        try:
            count = await self.redis.incr(key, ttl=self.window_seconds or None)
            if count < self.threshold:
                logger.debug(f"查词计数: family={family_id}, {count}/{self.threshold}")
                return False
            await self.redis.delete(key)
        except RedisError as e:
            logger.error(f"查词计数失败: family={family_id}, {e}")
            raise PersistenceFailure("查词计数暂时不可用", code=ErrorCode.CACHE_ERROR) from e

        logger.info(f"查词次数达到阈值: family={family_id}")
        return True

    async def reset(self, family_id: int):
        """显式修改熟练度后清空计数"""
        if self.threshold == 1:
            return
        try:
            await self.redis.delete(self._key(family_id))
        except RedisError as e:
            logger.warning(f"清空查词计数失败: family={family_id}, {e}")
