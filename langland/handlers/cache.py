"""
词族熟练度缓存

由消息路由独占，其他组件只能通过路由读写熟练度
- 每个词族一把 asyncio.Lock，读-改-写在锁内完成
- 写入先落库再更新缓存，落库失败时缓存保持不变
"""

import asyncio
import logging
from typing import Dict, Iterable, Optional

from ..core.familiarity import FamiliarityRecord, merge

logger = logging.getLogger(__name__)


class FamiliarityCache:
    """熟练度缓存 (family_id -> FamiliarityRecord)"""

    def __init__(self, store):
        self.store = store
        self._records: Dict[int, FamiliarityRecord] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def lock(self, family_id: int) -> asyncio.Lock:
        """词族写锁"""
        lock = self._locks.get(family_id)
        if lock is None:
            lock = self._locks[family_id] = asyncio.Lock()
        return lock

    def get(self, family_id: int) -> Optional[FamiliarityRecord]:
        return self._records.get(family_id)

    def _remember(self, record: FamiliarityRecord) -> FamiliarityRecord:
        cached = self._records.get(record.family_id)
        if cached is not None and cached != record:
            record = merge(cached, record)
        self._records[record.family_id] = record
        return record

    async def load(self, family_id: int) -> Optional[FamiliarityRecord]:
        """
        读取最新记录 (读-改-写前调用)

        总是回源，与缓存合并，避免覆盖其他途径写入的进度
        """
        stored = await self.store.get_familiarity(family_id)
        if stored is None:
            return self._records.get(family_id)
        return self._remember(stored)

    async def read_many(self, family_ids: Iterable[int]) -> Dict[int, FamiliarityRecord]:
        """批量读取，缓存未命中的词族一次性回源"""
        ids = set(family_ids)
        result = {fid: self._records[fid] for fid in ids if fid in self._records}

        missing = ids - result.keys()
        if missing:
            loaded = await self.store.get_familiarities(missing)
            for fid, record in loaded.items():
                result[fid] = self._remember(record)
            logger.debug(f"熟练度回源: {len(missing)} 个词族, 命中 {len(loaded)}")

        return result

    async def write(self, record: FamiliarityRecord):
        """落库后更新缓存"""
        await self.store.upsert_familiarity(record.family_id, record)
        self._records[record.family_id] = record
