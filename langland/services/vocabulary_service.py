"""
词汇持久化服务

消息路由使用的持久化协作者:
- get_family_by_word / resolve_families: 单词 -> 词族
- get_familiarity / get_familiarities: 读取词族熟练度
- upsert_familiarity: 写入词族熟练度
- list_tags_for_family: 词族标签
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..core.familiarity import FamiliarityRecord
from ..models.database import Word, WordFamily, Tag, UserFamilyStatus
from ..models.response import PersistenceFailure
from ..models.schemas import TagInfo
from ..utils import normalize_word

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FamilyRef:
    """单词所属词族"""
    id: int
    root: str


class VocabularyStore:
    """
    基于 SQLAlchemy 的词族熟练度存储

    单用户模式: 所有读写都限定在构造时传入的 user_id
    """

    def __init__(self, session_factory, user_id: int):
        self.session_factory = session_factory
        self.user_id = user_id

    @asynccontextmanager
    async def _session(self, action: str):
        """数据库会话，SQLAlchemy 异常统一转换为 PersistenceFailure"""
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"数据库操作失败 ({action}): {e}")
            raise PersistenceFailure("词库暂时不可用，请稍后再试") from e

    # ========== 词族 ==========

    async def get_family_by_word(self, word: str) -> Optional[int]:
        """查询单词所属词族 ID"""
        ref = (await self.resolve_families([word])).get(normalize_word(word))
        return ref.id if ref else None

    async def resolve_families(self, words: Iterable[str]) -> Dict[str, FamilyRef]:
        """
        批量解析单词所属词族

        Returns:
            {规范化单词: FamilyRef}，未收录的单词不出现在结果中
        """
        normalized = {normalize_word(w) for w in words}
        normalized.discard("")
        if not normalized:
            return {}

        async with self._session("resolve_families") as session:
            result = await session.execute(
                select(Word.text, WordFamily.id, WordFamily.root_word)
                .join(WordFamily, Word.family_id == WordFamily.id)
                .where(Word.text.in_(normalized))
            )
            return {
                text: FamilyRef(id=family_id, root=root)
                for text, family_id, root in result.all()
            }

    async def list_tags_for_family(self, family_id: int) -> List[TagInfo]:
        """获取词族标签"""
        async with self._session("list_tags_for_family") as session:
            result = await session.execute(
                select(Tag)
                .join(Tag.families)
                .where(WordFamily.id == family_id)
                .order_by(Tag.id)
            )
            return [
                TagInfo(id=tag.id, key=tag.key, name=tag.name, description=tag.description)
                for tag in result.scalars().all()
            ]

    # ========== 熟练度 ==========

    async def get_familiarity(self, family_id: int) -> Optional[FamiliarityRecord]:
        """读取单个词族熟练度，不存在返回 None"""
        return (await self.get_familiarities([family_id])).get(family_id)

    async def get_familiarities(self, family_ids: Iterable[int]) -> Dict[int, FamiliarityRecord]:
        """批量读取词族熟练度"""
        ids = set(family_ids)
        if not ids:
            return {}

        async with self._session("get_familiarities") as session:
            result = await session.execute(
                select(UserFamilyStatus).where(
                    UserFamilyStatus.user_id == self.user_id,
                    UserFamilyStatus.family_id.in_(ids),
                )
            )
            return {row.family_id: self._to_record(row) for row in result.scalars().all()}

    async def upsert_familiarity(self, family_id: int, record: FamiliarityRecord) -> None:
        """写入词族熟练度 (不存在则创建)"""
        updated_at = datetime.fromtimestamp(record.updated_at) if record.updated_at else datetime.now()

        async with self._session("upsert_familiarity") as session:
            result = await session.execute(
                select(UserFamilyStatus).where(
                    UserFamilyStatus.user_id == self.user_id,
                    UserFamilyStatus.family_id == family_id,
                )
            )
            row = result.scalar_one_or_none()

            if row is None:
                row = UserFamilyStatus(user_id=self.user_id, family_id=family_id)
                session.add(row)

            row.familiarity_level = record.familiarity_level
            row.status = record.status
            row.lookup_count = record.lookup_count
            row.last_seen_at = updated_at
            row.updated_at = updated_at

            await session.commit()

        logger.info(
            f"词族熟练度已写入: family={family_id}, level={record.familiarity_level}, "
            f"status={record.status.value}"
        )

    @staticmethod
    def _to_record(row: UserFamilyStatus) -> FamiliarityRecord:
        return FamiliarityRecord(
            family_id=row.family_id,
            familiarity_level=row.familiarity_level,
            lookup_count=row.lookup_count or 0,
            updated_at=row.updated_at.timestamp() if row.updated_at else 0.0,
        )
