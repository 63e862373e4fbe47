"""
词典查询服务

查询顺序:
1. 单词 -> 词族词根 (VocabularyStore) -> 数据库词典条目 (带词族标签)
2. 数据库未收录时由 AI 生成简短中文释义 (source="ai")
3. 两者都失败时 NotFound
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from ..models import database as db
from ..models.response import LangLandError, NotFound, PersistenceFailure
from ..models.schemas import (
    DictionaryEntry,
    DefinitionEntry,
    Sense,
    ChineseEntry,
)
from ..utils import normalize_word

logger = logging.getLogger(__name__)


class DictionaryService:
    """
    词典查询

    单词 -> 词族与词族标签由 VocabularyStore 提供，这里只读词典条目
    """

    def __init__(self, session_factory, store, ai_service=None):
        self.session_factory = session_factory
        self.store = store
        self.ai_service = ai_service

    async def find_word(self, word: str) -> Optional[DictionaryEntry]:
        """
        数据库查询

        单词属于某个词族时按词根查询词典，并附带词族标签
        """
        search_word = normalize_word(word)
        if not search_word:
            return None

        ref = (await self.store.resolve_families([search_word])).get(search_word)
        query_word = ref.root if ref else search_word

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(db.DictionaryEntry)
                    .options(
                        selectinload(db.DictionaryEntry.entries)
                        .selectinload(db.DefinitionEntry.senses)
                    )
                    .where(db.DictionaryEntry.word == query_word)
                )
                entry = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"词典查询失败 ({search_word}): {e}")
            raise PersistenceFailure("词典暂时不可用，请稍后再试") from e

        if entry is None:
            return None

        tags = await self.store.list_tags_for_family(ref.id) if ref else []
        logger.debug(f"词典命中: {search_word} -> {query_word}, tags={len(tags)}")
        return DictionaryEntry(
            id=entry.id,
            word=entry.word,
            phonetics=entry.phonetics or [],
            audio=entry.audio or [],
            forms=entry.forms or [],
            entries=[
                DefinitionEntry(
                    pos=d.pos,
                    senses=[
                        Sense(glosses=s.glosses or [], examples=s.examples or [])
                        for s in d.senses
                    ],
                )
                for d in entry.entries
            ],
            chinese_entries_short=(
                [ChineseEntry.model_validate(c) for c in entry.chinese_entries_short]
                if entry.chinese_entries_short else None
            ),
            source="db",
            tags=tags,
        )

    async def ai_definition(self, word: str) -> Optional[DictionaryEntry]:
        """AI 兜底释义，无结果返回 None"""
        if self.ai_service is None:
            return None

        try:
            chinese_entries = await self.ai_service.define_word(word)
        except LangLandError as e:
            logger.warning(f"AI 兜底释义失败 ({word}): {e.message}")
            return None

        if not chinese_entries:
            return None

        logger.info(f"使用 AI 释义: {word}")
        return DictionaryEntry(
            id=-1,
            word=normalize_word(word),
            chinese_entries_short=chinese_entries,
            source="ai",
        )

    async def lookup(self, word: str) -> DictionaryEntry:
        """
        查询单词释义 (数据库优先，AI 兜底)

        Raises:
            NotFound: 数据库和 AI 都没有结果
            PersistenceFailure: 数据库不可用
        """
        entry = await self.find_word(word)
        if entry is not None:
            return entry

        entry = await self.ai_definition(word)
        if entry is not None:
            return entry

        raise NotFound(f"词典中未找到单词: {word}")


def placeholder_entry(word: str, error: str) -> DictionaryEntry:
    """查询失败时的占位条目 (旧接口 GET_WORD_DETAILS)"""
    return DictionaryEntry(
        id=-1,
        word=word,
        entries=[DefinitionEntry(pos="error", senses=[Sense(glosses=[error])])],
        source="db",
    )
