"""
词汇熟练度处理器

查询 / 更新 / 忽略 / 被动查词提升
"""

import logging
from typing import Any, Dict, List, Optional

from ..core import familiarity
from ..core.familiarity import FamiliarityRecord
from ..models.protocol import (
    MessageType,
    FamiliarityStatus,
    Envelope,
    UpdateItem,
    WordStatusUpdated,
    WordIgnored,
)
from ..models.response import LangLandError, MessageResponse, NotFound, ValidationError
from ..models.schemas import WordFamilyInfo
from ..services.vocabulary_service import FamilyRef
from ..utils import normalize_word
from .base import BaseHandler
from .cache import FamiliarityCache

logger = logging.getLogger(__name__)


class VocabularyHandler(BaseHandler):
    """词汇熟练度处理器"""

    def __init__(self, cache: FamiliarityCache, store, tracker=None, notifier=None):
        super().__init__(notifier)
        self.cache = cache
        self.store = store
        self.tracker = tracker

    async def handle(self, envelope: Envelope, client_id: str) -> MessageResponse:
        message_type = envelope.type

        if message_type == MessageType.QUERY_WORDS_STATUS:
            return await self._handle_query(envelope.words)

        if message_type == MessageType.UPDATE_WORD_STATUS:
            return await self._handle_update(
                envelope.word, envelope.status, envelope.familiarity_level
            )

        if message_type == MessageType.BATCH_UPDATE_WORD_STATUS:
            return await self._handle_batch_update(envelope.expanded_items())

        if message_type == MessageType.IGNORE_WORD:
            return await self._handle_ignore(envelope.word)

        if message_type == MessageType.BATCH_IGNORE_WORDS:
            return await self._handle_batch_ignore(envelope.words)

        if message_type == MessageType.AUTO_INCREASE_FAMILIARITY:
            return await self._handle_encounter(envelope.word)

        raise ValueError(f"VocabularyHandler 不处理 {message_type.value}")

    # =====================================================
    # 查询
    # =====================================================

    async def _handle_query(self, words) -> MessageResponse:
        """
        批量查询单词熟练度

        所有单词一次解析词族，同一词族只读取一次；
        结果按原始单词 (保留大小写) 为键
        """
        refs = await self.store.resolve_families(words)
        records = await self.cache.read_many({ref.id for ref in refs.values()})

        result: Dict[str, Any] = {}
        for word in words:
            normalized = normalize_word(word)
            ref = refs.get(normalized)
            if ref is None:
                info = WordFamilyInfo(
                    status=FamiliarityStatus.UNKNOWN,
                    family_root=normalized,
                    familiarity_level=familiarity.MIN_LEVEL,
                )
            else:
                record = records.get(ref.id) or FamiliarityRecord.empty(ref.id)
                info = WordFamilyInfo(
                    status=record.status,
                    family_root=ref.root,
                    familiarity_level=record.familiarity_level,
                )
            result[word] = info.to_wire()

        logger.debug(f"查询 {len(words)} 个单词, 涉及 {len(refs)} 个已收录单词")
        return MessageResponse.ok(result)

    # =====================================================
    # 更新
    # =====================================================

    async def _resolve(self, word: str, refs: Optional[Dict[str, FamilyRef]] = None) -> FamilyRef:
        """单词 -> 词族，未收录时 NotFound"""
        normalized = normalize_word(word)
        if refs is None:
            refs = await self.store.resolve_families([normalized])
        ref = refs.get(normalized)
        if ref is None:
            raise NotFound(f"单词 {word} 未收录到任何词族")
        return ref

    @staticmethod
    def _validate(status: Optional[FamiliarityStatus], level: Optional[int]):
        """访问数据库前先校验参数"""
        if status is None and level is None:
            raise ValidationError("status 和 familiarityLevel 至少需要提供一个")
        if level is not None:
            familiarity.resolve_level(familiarity.MIN_LEVEL, status, level)

    async def _apply_update(
        self,
        word: str,
        ref: FamilyRef,
        status: Optional[FamiliarityStatus],
        level: Optional[int],
    ) -> FamiliarityRecord:
        """在词族锁内完成读-改-写，成功后广播"""
        async with self.cache.lock(ref.id):
            current = await self.cache.load(ref.id) or FamiliarityRecord.empty(ref.id)
            updated = familiarity.apply_update(current, status, level)
            await self.cache.write(updated)

        if self.tracker:
            await self.tracker.reset(ref.id)

        logger.info(
            f"熟练度更新: {word} ({ref.root}) "
            f"{current.familiarity_level} -> {updated.familiarity_level}"
        )
        await self.notify(WordStatusUpdated(
            word=word,
            status=updated.status,
            familiarity_level=updated.familiarity_level,
            family_root=ref.root,
        ))
        return updated

    async def _handle_update(
        self,
        word: str,
        status: Optional[FamiliarityStatus],
        level: Optional[int],
    ) -> MessageResponse:
        self._validate(status, level)
        ref = await self._resolve(word)
        updated = await self._apply_update(word, ref, status, level)

        return MessageResponse.ok({
            "word": word,
            "familyRoot": ref.root,
            "status": updated.status.value,
            "familiarityLevel": updated.familiarity_level,
        })

    async def _handle_batch_update(self, items: List[UpdateItem]) -> MessageResponse:
        """
        批量更新

        每项独立校验和写入，失败项收集到 data.failed，不中断整批
        """
        failed: List[Dict[str, str]] = []
        updated: List[Dict[str, Any]] = []

        valid = [item for item in items if not item.error]
        for item in items:
            if item.error:
                failed.append({"word": item.word, "error": item.error})

        refs = await self.store.resolve_families(item.word for item in valid) if valid else {}

        for item in valid:
            try:
                self._validate(item.status, item.familiarity_level)
                ref = await self._resolve(item.word, refs)
                record = await self._apply_update(item.word, ref, item.status, item.familiarity_level)
            except LangLandError as e:
                failed.append({"word": item.word, "error": e.message})
                continue
            updated.append({
                "word": item.word,
                "status": record.status.value,
                "familiarityLevel": record.familiarity_level,
            })

        logger.info(f"批量更新完成: 成功 {len(updated)}, 失败 {len(failed)}")
        return MessageResponse.ok(
            {"updated": updated, "failed": failed},
            updated_count=len(updated),
        )

    # =====================================================
    # 忽略
    # =====================================================

    async def _ignore_family(self, ref: FamilyRef) -> bool:
        """标记词族为已掌握，返回是否发生变化"""
        async with self.cache.lock(ref.id):
            current = await self.cache.load(ref.id) or FamiliarityRecord.empty(ref.id)
            ignored = familiarity.ignore(current)
            if ignored is current:
                return False
            await self.cache.write(ignored)
        return True

    async def _handle_ignore(self, word: str) -> MessageResponse:
        ref = await self._resolve(word)
        changed = await self._ignore_family(ref)

        if changed:
            logger.info(f"忽略单词: {word} ({ref.root})")
            await self.notify(WordIgnored(word=word))

        return MessageResponse.ok({
            "word": word,
            "familyRoot": ref.root,
            "status": FamiliarityStatus.KNOWN.value,
            "familiarityLevel": familiarity.MAX_LEVEL,
            "alreadyIgnored": not changed,
        })

    async def _handle_batch_ignore(self, words) -> MessageResponse:
        """
        批量忽略

        addedCount 为新标记为已掌握的词族数，同一批次中的同族单词只计一次
        """
        refs = await self.store.resolve_families(words)

        families: Dict[int, FamilyRef] = {}
        members: Dict[int, List[str]] = {}
        failed: List[Dict[str, str]] = []

        for word in words:
            ref = refs.get(normalize_word(word))
            if ref is None:
                failed.append({"word": word, "error": f"单词 {word} 未收录到任何词族"})
                continue
            families.setdefault(ref.id, ref)
            group = members.setdefault(ref.id, [])
            if word not in group:
                group.append(word)

        added = 0
        for family_id, ref in families.items():
            try:
                changed = await self._ignore_family(ref)
            except LangLandError as e:
                failed.extend({"word": w, "error": e.message} for w in members[family_id])
                continue
            if not changed:
                continue
            added += 1
            for word in members[family_id]:
                await self.notify(WordIgnored(word=word))

        logger.info(f"批量忽略: {len(words)} 个单词, 新增 {added} 个词族")
        return MessageResponse.ok({"failed": failed}, added_count=added)

    # =====================================================
    # 被动查词
    # =====================================================

    async def _handle_encounter(self, word: str) -> MessageResponse:
        """
        被动查词上报

        只有已在学习中的词族才会提升，是否达到阈值由查词计数决定；
        未标记或仍为 unknown 的词族不记录查词次数
        """
        normalized = normalize_word(word)
        ref = (await self.store.resolve_families([normalized])).get(normalized)
        if ref is None:
            return self._encounter_ack(False, FamiliarityRecord.empty(0))

        async with self.cache.lock(ref.id):
            current = await self.cache.load(ref.id)
            if current is None:
                return self._encounter_ack(False, FamiliarityRecord.empty(ref.id))
            if current.status == FamiliarityStatus.UNKNOWN:
                return self._encounter_ack(False, current)

            record = familiarity.record_lookup(current)
            increased = False
            if record.status == FamiliarityStatus.LEARNING:
                reached = await self.tracker.record(ref.id) if self.tracker else True
                if reached:
                    record = familiarity.increment(record)
                    increased = True

            await self.cache.write(record)

        if increased:
            logger.info(
                f"查词提升熟练度: {word} ({ref.root}) "
                f"{current.familiarity_level} -> {record.familiarity_level}"
            )
            await self.notify(WordStatusUpdated(
                word=word,
                status=record.status,
                familiarity_level=record.familiarity_level,
                family_root=ref.root,
            ))

        return self._encounter_ack(increased, record)

    @staticmethod
    def _encounter_ack(increased: bool, record: FamiliarityRecord) -> MessageResponse:
        return MessageResponse.ok({
            "increased": increased,
            "familiarityLevel": record.familiarity_level,
            "status": record.status.value,
        })
