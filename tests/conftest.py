"""
测试公共 fixtures
"""

import sys
import os
from typing import Dict, Iterable, List, Tuple

import pytest
from unittest.mock import AsyncMock, MagicMock

# 确保仓库根目录在 Python 路径中
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from langland.core.familiarity import FamiliarityRecord
from langland.core.relay import StreamRelay
from langland.handlers import HandlerRouter
from langland.models.response import PersistenceFailure
from langland.services.vocabulary_service import FamilyRef
from langland.utils import normalize_word


# 测试词库: 单词 -> (family_id, 词根)
FAMILIES: Dict[str, Tuple[int, str]] = {
    "run": (1, "run"),
    "running": (1, "run"),
    "ran": (1, "run"),
    "runner": (1, "run"),
    "apple": (2, "apple"),
    "apples": (2, "apple"),
    "go": (3, "go"),
    "went": (3, "go"),
    "book": (4, "book"),
    "cat": (5, "cat"),
}


class InMemoryStore:
    """内存版 VocabularyStore"""

    def __init__(self, families: Dict[str, Tuple[int, str]]):
        self.families = families
        self.records: Dict[int, FamiliarityRecord] = {}
        self.upserts: List[FamiliarityRecord] = []
        self.resolve_calls = 0
        self.fail_upserts = False

    def seed(self, family_id: int, level: int, lookup_count: int = 0):
        self.records[family_id] = FamiliarityRecord(
            family_id=family_id,
            familiarity_level=level,
            lookup_count=lookup_count,
            updated_at=1.0,
        )

    async def resolve_families(self, words: Iterable[str]) -> Dict[str, FamilyRef]:
        self.resolve_calls += 1
        result = {}
        for word in words:
            normalized = normalize_word(word)
            if normalized in self.families:
                family_id, root = self.families[normalized]
                result[normalized] = FamilyRef(id=family_id, root=root)
        return result

    async def get_family_by_word(self, word: str):
        entry = self.families.get(normalize_word(word))
        return entry[0] if entry else None

    async def get_familiarity(self, family_id: int):
        return self.records.get(family_id)

    async def get_familiarities(self, family_ids):
        return {fid: self.records[fid] for fid in family_ids if fid in self.records}

    async def upsert_familiarity(self, family_id: int, record: FamiliarityRecord):
        if self.fail_upserts:
            raise PersistenceFailure("词库暂时不可用，请稍后再试")
        self.records[family_id] = record
        self.upserts.append(record)

    async def list_tags_for_family(self, family_id: int):
        return []


class RecordingNotifier:
    """记录广播内容的 notifier"""

    def __init__(self):
        self.events = []

    async def broadcast(self, envelope):
        self.events.append(envelope)
        return 1

    def of_type(self, message_type):
        return [e for e in self.events if e.type == message_type]


class RecordingSender:
    """记录中继发送的事件"""

    def __init__(self, result: bool = True):
        self.sent = []
        self.result = result

    async def __call__(self, client_id, envelope):
        self.sent.append((client_id, envelope))
        return self.result

    @property
    def envelopes(self):
        return [e for _, e in self.sent]


@pytest.fixture
def store():
    return InMemoryStore(FAMILIES)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def relay(sender):
    return StreamRelay(sender, send_timeout=1.0)


@pytest.fixture
def ai_service():
    svc = MagicMock()
    svc.is_configured = True
    svc.enrich = AsyncMock()
    svc.translate = AsyncMock()
    svc.define_word = AsyncMock(return_value=[])
    return svc


@pytest.fixture
def dictionary_service():
    svc = MagicMock()
    svc.lookup = AsyncMock()
    return svc


@pytest.fixture
def tracker():
    """默认每次查词都达到阈值"""
    t = MagicMock()
    t.record = AsyncMock(return_value=True)
    t.reset = AsyncMock()
    return t


@pytest.fixture
def router(store, dictionary_service, ai_service, relay, notifier, tracker):
    return HandlerRouter(
        store,
        dictionary_service,
        ai_service,
        relay,
        notifier=notifier,
        tracker=tracker,
    )
