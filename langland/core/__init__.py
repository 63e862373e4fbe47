"""
LangLand 核心模块

- familiarity: 词族熟练度状态模型
- relay: 流式中继
- llm: AI 服务
- encounters: 查词计数
"""

from .familiarity import (
    FamiliarityRecord,
    status_for_level,
    resolve_level,
    apply_update,
    increment,
    ignore,
    merge,
)
from .relay import StreamRelay, StreamKind, StreamEvents, StreamSession
from .llm import AIService, parse_translation_content
from .encounters import EncounterTracker

__all__ = [
    "FamiliarityRecord",
    "status_for_level",
    "resolve_level",
    "apply_update",
    "increment",
    "ignore",
    "merge",
    "StreamRelay",
    "StreamKind",
    "StreamEvents",
    "StreamSession",
    "AIService",
    "parse_translation_content",
    "EncounterTracker",
]
