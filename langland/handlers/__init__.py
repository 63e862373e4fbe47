"""
LangLand 消息处理器
"""

from .base import BaseHandler
from .cache import FamiliarityCache
from .vocabulary import VocabularyHandler
from .dictionary import DictionaryHandler
from .ai import AIHandler, enrich_events, translate_events
from .registry import HandlerRouter

__all__ = [
    "BaseHandler",
    "FamiliarityCache",
    "VocabularyHandler",
    "DictionaryHandler",
    "AIHandler",
    "enrich_events",
    "translate_events",
    "HandlerRouter",
]
