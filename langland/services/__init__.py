"""
LangLand 服务层

- redis_service: Redis 连接与计数器
- vocabulary_service: 词族熟练度持久化
- dictionary_service: 词典查询 (AI 兜底)
"""

from .redis_service import RedisService, init_redis_service, close_redis_service
from .vocabulary_service import VocabularyStore, FamilyRef
from .dictionary_service import DictionaryService, placeholder_entry

__all__ = [
    "RedisService",
    "init_redis_service",
    "close_redis_service",
    "VocabularyStore",
    "FamilyRef",
    "DictionaryService",
    "placeholder_entry",
]
