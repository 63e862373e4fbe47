"""
LangLand 数据模型层

包含:
- protocol: 跨上下文消息信封与传输帧
- response: 统一响应与错误分类
- schemas: 响应数据的 Pydantic 模型
- database: SQLAlchemy 数据库模型
"""

from .protocol import (
    MessageType,
    FamiliarityStatus,
    SentenceAnalysisMode,
    Envelope,
    UpdateItem,
    RequestFrame,
    ResponseFrame,
    EventFrame,
    parse_envelope,
    parse_frame,
)
from .response import (
    ErrorCode,
    LangLandError,
    UnrecognizedMessageType,
    ValidationError,
    NotFound,
    PersistenceFailure,
    UpstreamStreamFailure,
    MessageResponse,
)
from .database import (
    Base,
    WordFamily,
    Word,
    Tag,
    UserFamilyStatus,
)

__all__ = [
    # Protocol
    "MessageType",
    "FamiliarityStatus",
    "SentenceAnalysisMode",
    "Envelope",
    "UpdateItem",
    "RequestFrame",
    "ResponseFrame",
    "EventFrame",
    "parse_envelope",
    "parse_frame",
    # Errors / responses
    "ErrorCode",
    "LangLandError",
    "UnrecognizedMessageType",
    "ValidationError",
    "NotFound",
    "PersistenceFailure",
    "UpstreamStreamFailure",
    "MessageResponse",
    # Database models
    "Base",
    "WordFamily",
    "Word",
    "Tag",
    "UserFamilyStatus",
]
