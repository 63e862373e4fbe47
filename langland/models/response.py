"""
统一响应格式 + 错误码 + 业务异常

所有跨上下文响应都是 {success, data?, error?, message?, addedCount?, updatedCount?}
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional


class ErrorCode(IntEnum):
    """错误码枚举"""
    SUCCESS = 0

    # 客户端错误 1001-1004
    INVALID_PARAMS = 1001
    MISSING_REQUIRED_FIELD = 1002
    UNRECOGNIZED_MESSAGE_TYPE = 1003
    INVALID_FORMAT = 1004

    # 服务端错误 2001-2003
    INTERNAL_ERROR = 2001
    DATABASE_ERROR = 2002
    CACHE_ERROR = 2003

    # 外部服务错误 3001-3003
    AI_SERVICE_UNCONFIGURED = 3001
    AI_SERVICE_ERROR = 3002
    AI_STREAM_CANCELLED = 3003

    # 业务错误 4001-4002
    WORD_NOT_FOUND = 4001
    FAMILY_NOT_FOUND = 4002


class LangLandError(Exception):
    """业务异常基类，message 为可直接展示给用户的文本"""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None, detail: Any = None):
        self.message = message
        if code is not None:
            self.code = code
        self.detail = detail
        super().__init__(message)


class UnrecognizedMessageType(LangLandError):
    """未知消息类型"""
    code = ErrorCode.UNRECOGNIZED_MESSAGE_TYPE


class ValidationError(LangLandError):
    """消息字段缺失或非法"""
    code = ErrorCode.INVALID_PARAMS


class NotFound(LangLandError):
    """单词不属于任何词族 / 词典未收录"""
    code = ErrorCode.WORD_NOT_FOUND


class PersistenceFailure(LangLandError):
    """持久化层 I/O 失败"""
    code = ErrorCode.DATABASE_ERROR


class UpstreamStreamFailure(LangLandError):
    """AI 上游调用失败"""
    code = ErrorCode.AI_SERVICE_ERROR


@dataclass
class MessageResponse:
    """单个请求的响应"""
    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None
    added_count: Optional[int] = None
    updated_count: Optional[int] = None

    def __post_init__(self):
        if not self.success and not self.error:
            self.error = self.message or "未知错误"

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None, **counts) -> "MessageResponse":
        return cls(success=True, data=data, message=message, **counts)

    @classmethod
    def fail(cls, error: str, **counts) -> "MessageResponse":
        return cls(success=False, error=error, **counts)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageResponse":
        """从线上格式解析"""
        return cls(
            success=bool(data.get("success")),
            data=data.get("data"),
            error=data.get("error"),
            message=data.get("message"),
            added_count=data.get("addedCount"),
            updated_count=data.get("updatedCount"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """转换为线上格式 (camelCase, 省略空字段)"""
        result: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        if self.message is not None:
            result["message"] = self.message
        if self.added_count is not None:
            result["addedCount"] = self.added_count
        if self.updated_count is not None:
            result["updatedCount"] = self.updated_count
        return result


def success_response(data: Any = None, message: Optional[str] = None) -> dict:
    """构建成功响应"""
    return MessageResponse.ok(data, message).to_dict()


def error_response(error: str) -> dict:
    """构建错误响应"""
    return MessageResponse.fail(error).to_dict()
