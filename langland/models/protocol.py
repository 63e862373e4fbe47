"""
跨上下文通信协议数据模型

后台进程 <-> 页面 content script 之间交换的消息信封
WebSocket 消息格式: JSON 文本帧 (request / response / event)

每种消息类型对应一个不可变的 dataclass，只包含该类型需要的字段。
线上字段名为 camelCase (familiarityLevel 等)，与扩展端保持一致。
"""

import json
import uuid
from dataclasses import dataclass, field, fields, MISSING
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Optional, Tuple, Type, Union

from .response import UnrecognizedMessageType, ValidationError


class MessageType(str, Enum):
    """消息类型枚举"""
    # 请求 (content script -> background)
    QUERY_WORDS_STATUS = "QUERY_WORDS_STATUS"
    GET_WORD_DETAILS = "GET_WORD_DETAILS"                  # 旧接口，保留兼容
    GET_INTERNAL_DEFINITION = "GET_INTERNAL_DEFINITION"
    UPDATE_WORD_STATUS = "UPDATE_WORD_STATUS"
    IGNORE_WORD = "IGNORE_WORD"
    BATCH_IGNORE_WORDS = "BATCH_IGNORE_WORDS"
    BATCH_UPDATE_WORD_STATUS = "BATCH_UPDATE_WORD_STATUS"
    ENRICH_WORD = "ENRICH_WORD"
    ENRICH_WORD_STREAM = "ENRICH_WORD_STREAM"
    TRANSLATE_SENTENCE = "TRANSLATE_SENTENCE"
    TRANSLATE_SENTENCE_STREAM = "TRANSLATE_SENTENCE_STREAM"
    AUTO_INCREASE_FAMILIARITY = "AUTO_INCREASE_FAMILIARITY"  # 被动查词上报

    # 通知 (background -> content script)
    WORD_STATUS_UPDATED = "WORD_STATUS_UPDATED"
    WORD_IGNORED = "WORD_IGNORED"
    ENRICH_STREAM_DATA = "ENRICH_STREAM_DATA"
    ENRICH_STREAM_COMPLETE = "ENRICH_STREAM_COMPLETE"
    ENRICH_STREAM_ERROR = "ENRICH_STREAM_ERROR"
    TRANSLATE_STREAM_DATA = "TRANSLATE_STREAM_DATA"
    TRANSLATE_STREAM_COMPLETE = "TRANSLATE_STREAM_COMPLETE"
    TRANSLATE_STREAM_ERROR = "TRANSLATE_STREAM_ERROR"


class FamiliarityStatus(str, Enum):
    """单词熟悉度状态 (熟练度等级的粗粒度投影)"""
    UNKNOWN = "unknown"
    LEARNING = "learning"
    KNOWN = "known"


class SentenceAnalysisMode(str, Enum):
    """长难句分析模式"""
    ALWAYS = "always"
    SMART = "smart"
    OFF = "off"


# python 字段名 -> 线上字段名
_WIRE_NAMES = {
    "familiarity_level": "familiarityLevel",
    "enhanced_phrase_detection": "enhancedPhraseDetection",
    "sentence_analysis_mode": "sentenceAnalysisMode",
    "sentence_analysis": "sentenceAnalysis",
    "family_root": "familyRoot",
    "session_id": "sessionId",
}


def wire_name(name: str) -> str:
    return _WIRE_NAMES.get(name, name)


# ============================================
# 字段转换
# ============================================

def _as_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"字段 {wire_name(name)} 必须是字符串")
    return value


def _as_words(name: str, value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)) or not all(isinstance(w, str) for w in value):
        raise ValidationError(f"字段 {wire_name(name)} 必须是字符串列表")
    return tuple(value)


def _as_status(name: str, value: Any) -> FamiliarityStatus:
    try:
        return FamiliarityStatus(value)
    except ValueError:
        raise ValidationError(f"无效的状态: {value}")


def _as_level(name: str, value: Any) -> int:
    # bool 是 int 的子类，需要排除
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"熟练度必须是整数: {value}")
    return value


def _as_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"字段 {wire_name(name)} 必须是布尔值")
    return value


def _as_mode(name: str, value: Any) -> SentenceAnalysisMode:
    try:
        return SentenceAnalysisMode(value)
    except ValueError:
        raise ValidationError(f"无效的长难句分析模式: {value}")


@dataclass(frozen=True)
class UpdateItem:
    """
    批量更新中的一项 (word, status?, familiarityLevel?)

    解析宽松: 单项格式错误只记录在 error 中，不影响同批其他项
    """
    word: str
    status: Optional[FamiliarityStatus] = None
    familiarity_level: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def parse(cls, raw: Any) -> "UpdateItem":
        if not isinstance(raw, dict):
            return cls(word="", error="批量更新项必须是对象")

        word = raw.get("word")
        if not isinstance(word, str) or not word.strip():
            return cls(word=word if isinstance(word, str) else "", error="缺少字段: word")

        try:
            status = _as_status("status", raw["status"]) if raw.get("status") is not None else None
            level = (
                _as_level("familiarity_level", raw["familiarityLevel"])
                if raw.get("familiarityLevel") is not None else None
            )
        except ValidationError as e:
            return cls(word=word, error=e.message)

        return cls(word=word, status=status, familiarity_level=level)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"word": self.word}
        if self.status is not None:
            result["status"] = self.status.value
        if self.familiarity_level is not None:
            result["familiarityLevel"] = self.familiarity_level
        return result


def _as_items(name: str, value: Any) -> Tuple[UpdateItem, ...]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError("字段 items 必须是列表")
    return tuple(item if isinstance(item, UpdateItem) else UpdateItem.parse(item) for item in value)


_CONVERTERS: Dict[str, Callable[[str, Any], Any]] = {
    "words": _as_words,
    "items": _as_items,
    "status": _as_status,
    "familiarity_level": _as_level,
    "enhanced_phrase_detection": _as_bool,
    "sentence_analysis_mode": _as_mode,
}

# 流式内容块可以是纯空白 (换行等)
_BLANK_ALLOWED = frozenset({"content"})


# ============================================
# 消息信封
# ============================================

ENVELOPE_TYPES: Dict[MessageType, Type["Envelope"]] = {}


def register(message_type: MessageType):
    """注册消息类型对应的信封类"""
    def decorator(cls):
        cls.type = message_type
        ENVELOPE_TYPES[message_type] = cls
        return cls
    return decorator


@dataclass(frozen=True)
class Envelope:
    """
    消息信封基类

    没有默认值的字段为必填字段，解析时缺失即 ValidationError
    """
    type: ClassVar[MessageType]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Envelope":
        kwargs = {}
        for f in fields(cls):
            wire = wire_name(f.name)
            value = data.get(wire)
            required = f.default is MISSING and f.default_factory is MISSING

            if value is None:
                if required:
                    raise ValidationError(f"缺少字段: {wire}")
                continue

            converter = _CONVERTERS.get(f.name, _as_str)
            value = converter(f.name, value)
            if required and f.name not in _BLANK_ALLOWED and isinstance(value, str) and not value.strip():
                raise ValidationError(f"缺少字段: {wire}")
            kwargs[f.name] = value

        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """转换为线上格式"""
        result: Dict[str, Any] = {"type": self.type.value}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, tuple):
                value = [v.to_dict() if isinstance(v, UpdateItem) else v for v in value]
            result[wire_name(f.name)] = value
        return result


# ---------- 词汇状态 ----------

@register(MessageType.QUERY_WORDS_STATUS)
@dataclass(frozen=True)
class QueryWordsStatus(Envelope):
    words: Tuple[str, ...]


@register(MessageType.UPDATE_WORD_STATUS)
@dataclass(frozen=True)
class UpdateWordStatus(Envelope):
    word: str
    status: Optional[FamiliarityStatus] = None
    familiarity_level: Optional[int] = None


@register(MessageType.BATCH_UPDATE_WORD_STATUS)
@dataclass(frozen=True)
class BatchUpdateWordStatus(Envelope):
    """
    两种格式:
    - items: [{word, status?, familiarityLevel?}, ...]
    - 旧格式: words + 统一的 status / familiarityLevel
    """
    items: Tuple[UpdateItem, ...] = ()
    words: Tuple[str, ...] = ()
    status: Optional[FamiliarityStatus] = None
    familiarity_level: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchUpdateWordStatus":
        envelope = super().from_dict(data)
        if not envelope.items and not envelope.words:
            raise ValidationError("缺少字段: items 或 words")
        return envelope

    def expanded_items(self) -> Tuple[UpdateItem, ...]:
        """合并两种格式为统一的更新项列表"""
        legacy = tuple(
            UpdateItem(word=w, status=self.status, familiarity_level=self.familiarity_level)
            if w.strip() else UpdateItem(word=w, error="缺少字段: word")
            for w in self.words
        )
        return self.items + legacy


@register(MessageType.IGNORE_WORD)
@dataclass(frozen=True)
class IgnoreWord(Envelope):
    word: str


@register(MessageType.BATCH_IGNORE_WORDS)
@dataclass(frozen=True)
class BatchIgnoreWords(Envelope):
    words: Tuple[str, ...]


@register(MessageType.AUTO_INCREASE_FAMILIARITY)
@dataclass(frozen=True)
class AutoIncreaseFamiliarity(Envelope):
    word: str


# ---------- 词典 ----------

@register(MessageType.GET_WORD_DETAILS)
@dataclass(frozen=True)
class GetWordDetails(Envelope):
    word: str


@register(MessageType.GET_INTERNAL_DEFINITION)
@dataclass(frozen=True)
class GetInternalDefinition(Envelope):
    word: str


# ---------- AI ----------

@register(MessageType.ENRICH_WORD)
@dataclass(frozen=True)
class EnrichWord(Envelope):
    word: str
    context: str
    enhanced_phrase_detection: bool = False


@register(MessageType.ENRICH_WORD_STREAM)
@dataclass(frozen=True)
class EnrichWordStream(Envelope):
    word: str
    context: str
    enhanced_phrase_detection: bool = True


@register(MessageType.TRANSLATE_SENTENCE)
@dataclass(frozen=True)
class TranslateSentence(Envelope):
    context: str                                    # 段落原文
    sentence: Optional[str] = None                  # 目标句子 (长难句分析)
    sentence_analysis_mode: SentenceAnalysisMode = SentenceAnalysisMode.OFF


@register(MessageType.TRANSLATE_SENTENCE_STREAM)
@dataclass(frozen=True)
class TranslateSentenceStream(Envelope):
    context: str
    sentence: Optional[str] = None
    sentence_analysis_mode: SentenceAnalysisMode = SentenceAnalysisMode.OFF


# ---------- 通知 ----------

@register(MessageType.WORD_STATUS_UPDATED)
@dataclass(frozen=True)
class WordStatusUpdated(Envelope):
    word: str
    status: FamiliarityStatus
    familiarity_level: int
    family_root: Optional[str] = None


@register(MessageType.WORD_IGNORED)
@dataclass(frozen=True)
class WordIgnored(Envelope):
    word: str


@register(MessageType.ENRICH_STREAM_DATA)
@dataclass(frozen=True)
class EnrichStreamData(Envelope):
    word: str
    content: str
    session_id: Optional[str] = None


@register(MessageType.ENRICH_STREAM_COMPLETE)
@dataclass(frozen=True)
class EnrichStreamComplete(Envelope):
    word: str
    content: Optional[str] = None
    session_id: Optional[str] = None


@register(MessageType.ENRICH_STREAM_ERROR)
@dataclass(frozen=True)
class EnrichStreamError(Envelope):
    word: str
    error: str
    session_id: Optional[str] = None


@register(MessageType.TRANSLATE_STREAM_DATA)
@dataclass(frozen=True)
class TranslateStreamData(Envelope):
    paragraph: str
    content: str
    sentence: Optional[str] = None
    session_id: Optional[str] = None


@register(MessageType.TRANSLATE_STREAM_COMPLETE)
@dataclass(frozen=True)
class TranslateStreamComplete(Envelope):
    paragraph: str
    sentence: Optional[str] = None
    content: Optional[str] = None
    translation: Optional[str] = None
    sentence_analysis: Optional[str] = None
    session_id: Optional[str] = None


@register(MessageType.TRANSLATE_STREAM_ERROR)
@dataclass(frozen=True)
class TranslateStreamError(Envelope):
    paragraph: str
    error: str
    sentence: Optional[str] = None
    session_id: Optional[str] = None


REQUEST_TYPES = frozenset({
    MessageType.QUERY_WORDS_STATUS,
    MessageType.GET_WORD_DETAILS,
    MessageType.GET_INTERNAL_DEFINITION,
    MessageType.UPDATE_WORD_STATUS,
    MessageType.IGNORE_WORD,
    MessageType.BATCH_IGNORE_WORDS,
    MessageType.BATCH_UPDATE_WORD_STATUS,
    MessageType.ENRICH_WORD,
    MessageType.ENRICH_WORD_STREAM,
    MessageType.TRANSLATE_SENTENCE,
    MessageType.TRANSLATE_SENTENCE_STREAM,
    MessageType.AUTO_INCREASE_FAMILIARITY,
})

NOTIFICATION_TYPES = frozenset(set(MessageType) - REQUEST_TYPES)


def parse_envelope(data: Any) -> Envelope:
    """
    从字典解析消息信封

    Raises:
        ValidationError: 结构非法或缺少必填字段
        UnrecognizedMessageType: type 不在已知类型中
    """
    if not isinstance(data, dict):
        raise ValidationError("消息必须是 JSON 对象")

    raw_type = data.get("type")
    if not raw_type:
        raise ValidationError("缺少字段: type")

    try:
        message_type = MessageType(raw_type)
    except ValueError:
        raise UnrecognizedMessageType(f"未知消息类型: {raw_type}")

    return ENVELOPE_TYPES[message_type].from_dict(data)


# ============================================
# 传输帧
# ============================================

class FrameKind(str, Enum):
    """帧类型"""
    REQUEST = "request"      # content script -> background (需要响应)
    RESPONSE = "response"    # background -> content script (对应某个请求)
    EVENT = "event"          # background -> content script (主动通知)


@dataclass
class RequestFrame:
    """请求帧，message 保留原始字典以便对未知类型也能回复"""
    message: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def of(cls, envelope: Envelope, request_id: Optional[str] = None) -> "RequestFrame":
        if request_id:
            return cls(message=envelope.to_dict(), id=request_id)
        return cls(message=envelope.to_dict())

    def to_json(self) -> str:
        return json.dumps(
            {"kind": FrameKind.REQUEST.value, "id": self.id, "message": self.message},
            ensure_ascii=False,
        )


@dataclass
class ResponseFrame:
    """响应帧"""
    id: str
    response: Dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(
            {"kind": FrameKind.RESPONSE.value, "id": self.id, "response": self.response},
            ensure_ascii=False,
        )


@dataclass
class EventFrame:
    """通知帧"""
    message: Dict[str, Any]

    @classmethod
    def of(cls, envelope: Envelope) -> "EventFrame":
        return cls(message=envelope.to_dict())

    def to_json(self) -> str:
        return json.dumps(
            {"kind": FrameKind.EVENT.value, "message": self.message},
            ensure_ascii=False,
        )


Frame = Union[RequestFrame, ResponseFrame, EventFrame]


def parse_frame(data: Union[str, Dict[str, Any]]) -> Frame:
    """解析 JSON 文本帧"""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            raise ValidationError("消息不是合法的 JSON")

    if not isinstance(data, dict):
        raise ValidationError("消息帧必须是 JSON 对象")

    kind = data.get("kind")
    if kind == FrameKind.REQUEST.value:
        if not data.get("id"):
            raise ValidationError("请求帧缺少 id")
        return RequestFrame(id=str(data["id"]), message=data.get("message") or {})
    if kind == FrameKind.RESPONSE.value:
        return ResponseFrame(id=str(data.get("id")), response=data.get("response") or {})
    if kind == FrameKind.EVENT.value:
        return EventFrame(message=data.get("message") or {})

    raise ValidationError(f"未知帧类型: {kind}")
