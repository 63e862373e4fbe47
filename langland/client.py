"""
Content script 客户端

页面侧的消息消费约定:
- request: 发送请求并等待对应响应 (按帧 id 关联)
- feed: 接收后台推送的帧，完成等待中的请求并分发通知
- 本地状态: word_states (单词熟练度) 与 streams (流式内容，按 sessionId 区分会话)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .core.familiarity import MAX_LEVEL
from .models.protocol import (
    MessageType,
    FamiliarityStatus,
    Envelope,
    RequestFrame,
    ResponseFrame,
    EventFrame,
    parse_envelope,
    parse_frame,
)
from .models.response import LangLandError, MessageResponse
from .models.schemas import WordFamilyInfo
from .utils import normalize_word

logger = logging.getLogger(__name__)

Listener = Callable[[Envelope], None]
StreamKey = Tuple[str, str]

_STREAM_EVENTS = {
    MessageType.ENRICH_STREAM_DATA: ("enrich", "data"),
    MessageType.ENRICH_STREAM_COMPLETE: ("enrich", "complete"),
    MessageType.ENRICH_STREAM_ERROR: ("enrich", "error"),
    MessageType.TRANSLATE_STREAM_DATA: ("translate", "data"),
    MessageType.TRANSLATE_STREAM_COMPLETE: ("translate", "complete"),
    MessageType.TRANSLATE_STREAM_ERROR: ("translate", "error"),
}


@dataclass
class StreamState:
    """页面侧的流式内容"""
    subject: str
    chunks: List[str] = field(default_factory=list)
    done: bool = False
    error: Optional[str] = None
    result: Optional[Envelope] = None

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class ContentScriptClient:
    """
    Content script 客户端

    send_text 由宿主提供 (如 websocket.send)，feed 接收后台发来的帧
    """

    def __init__(
        self,
        send_text: Callable[[str], Awaitable[Any]],
        request_timeout: float = 30.0,
    ):
        self._send_text = send_text
        self.request_timeout = request_timeout
        self._pending: Dict[str, asyncio.Future] = {}
        self._listeners: List[Tuple[Listener, Optional[frozenset]]] = []
        self.word_states: Dict[str, WordFamilyInfo] = {}
        self.streams: Dict[StreamKey, StreamState] = {}
        self.closed = False

    # =====================================================
    # 请求
    # =====================================================

    async def request(self, envelope: Envelope, timeout: Optional[float] = None) -> MessageResponse:
        """
        发送请求并等待响应

        Raises:
            asyncio.TimeoutError: 超时未收到响应
            ConnectionError: 客户端已关闭
        """
        if self.closed:
            raise ConnectionError("客户端已关闭")

        frame = RequestFrame.of(envelope)
        future = asyncio.get_running_loop().create_future()
        self._pending[frame.id] = future

        try:
            await self._send_text(frame.to_json())
            raw = await asyncio.wait_for(future, timeout=timeout or self.request_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"请求超时: {envelope.type.value} ({frame.id})")
            raise
        finally:
            self._pending.pop(frame.id, None)

        response = MessageResponse.from_dict(raw)
        if response.success and envelope.type == MessageType.QUERY_WORDS_STATUS:
            self._apply_query_result(response.data or {})
        return response

    def _apply_query_result(self, data: Dict[str, Any]):
        for word, info in data.items():
            try:
                self.word_states[word] = WordFamilyInfo.model_validate(info)
            except ValueError as e:
                logger.warning(f"无法解析单词状态 {word}: {e}")

    # =====================================================
    # 接收
    # =====================================================

    def feed(self, data: Union[str, Dict[str, Any], ResponseFrame, EventFrame]):
        """接收一帧数据"""
        if self.closed:
            return

        if isinstance(data, (ResponseFrame, EventFrame)):
            frame = data
        else:
            try:
                frame = parse_frame(data)
            except LangLandError as e:
                logger.warning(f"丢弃无法解析的帧: {e.message}")
                return

        if isinstance(frame, ResponseFrame):
            future = self._pending.get(frame.id)
            if future is None or future.done():
                logger.debug(f"收到无对应请求的响应: {frame.id}")
                return
            future.set_result(frame.response)
            return

        if isinstance(frame, EventFrame):
            try:
                envelope = parse_envelope(frame.message)
            except LangLandError as e:
                logger.warning(f"丢弃无法解析的通知: {e.message}")
                return
            self._reconcile(envelope)
            self._dispatch(envelope)

    def _reconcile(self, envelope: Envelope):
        """根据通知同步本地状态"""
        message_type = envelope.type

        if message_type == MessageType.WORD_STATUS_UPDATED:
            self._set_word_state(
                envelope.word, envelope.status, envelope.familiarity_level, envelope.family_root
            )

        elif message_type == MessageType.WORD_IGNORED:
            self._set_word_state(envelope.word, FamiliarityStatus.KNOWN, MAX_LEVEL, None)

        elif message_type in _STREAM_EVENTS:
            kind, phase = _STREAM_EVENTS[message_type]
            subject = envelope.word if kind == "enrich" else envelope.paragraph
            # 同一单词/段落可能同时有多个会话 (不同上下文)，按 sessionId 区分
            key = (kind, envelope.session_id or subject)
            state = self.streams.setdefault(key, StreamState(subject=subject))

            if phase == "data":
                # 新一轮流式内容开始
                if state.done:
                    state = self.streams[key] = StreamState(subject=subject)
                state.chunks.append(envelope.content)
                return

            if state.done:
                return
            state.done = True
            state.result = envelope
            if phase == "error":
                state.error = envelope.error

    def _set_word_state(
        self,
        word: str,
        status: FamiliarityStatus,
        level: int,
        family_root: Optional[str],
    ):
        current = self.word_states.get(word)
        root = family_root or (current.family_root if current else normalize_word(word))
        info = WordFamilyInfo(status=status, family_root=root, familiarity_level=level)
        self.word_states[word] = info

        # 同一词族的其他单词一起更新
        for other, other_info in list(self.word_states.items()):
            if other != word and other_info.family_root == root:
                self.word_states[other] = info

    def _dispatch(self, envelope: Envelope):
        for callback, types in list(self._listeners):
            if types is not None and envelope.type not in types:
                continue
            try:
                callback(envelope)
            except Exception as e:
                logger.error(f"通知回调异常 ({envelope.type.value}): {e}", exc_info=True)

    # =====================================================
    # 订阅
    # =====================================================

    def add_listener(
        self,
        callback: Listener,
        types: Optional[Iterable[MessageType]] = None,
    ) -> Callable[[], None]:
        """
        订阅通知

        Returns:
            取消订阅函数
        """
        entry = (callback, frozenset(types) if types is not None else None)
        self._listeners.append(entry)

        def unsubscribe():
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def stream(self, kind: str, session_id: str) -> Optional[StreamState]:
        """按流式应答中的 sessionId 查询会话内容"""
        return self.streams.get((kind, session_id))

    def streams_for(self, kind: str, subject: str) -> List[StreamState]:
        """某个单词 (或段落) 的全部会话"""
        return [s for (k, _), s in self.streams.items() if k == kind and s.subject == subject]

    def close(self):
        """关闭客户端: 移除所有订阅，未完成的请求以 ConnectionError 结束"""
        if self.closed:
            return
        self.closed = True
        self._listeners.clear()

        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError("客户端已关闭"))
        self._pending.clear()
        logger.debug("content script 客户端已关闭")
