"""
流式中继

把上游 AI 的流式输出按顺序转发给发起请求的 content script:
- 每个上游分块立即作为 *_STREAM_DATA 发出 (先进先出)
- 上游结束后发出唯一一个 *_STREAM_COMPLETE
- 上游失败时发出唯一一个 *_STREAM_ERROR，已发出的分块保持有效

会话以 (client_id, kind, subject) 为键，同一键上的重复请求合并到已有会话
每个会话有独立的 session_id，附在该会话的全部事件上
"""

import asyncio
import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from ..models.protocol import Envelope
from ..models.response import LangLandError

logger = logging.getLogger(__name__)

UPSTREAM_FAILED_MESSAGE = "AI 服务暂时不可用，请稍后再试"

# (client_id, envelope) -> 是否发送成功
SendFn = Callable[[str, Envelope], Awaitable[bool]]
ProducerFactory = Callable[[], AsyncIterator[str]]
SessionKey = Tuple[str, "StreamKind", str]


class StreamKind(str, Enum):
    """流式会话类型"""
    ENRICH = "enrich"
    TRANSLATE = "translate"


@dataclass(frozen=True)
class StreamEvents:
    """
    会话各阶段的信封构造函数

    data(chunk) / complete(完整文本) / error(错误文本)
    """
    data: Callable[[str], Envelope]
    complete: Callable[[str], Envelope]
    error: Callable[[str], Envelope]


@dataclass
class StreamSession:
    """一次上游调用对应的流式会话"""
    client_id: str
    kind: StreamKind
    subject: str
    events: StreamEvents
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    chunks: List[str] = field(default_factory=list)
    task: Optional[asyncio.Task] = None

    # 已发出终止事件 (或被取消)，之后不再发送任何事件
    terminated: bool = False

    @property
    def key(self) -> SessionKey:
        return (self.client_id, self.kind, self.subject)

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class StreamRelay:
    """
    流式中继

    send 由传输层提供，返回 False 表示通道已断开
    """

    def __init__(self, send: SendFn, send_timeout: float = 5.0):
        self._send = send
        self.send_timeout = send_timeout
        self._sessions: Dict[SessionKey, StreamSession] = {}

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    def get(self, client_id: str, kind: StreamKind, subject: str) -> Optional[StreamSession]:
        return self._sessions.get((client_id, kind, subject))

    def open(
        self,
        client_id: str,
        kind: StreamKind,
        subject: str,
        producer_factory: ProducerFactory,
        events: StreamEvents,
    ) -> Tuple[StreamSession, bool]:
        """
        打开流式会话

        Returns:
            (session, coalesced)，coalesced 为 True 表示合并到已有会话
        """
        key = (client_id, kind, subject)
        existing = self._sessions.get(key)
        if existing is not None and not existing.terminated:
            logger.debug(
                f"合并重复的流式请求: {kind.value} {subject[:30]} -> {existing.session_id}",
                extra={"client_id": client_id},
            )
            return existing, True

        session = StreamSession(client_id=client_id, kind=kind, subject=subject, events=events)
        self._sessions[key] = session
        session.task = asyncio.create_task(
            self._run(session, producer_factory),
            name=f"stream-{kind.value}-{session.session_id}",
        )
        logger.info(
            f"流式会话开始: session={session.session_id}, kind={kind.value}",
            extra={"client_id": client_id},
        )
        return session, False

    async def _run(self, session: StreamSession, producer_factory: ProducerFactory):
        log_extra = {"client_id": session.client_id}
        try:
            async with aclosing(producer_factory()) as stream:
                async for chunk in stream:
                    if not chunk:
                        continue
                    session.chunks.append(chunk)
                    if not await self._emit(session, session.events.data(chunk)):
                        # 通道断开，退出 async with 会关闭上游
                        logger.info(
                            f"客户端通道已断开，中止流式会话: {session.session_id}", extra=log_extra
                        )
                        session.terminated = True
                        return

            await self._finish(session, session.events.complete(session.text))

        except asyncio.CancelledError:
            logger.info(f"流式会话已取消: {session.session_id}", extra=log_extra)
            raise
        except LangLandError as e:
            logger.warning(f"流式会话失败: {e.message}", extra=log_extra)
            await self._finish(session, session.events.error(e.message))
        except Exception as e:
            logger.error(f"流式会话异常: {e}", exc_info=True, extra=log_extra)
            await self._finish(session, session.events.error(UPSTREAM_FAILED_MESSAGE))
        finally:
            if self._sessions.get(session.key) is session:
                del self._sessions[session.key]

    async def _emit(self, session: StreamSession, envelope: Envelope) -> bool:
        """发送单个事件 (附上 session_id)，超时或失败都视为通道断开"""
        if session.terminated:
            return False
        envelope = replace(envelope, session_id=session.session_id)
        try:
            return await asyncio.wait_for(
                self._send(session.client_id, envelope), timeout=self.send_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"流式事件发送超时: {session.session_id}", extra={"client_id": session.client_id}
            )
            return False
        except Exception as e:
            logger.warning(
                f"流式事件发送失败: {session.session_id}, {e}",
                extra={"client_id": session.client_id},
            )
            return False

    async def _finish(self, session: StreamSession, envelope: Envelope):
        """发出终止事件，之后会话不再发送任何内容"""
        if session.terminated:
            return
        sent = await self._emit(session, envelope)
        session.terminated = True
        logger.info(
            f"流式会话结束: session={session.session_id}, kind={session.kind.value}, "
            f"type={envelope.type.value}, chunks={len(session.chunks)}, sent={sent}",
            extra={"client_id": session.client_id},
        )

    @staticmethod
    async def _stop(sessions: List[StreamSession]):
        tasks = [s.task for s in sessions if s.task is not None and not s.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

    async def cancel_client(self, client_id: str) -> int:
        """
        客户端断开: 中止其全部会话，不再发送任何事件

        Returns:
            被中止的会话数
        """
        sessions = [s for key, s in list(self._sessions.items()) if key[0] == client_id]
        for session in sessions:
            session.terminated = True
            self._sessions.pop(session.key, None)

        await self._stop(sessions)
        if sessions:
            logger.info(f"客户端断开，已中止 {len(sessions)} 个流式会话", extra={"client_id": client_id})
        return len(sessions)

    async def close(self):
        """关闭全部会话 (服务停止时)"""
        sessions = list(self._sessions.values())
        for session in sessions:
            session.terminated = True
        self._sessions.clear()
        await self._stop(sessions)
        logger.info("流式中继已关闭")
