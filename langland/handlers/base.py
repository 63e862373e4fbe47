"""
处理器基类
"""

import logging
from abc import ABC, abstractmethod

from ..models.protocol import Envelope
from ..models.response import LangLandError, MessageResponse

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "服务暂时不可用，请稍后再试"


class BaseHandler(ABC):
    """处理器基类"""

    def __init__(self, notifier=None):
        # notifier.broadcast(envelope) 向所有在线客户端推送通知
        self.notifier = notifier

    @abstractmethod
    async def handle(self, envelope: Envelope, client_id: str) -> MessageResponse:
        """处理消息"""
        pass

    async def safe_handle(self, envelope: Envelope, client_id: str) -> MessageResponse:
        """模板方法：统一错误处理"""
        try:
            return await self.handle(envelope, client_id)
        except LangLandError as e:
            logger.warning(
                f"{self.__class__.__name__} 处理失败 ({envelope.type.value}): {e.message}",
                extra={"client_id": client_id},
            )
            return MessageResponse.fail(e.message)
        except Exception as e:
            logger.error(
                f"{self.__class__.__name__} 处理异常 ({envelope.type.value}): {e}",
                exc_info=True,
                extra={"client_id": client_id},
            )
            return MessageResponse.fail(INTERNAL_ERROR_MESSAGE)

    async def notify(self, envelope: Envelope):
        """广播通知，失败不影响已完成的写入"""
        if not self.notifier:
            return
        try:
            await self.notifier.broadcast(envelope)
        except Exception as e:
            logger.warning(f"通知广播失败 ({envelope.type.value}): {e}")
