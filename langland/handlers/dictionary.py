"""
词典处理器
"""

import logging

from ..models.protocol import MessageType, Envelope
from ..models.response import LangLandError, MessageResponse
from ..services.dictionary_service import DictionaryService, placeholder_entry
from .base import BaseHandler

logger = logging.getLogger(__name__)


class DictionaryHandler(BaseHandler):
    """词典查询处理器"""

    def __init__(self, dictionary_service: DictionaryService):
        super().__init__()
        self.dictionary_service = dictionary_service

    async def handle(self, envelope: Envelope, client_id: str) -> MessageResponse:
        if envelope.type == MessageType.GET_INTERNAL_DEFINITION:
            entry = await self.dictionary_service.lookup(envelope.word)
            return MessageResponse.ok(entry.to_wire())

        if envelope.type == MessageType.GET_WORD_DETAILS:
            return await self._handle_word_details(envelope.word)

        raise ValueError(f"DictionaryHandler 不处理 {envelope.type.value}")

    async def _handle_word_details(self, word: str) -> MessageResponse:
        """旧接口: 查询失败时返回占位条目，始终 success"""
        try:
            entry = await self.dictionary_service.lookup(word)
        except LangLandError as e:
            logger.info(f"单词详情未找到，返回占位条目: {word}")
            entry = placeholder_entry(word, e.message)
        return MessageResponse.ok(entry.to_wire())
