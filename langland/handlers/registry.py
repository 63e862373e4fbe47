"""
消息路由

根据消息类型分发到相应的处理器
路由是唯一可以修改熟练度缓存和调用持久化层的组件
"""

import logging
from typing import Any, Dict, Optional, Union

from ..core.relay import StreamRelay
from ..models.protocol import Envelope, MessageType, parse_envelope
from ..models.response import LangLandError, MessageResponse, UnrecognizedMessageType
from .ai import AIHandler
from .base import BaseHandler
from .cache import FamiliarityCache
from .dictionary import DictionaryHandler
from .vocabulary import VocabularyHandler

logger = logging.getLogger(__name__)


class HandlerRouter:
    """
    消息路由

    协作者在构造时注入:
    - store: 词族熟练度持久化 (VocabularyStore)
    - dictionary_service: 词典查询
    - ai_service: AI 服务
    - relay: 流式中继
    - notifier: 广播通知 (ConnectionManager)
    - tracker: 查词计数 (可选，缺省时每次查词都提升)
    """

    def __init__(
        self,
        store,
        dictionary_service,
        ai_service,
        relay: StreamRelay,
        notifier=None,
        tracker=None,
    ):
        self.cache = FamiliarityCache(store)

        # 初始化各处理器
        self.vocabulary_handler = VocabularyHandler(self.cache, store, tracker, notifier)
        self.dictionary_handler = DictionaryHandler(dictionary_service)
        self.ai_handler = AIHandler(ai_service, relay)

        # 消息类型到处理器的映射
        self._type_map: Dict[MessageType, BaseHandler] = {
            # 词汇熟练度
            MessageType.QUERY_WORDS_STATUS: self.vocabulary_handler,
            MessageType.UPDATE_WORD_STATUS: self.vocabulary_handler,
            MessageType.BATCH_UPDATE_WORD_STATUS: self.vocabulary_handler,
            MessageType.IGNORE_WORD: self.vocabulary_handler,
            MessageType.BATCH_IGNORE_WORDS: self.vocabulary_handler,
            MessageType.AUTO_INCREASE_FAMILIARITY: self.vocabulary_handler,

            # 词典
            MessageType.GET_INTERNAL_DEFINITION: self.dictionary_handler,
            MessageType.GET_WORD_DETAILS: self.dictionary_handler,

            # AI
            MessageType.ENRICH_WORD: self.ai_handler,
            MessageType.ENRICH_WORD_STREAM: self.ai_handler,
            MessageType.TRANSLATE_SENTENCE: self.ai_handler,
            MessageType.TRANSLATE_SENTENCE_STREAM: self.ai_handler,
        }

    def get_handler(self, message_type: MessageType) -> Optional[BaseHandler]:
        return self._type_map.get(message_type)

    async def route(self, envelope: Envelope, client_id: str) -> MessageResponse:
        """路由到相应处理器"""
        handler = self._type_map.get(envelope.type)
        if handler is None:
            # 通知类型不能作为请求
            raise UnrecognizedMessageType(f"未知消息类型: {envelope.type.value}")

        logger.debug(
            f"路由: {envelope.type.value} -> {handler.__class__.__name__}", extra={"client_id": client_id}
        )
        return await handler.safe_handle(envelope, client_id)

    async def handle(
        self,
        message: Union[Envelope, Dict[str, Any]],
        client_id: str,
    ) -> Dict[str, Any]:
        """
        处理一条请求消息

        Args:
            message: 已解析的信封或原始字典
            client_id: 发起请求的客户端

        Returns:
            线上格式的响应 {success, data?, error?, ...}
        """
        try:
            envelope = message if isinstance(message, Envelope) else parse_envelope(message)
            response = await self.route(envelope, client_id)
        except LangLandError as e:
            logger.warning(f"拒绝消息: {e.message}", extra={"client_id": client_id})
            response = MessageResponse.fail(e.message)

        return response.to_dict()
