"""
AI 处理器

非流式请求直接返回结果；流式请求打开中继会话后立即应答 (带 sessionId)，
后续内容以 *_STREAM_* 事件推送给发起请求的客户端，事件带同一个 sessionId
"""

import json
import logging
from typing import Optional

from ..core.llm import AIService, parse_translation_content
from ..core.relay import StreamRelay, StreamKind, StreamEvents
from ..models.protocol import (
    MessageType,
    SentenceAnalysisMode,
    Envelope,
    EnrichStreamData,
    EnrichStreamComplete,
    EnrichStreamError,
    TranslateStreamData,
    TranslateStreamComplete,
    TranslateStreamError,
)
from ..models.response import ErrorCode, MessageResponse, UpstreamStreamFailure
from ..models.schemas import AIEnrichmentData
from .base import BaseHandler

logger = logging.getLogger(__name__)


def enrich_events(word: str) -> StreamEvents:
    """单词释义流的事件构造"""

    def complete(text: str) -> EnrichStreamComplete:
        data = AIEnrichmentData(contextual_definitions=[text.strip()])
        return EnrichStreamComplete(
            word=word,
            content=json.dumps(
                {"contextualDefinitions": data.contextual_definitions}, ensure_ascii=False
            ),
        )

    return StreamEvents(
        data=lambda chunk: EnrichStreamData(word=word, content=chunk),
        complete=complete,
        error=lambda message: EnrichStreamError(word=word, error=message),
    )


def translate_events(
    paragraph: str,
    sentence: Optional[str],
    analysis_requested: bool,
) -> StreamEvents:
    """翻译流的事件构造，完成时拆分 [翻译] / [分析]"""

    def complete(text: str) -> TranslateStreamComplete:
        result = parse_translation_content(text, analysis_requested)
        return TranslateStreamComplete(
            paragraph=paragraph,
            sentence=sentence,
            content=json.dumps(result.to_wire(), ensure_ascii=False),
            translation=result.translation,
            sentence_analysis=result.sentence_analysis,
        )

    return StreamEvents(
        data=lambda chunk: TranslateStreamData(paragraph=paragraph, content=chunk, sentence=sentence),
        complete=complete,
        error=lambda message: TranslateStreamError(paragraph=paragraph, error=message, sentence=sentence),
    )


class AIHandler(BaseHandler):
    """AI 释义与翻译处理器"""

    def __init__(self, ai_service: AIService, relay: StreamRelay):
        super().__init__()
        self.ai_service = ai_service
        self.relay = relay

    def _ensure_configured(self):
        if not self.ai_service.is_configured:
            raise UpstreamStreamFailure(
                "AI 服务未配置，请设置 DASHSCOPE_API_KEY",
                code=ErrorCode.AI_SERVICE_UNCONFIGURED,
            )

    async def handle(self, envelope: Envelope, client_id: str) -> MessageResponse:
        self._ensure_configured()
        message_type = envelope.type

        if message_type == MessageType.ENRICH_WORD:
            data = await self.ai_service.enrich(
                envelope.word, envelope.context, envelope.enhanced_phrase_detection
            )
            return MessageResponse.ok(data.to_wire())

        if message_type == MessageType.TRANSLATE_SENTENCE:
            result = await self.ai_service.translate(
                envelope.context, envelope.sentence, envelope.sentence_analysis_mode
            )
            return MessageResponse.ok(result.to_wire())

        if message_type == MessageType.ENRICH_WORD_STREAM:
            return self._open_enrich_stream(envelope, client_id)

        if message_type == MessageType.TRANSLATE_SENTENCE_STREAM:
            return self._open_translate_stream(envelope, client_id)

        raise ValueError(f"AIHandler 不处理 {message_type.value}")

    def _open_enrich_stream(self, envelope, client_id: str) -> MessageResponse:
        word, context = envelope.word, envelope.context
        enhanced = envelope.enhanced_phrase_detection

        session, coalesced = self.relay.open(
            client_id,
            StreamKind.ENRICH,
            f"{word}\n{context}",
            lambda: self.ai_service.enrich_stream(word, context, enhanced),
            enrich_events(word),
        )
        return MessageResponse.ok({
            "streaming": True,
            "coalesced": coalesced,
            "sessionId": session.session_id,
        })

    def _open_translate_stream(self, envelope, client_id: str) -> MessageResponse:
        paragraph, sentence = envelope.context, envelope.sentence
        mode = envelope.sentence_analysis_mode
        analysis_requested = mode != SentenceAnalysisMode.OFF and bool(sentence)

        session, coalesced = self.relay.open(
            client_id,
            StreamKind.TRANSLATE,
            f"{paragraph}\n{sentence or ''}\n{mode.value}",
            lambda: self.ai_service.translate_stream(paragraph, sentence, mode),
            translate_events(paragraph, sentence, analysis_requested),
        )
        return MessageResponse.ok({
            "streaming": True,
            "coalesced": coalesced,
            "sessionId": session.session_id,
        })
