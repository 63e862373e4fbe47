"""
AI 服务

调用 OpenAI 兼容接口 (默认 DashScope qwen-flash)
- enrich / enrich_stream: 单词情境释义
- translate / translate_stream: 段落翻译 + 长难句分析
- define_word: 词典未收录时生成简短中文释义

流式接口是异步生成器，调用方关闭生成器即中断上游请求
"""

import asyncio
import json
import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..config import LLMConfig
from ..models.protocol import SentenceAnalysisMode
from ..models.response import ErrorCode, UpstreamStreamFailure
from ..models.schemas import AIEnrichmentData, ChineseEntry, TranslationResult

logger = logging.getLogger(__name__)


ENRICH_SYSTEM_PROMPT = "你是一位高效的英语辅导助手，只输出简洁的 Markdown 内容。"
TRANSLATE_SYSTEM_PROMPT = "你是一位专业的英译中助手，只输出翻译和要求的分析内容。"
DEFINE_SYSTEM_PROMPT = "你是一位英汉词典编辑，始终返回结构化 JSON。"

TRANSLATION_MARKER = "[翻译]"
ANALYSIS_MARKER = "[分析]"

_TRANSLATION_RE = re.compile(r"\[翻译\]\s*([\s\S]*?)\s*(?:\[分析\]|$)")
_ANALYSIS_RE = re.compile(r"\[分析\]\s*([\s\S]*)$")


def build_enrich_prompt(word: str, context: str, enhanced: bool) -> str:
    """单词情境释义 prompt"""
    if enhanced:
        return (
            f"句子: \"{context}\"\n"
            f"请用中文解释其中的单词 \"{word}\"。\n"
            f"先判断句子里是否存在包含 \"{word}\" 的更完整表达 "
            f"(连字符复合词、固定短语、多词搭配)。\n"
            f"- 存在时分两行: **{word}**: 单词含义 / **完整表达**: 整体含义，"
            f"两者含义相同则只写一行\n"
            f"- 不存在时只解释 \"{word}\" 在句中的意思\n"
            f"每条不超过 30 字，直接输出 Markdown，不要 JSON。"
        )
    return (
        f"句子: \"{context}\"\n"
        f"请结合句意，用一句中文解释单词 \"{word}\" 在这里的意思。\n"
        f"格式: **{word}**: 含义，不超过 30 字，直接输出 Markdown，不要 JSON。"
    )


def build_translate_prompt(
    paragraph: str,
    sentence: Optional[str],
    mode: SentenceAnalysisMode,
) -> str:
    """段落翻译 prompt，需要分析时要求按 [翻译] / [分析] 分段输出"""
    if mode == SentenceAnalysisMode.OFF or not sentence:
        return (
            f"请把下面的英文翻译成自然、简洁的中文，只输出译文:\n\n{paragraph}"
        )

    if mode == SentenceAnalysisMode.ALWAYS:
        analysis_rule = "请分析下面句子的结构。"
    else:
        analysis_rule = (
            "先判断下面句子是否为长难句 (多个从句、嵌套结构、连接成分较多)。"
            f"不是长难句时不要输出 {ANALYSIS_MARKER} 段。"
        )

    return (
        f"任务一: 把下面的英文段落翻译成自然、简洁的中文。\n"
        f"段落: \"{paragraph}\"\n\n"
        f"任务二: {analysis_rule}\n"
        f"句子: \"{sentence}\"\n"
        f"分析用 Markdown 列表，包括句子主干、从句类型、关键结构、连接成分，"
        f"150 字以内。\n\n"
        f"输出格式 (纯文本，不要 JSON):\n"
        f"{TRANSLATION_MARKER}\n译文\n\n{ANALYSIS_MARKER}\n分析"
    )


def parse_translation_content(content: str, analysis_requested: bool = True) -> TranslationResult:
    """
    从模型输出中拆分译文和句子分析

    没有 [翻译] 标记时整段视为译文；分析为空视为无分析
    """
    text = (content or "").strip()
    if not analysis_requested or TRANSLATION_MARKER not in text:
        return TranslationResult(translation=text)

    translation_match = _TRANSLATION_RE.search(text)
    analysis_match = _ANALYSIS_RE.search(text)

    translation = translation_match.group(1).strip() if translation_match else text
    analysis = analysis_match.group(1).strip() if analysis_match else ""

    return TranslationResult(translation=translation, sentence_analysis=analysis or None)


class AIService:
    """
    AI 服务

    httpx 客户端懒加载，多个协程共享同一连接池
    """

    CHAT_PATH = "/chat/completions"

    def __init__(self, config: LLMConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            config: AI 配置
            transport: 自定义传输层 (测试时注入 MockTransport)
        """
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._lock = asyncio.Lock()

        if not config.is_configured:
            logger.warning("DASHSCOPE_API_KEY 未设置，AI 功能不可用")

    async def _get_client(self) -> httpx.AsyncClient:
        """获取 HTTP 客户端 (懒加载，并发安全)"""
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(
                        base_url=self.config.base_url,
                        timeout=httpx.Timeout(
                            connect=5.0,
                            read=self.config.timeout,
                            write=10.0,
                            pool=5.0,
                        ),
                        transport=self._transport,
                    )
        return self._client

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def _headers(self) -> Dict[str, str]:
        if not self.config.is_configured:
            raise UpstreamStreamFailure(
                "AI 服务未配置，请设置 DASHSCOPE_API_KEY",
                code=ErrorCode.AI_SERVICE_UNCONFIGURED,
            )
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int,
        stream: bool = False,
        json_mode: bool = False,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
        }
        if stream:
            payload["stream"] = True
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    @staticmethod
    def _status_error(status_code: int, body: str) -> UpstreamStreamFailure:
        logger.error(f"AI 接口返回错误: status={status_code}, body={body[:200]}")
        if status_code in (401, 403):
            return UpstreamStreamFailure("AI 服务密钥无效")
        if status_code == 429:
            return UpstreamStreamFailure("AI 服务繁忙，请稍后再试")
        return UpstreamStreamFailure(f"AI 服务请求失败 ({status_code})")

    # =====================================================
    # 底层调用
    # =====================================================

    async def _complete(self, payload: Dict[str, Any]) -> str:
        """非流式调用，返回完整文本"""
        headers = self._headers()
        client = await self._get_client()

        try:
            response = await client.post(self.CHAT_PATH, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"AI 请求失败: {e}")
            raise UpstreamStreamFailure("AI 服务连接失败") from e

        if response.status_code >= 400:
            raise self._status_error(response.status_code, response.text)

        try:
            return response.json()["choices"][0]["message"]["content"].strip()
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"AI 响应格式异常: {response.text[:200]}")
            raise UpstreamStreamFailure("AI 服务返回格式异常") from e

    async def _stream_completion(self, payload: Dict[str, Any]) -> AsyncIterator[str]:
        """
        流式调用 (SSE)

        逐行解析 data: {...}，产出 choices[0].delta.content，遇到 [DONE] 结束
        """
        headers = self._headers()
        client = await self._get_client()

        try:
            async with client.stream("POST", self.CHAT_PATH, json=payload, headers=headers) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise self._status_error(response.status_code, body)

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue

                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break

                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug(f"跳过无法解析的 SSE 行: {data[:80]}")
                        continue

                    choices = chunk.get("choices") or []
                    if not choices:
                        # include_usage 的最后一块只有 usage
                        continue

                    content = (choices[0].get("delta") or {}).get("content")
                    if content:
                        yield content
        except httpx.HTTPError as e:
            logger.error(f"AI 流式请求失败: {e}")
            raise UpstreamStreamFailure("AI 服务连接中断") from e

    # =====================================================
    # 单词释义
    # =====================================================

    def _enrich_payload(self, word: str, context: str, enhanced: bool, stream: bool) -> Dict[str, Any]:
        max_tokens = (
            self.config.enrich_enhanced_max_tokens if enhanced else self.config.enrich_max_tokens
        )
        return self._payload(
            ENRICH_SYSTEM_PROMPT,
            build_enrich_prompt(word, context, enhanced),
            max_tokens,
            stream=stream,
        )

    def enrich_stream(self, word: str, context: str, enhanced: bool = True) -> AsyncIterator[str]:
        """流式单词情境释义"""
        logger.debug(f"开始流式释义: {word}")
        return self._stream_completion(self._enrich_payload(word, context, enhanced, stream=True))

    async def enrich(self, word: str, context: str, enhanced: bool = False) -> AIEnrichmentData:
        """单词情境释义"""
        logger.debug(f"请求单词释义: {word}")
        content = await self._complete(self._enrich_payload(word, context, enhanced, stream=False))
        return AIEnrichmentData(contextual_definitions=[content])

    # =====================================================
    # 翻译
    # =====================================================

    def _translate_payload(
        self,
        paragraph: str,
        sentence: Optional[str],
        mode: SentenceAnalysisMode,
        stream: bool,
    ) -> Dict[str, Any]:
        analysis = mode != SentenceAnalysisMode.OFF and bool(sentence)
        max_tokens = self.config.analysis_max_tokens if analysis else self.config.translate_max_tokens
        return self._payload(
            TRANSLATE_SYSTEM_PROMPT,
            build_translate_prompt(paragraph, sentence, mode),
            max_tokens,
            stream=stream,
        )

    def translate_stream(
        self,
        paragraph: str,
        sentence: Optional[str] = None,
        mode: SentenceAnalysisMode = SentenceAnalysisMode.OFF,
    ) -> AsyncIterator[str]:
        """流式段落翻译"""
        logger.debug(f"开始流式翻译: {paragraph[:30]}...")
        return self._stream_completion(self._translate_payload(paragraph, sentence, mode, stream=True))

    async def translate(
        self,
        paragraph: str,
        sentence: Optional[str] = None,
        mode: SentenceAnalysisMode = SentenceAnalysisMode.OFF,
    ) -> TranslationResult:
        """段落翻译"""
        logger.debug(f"请求翻译: {paragraph[:30]}...")
        content = await self._complete(self._translate_payload(paragraph, sentence, mode, stream=False))
        return parse_translation_content(
            content, analysis_requested=mode != SentenceAnalysisMode.OFF and bool(sentence)
        )

    # =====================================================
    # 词典兜底
    # =====================================================

    async def define_word(self, word: str) -> List[ChineseEntry]:
        """
        生成简短中文释义

        Returns:
            [{pos, definitions}]，模型输出无法解析或单词不存在时为空列表
        """
        prompt = (
            f"请给出英文单词 \"{word}\" 最常见的 1-2 个词性及简短中文释义。\n"
            f"只返回 JSON: {{\"chinese_entries_short\": "
            f"[{{\"pos\": \"词性\", \"definitions\": [\"释义\"]}}]}}\n"
            f"单词拼写错误或不存在时返回空数组。"
        )
        content = await self._complete(
            self._payload(DEFINE_SYSTEM_PROMPT, prompt, self.config.definition_max_tokens, json_mode=True)
        )

        try:
            entries = json.loads(content).get("chinese_entries_short")
            if not isinstance(entries, list):
                raise ValueError("chinese_entries_short 不是列表")
            return [ChineseEntry.model_validate(entry) for entry in entries]
        except (ValueError, AttributeError, TypeError) as e:
            # pydantic.ValidationError 继承自 ValueError
            logger.warning(f"AI 释义解析失败 ({word}): {e}")
            return []

    async def close(self):
        """关闭 HTTP 客户端"""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("AI 服务已关闭")
