"""
AI 服务测试 (httpx.MockTransport)
"""

import json

import httpx
import pytest

from langland.config import LLMConfig
from langland.core.llm import AIService, parse_translation_content, build_translate_prompt
from langland.models.protocol import SentenceAnalysisMode
from langland.models.response import ErrorCode, UpstreamStreamFailure


def sse(*events):
    lines = [f"data: {json.dumps(e, ensure_ascii=False)}\n\n" for e in events]
    return ("".join(lines) + "data: [DONE]\n\n").encode("utf-8")


def delta(text):
    return {"choices": [{"delta": {"content": text}}]}


def completion(text):
    return {"choices": [{"message": {"content": text}}]}


def make_service(handler, api_key="sk-test"):
    config = LLMConfig(base_url="https://llm.test/v1", api_key=api_key)
    return AIService(config, transport=httpx.MockTransport(handler))


async def collect(stream):
    return [chunk async for chunk in stream]


@pytest.mark.asyncio
async def test_enrich_stream_parses_sse():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        body = sse(delta("Hel"), {"choices": []}, delta(""), delta("lo"))
        return httpx.Response(200, content=b": keep-alive\n\n" + body,
                              headers={"content-type": "text/event-stream"})

    service = make_service(handler)
    chunks = await collect(service.enrich_stream("run", "I run daily.", enhanced=True))
    await service.close()

    assert chunks == ["Hel", "lo"]
    [request] = requests
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    payload = json.loads(request.content)
    assert payload["stream"] is True
    assert payload["model"] == "qwen-flash"
    assert payload["max_tokens"] == 150
    assert "run" in payload["messages"][1]["content"]


@pytest.mark.asyncio
async def test_stream_stops_at_done():
    def handler(request):
        body = sse(delta("a")) + b'data: {"choices": [{"delta": {"content": "b"}}]}\n\n'
        return httpx.Response(200, content=body)

    service = make_service(handler)
    assert await collect(service.translate_stream("Hello")) == ["a"]


@pytest.mark.asyncio
async def test_stream_http_error_raises():
    def handler(request):
        return httpx.Response(401, json={"error": {"code": "invalid_api_key"}})

    service = make_service(handler)
    with pytest.raises(UpstreamStreamFailure) as exc:
        await collect(service.enrich_stream("run", "I run."))
    assert exc.value.message == "AI 服务密钥无效"


@pytest.mark.asyncio
async def test_stream_connection_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    service = make_service(handler)
    with pytest.raises(UpstreamStreamFailure):
        await collect(service.translate_stream("Hello"))


@pytest.mark.asyncio
async def test_unconfigured_service():
    service = make_service(lambda request: httpx.Response(200), api_key="")
    assert service.is_configured is False

    with pytest.raises(UpstreamStreamFailure) as exc:
        await service.enrich("run", "I run.")
    assert exc.value.code == ErrorCode.AI_SERVICE_UNCONFIGURED

    with pytest.raises(UpstreamStreamFailure):
        await collect(service.enrich_stream("run", "I run."))


@pytest.mark.asyncio
async def test_enrich_non_stream():
    def handler(request):
        payload = json.loads(request.content)
        assert "stream" not in payload
        assert payload["max_tokens"] == 100
        return httpx.Response(200, json=completion("  **run**: 跑步  "))

    service = make_service(handler)
    data = await service.enrich("run", "I run.")
    assert data.contextual_definitions == ["**run**: 跑步"]
    assert data.to_wire() == {
        "contextualDefinitions": ["**run**: 跑步"],
        "exampleSentence": "",
        "synonym": "",
    }


@pytest.mark.asyncio
async def test_translate_with_analysis():
    def handler(request):
        payload = json.loads(request.content)
        assert payload["max_tokens"] == 500
        return httpx.Response(200, json=completion("[翻译]\n我跑步。\n\n[分析]\n- 主语: I"))

    service = make_service(handler)
    result = await service.translate("I run.", "I run.", SentenceAnalysisMode.ALWAYS)
    assert result.translation == "我跑步。"
    assert result.sentence_analysis == "- 主语: I"


@pytest.mark.asyncio
async def test_malformed_completion_raises():
    service = make_service(lambda request: httpx.Response(200, json={"unexpected": True}))
    with pytest.raises(UpstreamStreamFailure):
        await service.translate("Hello")


@pytest.mark.asyncio
async def test_define_word():
    content = json.dumps({"chinese_entries_short": [{"pos": "v.", "definitions": ["跑"]}]})

    def handler(request):
        assert json.loads(request.content)["response_format"] == {"type": "json_object"}
        return httpx.Response(200, json=completion(content))

    service = make_service(handler)
    [entry] = await service.define_word("run")
    assert entry.pos == "v."
    assert entry.definitions == ["跑"]


@pytest.mark.asyncio
async def test_define_word_invalid_json_is_empty():
    service = make_service(lambda request: httpx.Response(200, json=completion("不是 JSON")))
    assert await service.define_word("run") == []


# ── 翻译结果拆分 ─────────────────────────────────────────


def test_parse_translation_plain_text():
    result = parse_translation_content("  你好  ", analysis_requested=False)
    assert result.translation == "你好"
    assert result.sentence_analysis is None


def test_parse_translation_without_markers():
    assert parse_translation_content("你好").translation == "你好"


def test_parse_translation_empty_analysis():
    result = parse_translation_content("[翻译]\n你好\n\n[分析]\n")
    assert result.translation == "你好"
    assert result.sentence_analysis is None


def test_parse_translation_smart_mode_without_analysis():
    result = parse_translation_content("[翻译]\n你好")
    assert result.translation == "你好"
    assert result.sentence_analysis is None


def test_translate_prompt_markers_only_when_analysing():
    assert "[翻译]" not in build_translate_prompt("Hi.", None, SentenceAnalysisMode.ALWAYS)
    assert "[翻译]" not in build_translate_prompt("Hi.", "Hi.", SentenceAnalysisMode.OFF)
    assert "[分析]" in build_translate_prompt("Hi.", "Hi.", SentenceAnalysisMode.SMART)
