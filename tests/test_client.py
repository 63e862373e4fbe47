"""
Content script 客户端测试

请求关联、超时、关闭、本地状态同步、订阅
最后用内存回环把客户端接到真实的消息路由上
"""

import asyncio
import json

import pytest

from langland.client import ContentScriptClient
from langland.core.relay import StreamRelay
from langland.handlers import HandlerRouter
from langland.models.protocol import (
    MessageType,
    FamiliarityStatus,
    QueryWordsStatus,
    UpdateWordStatus,
    IgnoreWord,
    EnrichWordStream,
    WordStatusUpdated,
    WordIgnored,
    EnrichStreamData,
    EnrichStreamComplete,
    EnrichStreamError,
    TranslateStreamData,
    ResponseFrame,
    EventFrame,
    parse_frame,
)


class FakeTransport:
    """记录发出的帧，由测试决定何时回复"""

    def __init__(self):
        self.frames = []

    async def send_text(self, text):
        self.frames.append(parse_frame(text))


def event(envelope):
    return EventFrame.of(envelope).to_json()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(transport):
    return ContentScriptClient(transport.send_text, request_timeout=1.0)


async def reply_when_sent(client, transport, response, index=0):
    while len(transport.frames) <= index:
        await asyncio.sleep(0)
    client.feed(ResponseFrame(id=transport.frames[index].id, response=response).to_json())


# ── 请求 / 响应 ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_response_matched_by_frame_id(client, transport):
    first = asyncio.create_task(client.request(IgnoreWord(word="run")))
    second = asyncio.create_task(client.request(IgnoreWord(word="go")))
    while len(transport.frames) < 2:
        await asyncio.sleep(0)

    # 乱序回复
    client.feed(ResponseFrame(id=transport.frames[1].id, response={"success": True, "data": "go"}).to_json())
    client.feed(ResponseFrame(id=transport.frames[0].id, response={"success": True, "data": "run"}).to_json())

    assert (await first).data == "run"
    assert (await second).data == "go"
    assert transport.frames[0].message == {"type": "IGNORE_WORD", "word": "run"}


@pytest.mark.asyncio
async def test_failed_response(client, transport):
    task = asyncio.create_task(client.request(UpdateWordStatus(word="xyzzy", familiarity_level=2)))
    await reply_when_sent(client, transport, {"success": False, "error": "单词 xyzzy 未收录到任何词族"})

    response = await task
    assert response.success is False
    assert response.error == "单词 xyzzy 未收录到任何词族"


@pytest.mark.asyncio
async def test_request_timeout(client):
    with pytest.raises(asyncio.TimeoutError):
        await client.request(IgnoreWord(word="run"), timeout=0.05)
    assert client._pending == {}


@pytest.mark.asyncio
async def test_close_fails_pending_requests(client, transport):
    task = asyncio.create_task(client.request(IgnoreWord(word="run")))
    while not transport.frames:
        await asyncio.sleep(0)

    client.close()

    with pytest.raises(ConnectionError):
        await task
    with pytest.raises(ConnectionError):
        await client.request(IgnoreWord(word="go"))


@pytest.mark.asyncio
async def test_stray_and_malformed_frames_ignored(client):
    client.feed(ResponseFrame(id="unknown", response={"success": True}).to_json())
    client.feed("not json")
    client.feed({"kind": "event", "message": {"type": "NOPE"}})
    assert client.word_states == {}


@pytest.mark.asyncio
async def test_query_result_updates_word_states(client, transport):
    task = asyncio.create_task(client.request(QueryWordsStatus(words=("Running", "xyzzy"))))
    await reply_when_sent(client, transport, {
        "success": True,
        "data": {
            "Running": {"status": "learning", "familyRoot": "run", "familiarityLevel": 3},
            "xyzzy": {"status": "unknown", "familyRoot": "xyzzy", "familiarityLevel": 0},
        },
    })
    await task

    assert client.word_states["Running"].familiarity_level == 3
    assert client.word_states["xyzzy"].status == FamiliarityStatus.UNKNOWN


# ── 通知 ────────────────────────────────────────────────


def seed_states(client):
    client.feed(event(WordStatusUpdated(
        word="running", status=FamiliarityStatus.LEARNING, familiarity_level=2, family_root="run",
    )))
    client.feed(event(WordStatusUpdated(
        word="ran", status=FamiliarityStatus.LEARNING, familiarity_level=2, family_root="run",
    )))
    client.feed(event(WordStatusUpdated(
        word="apple", status=FamiliarityStatus.UNKNOWN, familiarity_level=0, family_root="apple",
    )))


def test_status_update_applies_to_family(client):
    seed_states(client)
    client.feed(event(WordStatusUpdated(
        word="ran", status=FamiliarityStatus.KNOWN, familiarity_level=7, family_root="run",
    )))

    assert client.word_states["running"].familiarity_level == 7
    assert client.word_states["ran"].status == FamiliarityStatus.KNOWN
    assert client.word_states["apple"].familiarity_level == 0


def test_word_ignored_marks_family_known(client):
    seed_states(client)
    client.feed(event(WordIgnored(word="running")))

    assert client.word_states["running"].status == FamiliarityStatus.KNOWN
    assert client.word_states["ran"].familiarity_level == 7


def test_listener_receives_selected_types(client):
    received = []
    unsubscribe = client.add_listener(received.append, [MessageType.WORD_IGNORED])

    seed_states(client)
    client.feed(event(WordIgnored(word="apple")))
    assert [e.type for e in received] == [MessageType.WORD_IGNORED]

    unsubscribe()
    client.feed(event(WordIgnored(word="run")))
    assert len(received) == 1


def test_failing_listener_does_not_block_others(client):
    received = []

    def broken(envelope):
        raise RuntimeError("boom")

    client.add_listener(broken)
    client.add_listener(received.append)
    client.feed(event(WordIgnored(word="run")))
    assert len(received) == 1


def test_closed_client_ignores_frames(client):
    received = []
    client.add_listener(received.append)
    client.close()
    client.feed(event(WordIgnored(word="run")))
    assert received == []
    assert client.word_states == {}


# ── 流式内容 ────────────────────────────────────────────


def test_enrich_stream_accumulates(client):
    client.feed(event(EnrichStreamData(word="run", content="**run**", session_id="s1")))
    client.feed(event(EnrichStreamData(word="run", content="\n", session_id="s1")))
    client.feed(event(EnrichStreamData(word="run", content=": 跑", session_id="s1")))
    client.feed(event(EnrichStreamComplete(word="run", content="{}", session_id="s1")))

    state = client.stream("enrich", "s1")
    assert state.subject == "run"
    assert state.text == "**run**\n: 跑"
    assert state.done
    assert state.error is None


def test_stream_error_after_complete_ignored(client):
    client.feed(event(EnrichStreamData(word="run", content="a", session_id="s1")))
    client.feed(event(EnrichStreamComplete(word="run", session_id="s1")))
    client.feed(event(EnrichStreamError(word="run", error="AI 服务连接中断", session_id="s1")))

    state = client.stream("enrich", "s1")
    assert state.error is None
    assert state.result.type == MessageType.ENRICH_STREAM_COMPLETE


def test_interleaved_sessions_for_same_word_stay_apart(client):
    client.feed(event(EnrichStreamData(word="bank", content="A1", session_id="a")))
    client.feed(event(EnrichStreamData(word="bank", content="B1", session_id="b")))
    client.feed(event(EnrichStreamData(word="bank", content="A2", session_id="a")))
    client.feed(event(EnrichStreamData(word="bank", content="B2", session_id="b")))
    client.feed(event(EnrichStreamComplete(word="bank", session_id="a")))
    client.feed(event(EnrichStreamError(word="bank", error="AI 服务连接中断", session_id="b")))

    first, second = client.stream("enrich", "a"), client.stream("enrich", "b")
    assert first.chunks == ["A1", "A2"]
    assert second.chunks == ["B1", "B2"]
    assert first.done and first.error is None
    assert second.done and second.error == "AI 服务连接中断"
    assert len(client.streams_for("enrich", "bank")) == 2


def test_events_without_session_id_keyed_by_subject(client):
    client.feed(event(EnrichStreamData(word="run", content="old")))
    client.feed(event(EnrichStreamError(word="run", error="AI 服务连接中断")))
    assert client.stream("enrich", "run").error == "AI 服务连接中断"

    # 新一轮流式内容替换已结束的状态
    client.feed(event(EnrichStreamData(word="run", content="new")))
    state = client.stream("enrich", "run")
    assert state.text == "new"
    assert not state.done


def test_translate_streams_by_session(client):
    client.feed(event(TranslateStreamData(paragraph="p1", content="一", session_id="t1")))
    client.feed(event(TranslateStreamData(paragraph="p2", content="二", session_id="t2")))
    assert client.stream("translate", "t1").text == "一"
    assert client.stream("translate", "t2").text == "二"
    assert client.stream("enrich", "t1") is None
    assert [s.text for s in client.streams_for("translate", "p1")] == ["一"]


# ── 回环 ────────────────────────────────────────────────


class Loopback:
    """把客户端帧直接交给消息路由，通知与流式事件回送给客户端"""

    def __init__(self):
        self.router = None
        self.client = None
        self.tasks = set()

    async def send_text(self, text):
        frame = parse_frame(text)
        task = asyncio.create_task(self._serve(frame))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def _serve(self, frame):
        response = await self.router.handle(frame.message, "page-1")
        self.client.feed(ResponseFrame(id=frame.id, response=response).to_json())

    async def broadcast(self, envelope):
        self.client.feed(event(envelope))
        return 1

    async def send_event(self, client_id, envelope):
        self.client.feed(event(envelope))
        return True


@pytest.fixture
def loopback(store, dictionary_service, ai_service, tracker):
    loop = Loopback()
    relay = StreamRelay(loop.send_event, send_timeout=1.0)
    loop.router = HandlerRouter(
        store, dictionary_service, ai_service, relay, notifier=loop, tracker=tracker,
    )
    loop.client = ContentScriptClient(loop.send_text, request_timeout=1.0)
    return loop


@pytest.mark.asyncio
async def test_loopback_update_reaches_other_words(loopback, store):
    client = loopback.client
    await client.request(QueryWordsStatus(words=("run", "ran", "apple")))
    assert client.word_states["ran"].status == FamiliarityStatus.UNKNOWN

    response = await client.request(UpdateWordStatus(word="running", status=FamiliarityStatus.KNOWN))

    assert response.success
    assert client.word_states["run"].familiarity_level == 7
    assert client.word_states["ran"].status == FamiliarityStatus.KNOWN
    assert client.word_states["apple"].status == FamiliarityStatus.UNKNOWN
    assert store.records[1].familiarity_level == 7


@pytest.mark.asyncio
async def test_loopback_enrich_stream(loopback, ai_service):
    async def chunks():
        yield "**run**"
        yield ": 跑"

    ai_service.enrich_stream = lambda word, context, enhanced: chunks()
    client = loopback.client
    done = asyncio.Event()
    client.add_listener(lambda e: done.set(), [MessageType.ENRICH_STREAM_COMPLETE])

    response = await client.request(EnrichWordStream(word="run", context="I run."))
    assert response.data["streaming"] is True
    assert response.data["coalesced"] is False

    await asyncio.wait_for(done.wait(), timeout=1)
    state = client.stream("enrich", response.data["sessionId"])
    assert state.text == "**run**: 跑"
    assert json.loads(state.result.content) == {"contextualDefinitions": ["**run**: 跑"]}


@pytest.mark.asyncio
async def test_loopback_same_word_in_two_contexts(loopback, ai_service):
    gates = {"ctx A": asyncio.Event(), "ctx B": asyncio.Event()}

    def enrich_stream(word, context, enhanced):
        async def produce():
            tag = context[-1]
            yield f"{tag}1"
            await gates[context].wait()
            yield f"{tag}2"
        return produce()

    ai_service.enrich_stream = enrich_stream
    client = loopback.client
    completed = []
    client.add_listener(completed.append, [MessageType.ENRICH_STREAM_COMPLETE])

    first = await client.request(EnrichWordStream(word="bank", context="ctx A"))
    second = await client.request(EnrichWordStream(word="bank", context="ctx B"))
    assert first.data["coalesced"] is False
    assert second.data["coalesced"] is False
    assert first.data["sessionId"] != second.data["sessionId"]

    gates["ctx A"].set()
    gates["ctx B"].set()
    for _ in range(100):
        if len(completed) == 2:
            break
        await asyncio.sleep(0.01)

    state_a = client.stream("enrich", first.data["sessionId"])
    state_b = client.stream("enrich", second.data["sessionId"])
    assert state_a.chunks == ["A1", "A2"]
    assert state_b.chunks == ["B1", "B2"]
    assert state_a.done and state_b.done
    assert json.loads(state_b.result.content) == {"contextualDefinitions": ["B1B2"]}
