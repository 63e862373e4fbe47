"""
日志格式测试
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from langland.api.websocket import ConnectionManager, handle_text_message
from langland.models.protocol import RequestFrame, UpdateWordStatus
from langland.utils.logger import ClientContextFilter, StructuredFormatter, setup_logging


def make_record(**extra):
    record = logging.LogRecord("langland.test", logging.INFO, __file__, 1, "客户端连接", None, None)
    for name, value in extra.items():
        setattr(record, name, value)
    return record


def test_structured_formatter_includes_client_context():
    line = StructuredFormatter().format(make_record(client_id="c1", request_id="r1"))
    entry = json.loads(line)
    assert entry["message"] == "客户端连接"
    assert entry["client_id"] == "c1"
    assert entry["request_id"] == "r1"


def test_structured_formatter_without_context():
    entry = json.loads(StructuredFormatter().format(make_record()))
    assert "client_id" not in entry
    assert "request_id" not in entry


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_text_format_shows_client_id(restore_root_logger):
    setup_logging(level="DEBUG")
    [handler] = restore_root_logger.handlers

    record = make_record(client_id="c1")
    assert handler.filter(record)
    assert "[c1] 客户端连接" in handler.format(record)

    record = make_record()
    assert handler.filter(record)
    assert "[-] 客户端连接" in handler.format(record)


def test_structured_setup_has_no_text_filter(restore_root_logger):
    setup_logging(structured=True)
    [handler] = restore_root_logger.handlers
    assert isinstance(handler.formatter, StructuredFormatter)
    assert not any(isinstance(f, ClientContextFilter) for f in handler.filters)


@pytest.mark.asyncio
async def test_request_timeout_log_carries_client_and_request(caplog):
    websocket = MagicMock()
    websocket.accept = AsyncMock()
    websocket.send_text = AsyncMock()
    manager = ConnectionManager()
    conn = await manager.connect(websocket, "c9")

    async def hang(message, client_id):
        await asyncio.sleep(10)

    class SlowRouter:
        handle = staticmethod(hang)

    frame = RequestFrame.of(UpdateWordStatus(word="run", familiarity_level=2), request_id="r9")
    with caplog.at_level(logging.WARNING, logger="langland.api.websocket"):
        await handle_text_message(conn, frame.to_json(), SlowRouter(), manager, timeout=0.05)
        for task in list(conn.tasks):
            await task

    [record] = [r for r in caplog.records if r.getMessage() == "请求处理超时"]
    assert record.client_id == "c9"
    assert record.request_id == "r9"
