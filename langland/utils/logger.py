"""
日志工具模块

连接相关的日志通过 extra 带上上下文:
    logger.info("...", extra={"client_id": conn.client_id, "request_id": frame.id})
"""

import json
import logging
import sys
from datetime import datetime

# extra 中会被输出的上下文字段
CONTEXT_FIELDS = ("client_id", "request_id")

NO_CLIENT = "-"


class StructuredFormatter(logging.Formatter):
    """JSON 结构化日志格式化器"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None and value != NO_CLIENT:
                log_entry[name] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False)


class ClientContextFilter(logging.Filter):
    """文本格式下补齐 client_id，未带上下文的日志显示为 '-'"""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "client_id", None) is None:
            record.client_id = NO_CLIENT
        return True


def setup_logging(
    level: str = "INFO",
    structured: bool = False,
) -> None:
    """
    配置应用级日志

    Args:
        level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        structured: 是否使用 JSON 结构化格式
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.addFilter(ClientContextFilter())
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(client_id)s] %(message)s"
        ))

    root_logger.addHandler(handler)

    # 降低第三方库的日志级别
    for name in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
