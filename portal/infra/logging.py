"""
日志配置

- dev/test 使用彩色控制台输出，其余环境输出单行 JSON（便于 Loki / ELK 采集）
- 每条日志附带当前请求的 X-Request-ID
- SecretRedactionFilter 对 extra 中疑似凭据的字段打码

凭据值不应出现在日志里：服务层只记录字段名，打码过滤器兜底处理 extra。

使用示例：
    from portal.infra.logging import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("表导入完成", extra={"environment_id": env_id, "tables": 3})
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from portal.config import get_settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "***"

# 字段名（小写）包含这些片段时视为凭据
SECRET_KEY_MARKERS = (
    "password",
    "secret",
    "token",
    "apikey",
    "api_key",
    "privatekey",
    "private_key",
    "keyfile",
    "serviceaccountkey",
    "authorization",
)

# LogRecord 自带的属性，其余属性视为 extra
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "request_id"}

_NOISY_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "aiosqlite",
    "google",
    "urllib3",
)


def get_request_id() -> str | None:
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SECRET_KEY_MARKERS)


def redact(value: Any) -> Any:
    """递归替换字典中疑似凭据字段的值"""
    if isinstance(value, dict):
        return {
            k: REDACTED if is_secret_key(str(k)) and v not in (None, "") else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        k: v for k, v in record.__dict__.items()
        if k not in _RECORD_ATTRS and not k.startswith("_")
    }


class SecretRedactionFilter(logging.Filter):
    """对 extra 中的凭据字段打码，消息文本不做处理"""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _extra_fields(record).items():
            if is_secret_key(key) and value not in (None, ""):
                setattr(record, key, REDACTED)
            elif isinstance(value, (dict, list)):
                setattr(record, key, redact(value))
        record.request_id = get_request_id()
        return True


class JSONFormatter(logging.Formatter):
    """
    单行 JSON：
        {"ts": "...", "level": "INFO", "logger": "portal.services.table_import",
         "msg": "...", "request_id": "...", "context": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            payload["request_id"] = request_id

        context = _extra_fields(record)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """开发环境：12:00:00 INFO     [1a2b3c4d] portal.services.x - message"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        request_id = getattr(record, "request_id", None)
        trace = f" [{request_id[:8]}]" if request_id else ""

        line = f"{clock} {color}{record.levelname:8}\033[0m{trace} {record.name} - {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str | None = None, json_format: bool | None = None) -> None:
    """
    配置根 logger

    Args:
        level: 日志级别，默认 settings.log_level
        json_format: 是否输出 JSON，默认 settings.log_json；两者都未设置时非 dev/test 环境使用 JSON
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    if json_format is None:
        json_format = settings.log_json
    if json_format is None:
        json_format = not settings.is_dev

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SecretRedactionFilter())
    handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class RequestTimer:
    """单调时钟计时，elapsed_ms 返回自创建以来的毫秒数"""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._start) * 1000, 2)
