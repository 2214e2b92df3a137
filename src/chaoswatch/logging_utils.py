from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Any

from chaoswatch.logging_context import LOG_CONTEXT_FIELDS, get_logging_context
from chaoswatch.security.redaction import redact_data

_QUIET_LIBRARY_LOGGERS = {"httpx": "HTTPX_LOG_LEVEL", "httpcore": "HTTPCORE_LOG_LEVEL"}


class JsonFormatter(logging.Formatter):
    """One redacted JSON object per record; stdout stays free for CLI output."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = getattr(record, "extra", None)
        if isinstance(extras, dict):
            payload.update(extras)

        context = get_logging_context()
        for name in LOG_CONTEXT_FIELDS:
            payload.setdefault(name, context.get(name))

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["error_type"] = exc_type.__name__ if exc_type else "Exception"
            payload["error_message"] = "" if exc_value is None else str(exc_value)
            payload["traceback"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["traceback"] = record.exc_text

        return json.dumps(redact_data(payload), default=str)


def parse_log_level(value: str | int | None, default: int = logging.INFO) -> int:
    if isinstance(value, int):
        return value
    if value is None or not value.strip():
        return default
    resolved = logging.getLevelName(value.strip().upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: str | int | None = None) -> int:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    resolved = parse_log_level(level if level is not None else os.getenv("LOG_LEVEL"))
    root.setLevel(resolved)

    # httpx and httpcore log every request at INFO.
    library_default = logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
    for name, env_name in _QUIET_LIBRARY_LOGGERS.items():
        logging.getLogger(name).setLevel(parse_log_level(os.getenv(env_name), library_default))
    return resolved
