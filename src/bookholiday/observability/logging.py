"""Structured JSON logging with correlation ID support.

One JSON object per line on stdout. Fields passed as
extra={"extra_fields": safe_log_context(...)} are merged at the top level.
Lines emitted off the main thread (refresh scheduler, threadpool) carry the
thread name.
"""

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

_DEFAULT_LEVEL = "INFO"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        if record.threadName and record.threadName != threading.main_thread().name:
            log_obj["thread"] = record.threadName

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_obj.update(record.extra_fields)

        return json.dumps(log_obj, default=str)


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", _DEFAULT_LEVEL).strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Get a logger writing JSON lines to stdout at LOG_LEVEL (default INFO)."""
    logger = logging.getLogger(name)

    # Only configure once per logger name
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_from_env())
        logger.propagate = False

    return logger
