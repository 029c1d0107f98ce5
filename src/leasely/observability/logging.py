"""JSON log lines for Cloud Logging, tagged with the correlation id.

Each line carries ``severity`` (the key Cloud Logging reads), the service
name, and whatever the caller passed through ``extra={"extra_fields": ...}``.
Settlement workers pass already-redacted fields (see redaction.safe_log_context).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

SERVICE_NAME = "leasely"
DEFAULT_LEVEL = "INFO"


def _configured_level() -> str:
    level = os.environ.get("LOG_LEVEL", DEFAULT_LEVEL).upper()
    if not isinstance(logging.getLevelName(level), int):
        return DEFAULT_LEVEL
    return level


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "severity": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlationId"] = correlation_id

        if record.levelno >= logging.ERROR:
            entry["sourceLocation"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        fields = getattr(record, "extra_fields", None)
        if fields:
            # Reserved keys win over caller fields.
            entry = {**fields, **entry}

        return json.dumps(entry, default=str)


def get_logger(name: str) -> logging.Logger:
    """Logger writing JSON lines to stdout at LOG_LEVEL (default INFO).

    An unknown LOG_LEVEL falls back to INFO instead of failing at import.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(_configured_level())
        logger.propagate = False

    return logger
