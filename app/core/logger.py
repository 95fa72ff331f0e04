from __future__ import annotations

import json
import logging
import re
import sys
from typing import Any

from app.core.config import settings

# Attributes every LogRecord carries; anything else came in via ``extra=``
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Authorization codes, state values and tokens travel in callback query strings
_SECRET_PARAMS = re.compile(r"(?P<key>\b(?:code|state|token|access_token|refresh_token|client_secret)=)[^&\s\"']+")


def redact(text: str) -> str:
    return _SECRET_PARAMS.sub(r"\g<key>[redacted]", text)


class RedactingFilter(logging.Filter):
    """Masks OAuth secrets in the rendered message before any handler formats it."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting logic
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RECORD_ATTRS:
                continue
            payload.setdefault("extra", {})[key] = value
        return json.dumps(payload, default=str)


def init_logging(level: int | None = None) -> None:
    root = logging.getLogger()
    if any(isinstance(f, RedactingFilter) for h in root.handlers for f in h.filters):
        return
    effective_level = level or getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_FORMAT.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    handler.addFilter(RedactingFilter())
    root.setLevel(effective_level)
    root.addHandler(handler)
    # httpx logs every provider request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
