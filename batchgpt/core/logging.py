"""Logging setup for applications embedding batchgpt.

Engine components log through the logger they are given, attaching
``request_key`` and ``attempt`` as ``extra`` fields. Both formatters here
render those fields.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

from batchgpt.core.config import settings

_CONTEXT_FIELDS = ("request_key", "attempt")


def _request_context(record: logging.LogRecord) -> dict[str, Any]:
    return {name: getattr(record, name) for name in _CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_request_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Pipe-delimited lines with the request context appended."""

    def __init__(self):
        super().__init__("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _request_context(record)
        if not context:
            return line
        rendered = " ".join(f"{name}={value!r}" for name, value in context.items())
        first, sep, rest = line.partition("\n")
        return f"{first} | {rendered}{sep}{rest}"


def setup_logging(level: str | None = None, log_json: bool | None = None, stream: IO[str] | None = None) -> None:
    """Install a single root handler. Library code never calls this."""
    numeric_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    use_json = settings.log_json if log_json is None else log_json

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if use_json else TextFormatter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # The transport logs every request at INFO
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
