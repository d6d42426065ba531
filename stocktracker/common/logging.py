"""
JSON-lines logging for the tracker.

Every record is written as one JSON object on stdout with a fixed envelope
(`timestamp`, `severity`, `service`, `env`, `version`, `event_type`, `message`,
`logger`) followed by any `extra` fields. Semantic events go through
`log_event`, which sets a stable `event_type`:

    log_event(logger, "sync.bulk_replace", operation="set_targets", ops=120)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

SERVICE_NAME = "stocktracker"

_SEVERITIES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_SEVERITY_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}

# Attributes every LogRecord carries; anything else on a record came from `extra`.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}
_ENVELOPE_KEYS = frozenset({"timestamp", "severity", "service", "env", "version", "event_type", "logger"})


def _one_line(value: Any, limit: int) -> str:
    text = "" if value is None else str(value)
    text = " ".join(text.splitlines()).strip()
    return text if len(text) <= limit else text[: limit - 1] + "…"


def _first_env(*names: str, default: str) -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return _one_line(value, 128)
    return default


def _severity(value: Any) -> str:
    name = str(value or "INFO").strip().upper()
    name = _SEVERITY_ALIASES.get(name, name)
    return name if name in _SEVERITIES else "INFO"


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, service: str | None = None, env: str | None = None, version: str | None = None) -> None:
        super().__init__()
        self.service = service or _first_env("SERVICE_NAME", default=SERVICE_NAME)
        self.env = env or _first_env("ENVIRONMENT", "ENV", default="unknown")
        self.version = version or _first_env("APP_VERSION", default="unknown")

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": _severity(record.levelname),
            "service": self.service,
            "env": self.env,
            "version": self.version,
            "event_type": getattr(record, "event_type", None) or "log",
            "message": _one_line(record.getMessage(), 4000),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in _ENVELOPE_KEYS or key.startswith("_"):
                continue
            payload[key] = value

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def init_structured_logging(
    *,
    service: str | None = None,
    env: str | None = None,
    version: str | None = None,
    level: str | int | None = None,
) -> None:
    """Route the root logger to stdout as JSON lines. Replaces existing handlers."""
    lvl = level or (os.getenv("LOG_LEVEL") or "INFO").upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    logging.captureWarnings(True)


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    **fields: Any,
) -> None:
    lvl = logging.getLevelName(_severity(severity))
    logger.log(lvl, message or event_type, extra={"event_type": event_type, **fields})
