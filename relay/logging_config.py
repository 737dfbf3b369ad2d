"""Structured logging for the relay service.

Production writes one JSON object per line to stdout; `debug` mode switches to a
readable single-line format. Per-turn identifiers travel in the `context` extra.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

SERVICE_NAME = "relay"

# third-party loggers that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "urllib3")


def _record_context(record: logging.LogRecord) -> Optional[dict]:
    context = getattr(record, "context", None)
    return context if isinstance(context, dict) and context else None


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = _record_context(record)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """`12:00:01 INFO relay.pipeline message key=value ...` for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{stamp} {record.levelname:<7} {record.name} {record.getMessage()}"
        context = _record_context(record)
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Replace root handlers with a single stdout handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{SERVICE_NAME}.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Carries one turn's identifiers (workspace, agent, conversation) into every record.

    A per-call `context=` kwarg is merged over the bound identifiers.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**self.extra, **(kwargs.pop("context", None) or {})}
        extra = kwargs.get("extra") or {}
        context.update(extra.get("context") or {})
        if context:
            kwargs["extra"] = {**extra, "context": context}
        return msg, kwargs

    def bind(self, **context: Any) -> "LoggerAdapter":
        return LoggerAdapter(self.logger, {**self.extra, **context})
