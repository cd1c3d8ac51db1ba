"""Structured logging for toolchat.

Every record is one JSON line on stdout. Context attached through
``extra={"context": {...}}`` or a bound adapter ends up under ``context``;
values under phone-like keys are masked so subscriber numbers never land in
log storage in full.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

PHONE_KEYS = frozenset({"phone", "phone_number", "from", "to_number"})
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def mask_phone(value: Any) -> Any:
    """Keep the last four digits of a phone-like value, e.g. ``whatsapp:+1***4567``."""
    if not isinstance(value, str):
        return value
    prefix, _, number = value.rpartition(":")
    digits = number.lstrip("+")
    if len(digits) <= 4:
        return value
    lead = "+" if number.startswith("+") else ""
    masked = f"{lead}{digits[0]}***{digits[-4:]}"
    return f"{prefix}:{masked}" if prefix else masked


def _scrub(context: Dict[str, Any]) -> Dict[str, Any]:
    return {key: mask_phone(value) if key in PHONE_KEYS else value for key, value in context.items()}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = _scrub(context)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route the root logger to stdout as JSON, replacing any existing handlers."""
    root_logger = logging.getLogger()
    resolved = logging.getLevelName(level.upper())
    root_logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(JSONFormatter())
    root_logger.addHandler(stream)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"toolchat.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Merges the adapter's bound fields with a per-call ``context=`` mapping."""

    def process(self, msg: str, kwargs: Dict[str, Any]):
        call_context: Optional[Dict[str, Any]] = kwargs.pop("context", None)
        merged = {**self.extra, **(call_context or {})}
        if merged:
            kwargs["extra"] = {**kwargs.get("extra", {}), "context": merged}
        return msg, kwargs


def bind_logger(logger: logging.Logger, **fields: Any) -> LoggerAdapter:
    """Bind channel/session fields once so every line of one exchange carries them."""
    return LoggerAdapter(logger, fields)
