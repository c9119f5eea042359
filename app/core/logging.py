"""Structured key=value logging for the Context Engine.

All loggers hang off the ``app`` logger, which owns the single stdout handler.
The chat endpoint binds a request id once per request; every line logged while
that request is being served (pipeline stages, degraded fallbacks, the
background audit write) carries it automatically.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

ROOT_LOGGER = "app"

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def bind_request_id(request_id: str) -> None:
    """Tag subsequent log lines in this context with ``request_id``."""
    _request_id.set(request_id)


class RequestContextFilter(logging.Filter):
    """Copy the bound request id onto each record that lacks one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            request_id = _request_id.get()
            if request_id is not None:
                record.request_id = request_id
        return True


def _quote(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or "=" in text:
        return '"' + text.replace('"', '\\"') + '"'
    return text


class StructuredFormatter(logging.Formatter):
    """One ``key=value`` line per record; values with spaces are quoted."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
        }
        if hasattr(record, "request_id"):
            fields["request_id"] = record.request_id
        fields["message"] = record.getMessage()
        fields.update(getattr(record, "extra_data", None) or {})

        line = " ".join(f"{key}={_quote(value)}" for key, value in fields.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return root

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(RequestContextFilter())
    root.addHandler(handler)

    try:
        from app.core.config import get_settings

        env = get_settings().CONTEXT_ENGINE_ENV
    except Exception:
        # Settings not loadable yet (missing env)
        env = "prod"
    root.setLevel(logging.DEBUG if env == "dev" else logging.INFO)
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the shared ``app`` hierarchy.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger whose records are formatted by StructuredFormatter
    """
    _configure_root()
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: int, msg: str, **fields: Any) -> None:
    """
    Log with additional structured fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **fields: Extra key=value fields (e.g., agent_id, company_id); a
            ``request_id`` here overrides the bound one for this line
    """
    extra: dict[str, Any] = {"extra_data": fields}
    if "request_id" in fields:
        extra["request_id"] = fields.pop("request_id")
    logger.log(level, msg, extra=extra)
