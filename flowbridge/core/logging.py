"""Logging configuration for FlowBridge.

Every record carries a context of correlation ids. The request middleware
scopes a ``request_id``, the protocol bridge scopes the ``server_id`` of the
MCP server handling a message, and the execution coordinator tags its
records with ``execution_id`` and ``node_id`` through :func:`log_with_context`.
Both formatters render those ids: the plain one as a ``[key=value ...]``
suffix, the structured one as top-level JSON fields.
"""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

# Rendered in this order by ContextFormatter
CORRELATION_FIELDS = ("request_id", "server_id", "execution_id", "node_id")

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"

# Replaced, never mutated, so copies held by other contexts stay intact
_log_context: ContextVar[Dict[str, Any]] = ContextVar("flowbridge_log_context", default={})


def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    context = getattr(record, "context", None)
    return context if isinstance(context, dict) else {}


def correlation_ids(record: logging.LogRecord) -> Dict[str, Any]:
    """The correlation ids present on a record, in rendering order."""
    context = _record_context(record)
    return {key: context[key] for key in CORRELATION_FIELDS if context.get(key) is not None}


class ContextFilter(logging.Filter):
    """Merge the active log context into ``record.context``.

    Fields passed per call (see :func:`log_with_context`) win over the
    scoped ones.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = dict(_log_context.get())
        context.update(_record_context(record))
        record.context = context
        return True


class ContextFormatter(logging.Formatter):
    """Plain-text formatter that appends the correlation ids of a record."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        ids = correlation_ids(record)
        if not ids:
            return line
        return f"{line} [{' '.join(f'{key}={value}' for key, value in ids.items())}]"


class StructuredFormatter(logging.Formatter):
    """JSON formatter; correlation ids become top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }
        log_entry.update(correlation_ids(record))

        extra = {
            key: value for key, value in _record_context(record).items()
            if key not in CORRELATION_FIELDS
        }
        if extra:
            log_entry["context"] = extra

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_entry, default=str)


_context_filter = ContextFilter()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the root logger for the service.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path, rotated at ``max_size`` bytes
        log_format: Format string for plain-text output
        structured: Emit JSON lines instead of plain text
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Root logger instance
    """
    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ContextFormatter(fmt=log_format or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_context_filter)
        root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("flowbridge.core").setLevel(logging.DEBUG if level.upper() == "DEBUG" else logging.INFO)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def current_logging_context() -> Dict[str, Any]:
    return dict(_log_context.get())


def set_logging_context(**fields) -> Token:
    """Add fields to the active context; pass the token to clear_logging_context to undo."""
    return _log_context.set({**_log_context.get(), **fields})


def clear_logging_context(token: Optional[Token] = None) -> None:
    """Restore the context from before ``token`` was issued, or empty it."""
    if token is not None:
        _log_context.reset(token)
    else:
        _log_context.set({})


@contextmanager
def logging_context(**fields) -> Iterator[Dict[str, Any]]:
    """Scope fields to the records logged inside the block."""
    token = set_logging_context(**fields)
    try:
        yield current_logging_context()
    finally:
        clear_logging_context(token)


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with per-call context fields such as ``execution_id`` or ``node_id``."""
    logger.log(level, message, extra={"context": context})
