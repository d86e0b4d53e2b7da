"""Structured logging for subscription accounting.

Records are JSON objects carrying the correlation ID of the handler call
that produced them and, while a service operation runs, the user and
subscription it acts on. A quota rejection or a provider retry can then be
traced back to one client action on one account.
"""

import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from canvascue.core.tracing import get_span_id, get_trace_id

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_account: ContextVar[Optional[dict[str, str]]] = ContextVar("account", default=None)

# LogRecord attributes that are not caller supplied context
_RECORD_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName", "correlation_id",
))

_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "stripe")


# ==================== Context ====================

def get_correlation_id() -> str:
    """Correlation ID of the current handler call.

    Falls back to the active trace ID, then to a fresh UUID that sticks for
    the rest of the context.
    """
    cid = _correlation_id.get()
    if cid is not None:
        return cid
    trace_id = get_trace_id()
    if trace_id:
        return trace_id
    cid = str(uuid.uuid4())
    _correlation_id.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id.set(None)


@contextmanager
def account_context(
    user_id: Optional[Any] = None,
    subscription_id: Optional[Any] = None,
) -> Iterator[dict[str, str]]:
    """Tag every record logged inside the block with the account it concerns."""
    token = _account.set(dict(_account.get() or {}))
    bind_account(user_id, subscription_id)
    account = _account.get()
    try:
        yield account
    finally:
        _account.reset(token)


def bind_account(user_id: Optional[Any] = None, subscription_id: Optional[Any] = None) -> None:
    """Tag the rest of the current context's records with an account."""
    account = dict(_account.get() or {})
    if user_id is not None:
        account["user_id"] = str(user_id)
    if subscription_id is not None:
        account["subscription_id"] = str(subscription_id)
    _account.set(account)


def get_account_context() -> dict[str, str]:
    return dict(_account.get() or {})


def clear_account_context() -> None:
    _account.set(None)


# ==================== Formatting ====================

class StructuredFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def __init__(
        self,
        include_stack_trace: bool = True,
        include_extra_fields: bool = True,
    ):
        super().__init__()
        self.include_stack_trace = include_stack_trace
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        trace_id, span_id = get_trace_id(), get_span_id()
        if trace_id:
            entry["trace_id"] = trace_id
        if span_id:
            entry["span_id"] = span_id

        account = get_account_context()
        if account:
            entry["account"] = account

        if record.exc_info and self.include_stack_trace:
            entry["exception"] = self._exception(record.exc_info)

        if self.include_extra_fields:
            extra = self._extra(record)
            if extra:
                entry["extra"] = extra

        return json.dumps(entry, default=str)

    @staticmethod
    def _exception(exc_info) -> dict:
        exc_type, exc_value, exc_tb = exc_info
        return {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stack_trace": traceback.format_exception(*exc_info) if exc_tb else None,
        }

    @staticmethod
    def _extra(record: logging.LogRecord) -> dict:
        extra = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            extra[key] = value
        return extra


class CorrelationIdFilter(logging.Filter):
    """Stamp ``correlation_id`` on records for the plain text format."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Route all logging to stdout, as JSON unless ``json_format`` is off.

    Args:
        level: Root log level name
        json_format: Emit StructuredFormatter JSON instead of text lines
        include_stack_trace: Add formatted tracebacks to JSON error records
    """
    level_no = getattr(logging, level.upper())
    root = logging.getLogger()
    root.setLevel(level_no)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level_no)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s"
        ))
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ==================== Helpers ====================

def _log(
    logger: logging.Logger,
    level: int,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    extra["correlation_id"] = get_correlation_id()
    logger.log(level, message, exc_info=exception, extra=extra)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[Exception] = None,
    **extra: Any,
) -> None:
    """Log an error, with the exception's traceback when given."""
    _log(logger, logging.ERROR, message, exception, **extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.WARNING, message, **extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.INFO, message, **extra)


def log_quota_rejection(
    logger: logging.Logger,
    subscription_id: Any,
    quota_kind: str,
    used: int,
    limit: int,
) -> None:
    """Warn that a usage change was refused because a tier quota is used up."""
    log_warning(
        logger,
        f"{quota_kind.capitalize()} design quota reached for subscription "
        f"{subscription_id} ({used}/{limit})",
        subscription_id=str(subscription_id),
        quota_kind=quota_kind,
        used=used,
        limit=limit,
    )
