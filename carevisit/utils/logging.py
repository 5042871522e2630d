"""Structured logging for polls and transitions: correlation ids, timing, and PII scrubbing."""

import logging
import time
import uuid
import re
import hashlib
from contextvars import ContextVar
from typing import Any, Optional, Dict, Callable, Awaitable
from contextlib import contextmanager
from functools import wraps
from datetime import datetime, timezone

from carevisit.utils.logging_config import LoggingConfig, get_logger


_correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

_EMAIL = re.compile(r'[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}', re.IGNORECASE)
_PHONE = re.compile(r'\b\+?\d[\d\s().-]{7,}\b')
_BEARER = re.compile(r'(?i)bearer\s+[A-Za-z0-9._~+/=-]+')
_SECRET = re.compile(r'(?i)(api[_-]?key|token|secret|password|auth)[\s:=]+([A-Za-z0-9_-]{20,})')


def generate_correlation_id(prefix: str = "req") -> str:
    """New id such as ``poll_3f9a...`` tying together the logs of one poll or transition."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None, prefix: str = "req"):
    """Scope a correlation id to the enclosed block; the previous id is restored on exit."""
    if correlation_id is None:
        correlation_id = generate_correlation_id(prefix)

    token = _correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id_var.reset(token)


def mask_sensitive_data(text: str) -> str:
    """
    Scrub caregiver/client PII and credentials from free text before logging.

    Server error bodies and httpx exception strings can echo emails, phone
    numbers, or the bearer token; all are replaced with placeholders.
    """
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text

    text = _EMAIL.sub('[REDACTED_EMAIL]', text)
    text = _PHONE.sub('[REDACTED_PHONE]', text)
    text = _BEARER.sub('Bearer [REDACTED]', text)
    return _SECRET.sub(r'\1=[REDACTED]', text)


def mask_user_id(user_id: Optional[str]) -> Optional[str]:
    """Shorten long caregiver ids to a prefix plus hash; short numeric ids pass through."""
    if not LoggingConfig.LOG_MASK_SENSITIVE or not user_id:
        return user_id

    user_id = str(user_id)
    if len(user_id) > 12:
        digest = hashlib.sha256(user_id.encode()).hexdigest()[:8]
        return f"{user_id[:4]}...{digest}"
    return user_id


class StructuredLogger:
    """
    Thin wrapper over ``logging.Logger``.

    Keyword arguments become fields on the log record (and keys in the JSON
    output), stamped with the current correlation id when one is set.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _fields(self, **kwargs: Any) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
        correlation_id = get_correlation_id()
        if correlation_id:
            fields["correlation_id"] = correlation_id
        fields.update(kwargs)
        return fields

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._fields(**kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._fields(**kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._fields(**kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, extra=self._fields(**kwargs), exc_info=exc_info)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation_name: str, logger: Optional[StructuredLogger] = None, **context: Any):
    """Log how long the block took at debug; warn when it exceeds the slow threshold."""
    if logger is None:
        logger = get_structured_logger(__name__)

    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(
            f"Completed {operation_name}",
            operation=operation_name,
            processing_time_ms=elapsed_ms,
            **context
        )
        if elapsed_ms > LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS:
            logger.warning(
                f"Slow operation detected: {operation_name}",
                operation=operation_name,
                processing_time_ms=elapsed_ms,
                threshold_ms=LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS,
                **context
            )


def timed(operation_name: Optional[str] = None, logger: Optional[StructuredLogger] = None):
    """Wrap a coroutine function in ``log_timing``."""
    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        op_name = operation_name or f"{func.__module__}.{func.__name__}"
        log = logger or get_structured_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            with log_timing(op_name, logger=log):
                return await func(*args, **kwargs)

        return wrapper

    return decorator
