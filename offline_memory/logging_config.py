"""Structured logging configuration for OfflineMemory."""

import json
import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Callable

# Context variable for per-hook request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(''),
        }

        # Add extra fields
        if hasattr(record, 'duration_ms'):
            log_data['duration_ms'] = record.duration_ms
        if hasattr(record, 'hook_name'):
            log_data['hook_name'] = record.hook_name
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_logging(level: str = "INFO", structured: bool = False) -> logging.Handler:
    """
    Install a single stream handler on the package logger.

    Calling it again replaces the previous handler instead of stacking.
    """
    package_logger = logging.getLogger("offline_memory")
    for existing in list(package_logger.handlers):
        if getattr(existing, "_offline_memory", False):
            package_logger.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(PLAIN_FORMAT))
    handler._offline_memory = True
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    return handler


def with_request_id(func: Callable) -> Callable:
    """Decorator to tag every log line of a hook call with one request ID."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        request_id = str(uuid.uuid4())[:8]
        token = request_id_var.set(request_id)
        start = time.perf_counter()

        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            logger = logging.getLogger(func.__module__)
            logger.debug(
                "Hook completed",
                extra={'duration_ms': round(duration_ms, 2), 'hook_name': func.__name__}
            )
            request_id_var.reset(token)

    return wrapper
