"""Structured logging configuration for Autopilot Memory."""

import json
import logging
import sys
import time
import uuid
from typing import Any, Callable
from contextvars import ContextVar
from functools import wraps

# Context variable for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

# Attributes passed via ``extra=`` that end up in structured output
EXTRA_FIELDS = ("tool_name", "duration_ms", "outcome", "scope", "memory_id")

NOISY_LOGGERS = ("sentence_transformers", "httpx", "urllib3", "qdrant_client")


class StructuredFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(''),
        }
        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", structured: bool = False) -> None:
    """
    Configure root logging to stderr.

    stdout carries the MCP stdio transport, so nothing may log there.
    """
    handler = logging.StreamHandler(sys.stderr)
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _outcome(result: Any) -> str:
    # Tools report failures as {"error": ...} instead of raising
    if isinstance(result, dict) and "error" in result:
        return "error"
    return "ok"


def with_request_id(func: Callable) -> Callable:
    """
    Tag a tool call with a short request id and log its duration and outcome.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        token = request_id_var.set(uuid.uuid4().hex[:8])
        start = time.perf_counter()
        outcome = "exception"

        try:
            result = await func(*args, **kwargs)
            outcome = _outcome(result)
            return result
        finally:
            logging.getLogger(func.__module__).info(
                "Tool completed",
                extra={
                    'tool_name': func.__name__,
                    'duration_ms': round((time.perf_counter() - start) * 1000, 2),
                    'outcome': outcome,
                },
            )
            request_id_var.reset(token)

    return wrapper
