"""
Logging configuration and utilities.

Provides structlog setup, run ID tracking across a pipeline execution,
secret redaction, and performance timing.
"""
import functools
import inspect
import logging
import sys
import time
import uuid
from contextvars import ContextVar, Token
from typing import Any, Callable, Optional

import structlog

# Context variable for the pipeline run ID (task-local under asyncio)
run_id: ContextVar[str] = ContextVar("run_id", default="")

logger = structlog.get_logger(__name__)

# Sensitive fields to redact from logs
SENSITIVE_FIELDS = {
    "api_key", "gemini_api_key", "openai_api_key",
    "authorization", "token", "secret", "password",
}


def get_run_id() -> str:
    """Get the current pipeline run ID."""
    return run_id.get()


def bind_run_id(value: Optional[str] = None) -> Token:
    """
    Set the run ID for the current context, generating one if not given.

    Returns:
        Token for reset_run_id().
    """
    return run_id.set(value or str(uuid.uuid4()))


def reset_run_id(token: Token) -> None:
    """Restore the run ID that was current before bind_run_id()."""
    run_id.reset(token)


def redact_sensitive_data(data: dict, depth: int = 0) -> dict:
    """
    Recursively redact sensitive fields from a dictionary.

    Args:
        data: Dictionary to redact
        depth: Current recursion depth (to prevent infinite loops)

    Returns:
        Dictionary with sensitive values replaced with "[REDACTED]"
    """
    if depth > 5 or not isinstance(data, dict):
        return data

    redacted = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
            redacted[key] = "[REDACTED]"
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive_data(value, depth + 1)
        else:
            redacted[key] = value

    return redacted


def add_run_id_processor(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Structlog processor that adds the run ID to all log entries."""
    current = get_run_id()
    if current:
        event_dict["run_id"] = current
    return event_dict


def redact_sensitive_processor(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Structlog processor that redacts credentials from log entries."""
    return redact_sensitive_data(event_dict)


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog on top of the standard library logging module.

    Args:
        level: Root log level name.
        json_logs: Render JSON lines when True, console output otherwise.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_run_id_processor,
            redact_sensitive_processor,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def log_performance(operation_name: str):
    """
    Decorator to log performance timing for functions.

    Usage:
        @log_performance("concept_linking")
        async def link(entities, taxonomy):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            start_time = time.perf_counter()
            logger.debug("operation_started", operation=operation_name)

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.error(
                    "operation_failed",
                    operation=operation_name,
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_ms=round(duration_ms, 2),
                )
                raise

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "operation_completed",
                operation=operation_name,
                duration_ms=round(duration_ms, 2),
            )
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            start_time = time.perf_counter()
            logger.debug("operation_started", operation=operation_name)

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.error(
                    "operation_failed",
                    operation=operation_name,
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_ms=round(duration_ms, 2),
                )
                raise

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "operation_completed",
                operation=operation_name,
                duration_ms=round(duration_ms, 2),
            )
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
