"""
Structured logging for the storefront.

Every module logs through ``get_logger(__name__)`` with keyword events.
Request and order identifiers are bound with structlog's contextvars so they
appear on every event emitted while a request or an order operation runs.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog
from structlog.types import Processor

from storefront.core.config import get_settings

# Operations slower than this are logged as warnings
SLOW_OPERATION_MS = 500.0

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine")


def _processors(render_console: bool) -> list[Processor]:
    renderer: Processor
    if render_console:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )
    else:
        renderer = structlog.processors.JSONRenderer()

    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def configure_logging() -> None:
    """
    Configure structlog on top of the standard library root logger.

    Development renders readable console lines; every other environment
    emits one JSON object per event.
    """
    settings = get_settings()

    structlog.configure(
        processors=_processors(render_console=settings.is_development),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Bind the request id for the current context, generating one if needed.

    Returns:
        The bound request id
    """
    request_id = request_id or str(uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id


def get_request_id() -> str:
    return structlog.contextvars.get_contextvars().get("request_id", "")


@contextmanager
def bound_order(order_number: Optional[str]) -> Iterator[None]:
    """Tag every event logged inside the block with the order number."""
    with structlog.contextvars.bound_contextvars(order_number=order_number):
        yield


def clear_context() -> None:
    """Drop every bound identifier at the end of a request."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    slow_threshold_ms: float = SLOW_OPERATION_MS,
    **context: Any,
) -> Iterator[None]:
    """
    Log how long a block took, or that it failed.

    Example:
        >>> with log_performance(logger, "order_finalize", order_number="R123"):
        ...     service.finalize(order)
    """
    started = time.perf_counter()
    try:
        yield
    except Exception as e:
        logger.error(
            "Operation failed",
            operation=operation,
            duration_ms=_elapsed_ms(started),
            error_type=type(e).__name__,
            **context,
        )
        raise

    duration_ms = _elapsed_ms(started)
    emit = logger.warning if duration_ms > slow_threshold_ms else logger.info
    emit("Operation completed", operation=operation, duration_ms=duration_ms, **context)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
