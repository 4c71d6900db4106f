from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Literal

import structlog

LogFormat = Literal["json", "console"]


def configure_logging(level: str = "INFO", *, log_format: LogFormat = "json") -> None:
    """Configure structlog and standard logging for the orchestration core.

    Values bound with :func:`request_context` are merged into every event
    emitted while the binding is active, including from spawned tasks.
    """
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer: structlog.types.Processor
    if log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def request_context(**bindings: Any) -> Iterator[None]:
    """Bind request-scoped fields such as ``conversation_id`` for nested log calls."""
    with structlog.contextvars.bound_contextvars(**bindings):
        yield


def get_logger(*, name: str | None = None, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    if kwargs:
        return logger.bind(**kwargs)
    return logger
