"""Logging configuration utilities."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def setup_logging(level: int | str = logging.INFO) -> None:
    """Route stdlib logging and structlog through a single JSON renderer."""

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.filter_by_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.processors.add_log_level],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger[Any]:
    """Return a configured structlog logger."""

    return structlog.get_logger(name)


def bind_request_context(**values: Any) -> None:
    """Attach user/session identifiers to every log line of the current task."""

    structlog.contextvars.bind_contextvars(**{key: value for key, value in values.items() if value is not None})


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
