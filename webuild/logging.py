"""
Structured logging setup.

All modules log through structlog with dotted event names
(``sandbox.state.transition``, ``coordinator.request.dropped``, ...) and
key-value context. Call configure_structlog() once at startup; without it
structlog's defaults apply, which is what the tests rely on.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog


def configure_structlog(level: int | str = logging.INFO, use_json: bool = False) -> None:
    """Configure structlog with console or JSON rendering.

    Args:
        level: Minimum log level, as a logging constant or a name like "DEBUG"
        use_json: If True, use JSON renderer; otherwise use console renderer
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_from_config() -> None:
    """Configure logging from the WEBUILD_LOG_* settings."""
    from webuild.config import get_config

    config = get_config()
    configure_structlog(config.log_level, use_json=config.log_json)


def get_logger(name: str) -> Any:
    """Return a structlog logger bound to a component name."""
    return structlog.get_logger(name, component=name)
