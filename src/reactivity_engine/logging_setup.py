"""Utility helpers for configuring structlog logging."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

from .config import LoggingConfig


def configure_logging(settings: LoggingConfig | None = None) -> None:
    """Configure structlog to emit JSON or key/value logs.

    Parameters
    ----------
    settings:
        Logging section of the application configuration. ``level`` selects the
        stdlib level, ``render_json`` picks the renderer and ``log_file`` adds a
        file handler next to the stdout stream.
    """

    settings = settings or LoggingConfig()
    level = getattr(logging, settings.level.upper(), logging.INFO)
    handlers: list[logging.Handler] = []

    if settings.render_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.processors.KeyValueRenderer(key_order=["event", "level", "timestamp"])

    shared_processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(key="timestamp", fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    handlers.append(logging.StreamHandler(sys.stdout))

    logging.basicConfig(level=level, handlers=handlers, format="%(message)s", force=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "reactivity_engine") -> structlog.stdlib.BoundLogger:
    """Return a logger bound to the given module namespace."""

    return structlog.get_logger(name)


__all__ = ["configure_logging", "get_logger"]
