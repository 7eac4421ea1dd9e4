"""Logging setup for applications embedding studycore.

The package only emits structlog events; call configure_logging() once at
startup to choose the level and renderer.
"""

from __future__ import annotations

import logging

import structlog

from studycore.config import LOG_LEVEL


def configure_logging(level: str | None = None) -> None:
    """Route structlog events through a key=value renderer at the given level."""
    lvl = logging.getLevelName((level or LOG_LEVEL).upper())
    if not isinstance(lvl, int):
        lvl = logging.INFO
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        cache_logger_on_first_use=False,
    )
