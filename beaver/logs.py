"""structlog setup shared by the library and the party node."""

from __future__ import annotations

import logging

import structlog

from beaver.config import LOG_LEVEL


def configure_logging(level: str = LOG_LEVEL, *, json: bool = False) -> None:
    """Configure structlog with a level-filtering bound logger.

    Key material, shares and triple values must never be passed as event
    fields; only ids, counts, phases and party indices are logged.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=False,
    )
