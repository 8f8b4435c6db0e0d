"""structlog setup shared by the CLI and any embedding service."""

from __future__ import annotations

import logging as _stdlib_logging
import sys

import structlog

from toolsmith.config import Settings, settings as _default_settings


def configure_logging(config: Settings | None = None) -> None:
    config = config or _default_settings
    level = _stdlib_logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = _stdlib_logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if config.env == "production"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )
