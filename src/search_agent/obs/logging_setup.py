"""structlog/stdlib logging bootstrap."""

from __future__ import annotations

import logging
import logging.config

import structlog
from structlog.dev import ConsoleRenderer

_CONFIGURED = False
_LOCAL_ENVIRONMENTS = ("", "local", "development", "dev", "test")


def configure_logging(log_level: str = "INFO", *, environment: str = "local") -> None:
    """Configure structured logging once per process.

    Local environments get a colored console renderer; everything else emits
    JSON lines for log aggregation.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if environment.lower() in _LOCAL_ENVIRONMENTS:
        renderer = ConsoleRenderer(colors=True, pad_event=40)
    else:
        renderer = structlog.processors.JSONRenderer()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                    "foreign_pre_chain": shared_processors,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "structured",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {"handlers": ["default"], "level": log_level},
            "loggers": {
                "uvicorn.access": {"level": "INFO"},
                "uvicorn.error": {"level": "INFO"},
                "httpx": {"level": "WARNING"},
            },
        }
    )

    _CONFIGURED = True
