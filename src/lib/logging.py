"""
Structured logging for the Funnel Recovery Engine.

Every record, whether emitted through structlog by the engine services or
through stdlib logging by uvicorn and SQLAlchemy, leaves through a single
root handler. RECOVERY_DEV_MODE=1 renders for the console; otherwise each
record is one JSON object. LOG_LEVEL sets the root level.

Usage:
    from src.lib.logging import setup_logging

    setup_logging()  # once, from the app lifespan
"""

import logging
import os
import sys

import structlog

# Client and driver loggers that log every request or statement at INFO/DEBUG
QUIETED_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _renderer(dev_mode: bool) -> structlog.types.Processor:
    if dev_mode:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(level: str | None = None, dev_mode: bool | None = None) -> None:
    """
    Route structlog and stdlib logging through one stderr handler.

    Args:
        level: Root level name (defaults to LOG_LEVEL, then INFO)
        dev_mode: Console rendering instead of JSON (defaults to RECOVERY_DEV_MODE=1)
    """
    if dev_mode is None:
        dev_mode = os.environ.get("RECOVERY_DEV_MODE") == "1"
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED_PROCESSORS,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(dev_mode),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    for name in QUIETED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
