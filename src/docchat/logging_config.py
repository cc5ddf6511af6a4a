"""Loguru as the only log backend.

``setup_logging()`` installs the stderr sink (human-readable or JSON) and
reroutes the stdlib loggers of the libraries underneath the chat pipeline
so their records share one format and level.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

# Libraries that log through stdlib ``logging``.
THIRD_PARTY_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "fastapi",
    "openai",
    "httpx",
    "httpcore",
    "pydantic_ai",
)

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Forward a stdlib record to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real call site.
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(*, level: str = "INFO", json: bool = False, log_file: Path | None = None) -> None:
    """(Re)configure logging for the process.

    Args:
        level: Minimum level for every sink and for intercepted loggers.
        json: Serialize records as JSON lines instead of the coloured text format.
        log_file: Also write to this file, rotated at 10 MB with five backups kept.
    """
    level = level.upper()
    if json:
        sinks = [{"sink": sys.stderr, "level": level, "serialize": True}]
    else:
        sinks = [{"sink": sys.stderr, "level": level, "format": _TEXT_FORMAT, "colorize": True}]
    if log_file is not None:
        sinks.append({"sink": log_file, "level": level, "rotation": "10 MB", "retention": 5, "enqueue": True})
    logger.configure(handlers=sinks)

    handler = InterceptHandler()
    logging.basicConfig(handlers=[handler], level=level, force=True)
    for name in THIRD_PARTY_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [handler]
        std_logger.propagate = False
