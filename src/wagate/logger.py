"""
Logging setup for wagate.

Thin wrapper around loguru so every module can do:

    from wagate.logger import get_logger
    logger = get_logger(__name__)

Records emitted through the standard ``logging`` module (uvicorn, websockets)
are routed into loguru so all output shares one format.
"""

import logging
import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

logger.configure(extra={"name": "wagate"})


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.bind(name=record.name).opt(exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure the global loguru logger.

    Args:
        level: Minimum level for the console sink (e.g. "DEBUG", "INFO").
        log_file: Optional path for a rotating file sink.
    """
    level = level.upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, colorize=True)

    if log_file:
        logger.add(
            log_file,
            level=level,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=3,
            encoding="utf-8",
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "websockets"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False


def get_logger(name: str):
    """Return a loguru logger bound to the given module name."""
    return logger.bind(name=name)
