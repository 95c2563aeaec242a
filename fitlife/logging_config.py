"""Loguru sink setup shared by the API process and the worker."""

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", serialize: bool = False) -> None:
    """
    Replace loguru's default sink with a single stderr sink.

    Args:
        level: Minimum level name (DEBUG, INFO, ...)
        serialize: Emit one JSON document per record instead of text
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=LOG_FORMAT,
        serialize=serialize,
        backtrace=False,
        diagnose=False,
    )
    logger.debug(f"Logging configured (level={level.upper()}, serialize={serialize})")
