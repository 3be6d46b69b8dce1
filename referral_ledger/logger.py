import sys
from typing import Optional

from loguru import logger


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> | {extra}"
)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Route loguru output to stderr and, optionally, a rotating file.

    Context attached with ``logger.bind(...)`` is printed after the message.
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level=level,
            format=LOG_FORMAT,
            encoding="utf-8",
        )
