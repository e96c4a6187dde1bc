"""
Loguru sink configuration shared by the agent and the collector.
"""
import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Replace the default loguru sink.

    Args:
        level: Minimum level for all sinks
        log_file: Optional path of a daily-rotated log file
    """
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level.upper())
    if log_file:
        logger.add(log_file, rotation="1 day", retention="7 days", level=level.upper())
    logger.debug(f"Logging configured at {level.upper()}")
