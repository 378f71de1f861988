"""
Logging configuration for Dotion.

Uses loguru for structured, colorful logging with rotation and filtering.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from loguru import logger

from .config import DATA_DIR

if TYPE_CHECKING:
    from .config import DotionConfig

LOG_DIR = DATA_DIR / "logs"


def setup_logging(config: DotionConfig | None = None, log_to_file: bool = True) -> None:
    """
    Configure logging for Dotion.

    Args:
        config: Optional Dotion configuration. If not provided, uses defaults.
        log_to_file: Also write rotating log files under data/logs.
    """
    # Remove default handler
    logger.remove()

    # Determine log level
    log_level = "INFO"
    if config:
        log_level = config.general.log_level
        if config.general.debug:
            log_level = "DEBUG"

    # Console handler with colors
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=log_level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if not log_to_file:
        return

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    # File handler for all logs
    logger.add(
        LOG_DIR / "dotion_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG",
        rotation="00:00",  # Rotate at midnight
        retention="7 days",
        compression="zip",
        backtrace=True,
        diagnose=False,
    )

    # Separate file for errors only
    logger.add(
        LOG_DIR / "dotion_errors_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
        level="ERROR",
        rotation="00:00",
        retention="30 days",
        compression="zip",
        backtrace=True,
        diagnose=False,
    )

    logger.info("Dotion logging initialized")


__all__ = ["logger", "setup_logging"]
