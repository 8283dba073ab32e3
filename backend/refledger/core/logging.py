"""Loguru sink configuration for the API process and one-shot scripts."""

import sys

from loguru import logger

from refledger.core.config import get_settings


def setup_logging(level: str | None = None) -> None:
    """Replace the default sink with a stderr sink at the configured level."""
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or settings.log_level).upper(),
        backtrace=settings.debug,
        diagnose=settings.debug,
    )
