"""Centralized logging configuration."""

import logging

from config import settings

# Third-party loggers that drown out sync activity at INFO
NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "urllib3",
    "multipart",
)


def setup_logging(level: str | None = None) -> None:
    """Configure logging for the application.

    Args:
        level: Override for settings.LOG_LEVEL. CLI scripts pass this so
            their report output is not interleaved with INFO sync logs.
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(threadName)s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, level or settings.LOG_LEVEL),
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
