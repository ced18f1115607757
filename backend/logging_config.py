"""Centralized logging configuration."""

import logging

from config import settings

# Third-party loggers that drown out sync progress at INFO.
NOISY_LOGGERS: tuple[str, ...] = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "urllib3",
    "plaid",
)


def setup_logging(level: str | None = None) -> None:
    """Configure logging for the application.

    Args:
        level: Optional level name overriding ``settings.LOG_LEVEL``
            (handy for a DEBUG run of a single sync).
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, level_name),
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
