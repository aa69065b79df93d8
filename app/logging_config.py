"""Logging configuration for the application."""

import logging
import sys

from app.config import get_settings


def setup_logging() -> None:
    """Configure application-wide logging.

    Level is DEBUG when DEBUG is set, otherwise LOG_LEVEL (default INFO).
    Output goes to stdout.
    """
    settings = get_settings()
    log_level = logging.DEBUG if settings.debug else getattr(
        logging, settings.log_level.upper(), logging.INFO
    )
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # aioimaplib is chatty at DEBUG
    logging.getLogger("aioimaplib").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given module name."""
    return logging.getLogger(name)
