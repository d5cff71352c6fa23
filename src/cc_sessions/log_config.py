"""Logging setup for the command line."""

import logging

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "cc_sessions"


def configure_logging(level: str | int = logging.WARNING, console: Console | None = None) -> logging.Logger:
    """Send package logs to stderr through rich. Calling it again only changes the level."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    logger.setLevel(level)

    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
    return logger
