# credledger/core/log.py
import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "credledger"


def setup_logging(level: str = "WARNING", console: Console | None = None) -> logging.Logger:
    """
    Attach a Rich handler to the package logger. Safe to call more than once:
    an existing Rich handler is reused and only the level changes.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
    return logger
