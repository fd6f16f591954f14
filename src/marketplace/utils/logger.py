import logging
import os

from rich.logging import RichHandler

from marketplace.utils.config import settings


class PaddedNameFormatter(logging.Formatter):
    """Pads logger names to the widest seen so far, keeping messages aligned."""

    width = 16

    def format(self, record):
        PaddedNameFormatter.width = max(PaddedNameFormatter.width, len(record.name))
        record.padded_name = record.name.ljust(PaddedNameFormatter.width)
        return super().format(record)


def _level() -> int:
    if os.getenv("DEBUG"):
        return logging.DEBUG
    level = logging.getLevelName(settings.log_level)
    # getLevelName returns "Level X" for names it does not know
    return level if isinstance(level, int) else logging.INFO


def get_logger(name=None) -> logging.Logger:
    """
    Creates and returns a logger configured with RichHandler for rich output.
    """
    if name is None:
        name = "marketplace"
    logger = logging.getLogger(name)
    log_level = _level()
    logger.setLevel(log_level)

    if not logger.handlers:
        console_handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        console_handler.setFormatter(PaddedNameFormatter("[%(padded_name)s]  %(message)s"))
        console_handler.setLevel(log_level)
        logger.addHandler(console_handler)

        logger.propagate = False
        logger.debug(f"Logger for '{name}' initialized with RichHandler.")

    return logger
