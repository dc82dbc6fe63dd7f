import logging
import os

from rich.logging import RichHandler


class PaddedNameFormatter(logging.Formatter):
    """Pads logger names to the widest name seen so far, so messages line up."""

    width = 12

    def format(self, record):
        PaddedNameFormatter.width = max(PaddedNameFormatter.width, len(record.name))
        record.name = record.name.ljust(PaddedNameFormatter.width)
        return super().format(record)


def _level() -> int:
    return logging.DEBUG if os.getenv("DEBUG") else logging.INFO


def get_logger(name=None) -> logging.Logger:
    """
    Return a logger writing through rich, configured once per name.
    """
    logger = logging.getLogger(name or "storefront")
    level = _level()
    logger.setLevel(level)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        handler.setFormatter(PaddedNameFormatter("[%(name)s]  %(message)s"))
        handler.setLevel(level)
        logger.addHandler(handler)
        logger.propagate = False

    return logger
