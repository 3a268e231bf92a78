import logging
import os

from rich.logging import RichHandler

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class CenteredFormatter(logging.Formatter):
    """Pads logger names to the widest name seen so far so messages line up."""

    longest_name_length = 12

    def format(self, record):
        name = record.name.rsplit(".", 1)[-1] if "." in record.name else record.name
        CenteredFormatter.longest_name_length = max(
            CenteredFormatter.longest_name_length, len(name)
        )
        record.short_name = name.center(CenteredFormatter.longest_name_length)
        return super().format(record)


def _resolve_level() -> int:
    level = os.getenv("KARIGAR_LOG_LEVEL")
    if level:
        return _LEVELS.get(level.strip().upper(), logging.INFO)
    return logging.DEBUG if os.getenv("DEBUG") else logging.INFO


def get_logger(name=None) -> logging.Logger:
    """
    Return a logger that writes through a RichHandler.

    Handlers are attached once per logger name; later calls only return it.
    """
    logger = logging.getLogger(name or "karigarverse")
    level = _resolve_level()
    logger.setLevel(level)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        handler.setFormatter(CenteredFormatter("[%(short_name)s]  %(message)s"))
        handler.setLevel(level)
        logger.addHandler(handler)
        logger.propagate = False

    return logger
