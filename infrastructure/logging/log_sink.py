import logging
from typing import Callable

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"

# status markers used by log messages across the gateway
_LEVEL_MARKERS = (
    ("❌", logging.ERROR),
    ("⚠️", logging.WARNING),
    ("🐞", logging.DEBUG),
)


def configure_logging(level: str = "INFO") -> None:
    """Set up the root logger once for the whole process."""
    numeric = logging.getLevelName(str(level or "INFO").upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT)


def level_for(message: str) -> int:
    for marker, level in _LEVEL_MARKERS:
        if message.startswith(marker):
            return level
    return logging.INFO


def make_log(name: str = "callerid") -> Callable[[str], None]:
    """
    Return a `log(msg)` callback backed by the logging module.
    The level is taken from the message's leading marker.
    """
    logger = logging.getLogger(name)

    def log(message: str) -> None:
        logger.log(level_for(message), message)

    return log
