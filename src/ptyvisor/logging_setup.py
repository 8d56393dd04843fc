"""Logging helper for hosts embedding ptyvisor.

The library only creates module loggers; handlers are left to the host.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Attach a stream handler to the ptyvisor logger.

    Calling it again only updates the level.

    Args:
        level: Logging level for the ptyvisor package.

    Returns:
        The package logger.
    """
    logger = logging.getLogger("ptyvisor")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger
