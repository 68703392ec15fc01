"""Logging setup for sim-relay entry points."""

import logging

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str | int = logging.INFO, fmt: str = DEFAULT_LOG_FORMAT) -> None:
    """Configure root logging for a CLI command.

    Args:
        level: Log level name or number.
        fmt: Log record format string.

    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=fmt, force=True)

    # websockets/uvicorn are chatty at DEBUG
    if level > logging.DEBUG:
        logging.getLogger("websockets").setLevel(logging.WARNING)
