"""Logging setup shared by the sandbox, the worker and the HTTP service."""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str | int | None = None) -> None:
    """Attach a single stream handler to the root logger.

    Safe to call more than once; only the first call installs the handler,
    later calls only adjust the level.
    """
    global _configured

    if level is None:
        from common.config import settings

        level = settings.log_level

    root = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)

    if _configured:
        return

    # Log to stderr so stdout stays free for the worker's JSON protocol
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a module logger."""
    return logging.getLogger(name)
