"""Logging setup shared by the CLI and the API server."""

import logging

from rich.logging import RichHandler

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """
    Route the ``mailrag`` loggers through a Rich console handler.

    Safe to call more than once; later calls only change the level.
    """
    global _configured

    logger = logging.getLogger("mailrag")
    logger.setLevel(level)

    if _configured:
        return

    handler = RichHandler(rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    _configured = True
