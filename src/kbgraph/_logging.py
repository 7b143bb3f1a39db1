"""Logging configuration for kbgraph.

Modules log through the standard library::

    import logging
    logger = logging.getLogger(__name__)

and the CLI / web app call :func:`configure_logging` once at startup, which
routes the ``kbgraph`` logger through a rich handler on stderr. The level is
read from ``KBGRAPH_LOG_LEVEL`` (DEBUG, INFO, WARNING, ERROR; default INFO).
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings


def configure_logging(level: str | None = None) -> None:
    """Attach a RichHandler to the package logger. Subsequent calls are no-ops."""
    root_logger = logging.getLogger("kbgraph")
    if root_logger.handlers:
        return

    level_name = (level or Settings().log_level).upper()
    lvl = getattr(logging, level_name, logging.INFO)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setLevel(lvl)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    root_logger.setLevel(lvl)
    root_logger.addHandler(handler)
    # Avoid duplicate lines through the root logger.
    root_logger.propagate = False
