"""Logging setup for the logcap command line."""
from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_HANDLER_NAME = "logcap-rich"


def configure_logging(level: str = "WARNING", console: Optional[Console] = None) -> None:
    """Route ``logcap`` loggers through a single Rich handler on stderr."""
    root = logging.getLogger("logcap")
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)


__all__ = ["configure_logging"]
