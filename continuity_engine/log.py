"""Logging helpers for the reconciliation engine.

Modules log through ``get_logger(__name__)``; nothing reaches a handler until
the host application calls ``configure_logging``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

_LOGGING_INITIALIZED = False
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_PACKAGES = ("continuity_engine", "breakdown")


def configure_logging(verbosity: str = "info", log_file: Optional[Path] = None) -> None:
    """Configure global logging with a console handler and optional file handler.

    Args:
        verbosity: Console verbosity (info, verbose, debug).
        log_file: Optional path for a debug-level log file.
    """
    global _LOGGING_INITIALIZED

    level_map = {"info": logging.INFO, "verbose": logging.DEBUG, "debug": logging.DEBUG}
    console_level = level_map.get(verbosity.lower(), logging.INFO)

    root = logging.getLogger()
    if not _LOGGING_INITIALIZED:
        root.setLevel(logging.DEBUG)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(console_level)
        console_handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(console_handler)

        if log_file:
            _add_file_handler(root, log_file)

        _LOGGING_INITIALIZED = True
    else:
        for handler in root.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setLevel(console_level)
        if log_file and not any(isinstance(h, logging.FileHandler) for h in root.handlers):
            _add_file_handler(root, log_file)

    # Keep third-party chatter out of the console even in verbose mode.
    logging.getLogger("anyio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.ERROR)
    for package in _PACKAGES:
        logging.getLogger(package).setLevel(logging.DEBUG)


def _add_file_handler(root: logging.Logger, log_file: Path) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for *name*.  Output appears once the host calls configure_logging."""
    return logging.getLogger(name)


for _package in _PACKAGES:
    logging.getLogger(_package).addHandler(logging.NullHandler())
