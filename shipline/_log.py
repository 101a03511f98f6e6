"""Logging for shipline: one stderr handler on the ``shipline`` logger."""

from __future__ import annotations

import logging
import os
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager

ROOT_LOGGER = "shipline"
LOG_LEVEL_ENV = "SHIPLINE_LOG_LEVEL"

_lock = threading.Lock()
_handler: logging.Handler | None = None


class _TagFormatter(logging.Formatter):
    """Format records as ``[tag] message``; the tag drops the ``shipline.`` prefix."""

    def __init__(self) -> None:
        super().__init__("[%(tag)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        prefix = f"{ROOT_LOGGER}."
        record.tag = name[len(prefix) :] if name.startswith(prefix) else name
        return super().format(record)


def _resolve_level(verbose: bool) -> int:
    if verbose:
        return logging.DEBUG
    name = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    if not name:
        return logging.WARNING
    level = logging.getLevelName(name)
    # getLevelName returns "Level X" for names it does not know
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(verbose: bool = False) -> None:
    """Attach the stderr handler to the ``shipline`` logger once.

    The level is DEBUG when *verbose*, else ``$SHIPLINE_LOG_LEVEL``, else
    WARNING. Later calls leave the handler alone but still honour
    *verbose*, so ``--verbose`` works after a module has logged.
    """
    global _handler
    with _lock:
        logger = logging.getLogger(ROOT_LOGGER)
        if _handler is not None:
            if verbose:
                logger.setLevel(logging.DEBUG)
            return
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(_TagFormatter())
        logger.addHandler(_handler)
        logger.setLevel(_resolve_level(verbose))
        logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Return the ``shipline.<name>`` logger, setting up the handler if needed."""
    setup_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


@contextmanager
def handler_filter(log_filter: logging.Filter) -> Iterator[None]:
    """Attach *log_filter* to every ``shipline`` handler for the block.

    Handler filters see records from all child loggers, which logger
    filters on ``shipline`` would not.
    """
    handlers = list(logging.getLogger(ROOT_LOGGER).handlers)
    for handler in handlers:
        handler.addFilter(log_filter)
    try:
        yield
    finally:
        for handler in handlers:
            handler.removeFilter(log_filter)
