"""Centralized path configuration for shipline.

Respects ``SHIPLINE_HOME`` env var, then ``XDG_DATA_HOME/shipline``,
and falls back to ``~/.shipline``.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

DEFAULT_STEP_TIMEOUT = 600
DEFAULT_MAX_OUTPUT_CHARS = 64_000
OUTPUT_FILE_ENV = "SHIPLINE_OUTPUT"


@lru_cache(maxsize=1)
def get_home_dir() -> Path:
    """Return the shipline data directory.

    Resolution order:
    1. ``SHIPLINE_HOME`` environment variable
    2. ``XDG_DATA_HOME/shipline`` (if ``XDG_DATA_HOME`` is set)
    3. ``~/.shipline``
    """
    env = os.environ.get("SHIPLINE_HOME")
    if env:
        return Path(env)
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "shipline"
    return Path.home() / ".shipline"


def get_global_env_path() -> Path:
    """Default dotenv file consulted for secrets when none is given."""
    return get_home_dir() / "secrets.env"
