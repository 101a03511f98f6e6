"""Secret resolution and masking.

The orchestrator never reads secrets from ambient state on its own: a
:class:`SecretResolver` is passed in by the caller, and every value it hands
out is registered with a :class:`SecretMasker` so it can be scrubbed from
captured output and log lines.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from dotenv import dotenv_values

from shipline.errors import SecretNotFoundError

MASK = "***"

_PATTERNS = [
    r"gh[pousr]_[A-Za-z0-9_]{36,}",  # GitHub classic tokens
    r"github_pat_[A-Za-z0-9_]{22,}",  # GitHub fine-grained PATs
    r"glpat-[A-Za-z0-9_-]{20,}",  # GitLab PATs
    r"npm_[A-Za-z0-9]{36}",  # npm automation tokens
    r"ops_[A-Za-z0-9_-]{40,}",  # 1Password service account tokens
    r"sbp_[a-f0-9]{40}",  # Supabase access tokens
    r"dckr_pat_[A-Za-z0-9_-]{20,}",  # Docker Hub PATs
    r"AKIA[0-9A-Z]{16}",  # AWS access key IDs
    r"xox[bpars]-[A-Za-z0-9-]{10,}",  # Slack tokens
    r"Bearer\s+[A-Za-z0-9_\-.]{20,}",  # Bearer tokens
]

_COMBINED_RE = re.compile("|".join(_PATTERNS))


def scrub_secrets(text: str) -> str:
    """Replace well-known token shapes with the mask."""
    if not text:
        return text
    return _COMBINED_RE.sub(MASK, text)


@runtime_checkable
class SecretResolver(Protocol):
    """Capability that turns a secret name into its value."""

    def resolve(self, name: str) -> str:
        """Return the value for *name* or raise :class:`SecretNotFoundError`."""
        ...


class StaticSecretResolver:
    """Resolve secrets from an in-memory mapping."""

    def __init__(self, values: Mapping[str, str]) -> None:
        self._values = dict(values)

    def resolve(self, name: str) -> str:
        try:
            return self._values[name]
        except KeyError:
            raise SecretNotFoundError(name) from None


class EnvSecretResolver:
    """Resolve secrets from dotenv files, then the process environment.

    Dotenv files are parsed with :func:`dotenv.dotenv_values` and never
    written into ``os.environ``. Earlier files win over later ones; the
    process environment is consulted last unless *include_environ* is off.
    """

    def __init__(
        self,
        env_files: Iterable[Path] = (),
        *,
        include_environ: bool = True,
    ) -> None:
        self._values: dict[str, str] = {}
        for path in env_files:
            if not path.is_file():
                continue
            for key, value in dotenv_values(path).items():
                if value is not None:
                    self._values.setdefault(key, value)
        self._include_environ = include_environ

    def resolve(self, name: str) -> str:
        if name in self._values:
            return self._values[name]
        if self._include_environ and name in os.environ:
            return os.environ[name]
        raise SecretNotFoundError(name)


class SecretMasker:
    """Replace registered secret values with ``***`` in arbitrary text."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: set[str] = set()
        self._pattern: re.Pattern[str] | None = None

    def register(self, value: str) -> None:
        # Very short values would mask half of every log line.
        if len(value) < 3:
            return
        with self._lock:
            if value in self._values:
                return
            self._values.add(value)
            ordered = sorted(self._values, key=len, reverse=True)
            self._pattern = re.compile("|".join(re.escape(v) for v in ordered))

    def mask(self, text: str) -> str:
        if not text:
            return text
        pattern = self._pattern
        if pattern is not None:
            text = pattern.sub(MASK, text)
        return scrub_secrets(text)


class MaskingFilter(logging.Filter):
    """Logging filter that masks secrets in the fully formatted message."""

    def __init__(self, masker: SecretMasker) -> None:
        super().__init__()
        self._masker = masker

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = self._masker.mask(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True
