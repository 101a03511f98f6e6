"""Process-execution facility: scrubbed env, timeouts, cancellation."""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipline._signal import CancelToken

_POSIX = sys.platform != "win32"
_TERMINATE_GRACE_SECONDS = 5.0


class SubprocessTimeout(Exception):
    """Raised when a subprocess exceeds its timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Execution timed out after {timeout:g}s")


class SubprocessCancelled(Exception):
    """Raised when the cancel token fires while a subprocess is running."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


DEFAULT_SENSITIVE_ENV_PREFIXES = (
    # Cloud
    "AWS_SECRET",
    "AWS_SESSION_TOKEN",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "AZURE_",
    "ARM_CLIENT_SECRET",
    "DIGITALOCEAN_TOKEN",
    # VCS/CI
    "GITHUB_TOKEN",
    "GH_TOKEN",
    "GITLAB_TOKEN",
    "ACTIONS_RUNTIME_TOKEN",
    "ACTIONS_ID_TOKEN_REQUEST_TOKEN",
    "CODECOV_TOKEN",
    # Deploy targets and secret stores
    "VERCEL_TOKEN",
    "SUPABASE_ACCESS_TOKEN",
    "SUPABASE_DB_PASSWORD",
    "OP_SERVICE_ACCOUNT_TOKEN",
    "OP_CONNECT_TOKEN",
    "VAULT_TOKEN",
    # Registries
    "NPM_TOKEN",
    "NODE_AUTH_TOKEN",
    "DOCKER_PASSWORD",
    "DOCKER_TOKEN",
    # DB/infra
    "DATABASE_URL",
    "REDIS_URL",
    "POSTGRES_PASSWORD",
    "SENTRY_DSN",
)

DEFAULT_SENSITIVE_ENV_SUFFIXES = (
    "_KEY",
    "_SECRET",
    "_TOKEN",
    "_PASSWORD",
    "_CREDENTIAL",
    "_CREDENTIALS",
)

DEFAULT_ENV_ALLOWLIST: frozenset[str] = frozenset(
    {
        "SSH_AGENT_PID",
        "GPG_AGENT_INFO",
    }
)


def scrub_env(
    prefixes: tuple[str, ...] | list[str] = DEFAULT_SENSITIVE_ENV_PREFIXES,
    *,
    suffixes: tuple[str, ...] | list[str] = DEFAULT_SENSITIVE_ENV_SUFFIXES,
    allowlist: frozenset[str] | set[str] = DEFAULT_ENV_ALLOWLIST,
) -> dict[str, str]:
    """Return a copy of os.environ with sensitive keys removed.

    Steps only see the secrets they declare; everything that looks like a
    credential in the parent environment is stripped here.
    """
    env = dict(os.environ)
    upper_prefixes = tuple(p.upper() for p in prefixes)
    upper_suffixes = tuple(s.upper() for s in suffixes)
    to_remove = [
        k
        for k in env
        if k not in allowlist
        and (
            any(k.upper().startswith(p) for p in upper_prefixes)
            or any(k.upper().endswith(s) for s in upper_suffixes)
        )
    ]
    for k in to_remove:
        del env[k]
    return env


def truncate_output(text: str, max_chars: int, suffix: str = "\n[truncated]") -> str:
    """Truncate *text* to at most *max_chars* characters, appending *suffix* if truncated."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    if max_chars <= len(suffix):
        return text[:max_chars]
    return text[: max_chars - len(suffix)] + suffix


@dataclass(frozen=True)
class ProcessOutcome:
    stdout: str
    stderr: str
    returncode: int


def _terminate(proc: subprocess.Popen[bytes]) -> tuple[bytes, bytes]:
    """SIGTERM the process group, then SIGKILL after a grace period."""
    try:
        if _POSIX:
            os.killpg(proc.pid, signal.SIGTERM)
        else:
            proc.terminate()
    except ProcessLookupError:
        pass
    try:
        return proc.communicate(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        try:
            if _POSIX:
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        return proc.communicate()


def run_process(
    cmd: list[str] | str,
    *,
    env: Mapping[str, str],
    timeout: float,
    cwd: str | None = None,
    shell: bool = False,
    cancel: CancelToken | None = None,
    poll_interval: float = 0.1,
) -> ProcessOutcome:
    """Run *cmd* to completion, capturing stdout/stderr as decoded text.

    The process runs in its own session so that termination reaches any
    children it spawned.

    Raises:
        FileNotFoundError / OSError: If the process cannot be launched.
        SubprocessTimeout: If the process exceeds *timeout* seconds.
        SubprocessCancelled: If *cancel* fires before the process exits.
    """
    proc = subprocess.Popen(
        cmd,
        shell=shell,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=cwd,
        env=dict(env),
        start_new_session=_POSIX,
    )
    deadline = time.monotonic() + timeout

    while True:
        if cancel is not None and cancel.is_cancelled:
            _terminate(proc)
            raise SubprocessCancelled(cancel.reason or "cancelled")
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            _terminate(proc)
            raise SubprocessTimeout(timeout)
        try:
            stdout, stderr = proc.communicate(timeout=min(poll_interval, remaining))
            break
        except subprocess.TimeoutExpired:
            continue

    return ProcessOutcome(
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        returncode=proc.returncode,
    )


def format_process_output(
    stdout: str,
    stderr: str,
    returncode: int | None = None,
    max_chars: int = 0,
) -> str:
    """Assemble stdout/stderr/returncode into a single output string."""
    parts: list[str] = []
    if returncode is not None and returncode != 0:
        parts.append(f"Exit code: {returncode}")
    if stdout:
        parts.append(f"STDOUT:\n{stdout}")
    if stderr:
        parts.append(f"STDERR:\n{stderr}")
    output = "\n".join(parts) if parts else "(no output)"
    return truncate_output(output, max_chars)
