"""Run cancellation token and the double-Ctrl-C shutdown signal handler."""

from __future__ import annotations

import os
import signal
import sys
import threading
from collections.abc import Callable


class CancelToken:
    """Thread-safe, one-shot cancellation flag carrying a reason.

    The first :meth:`cancel` wins; later calls keep the original reason.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason


def cancel_after(token: CancelToken, seconds: float) -> threading.Timer:
    """Start a daemon timer that cancels *token* after *seconds*.

    The caller owns the timer and should ``cancel()`` it when the run ends.
    """
    timer = threading.Timer(seconds, token.cancel, args=(f"run timed out after {seconds:g}s",))
    timer.daemon = True
    timer.start()
    return timer


def install_shutdown_handler(
    token: CancelToken,
    *,
    on_first_signal: Callable[[], None] | None = None,
) -> threading.Event:
    """Install a SIGINT/SIGTERM handler with double-signal force-exit.

    First signal: calls *on_first_signal* (if given), then cancels *token*.
    Second signal: calls ``os._exit(1)`` immediately.

    Returns the ``_shutting_down`` event for external inspection.
    """
    shutting_down = threading.Event()

    def _handler(signum: int, frame: object) -> None:
        if shutting_down.is_set():
            print("\nForce shutdown.", file=sys.stderr, flush=True)
            os._exit(1)
        shutting_down.set()
        if on_first_signal is not None:
            on_first_signal()
        token.cancel(f"received {signal.Signals(signum).name}")

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    return shutting_down
