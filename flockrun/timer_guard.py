"""One-shot SIGALRM countdown around a blocking lock attempt."""

from __future__ import annotations

import errno
import os
import signal
from types import FrameType
from typing import Any

from .config import Timeout


class TimerGuard:
    """Arm a real-time interval timer and flag its expiry.

    CPython retries system calls interrupted by signals whose handlers
    return normally, so the expiry handler raises ``InterruptedError`` to
    break out of a blocking ``flock``. It does so at most once per ``arm``.
    Only usable from the main thread.
    """

    def __init__(self) -> None:
        self._armed = False
        self._expired = False
        self._installed = False
        self._previous_handler: Any = signal.SIG_DFL
        self._previous_timer: tuple[float, float] = (0.0, 0.0)

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def expired(self) -> bool:
        return self._expired

    def arm(self, timeout: Timeout) -> None:
        if timeout.is_zero:
            raise ValueError("zero timeout cannot be armed; use a non-blocking attempt")
        if self._installed:
            raise RuntimeError("timer guard is already armed")
        self._expired = False
        previous = signal.signal(signal.SIGALRM, self._on_expiry)
        self._previous_handler = signal.SIG_DFL if previous is None else previous
        self._installed = True
        self._armed = True
        self._previous_timer = signal.setitimer(signal.ITIMER_REAL, timeout.total_seconds())

    def disarm(self) -> None:
        """Restore the timer and handler seen by ``arm``. Safe to call twice."""
        self._armed = False
        if not self._installed:
            return
        signal.setitimer(signal.ITIMER_REAL, *self._previous_timer)
        signal.signal(signal.SIGALRM, self._previous_handler)
        self._installed = False
        self._previous_handler = signal.SIG_DFL
        self._previous_timer = (0.0, 0.0)

    def _on_expiry(self, signum: int, frame: FrameType | None) -> None:
        if not self._armed:
            return
        self._armed = False
        self._expired = True
        raise InterruptedError(errno.EINTR, os.strerror(errno.EINTR))

    def __enter__(self) -> "TimerGuard":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disarm()
