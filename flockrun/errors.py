"""Custom errors for flockrun."""

from __future__ import annotations

from .outcome import FailureReason


class FlockrunError(Exception):
    """Base flockrun exception."""


class UsageError(FlockrunError):
    """Raised when command-line arguments are malformed."""


class TargetOpenError(FlockrunError):
    """Raised when the lock file cannot be opened or created."""

    def __init__(self, message: str, reason: FailureReason) -> None:
        super().__init__(message)
        self.reason = reason


class LockError(FlockrunError):
    """Base for failures to take the requested lock."""


class LockWouldBlockError(LockError):
    """Raised when a non-blocking attempt finds the lock held."""


class LockTimeoutError(LockError):
    """Raised when the wait timeout expires before the lock is granted."""


class LockFailedError(LockError):
    """Raised when the lock call fails for a reason other than contention."""

    def __init__(self, message: str, reason: FailureReason) -> None:
        super().__init__(message)
        self.reason = reason


class SpawnError(FlockrunError):
    """Raised when the command cannot be started."""

    def __init__(self, message: str, reason: FailureReason) -> None:
        super().__init__(message)
        self.reason = reason
