"""Advisory lock acquisition on a file, directory or open descriptor."""

from __future__ import annotations

import errno
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .config import LockMode, LockRequest
from .errors import LockFailedError, LockTimeoutError, LockWouldBlockError, TargetOpenError
from .logging_utils import LOGGER
from .outcome import FailureReason
from .timer_guard import TimerGuard

LOCK_FILE_MODE = 0o666

_RESOURCE_ERRNOS = frozenset({errno.ENOLCK, errno.ENOMEM, errno.EMFILE, errno.ENFILE})
_INVALID_TARGET_ERRNOS = frozenset({errno.EBADF, errno.EINVAL, errno.EOPNOTSUPP, errno.ENOTSUP})
_OPEN_RESOURCE_ERRNOS = frozenset({errno.ENOMEM, errno.EMFILE, errno.ENFILE})
_OPEN_CANTCREAT_ERRNOS = frozenset({errno.EROFS, errno.ENOSPC})


def _lock_failure_reason(err: int | None) -> FailureReason:
    if err in _RESOURCE_ERRNOS:
        return FailureReason.RESOURCE_EXHAUSTED
    if err in _INVALID_TARGET_ERRNOS:
        return FailureReason.INVALID_TARGET
    return FailureReason.OTHER


def _open_failure_reason(err: int | None) -> FailureReason:
    if err in _OPEN_RESOURCE_ERRNOS:
        return FailureReason.RESOURCE_EXHAUSTED
    if err in _OPEN_CANTCREAT_ERRNOS:
        return FailureReason.CANNOT_CREATE
    return FailureReason.NO_INPUT


def open_lock_target(path: Path, mode: LockMode) -> int:
    """Open (creating if needed) the file or directory to lock.

    Shared locks, and files the caller cannot both read and write, are
    opened read-only. Directories are reopened read-only without O_CREAT.
    """
    if mode is LockMode.SHARED or not os.access(path, os.R_OK | os.W_OK):
        access_mode = os.O_RDONLY
    else:
        access_mode = os.O_RDWR
    try:
        try:
            return os.open(path, access_mode | os.O_NOCTTY | os.O_CREAT, LOCK_FILE_MODE)
        except IsADirectoryError:
            return os.open(path, os.O_RDONLY | os.O_NOCTTY)
    except OSError as exc:
        raise TargetOpenError(
            f"cannot open lock file {path}: {exc.strerror}",
            _open_failure_reason(exc.errno),
        ) from exc


def _lock_failed(request: LockRequest, exc: OSError) -> LockFailedError:
    return LockFailedError(
        f"{request.describe_target()}: {exc.strerror}",
        _lock_failure_reason(exc.errno),
    )


def _granted_before_expiry(fd: int, request: LockRequest) -> bool:
    """Tell whether an expiry interrupted ``flock`` after it had succeeded."""
    try:
        fcntl.flock(fd, request.operation | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    except OSError as exc:
        raise _lock_failed(request, exc) from exc
    return True


def acquire_lock(fd: int, request: LockRequest) -> None:
    """Take ``request.mode`` on ``fd``, honouring blocking and timeout.

    Raises LockWouldBlockError, LockTimeoutError or LockFailedError. The
    timer, when one was armed, is disarmed on every path out.
    """
    guard = TimerGuard()
    acquired = False
    try:
        if request.blocking and request.timeout is not None:
            guard.arm(request.timeout)
        while not acquired:
            try:
                fcntl.flock(fd, request.operation)
                acquired = True
                guard.disarm()
            except InterruptedError as exc:
                if acquired:
                    # Expiry landed after the grant; the lock is ours.
                    continue
                if guard.expired:
                    if _granted_before_expiry(fd, request):
                        acquired = True
                        continue
                    raise LockTimeoutError(
                        f"{request.describe_target()}: timeout while waiting to get lock"
                    ) from exc
            except BlockingIOError as exc:
                raise LockWouldBlockError(
                    f"{request.describe_target()}: lock is held by another process"
                ) from exc
            except OSError as exc:
                raise _lock_failed(request, exc) from exc
            except (ValueError, OverflowError) as exc:
                # Negative or out-of-range descriptor numbers never reach flock(2).
                raise LockFailedError(
                    f"{request.describe_target()}: {os.strerror(errno.EBADF)}",
                    FailureReason.INVALID_TARGET,
                ) from exc
    finally:
        guard.disarm()


@contextmanager
def held_lock(request: LockRequest) -> Iterator[int]:
    """Yield a descriptor holding the requested lock.

    Descriptors opened here are closed on exit, which releases the lock.
    A caller-supplied descriptor number is left open.
    """
    if isinstance(request.target, Path):
        fd = open_lock_target(request.target, request.mode)
        owns_fd = True
    else:
        fd = request.target
        owns_fd = False
    try:
        started = time.monotonic()
        acquire_lock(fd, request)
        LOGGER.info(f"getting lock took {time.monotonic() - started:.6f} seconds")
        yield fd
    finally:
        if owns_fd:
            os.close(fd)
