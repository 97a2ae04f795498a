"""Run a command as a child process while the lock is held."""

from __future__ import annotations

import errno
import os
import shlex
import signal
import subprocess

from .config import ChildSpec
from .errors import SpawnError
from .logging_utils import LOGGER
from .outcome import ExitOutcome, FailureReason, KilledBySignal, NormalExit, WaitFailed


def _spawn_failure_reason(exc: OSError) -> FailureReason:
    # Popen sets filename only for failures reported back from exec.
    if exc.errno == errno.ENOMEM or exc.filename is None:
        return FailureReason.RESOURCE_EXHAUSTED
    return FailureReason.UNAVAILABLE


def run_command(child: ChildSpec, lock_fd: int) -> ExitOutcome:
    """Spawn ``child.argv`` and wait for it.

    Descriptors the caller made inheritable reach the child unchanged. The
    lock descriptor is inherited only when ``child.close_lock_fd`` is
    false; otherwise it is closed in the child before exec while this
    process keeps holding the lock.
    """
    # An inherited SIG_IGN would let the kernel reap the child before we do.
    signal.signal(signal.SIGCHLD, signal.SIG_DFL)
    LOGGER.info(f"executing {shlex.join(child.argv)}")
    was_inheritable = os.get_inheritable(lock_fd)
    os.set_inheritable(lock_fd, not child.close_lock_fd)
    try:
        proc = subprocess.Popen(list(child.argv), close_fds=False)
    except OSError as exc:
        raise SpawnError(
            f"{child.argv[0]}: {exc.strerror}",
            _spawn_failure_reason(exc),
        ) from exc
    finally:
        os.set_inheritable(lock_fd, was_inheritable)

    try:
        returncode = proc.wait()
    except OSError as exc:
        LOGGER.error(f"waitpid failed: {exc.strerror}")
        return WaitFailed()
    if returncode < 0:
        return KilledBySignal(-returncode)
    return NormalExit(returncode)
