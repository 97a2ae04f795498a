"""Lock request and child command configuration."""

from __future__ import annotations

import fcntl
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import UsageError

SHELL_ENV_KEY = "SHELL"
DEFAULT_SHELL = "/bin/sh"
COMMAND_FLAGS = ("-c", "--command")
MICROSECOND_DIGITS = 6
# Largest wait setitimer accepts on platforms with a 32-bit time_t.
MAX_TIMEOUT_SECONDS = 2**31 - 1

_TIMEOUT_RE = re.compile(r"(?P<seconds>[0-9]*)(?:\.(?P<fraction>[0-9]*))?")
_FD_RE = re.compile(r"[+-]?[0-9]+")


class LockMode(Enum):
    SHARED = "shared"
    EXCLUSIVE = "exclusive"
    UNLOCK = "unlock"

    @property
    def flock_operation(self) -> int:
        return {
            LockMode.SHARED: fcntl.LOCK_SH,
            LockMode.EXCLUSIVE: fcntl.LOCK_EX,
            LockMode.UNLOCK: fcntl.LOCK_UN,
        }[self]


@dataclass(frozen=True)
class Timeout:
    """Wait duration with microsecond precision."""

    seconds: int
    microseconds: int = 0

    @property
    def is_zero(self) -> bool:
        return self.seconds == 0 and self.microseconds == 0

    def total_seconds(self) -> float:
        return self.seconds + self.microseconds / 1_000_000


@dataclass(frozen=True)
class LockRequest:
    target: int | Path
    mode: LockMode = LockMode.EXCLUSIVE
    blocking: bool = True
    timeout: Timeout | None = None

    @property
    def operation(self) -> int:
        """flock(2) operation word for this request."""
        op = self.mode.flock_operation
        if not self.blocking:
            op |= fcntl.LOCK_NB
        return op

    def describe_target(self) -> str:
        return str(self.target)


@dataclass(frozen=True)
class ChildSpec:
    argv: tuple[str, ...]
    close_lock_fd: bool = False


def parse_timeout(text: str) -> Timeout:
    """Parse ``seconds[.fraction]`` into a Timeout.

    The fraction is right-padded with zeros to six digits; digits past the
    sixth are ignored. Any other character makes the value invalid.
    """
    match = _TIMEOUT_RE.fullmatch(text)
    if match is None or not (match.group("seconds") or match.group("fraction")):
        raise UsageError(f"invalid timeout value: {text!r}")
    seconds = int(match.group("seconds") or "0")
    if seconds > MAX_TIMEOUT_SECONDS:
        raise UsageError(f"timeout value too large: {text!r} (max {MAX_TIMEOUT_SECONDS} seconds)")
    fraction = (match.group("fraction") or "")[:MICROSECOND_DIGITS]
    microseconds = int(fraction.ljust(MICROSECOND_DIGITS, "0"))
    return Timeout(seconds=seconds, microseconds=microseconds)


def resolve_shell() -> str:
    """Return the user's shell, or the fallback when SHELL is unset or empty."""
    shell = os.getenv(SHELL_ENV_KEY, "")
    return shell if shell else DEFAULT_SHELL


def shell_command(command: str) -> tuple[str, ...]:
    return (resolve_shell(), "-c", command)


def parse_fd(text: str) -> int:
    if not _FD_RE.fullmatch(text):
        raise UsageError(f"bad number: {text}")
    return int(text)


def build_request(
    target: str,
    command: list[str],
    *,
    mode: LockMode = LockMode.EXCLUSIVE,
    nonblocking: bool = False,
    timeout_text: str | None = None,
    close_lock_fd: bool = False,
) -> tuple[LockRequest, ChildSpec | None]:
    """Build the immutable lock request and optional child spec.

    With a command, ``target`` names a file or directory. Without one it
    must be a descriptor number; non-numeric text is a usage error.
    """
    timeout = parse_timeout(timeout_text) if timeout_text is not None else None
    blocking = not nonblocking
    if timeout is not None and timeout.is_zero:
        # A zero itimer means "disabled", so zero is served as non-blocking.
        blocking = False
        timeout = None
    if not blocking:
        timeout = None

    child: ChildSpec | None = None
    lock_target: int | Path
    if command:
        if command[0] in COMMAND_FLAGS:
            if len(command) != 2:
                raise UsageError(f"{command[0]} requires exactly one command argument")
            argv = shell_command(command[1])
        else:
            argv = tuple(command)
        child = ChildSpec(argv=argv, close_lock_fd=close_lock_fd)
        lock_target = Path(target)
    else:
        lock_target = parse_fd(target)

    request = LockRequest(target=lock_target, mode=mode, blocking=blocking, timeout=timeout)
    return request, child
