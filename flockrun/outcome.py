"""Exit status contract and the outcome-to-status translation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Union

EXIT_SUCCESS = 0
EXIT_LOCK_NOT_OBTAINED = 1
EXIT_USAGE = os.EX_USAGE
EXIT_DATAERR = os.EX_DATAERR
EXIT_NOINPUT = os.EX_NOINPUT
EXIT_UNAVAILABLE = os.EX_UNAVAILABLE
EXIT_SOFTWARE = os.EX_SOFTWARE
EXIT_OSERR = os.EX_OSERR
EXIT_CANTCREAT = os.EX_CANTCREAT
SIGNAL_EXIT_BASE = 128


class FailureReason(Enum):
    """Why opening, locking or spawning failed."""

    RESOURCE_EXHAUSTED = "resource_exhausted"
    INVALID_TARGET = "invalid_target"
    CANNOT_CREATE = "cannot_create"
    NO_INPUT = "no_input"
    UNAVAILABLE = "unavailable"
    OTHER = "other"


@dataclass(frozen=True)
class NormalExit:
    code: int


@dataclass(frozen=True)
class KilledBySignal:
    signal_number: int


@dataclass(frozen=True)
class WaitFailed:
    pass


@dataclass(frozen=True)
class LockNotObtained:
    """Lock was held elsewhere: non-blocking attempt or expired timeout."""

    timed_out: bool = False


@dataclass(frozen=True)
class LockFailed:
    reason: FailureReason


@dataclass(frozen=True)
class SpawnFailed:
    reason: FailureReason


@dataclass(frozen=True)
class InvalidUsage:
    pass


ExitOutcome = Union[
    NormalExit,
    KilledBySignal,
    WaitFailed,
    LockNotObtained,
    LockFailed,
    SpawnFailed,
    InvalidUsage,
]

_REASON_STATUS = {
    FailureReason.RESOURCE_EXHAUSTED: EXIT_OSERR,
    FailureReason.INVALID_TARGET: EXIT_DATAERR,
    FailureReason.CANNOT_CREATE: EXIT_CANTCREAT,
    FailureReason.NO_INPUT: EXIT_NOINPUT,
    FailureReason.UNAVAILABLE: EXIT_UNAVAILABLE,
    FailureReason.OTHER: EXIT_SOFTWARE,
}


def exit_status(outcome: ExitOutcome) -> int:
    """Map an outcome to the integer status the process exits with."""
    if isinstance(outcome, NormalExit):
        return outcome.code
    if isinstance(outcome, KilledBySignal):
        return SIGNAL_EXIT_BASE + outcome.signal_number
    if isinstance(outcome, WaitFailed):
        return EXIT_OSERR
    if isinstance(outcome, LockNotObtained):
        return EXIT_LOCK_NOT_OBTAINED
    if isinstance(outcome, LockFailed):
        return _REASON_STATUS[outcome.reason]
    if isinstance(outcome, SpawnFailed):
        if outcome.reason is FailureReason.RESOURCE_EXHAUSTED:
            return EXIT_OSERR
        return EXIT_UNAVAILABLE
    if isinstance(outcome, InvalidUsage):
        return EXIT_USAGE
    raise TypeError(f"Unknown exit outcome: {outcome!r}")
