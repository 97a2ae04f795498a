"""flockrun CLI entrypoint."""

from __future__ import annotations

import argparse
import signal
import sys
from typing import NoReturn

from .config import ChildSpec, LockMode, LockRequest, build_request
from .errors import (
    FlockrunError,
    LockFailedError,
    LockTimeoutError,
    LockWouldBlockError,
    SpawnError,
    TargetOpenError,
    UsageError,
)
from .executor import run_command
from .lockfile import held_lock
from .logging_utils import LOGGER
from .outcome import (
    ExitOutcome,
    FailureReason,
    InvalidUsage,
    KilledBySignal,
    LockFailed,
    LockNotObtained,
    NormalExit,
    SpawnFailed,
    exit_status,
)

VERSION = "0.1.0"

_DESCRIPTION = (
    "Hold an advisory lock on a file, directory or open descriptor, "
    "optionally running a command while it is held."
)

_EPILOG = """\
usage forms:
  flockrun [-sxun] [-w SECS] FD
  flockrun [-sxon] [-w SECS] FILE|DIRECTORY COMMAND [ARG...]
  flockrun [-sxon] [-w SECS] FILE|DIRECTORY -c COMMAND_STRING

exit status:
  0      lock taken (and command exited 0), or the command's own exit code
  1      lock not obtained (-n, or -w expired)
  64     usage error
  65     target cannot be locked
  66     lock file cannot be opened
  69     command cannot be executed
  70     other lock failure
  71     operating system error (resources, fork, wait)
  73     lock file cannot be created
  128+N  command killed by signal N
"""


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="flockrun",
        description=_DESCRIPTION,
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "-s",
        "--shared",
        dest="mode",
        action="store_const",
        const=LockMode.SHARED,
        default=LockMode.EXCLUSIVE,
        help="Get a shared lock",
    )
    parser.add_argument(
        "-x",
        "-e",
        "--exclusive",
        dest="mode",
        action="store_const",
        const=LockMode.EXCLUSIVE,
        help="Get an exclusive lock (default)",
    )
    parser.add_argument(
        "-u",
        "--unlock",
        dest="mode",
        action="store_const",
        const=LockMode.UNLOCK,
        help="Remove a lock",
    )
    parser.add_argument(
        "-n",
        "--nonblock",
        "--nonblocking",
        "--nb",
        dest="nonblocking",
        action="store_true",
        help="Fail rather than wait",
    )
    parser.add_argument(
        "-w",
        "--timeout",
        "--wait",
        dest="timeout",
        default=None,
        metavar="SECS",
        help="Wait at most SECS (decimal, microsecond precision); 0 means -n",
    )
    parser.add_argument(
        "-o",
        "--close",
        dest="close_lock_fd",
        action="store_true",
        help="Close the lock descriptor before running the command",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Report lock timing on stderr")
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("target", help="Descriptor number, or file/directory when a command follows")
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run while holding the lock, or -c COMMAND_STRING",
    )
    return parser


def _outcome_for_error(exc: FlockrunError) -> ExitOutcome:
    if isinstance(exc, LockWouldBlockError):
        return LockNotObtained(timed_out=False)
    if isinstance(exc, LockTimeoutError):
        return LockNotObtained(timed_out=True)
    if isinstance(exc, (LockFailedError, TargetOpenError)):
        return LockFailed(exc.reason)
    if isinstance(exc, SpawnError):
        return SpawnFailed(exc.reason)
    if isinstance(exc, UsageError):
        return InvalidUsage()
    return LockFailed(FailureReason.OTHER)


def run_locked(request: LockRequest, child: ChildSpec | None) -> ExitOutcome:
    """Take the lock and, when configured, run the command under it."""
    try:
        with held_lock(request) as fd:
            if child is None:
                return NormalExit(0)
            return run_command(child, fd)
    except FlockrunError as exc:
        outcome = _outcome_for_error(exc)
        if isinstance(outcome, LockNotObtained):
            LOGGER.info(str(exc))
        else:
            print(f"ERROR: {exc}", file=sys.stderr)
        return outcome


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        LOGGER.verbose = bool(args.verbose)
        request, child = build_request(
            args.target,
            args.command,
            mode=args.mode,
            nonblocking=bool(args.nonblocking),
            timeout_text=args.timeout,
            close_lock_fd=bool(args.close_lock_fd),
        )
    except UsageError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return exit_status(InvalidUsage())

    try:
        return exit_status(run_locked(request, child))
    except KeyboardInterrupt:
        return exit_status(KilledBySignal(int(signal.SIGINT)))


if __name__ == "__main__":
    raise SystemExit(main())
