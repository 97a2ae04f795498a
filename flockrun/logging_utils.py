"""stderr logger helpers for flockrun."""

from __future__ import annotations

import sys
from datetime import datetime, timezone


def utc_timestamp() -> str:
    """Return an RFC3339 UTC timestamp with second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class FlockrunLogger:
    """Simple structured logger writing to stderr only.

    ``info`` lines are dropped unless ``verbose`` is set; stdout belongs to
    the command being run.
    """

    def __init__(self) -> None:
        self.verbose = False

    def _emit(self, level: str, message: str) -> None:
        print(f"[FLOCKRUN {utc_timestamp()}] {level}: {message}", file=sys.stderr, flush=True)

    def info(self, message: str) -> None:
        if self.verbose:
            self._emit("INFO", message)

    def error(self, message: str) -> None:
        self._emit("ERROR", message)


LOGGER = FlockrunLogger()
