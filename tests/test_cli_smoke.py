from __future__ import annotations

import fcntl
import io
import os
import signal
import subprocess
import sys
import tempfile
import time
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

from flockrun.cli import main
from flockrun.outcome import (
    EXIT_DATAERR,
    EXIT_LOCK_NOT_OBTAINED,
    EXIT_NOINPUT,
    EXIT_UNAVAILABLE,
    EXIT_USAGE,
)

_HOLDER = (
    "import fcntl, os, sys\n"
    "fd = os.open(sys.argv[1], os.O_RDWR | os.O_CREAT, 0o666)\n"
    "fcntl.flock(fd, fcntl.LOCK_EX)\n"
    "sys.stdout.write('locked\\n')\n"
    "sys.stdout.flush()\n"
    "sys.stdin.read()\n"
)

_FIND_LOCK_FD = (
    "import os, sys\n"
    "target = os.path.realpath(sys.argv[1])\n"
    "fd_dir = '/proc/self/fd'\n"
    "found = [n for n in os.listdir(fd_dir) if os.path.realpath(os.path.join(fd_dir, n)) == target]\n"
    "sys.exit(0 if found else 3)\n"
)


class CliSmokeTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)
        self.lock_path = self.root / "cli.lock"

    def _run_cli(self, argv: list[str]) -> tuple[int, str, str]:
        out = io.StringIO()
        err = io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            try:
                code = main(argv)
            except SystemExit as exc:
                code = int(exc.code) if isinstance(exc.code, int) else 1
        return code, out.getvalue(), err.getvalue()

    def _hold_lock(self) -> None:
        proc = subprocess.Popen(
            [sys.executable, "-c", _HOLDER, str(self.lock_path)],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            text=True,
        )
        assert proc.stdout is not None and proc.stdin is not None
        self.addCleanup(proc.stdout.close)
        self.addCleanup(proc.wait, 10)
        self.addCleanup(proc.stdin.close)
        self.assertEqual(proc.stdout.readline().strip(), "locked")

    def test_command_exit_code_is_propagated(self) -> None:
        for code in (0, 7, 255):
            with self.subTest(code=code):
                rc, _, err = self._run_cli(
                    [str(self.lock_path), sys.executable, "-c", f"raise SystemExit({code})"]
                )
                self.assertEqual(rc, code, msg=err)

    def test_signal_death_maps_to_128_plus_signal(self) -> None:
        rc, _, _ = self._run_cli(
            [
                str(self.lock_path),
                sys.executable,
                "-c",
                "import os, signal; os.kill(os.getpid(), signal.SIGKILL)",
            ]
        )
        self.assertEqual(rc, 128 + signal.SIGKILL)

    def test_command_string_runs_through_shell(self) -> None:
        with patch.dict(os.environ, {"SHELL": "/bin/sh"}):
            rc, _, err = self._run_cli([str(self.lock_path), "-c", "exit 5"])
        self.assertEqual(rc, 5, msg=err)

    def test_timeout_expiry_skips_command(self) -> None:
        self._hold_lock()
        marker = self.root / "ran"
        started = time.monotonic()
        rc, _, _ = self._run_cli(
            [
                "-w",
                "0.2",
                str(self.lock_path),
                sys.executable,
                "-c",
                f"open({str(marker)!r}, 'w').close()",
            ]
        )
        self.assertEqual(rc, EXIT_LOCK_NOT_OBTAINED)
        self.assertGreaterEqual(time.monotonic() - started, 0.15)
        self.assertFalse(marker.exists())
        self.assertEqual(signal.getitimer(signal.ITIMER_REAL), (0.0, 0.0))

    def test_zero_timeout_behaves_like_nonblocking(self) -> None:
        self._hold_lock()
        for flags in (["-w", "0"], ["-n"]):
            with self.subTest(flags=flags):
                started = time.monotonic()
                rc, _, _ = self._run_cli([*flags, str(self.lock_path), "true"])
                self.assertEqual(rc, EXIT_LOCK_NOT_OBTAINED)
                self.assertLess(time.monotonic() - started, 5)
                self.assertEqual(signal.getitimer(signal.ITIMER_REAL), (0.0, 0.0))

    def test_verbose_reports_timeout(self) -> None:
        self._hold_lock()
        rc, _, err = self._run_cli(["-v", "-n", str(self.lock_path), "true"])
        self.assertEqual(rc, EXIT_LOCK_NOT_OBTAINED)
        self.assertIn("held by another process", err)

        rc, _, err = self._run_cli(["-n", str(self.lock_path), "true"])
        self.assertEqual(rc, EXIT_LOCK_NOT_OBTAINED)
        self.assertEqual(err, "")

    def test_verbose_reports_lock_timing(self) -> None:
        rc, _, err = self._run_cli(["--verbose", str(self.lock_path), "true"])
        self.assertEqual(rc, 0, msg=err)
        self.assertIn("getting lock took", err)
        self.assertIn("executing true", err)

    def test_descriptor_target_keeps_lock_after_return(self) -> None:
        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o666)
        self.addCleanup(os.close, fd)
        rc, _, err = self._run_cli(["-x", str(fd)])
        self.assertEqual(rc, 0, msg=err)

        other = os.open(self.lock_path, os.O_RDONLY)
        try:
            with self.assertRaises(BlockingIOError):
                fcntl.flock(other, fcntl.LOCK_SH | fcntl.LOCK_NB)
            rc, _, err = self._run_cli(["-u", str(fd)])
            self.assertEqual(rc, 0, msg=err)
            fcntl.flock(other, fcntl.LOCK_SH | fcntl.LOCK_NB)
        finally:
            os.close(other)

    @unittest.skipUnless(os.path.isdir("/proc/self/fd"), "needs /proc descriptor listing")
    def test_close_option_hides_lock_descriptor_from_child(self) -> None:
        rc, _, err = self._run_cli(
            ["-o", str(self.lock_path), sys.executable, "-c", _FIND_LOCK_FD, str(self.lock_path)]
        )
        self.assertEqual(rc, 3, msg=err)

        rc, _, err = self._run_cli(
            [str(self.lock_path), sys.executable, "-c", _FIND_LOCK_FD, str(self.lock_path)]
        )
        self.assertEqual(rc, 0, msg=err)

    def test_out_of_range_descriptor_is_data_error(self) -> None:
        for target in ("-1", "99999999999999999999"):
            with self.subTest(target=target):
                rc, _, err = self._run_cli([target])
                self.assertEqual(rc, EXIT_DATAERR)
                self.assertIn("ERROR:", err)

    def test_oversized_timeout_is_usage_error(self) -> None:
        rc, _, err = self._run_cli(["-w", "99999999999999999999", str(self.lock_path), "true"])
        self.assertEqual(rc, EXIT_USAGE)
        self.assertIn("too large", err)
        self.assertEqual(signal.getitimer(signal.ITIMER_REAL), (0.0, 0.0))

    def test_caller_descriptor_redirect_reaches_command(self) -> None:
        out_path = self.root / "out.txt"
        out_fd = os.open(out_path, os.O_WRONLY | os.O_CREAT, 0o666)
        self.addCleanup(os.close, out_fd)
        os.set_inheritable(out_fd, True)
        rc, _, err = self._run_cli(
            ["-o", str(self.lock_path), "/bin/sh", "-c", f"echo locked-write >&{out_fd}"]
        )
        self.assertEqual(rc, 0, msg=err)
        self.assertEqual(out_path.read_text(encoding="utf-8"), "locked-write\n")

    def test_usage_errors(self) -> None:
        cases = [
            [],
            ["not-a-number"],
            ["-w", "1.5s", "3"],
            ["-w", "abc", str(self.lock_path), "true"],
            [str(self.lock_path), "-c"],
            [str(self.lock_path), "-c", "echo", "extra"],
            ["--bogus", "3"],
        ]
        for argv in cases:
            with self.subTest(argv=argv):
                rc, _, err = self._run_cli(argv)
                self.assertEqual(rc, EXIT_USAGE)
                self.assertIn("ERROR:", err)

    def test_unopenable_lock_file(self) -> None:
        path = self.root / "missing-dir" / "x.lock"
        rc, _, err = self._run_cli([str(path), "true"])
        self.assertEqual(rc, EXIT_NOINPUT)
        self.assertIn("cannot open lock file", err)

    def test_missing_command(self) -> None:
        rc, _, err = self._run_cli([str(self.lock_path), str(self.root / "no-such-command")])
        self.assertEqual(rc, EXIT_UNAVAILABLE)
        self.assertIn("no-such-command", err)

    def test_version_and_help_exit_zero(self) -> None:
        rc, out, _ = self._run_cli(["--version"])
        self.assertEqual(rc, 0)
        self.assertIn("flockrun", out)

        rc, out, _ = self._run_cli(["--help"])
        self.assertEqual(rc, 0)
        self.assertIn("exit status", out)


if __name__ == "__main__":
    unittest.main()
