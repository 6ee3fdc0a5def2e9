"""Subprocess execution bounded by a wall-clock deadline."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
DEFAULT_GRACE_SECONDS = 2.0
_POLL_INTERVAL_SECONDS = 0.1
_USE_PROCESS_GROUPS = os.name != "nt"


@dataclass(slots=True)
class ProcessResult:
    """Outcome of one bounded subprocess run."""

    exit_code: int
    timed_out: bool
    duration_seconds: float
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


def run_with_deadline(  # noqa: PLR0913
    argv: Sequence[str],
    *,
    timeout_seconds: float,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    output: IO[str] | None = None,
    cancel_requested: Callable[[], bool] | None = None,
) -> ProcessResult:
    """Run ``argv`` until it exits, the deadline passes, or cancellation is requested.

    On deadline or cancellation the process (and its process group on POSIX)
    is terminated gracefully, then killed after ``grace_seconds``.
    Raises ``OSError`` when the process cannot be spawned.
    """

    started = time.monotonic()
    process = subprocess.Popen(  # noqa: S603
        list(argv),
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdin=subprocess.DEVNULL,
        stdout=output if output is not None else subprocess.DEVNULL,
        stderr=subprocess.STDOUT if output is not None else subprocess.DEVNULL,
        text=True,
        start_new_session=_USE_PROCESS_GROUPS,
    )
    deadline = started + max(0.0, timeout_seconds)

    while True:
        returncode = process.poll()
        if returncode is not None:
            return ProcessResult(
                exit_code=returncode,
                timed_out=False,
                duration_seconds=time.monotonic() - started,
            )

        now = time.monotonic()
        if now >= deadline:
            logger.warning("Timeout after %ss, terminating pid %s", timeout_seconds, process.pid)
            terminate_process(process, grace_seconds=grace_seconds)
            return ProcessResult(
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                duration_seconds=time.monotonic() - started,
            )

        if cancel_requested is not None and cancel_requested():
            terminate_process(process, grace_seconds=grace_seconds)
            return ProcessResult(
                exit_code=process.returncode if process.returncode is not None else -1,
                timed_out=False,
                duration_seconds=time.monotonic() - started,
                cancelled=True,
            )

        time.sleep(min(_POLL_INTERVAL_SECONDS, max(0.0, deadline - now)))


def terminate_process(
    process: subprocess.Popen[str] | subprocess.Popen[bytes],
    *,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
) -> None:
    """Send SIGTERM, wait ``grace_seconds``, then SIGKILL if still alive."""

    if not _signal(process, signal.SIGTERM):
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning("pid %s ignored SIGTERM, killing", process.pid)
        if not _signal(process, getattr(signal, "SIGKILL", signal.SIGTERM)):
            return
        process.wait(timeout=grace_seconds)
    else:
        # The leader may exit on SIGTERM while group members keep running.
        _signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))


def _signal(process: subprocess.Popen[str] | subprocess.Popen[bytes], signum: int) -> bool:
    try:
        if _USE_PROCESS_GROUPS:
            os.killpg(process.pid, signum)
        elif signum == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()
    except ProcessLookupError:
        return False
    except OSError:
        return False
    return True
