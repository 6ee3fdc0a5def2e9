"""Single-task execution with timeout, retry, and post-condition test."""

from __future__ import annotations

import logging
import os
import re
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from omniforge.orchestrator.models import ExecutionResult, ExecutionStatus, Task
from omniforge.orchestrator.process import (
    DEFAULT_GRACE_SECONDS,
    ProcessResult,
    run_with_deadline,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_SECONDS = 5.0
DEFAULT_TASK_SHELL = "bash"

_UNSAFE_LOG_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


class Sequencer:
    """Runs one task at a time under its declared timeout and retry policy.

    A non-zero exit consumes a retry. A timeout is terminal and is not
    retried, and so is a failed post-condition test. Every outcome is
    returned as an ``ExecutionResult``; nothing is raised for task failures.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        shell: str = DEFAULT_TASK_SHELL,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        log_dir: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.shell = shell
        self.retry_delay_seconds = retry_delay_seconds
        self.grace_seconds = grace_seconds
        self.cwd = cwd
        self.env = dict(env or {})
        self.log_dir = log_dir
        self._sleep = sleep

    def run(self, task: Task) -> ExecutionResult:
        logger.debug(
            "Sequencer: running %s (timeout: %ss, retries: %s)",
            task.id,
            task.timeout_seconds,
            task.retries,
        )
        attempts = 0
        duration = 0.0
        exit_code: int | None = None
        error: str | None = None
        succeeded = False

        while attempts <= task.retries:
            attempts += 1
            if attempts > 1:
                logger.debug("Sequencer: retry %d/%d for %s", attempts - 1, task.retries, task.id)
                self._sleep(self.retry_delay_seconds)

            started = time.monotonic()
            try:
                outcome = self._execute(task, attempt=attempts)
            except OSError as spawn_error:
                duration = time.monotonic() - started
                exit_code = None
                error = f"failed to start: {spawn_error}"
                logger.warning("Sequencer: %s %s", task.id, error)
                continue

            duration = outcome.duration_seconds
            exit_code = outcome.exit_code
            if outcome.timed_out:
                error = f"timed out after {task.timeout_seconds}s"
                logger.warning("Sequencer: %s %s", task.id, error)
                return ExecutionResult(
                    task_id=task.id,
                    status=ExecutionStatus.TIMEOUT,
                    duration_seconds=duration,
                    attempts=attempts,
                    exit_code=exit_code,
                    error=error,
                )
            if outcome.exit_code == 0:
                succeeded = True
                error = None
                break
            error = f"exit code {outcome.exit_code}"
            logger.debug("Sequencer: %s failed (exit: %s)", task.id, outcome.exit_code)

        if not succeeded:
            logger.warning("Sequencer: %s failed after %d attempt(s): %s", task.id, attempts, error)
            return ExecutionResult(
                task_id=task.id,
                status=ExecutionStatus.FAILURE,
                duration_seconds=duration,
                attempts=attempts,
                exit_code=exit_code,
                error=error,
            )

        if task.test_command and not self.verify(task):
            logger.warning("Test failed for %s: %s", task.id, task.test_command)
            return ExecutionResult(
                task_id=task.id,
                status=ExecutionStatus.TEST_FAILED,
                duration_seconds=duration,
                attempts=attempts,
                exit_code=exit_code,
                error=f"test failed: {task.test_command}",
            )

        return ExecutionResult(
            task_id=task.id,
            status=ExecutionStatus.SUCCESS,
            duration_seconds=duration,
            attempts=attempts,
            exit_code=exit_code,
        )

    def verify(self, task: Task) -> bool:
        """Evaluate the task's test command through the shell; True on exit 0."""

        if not task.test_command:
            return True
        logger.debug("Sequencer: running test for %s: %s", task.id, task.test_command)
        try:
            outcome = run_with_deadline(
                [self.shell or "sh", "-c", task.test_command],
                timeout_seconds=task.timeout_seconds,
                grace_seconds=self.grace_seconds,
                cwd=self.cwd,
                env=self._environment(task, attempt=0),
            )
        except OSError as error:
            logger.warning("Test for %s could not start: %s", task.id, error)
            return False
        return outcome.ok

    def _execute(self, task: Task, *, attempt: int) -> ProcessResult:
        script = str(task.path.resolve())
        argv = [self.shell, script] if self.shell else [script]
        with self._attempt_log(task, attempt=attempt) as output:
            return run_with_deadline(
                argv,
                timeout_seconds=task.timeout_seconds,
                grace_seconds=self.grace_seconds,
                cwd=self.cwd,
                env=self._environment(task, attempt=attempt),
                output=output,
            )

    def _environment(self, task: Task, *, attempt: int) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        env["OMNIFORGE_TASK_ID"] = task.id
        env["OMNIFORGE_TASK_ATTEMPT"] = str(attempt)
        return env

    @contextmanager
    def _attempt_log(self, task: Task, *, attempt: int) -> Iterator[IO[str] | None]:
        if self.log_dir is None:
            yield None
            return
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.log_dir / f"{task_log_name(task.id)}.log"
        with log_path.open("a", encoding="utf-8") as handle:
            started_at = datetime.now(tz=UTC).isoformat()
            handle.write(f"=== {task.id} attempt {attempt} at {started_at} ===\n")
            handle.flush()
            yield handle


def task_log_name(task_id: str) -> str:
    return _UNSAFE_LOG_CHARS_RE.sub("__", task_id).strip("_") or "task"
