from __future__ import annotations

import time
from pathlib import Path

import allure

from omniforge.orchestrator.models import ExecutionStatus, Task
from omniforge.orchestrator.sequencer import Sequencer, task_log_name

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Sequencer"),
]


def _script(tmp_path: Path, name: str, body: str) -> Path:
    path = tmp_path / name
    path.write_text(f"#!/usr/bin/env bash\n{body}\n", encoding="utf-8")
    return path


def _counting_body(counter: Path, *, succeed_from: int, slow_first: bool = False) -> str:
    slow = 'if [ "$n" -eq 1 ]; then sleep 1; fi\n' if slow_first else ""
    return (
        f'n=$(cat "{counter}" 2>/dev/null || echo 0)\n'
        "n=$((n + 1))\n"
        f'echo "$n" > "{counter}"\n'
        f"{slow}"
        f'[ "$n" -ge {succeed_from} ]'
    )


def _sequencer(tmp_path: Path, sleeps: list[float] | None = None, **kwargs) -> Sequencer:
    recorded = sleeps if sleeps is not None else []
    return Sequencer(
        retry_delay_seconds=0,
        grace_seconds=0.5,
        cwd=tmp_path,
        sleep=recorded.append,
        **kwargs,
    )


def test_success_on_first_attempt(tmp_path: Path) -> None:
    task = Task(id="ok.sh", path=_script(tmp_path, "ok.sh", "echo hello"), retries=2)

    result = _sequencer(tmp_path).run(task)

    assert result.status is ExecutionStatus.SUCCESS
    assert result.attempts == 1
    assert result.exit_code == 0


def test_retry_then_succeed(tmp_path: Path) -> None:
    counter = tmp_path / "count"
    path = _script(tmp_path, "flaky.sh", _counting_body(counter, succeed_from=2))
    sleeps: list[float] = []

    result = _sequencer(tmp_path, sleeps).run(Task(id="flaky.sh", path=path, retries=2))

    assert result.status is ExecutionStatus.SUCCESS
    assert result.attempts == 2
    assert sleeps == [0]
    assert counter.read_text().strip() == "2"


def test_failure_exhausts_retries(tmp_path: Path) -> None:
    task = Task(id="bad.sh", path=_script(tmp_path, "bad.sh", "exit 3"), retries=2)

    result = _sequencer(tmp_path).run(task)

    assert result.status is ExecutionStatus.FAILURE
    assert result.attempts == 3
    assert result.exit_code == 3
    assert result.error == "exit code 3"


def test_timeout_is_terminal_and_bounded(tmp_path: Path) -> None:
    task = Task(
        id="hang.sh",
        path=_script(tmp_path, "hang.sh", "sleep 10"),
        timeout_seconds=1,
        retries=2,
    )

    started = time.monotonic()
    result = _sequencer(tmp_path).run(task)
    elapsed = time.monotonic() - started

    assert result.status is ExecutionStatus.TIMEOUT
    assert result.attempts == 1
    assert result.exit_code == 124
    assert elapsed < 4


def test_failed_test_command_overrides_success_and_is_not_retried(tmp_path: Path) -> None:
    counter = tmp_path / "count"
    path = _script(tmp_path, "install.sh", _counting_body(counter, succeed_from=1))
    task = Task(id="install.sh", path=path, retries=2, test_command="test -f never-created")

    result = _sequencer(tmp_path).run(task)

    assert result.status is ExecutionStatus.TEST_FAILED
    assert result.attempts == 1
    assert counter.read_text().strip() == "1"


def test_passing_test_command_runs_in_project_root(tmp_path: Path) -> None:
    path = _script(tmp_path, "touch.sh", "touch marker.txt")
    task = Task(id="touch.sh", path=path, test_command="test -f marker.txt")

    result = _sequencer(tmp_path).run(task)

    assert result.status is ExecutionStatus.SUCCESS
    assert (tmp_path / "marker.txt").exists()


def test_duration_covers_only_the_last_attempt(tmp_path: Path) -> None:
    counter = tmp_path / "count"
    path = _script(tmp_path, "slow.sh", _counting_body(counter, succeed_from=2, slow_first=True))

    result = _sequencer(tmp_path).run(Task(id="slow.sh", path=path, retries=1))

    assert result.status is ExecutionStatus.SUCCESS
    assert result.attempts == 2
    assert result.duration_seconds < 0.9


def test_spawn_error_is_a_failure_result(tmp_path: Path) -> None:
    task = Task(id="ok.sh", path=_script(tmp_path, "ok.sh", "exit 0"), retries=1)

    result = _sequencer(tmp_path, shell=str(tmp_path / "no-such-shell")).run(task)

    assert result.status is ExecutionStatus.FAILURE
    assert result.attempts == 2
    assert result.exit_code is None
    assert result.error is not None
    assert result.error.startswith("failed to start")


def test_task_environment_and_output_log(tmp_path: Path) -> None:
    path = _script(
        tmp_path,
        "env.sh",
        'echo "id=$OMNIFORGE_TASK_ID attempt=$OMNIFORGE_TASK_ATTEMPT flag=$ENABLE_AUTHJS"',
    )
    log_dir = tmp_path / "logs"
    sequencer = _sequencer(tmp_path, env={"ENABLE_AUTHJS": "true"}, log_dir=log_dir)

    sequencer.run(Task(id="auth/env.sh", path=path))

    log_text = (log_dir / f"{task_log_name('auth/env.sh')}.log").read_text("utf-8")
    assert "=== auth/env.sh attempt 1 at" in log_text
    assert "id=auth/env.sh attempt=1 flag=true" in log_text


def test_task_log_name_is_filesystem_safe() -> None:
    assert task_log_name("db/08-drizzle setup.sh") == "db__08-drizzle__setup.sh"
