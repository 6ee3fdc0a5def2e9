from __future__ import annotations

from pathlib import Path

import allure

from omniforge.orchestrator.batch import BatchRunner, order_by_phase
from omniforge.orchestrator.dependencies import DependencyRunner
from omniforge.orchestrator.models import ExecutionResult, ExecutionStatus, Task
from omniforge.orchestrator.sequencer import Sequencer
from omniforge.orchestrator.state import StateStore

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Batch Execution"),
]


class ScriptedExecutor:
    """Returns preset statuses per task id and records every invocation."""

    def __init__(self, outcomes: dict[str, ExecutionStatus] | None = None) -> None:
        self.outcomes = outcomes or {}
        self.calls: list[str] = []

    def run(self, task: Task) -> ExecutionResult:
        self.calls.append(task.id)
        status = self.outcomes.get(task.id, ExecutionStatus.SUCCESS)
        return ExecutionResult(task_id=task.id, status=status, attempts=1, duration_seconds=0.1)


def _task(tmp_path: Path, task_id: str, *dependencies: str, phase: int | None = None) -> Task:
    path = tmp_path / task_id
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/usr/bin/env bash\nexit 0\n", encoding="utf-8")
    return Task(id=task_id, path=path, phase=phase, dependencies=dependencies)


def _runner(tmp_path: Path, executor) -> BatchRunner:
    return BatchRunner(
        runner=DependencyRunner(executor),
        store=StateStore(tmp_path / ".bootstrap_state"),
    )


def test_already_succeeded_task_is_skipped_without_running(tmp_path: Path) -> None:
    executor = ScriptedExecutor()
    runner = _runner(tmp_path, executor)
    runner.store.mark_success("a.sh")

    summary = runner.run_batch([_task(tmp_path, "a.sh")])

    result = summary.results[0]
    assert result.status is ExecutionStatus.SUCCESS
    assert result.attempts == 0
    assert result.skipped
    assert executor.calls == []
    assert summary.passed == 1


def test_force_reruns_completed_tasks(tmp_path: Path) -> None:
    executor = ScriptedExecutor()
    runner = _runner(tmp_path, executor)
    runner.store.mark_success("a.sh")

    summary = runner.run_batch([_task(tmp_path, "a.sh")], force=True)

    assert executor.calls == ["a.sh"]
    assert not summary.results[0].skipped


def test_skipped_dependency_still_satisfies_dependents(tmp_path: Path) -> None:
    executor = ScriptedExecutor()
    runner = _runner(tmp_path, executor)
    runner.store.mark_success("a.sh")

    summary = runner.run_batch([_task(tmp_path, "a.sh"), _task(tmp_path, "b.sh", "a.sh")])

    assert executor.calls == ["b.sh"]
    assert summary.by_task_id()["b.sh"].status is ExecutionStatus.SUCCESS


def test_dependent_of_failed_task_is_never_spawned(tmp_path: Path) -> None:
    marker = tmp_path / "b-ran"
    a_path = tmp_path / "a.sh"
    a_path.write_text("#!/usr/bin/env bash\nexit 1\n", encoding="utf-8")
    b_path = tmp_path / "b.sh"
    b_path.write_text(f'#!/usr/bin/env bash\ntouch "{marker}"\n', encoding="utf-8")
    sequencer = Sequencer(retry_delay_seconds=0, cwd=tmp_path, sleep=lambda _seconds: None)
    runner = BatchRunner(
        runner=DependencyRunner(sequencer),
        store=StateStore(tmp_path / ".bootstrap_state"),
    )

    summary = runner.run_batch(
        [
            Task(id="a.sh", path=a_path, retries=0),
            Task(id="b.sh", path=b_path, dependencies=("a.sh",)),
        ],
    )

    results = summary.by_task_id()
    assert results["a.sh"].status is ExecutionStatus.FAILURE
    assert results["b.sh"].status is ExecutionStatus.DEP_FAILED
    assert not marker.exists()
    assert summary.failed == 2


def test_no_fail_fast_and_only_genuine_successes_are_recorded(tmp_path: Path) -> None:
    executor = ScriptedExecutor({"a.sh": ExecutionStatus.TIMEOUT})
    runner = _runner(tmp_path, executor)

    summary = runner.run_batch(
        [_task(tmp_path, "a.sh"), _task(tmp_path, "b.sh"), _task(tmp_path, "c.sh", "a.sh")],
    )

    assert executor.calls == ["a.sh", "b.sh"]
    assert [result.status for result in summary.results] == [
        ExecutionStatus.TIMEOUT,
        ExecutionStatus.SUCCESS,
        ExecutionStatus.DEP_FAILED,
    ]
    assert (summary.total, summary.passed, summary.failed) == (3, 1, 2)
    assert summary.failed_ids() == ["a.sh", "c.sh"]
    assert [entry.task_key for entry in runner.store.list_completed()] == ["b.sh"]


def test_dependency_later_in_the_ordering_is_not_run_yet(tmp_path: Path) -> None:
    executor = ScriptedExecutor()
    runner = _runner(tmp_path, executor)

    summary = runner.run_batch([_task(tmp_path, "b.sh", "a.sh"), _task(tmp_path, "a.sh")])

    assert summary.results[0].status is ExecutionStatus.DEP_NOT_RUN
    assert executor.calls == ["a.sh"]


def test_missing_task_file_is_reported_as_failure(tmp_path: Path) -> None:
    executor = ScriptedExecutor()
    runner = _runner(tmp_path, executor)

    summary = runner.run_batch([Task(id="ghost.sh", path=tmp_path / "ghost.sh")])

    assert summary.results[0].status is ExecutionStatus.FAILURE
    assert "not found" in (summary.results[0].error or "")
    assert executor.calls == []


def test_order_by_phase_is_stable_with_unknown_last() -> None:
    tasks = [
        Task(id="x", path=Path("x"), phase=None),
        Task(id="b", path=Path("b"), phase=2),
        Task(id="a", path=Path("a"), phase=1),
        Task(id="c", path=Path("c"), phase=2),
    ]

    assert [task.id for task in order_by_phase(tasks)] == ["a", "b", "c", "x"]


def test_run_directory_uses_phase_order(tasks_root: Path, write_task) -> None:
    write_task("z-first.sh", phase=0, required="X")
    write_task("a-last.sh", required="X")
    write_task("m-second.sh", phase=1, required="X")
    executor = ScriptedExecutor()
    runner = _runner(tasks_root.parent, executor)

    summary = runner.run_directory(tasks_root)

    assert executor.calls == ["z-first.sh", "m-second.sh", "a-last.sh"]
    assert summary.total == 3
