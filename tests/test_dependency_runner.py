from __future__ import annotations

from pathlib import Path

import allure

from omniforge.orchestrator.dependencies import DependencyRunner, resolve_dependency
from omniforge.orchestrator.models import ExecutionResult, ExecutionStatus, Task

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Dependency Gating"),
]


class RecordingExecutor:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def run(self, task: Task) -> ExecutionResult:
        self.calls.append(task.id)
        return ExecutionResult(task_id=task.id, status=ExecutionStatus.SUCCESS, attempts=1)


def _task(task_id: str, *dependencies: str) -> Task:
    return Task(id=task_id, path=Path(task_id), dependencies=dependencies)


def _result(task_id: str, status: ExecutionStatus) -> ExecutionResult:
    return ExecutionResult(task_id=task_id, status=status, attempts=1)


def test_missing_dependency_result_is_dep_not_run() -> None:
    executor = RecordingExecutor()

    result = DependencyRunner(executor).run_with_deps(_task("b.sh", "a.sh"), {})

    assert result.status is ExecutionStatus.DEP_NOT_RUN
    assert result.attempts == 0
    assert executor.calls == []


def test_failed_dependency_blocks_execution() -> None:
    executor = RecordingExecutor()
    current = {"a.sh": _result("a.sh", ExecutionStatus.FAILURE)}

    result = DependencyRunner(executor).run_with_deps(_task("b.sh", "a.sh"), current)

    assert result.status is ExecutionStatus.DEP_FAILED
    assert "a.sh" in (result.error or "")
    assert executor.calls == []


def test_timeout_or_test_failure_also_counts_as_failed_dependency() -> None:
    runner = DependencyRunner(RecordingExecutor())
    failed = (ExecutionStatus.TIMEOUT, ExecutionStatus.TEST_FAILED, ExecutionStatus.DEP_FAILED)
    for status in failed:
        result = runner.run_with_deps(_task("b.sh", "a.sh"), {"a.sh": _result("a.sh", status)})
        assert result.status is ExecutionStatus.DEP_FAILED


def test_all_dependencies_succeeded_delegates_to_executor() -> None:
    executor = RecordingExecutor()
    current = {
        "a.sh": _result("a.sh", ExecutionStatus.SUCCESS),
        "c.sh": _result("c.sh", ExecutionStatus.SUCCESS),
    }

    result = DependencyRunner(executor).run_with_deps(_task("b.sh", "a.sh", "c.sh"), current)

    assert result.status is ExecutionStatus.SUCCESS
    assert executor.calls == ["b.sh"]


def test_dependency_matches_by_file_name_or_stem() -> None:
    task_id = "db/08-drizzle-setup.sh"
    current = {task_id: _result(task_id, ExecutionStatus.SUCCESS)}

    assert resolve_dependency("08-drizzle-setup.sh", current) is not None
    assert resolve_dependency("08-drizzle-setup", current) is not None
    assert resolve_dependency("drizzle", current) is None


def test_ambiguous_file_name_does_not_resolve() -> None:
    current = {
        "a/setup.sh": _result("a/setup.sh", ExecutionStatus.SUCCESS),
        "b/setup.sh": _result("b/setup.sh", ExecutionStatus.SUCCESS),
    }

    assert resolve_dependency("setup.sh", current) is None
    assert resolve_dependency("a/setup.sh", current) is not None
