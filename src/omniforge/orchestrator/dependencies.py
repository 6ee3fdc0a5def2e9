"""Dependency gating against the current run's results."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import PurePosixPath
from typing import Protocol

from omniforge.orchestrator.models import ExecutionResult, ExecutionStatus, Task

logger = logging.getLogger(__name__)


class TaskExecutor(Protocol):
    """Anything that can run one task to a terminal result."""

    def run(self, task: Task) -> ExecutionResult:
        """Run the task and return its outcome."""


class DependencyRunner:
    """Runs a task only when every declared dependency succeeded in this run.

    Only ``current_results`` is consulted; a dependency that succeeded in an
    earlier run but was not part of this one counts as not run.
    """

    def __init__(self, executor: TaskExecutor) -> None:
        self.executor = executor

    def run_with_deps(
        self,
        task: Task,
        current_results: Mapping[str, ExecutionResult],
    ) -> ExecutionResult:
        blocked = self.check(task, current_results)
        if blocked is not None:
            return blocked
        return self.executor.run(task)

    def check(
        self,
        task: Task,
        current_results: Mapping[str, ExecutionResult],
    ) -> ExecutionResult | None:
        """Return the gating result for ``task``, or ``None`` when it may run."""

        if task.dependencies:
            logger.debug("%s depends on: %s", task.id, ", ".join(task.dependencies))
        for dependency in task.dependencies:
            dep_result = resolve_dependency(dependency, current_results)
            if dep_result is None:
                logger.warning("Dependency %s not yet executed for %s", dependency, task.id)
                return ExecutionResult(
                    task_id=task.id,
                    status=ExecutionStatus.DEP_NOT_RUN,
                    error=f"dependency not run: {dependency}",
                )
            if not dep_result.ok:
                logger.warning(
                    "Dependency %s failed for %s (result: %s)",
                    dependency,
                    task.id,
                    dep_result.status.value,
                )
                return ExecutionResult(
                    task_id=task.id,
                    status=ExecutionStatus.DEP_FAILED,
                    error=f"dependency {dependency} ended with {dep_result.status.value}",
                )
        return None


def resolve_dependency(
    dependency: str,
    current_results: Mapping[str, ExecutionResult],
) -> ExecutionResult | None:
    """Find a dependency's result by task id, then by unique file name or stem."""

    exact = current_results.get(dependency)
    if exact is not None:
        return exact
    matches = [
        result
        for task_id, result in current_results.items()
        if dependency in {PurePosixPath(task_id).name, PurePosixPath(task_id).stem}
    ]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        logger.warning("Dependency %s is ambiguous (%d matching tasks)", dependency, len(matches))
    return None
