"""Batch and phase-ordered directory runs over the dependency runner."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from omniforge.orchestrator.dependencies import DependencyRunner
from omniforge.orchestrator.metadata import DEFAULT_TASK_GLOB, TaskDefaults, load_tasks
from omniforge.orchestrator.models import BatchSummary, ExecutionResult, ExecutionStatus, Task
from omniforge.orchestrator.state import StateStore

logger = logging.getLogger(__name__)


def order_by_phase(tasks: Iterable[Task]) -> list[Task]:
    """Ascending phase, unknown phase last, discovery order within a phase."""

    return sorted(tasks, key=lambda task: task.phase_sort_key)


class BatchRunner:
    """Drives tasks strictly sequentially and records successes in the ledger.

    Execution never stops early: every task in the ordering is attempted,
    except tasks whose dependencies did not succeed in this run. A task
    already recorded in the ledger is skipped (reported as a success with
    zero attempts) unless ``force`` is set.
    """

    def __init__(
        self,
        *,
        runner: DependencyRunner,
        store: StateStore,
        task_pattern: str = DEFAULT_TASK_GLOB,
        defaults: TaskDefaults | None = None,
        on_result: Callable[[ExecutionResult], None] | None = None,
    ) -> None:
        self.runner = runner
        self.store = store
        self.task_pattern = task_pattern
        self.defaults = defaults
        self._on_result = on_result or (lambda _result: None)

    def run_batch(self, tasks: Iterable[Task], *, force: bool = False) -> BatchSummary:
        summary = BatchSummary()
        current_results: dict[str, ExecutionResult] = {}
        ordered = list(tasks)
        logger.info("Running batch of %d task(s)%s", len(ordered), " (forced)" if force else "")

        for task in ordered:
            result = self._run_one(task, current_results, force=force)
            current_results[task.id] = result
            summary.results.append(result)
            self._on_result(result)

        logger.info(
            "Batch finished: total=%d passed=%d failed=%d",
            summary.total,
            summary.passed,
            summary.failed,
        )
        return summary

    def run_directory(self, root: Path, *, force: bool = False) -> BatchSummary:
        """Discover tasks under ``root`` and run them in phase order."""

        parsed = load_tasks(root.resolve(), pattern=self.task_pattern, defaults=self.defaults)
        return self.run_batch(order_by_phase(item.task for item in parsed), force=force)

    def _run_one(
        self,
        task: Task,
        current_results: dict[str, ExecutionResult],
        *,
        force: bool,
    ) -> ExecutionResult:
        if not force and self.store.has_succeeded(task.id):
            logger.info("SKIP: %s - already completed", task.id)
            return ExecutionResult(
                task_id=task.id,
                status=ExecutionStatus.SUCCESS,
                attempts=0,
                skipped=True,
            )

        if not task.path.is_file():
            logger.warning("Task file not found: %s", task.path)
            return ExecutionResult(
                task_id=task.id,
                status=ExecutionStatus.FAILURE,
                error=f"task file not found: {task.path}",
            )

        result = self.runner.run_with_deps(task, current_results)
        if result.ok:
            self.store.mark_success(task.id)
            logger.info("SUCCESS: %s (%.1fs)", task.id, result.duration_seconds)
        else:
            logger.warning("FAILURE: %s - %s", task.id, result.error or result.status.value)
        return result
