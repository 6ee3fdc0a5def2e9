"""Plain-text rendering of run results, ledger status, and the task index."""

from __future__ import annotations

from omniforge.orchestrator.catalog import TaskCatalog
from omniforge.orchestrator.models import BatchSummary, ExecutionResult, ExecutionStatus
from omniforge.orchestrator.state import StateStore

_STATUS_LABELS = {
    ExecutionStatus.SUCCESS: "[OK]",
    ExecutionStatus.TEST_FAILED: "[TEST]",
    ExecutionStatus.DEP_FAILED: "[SKIP]",
    ExecutionStatus.DEP_NOT_RUN: "[SKIP]",
    ExecutionStatus.TIMEOUT: "[TIME]",
    ExecutionStatus.FAILURE: "[FAIL]",
}


def status_label(result: ExecutionResult) -> str:
    if result.skipped:
        return "[DONE]"
    return _STATUS_LABELS[result.status]


def render_results_lines(summary: BatchSummary) -> list[str]:
    """Per-task status/duration lines followed by the totals line."""

    lines = ["Execution Results"]
    for result in summary.results:
        detail = f" {result.error}" if result.error and not result.ok else ""
        attempts = "" if result.attempts <= 1 else f" attempts={result.attempts}"
        lines.append(
            f"  {status_label(result):<6} {result.task_id:<40} "
            f"({result.duration_seconds:.0f}s){attempts}{detail}",
        )
    lines.append(
        f"  Summary: total:{summary.total} passed:{summary.passed} failed:{summary.failed}",
    )
    return lines


def render_state_lines(store: StateStore) -> list[str]:
    if not store.path.exists():
        return ["No state file found. Bootstrap has not been run yet."]
    completed = store.list_completed()
    lines = [
        f"State file: {store.path}",
        f"Completed scripts: {len(completed)}",
    ]
    if completed:
        lines.append("Completed:")
        lines.extend(f"  - {entry.task_key} ({entry.timestamp})" for entry in completed)
    return lines


def render_index_lines(catalog: TaskCatalog) -> list[str]:
    """Index grouped by phase, with required variables and dependencies."""

    lines = ["Script Requirements Index"]
    for phase in catalog.phases():
        label = "unknown" if phase is None else str(phase)
        lines.append(f"Phase {label}:")
        for entry in sorted(catalog.entries_for_phase(phase), key=lambda item: item.path):
            lines.append(f"  {entry.path}")
            if entry.required_vars:
                lines.append(f"    Required: {','.join(sorted(entry.required_vars))}")
            if entry.dependencies:
                lines.append(f"    Depends: {','.join(entry.dependencies)}")
    return lines
