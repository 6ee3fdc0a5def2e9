"""Domain models for task discovery, execution results, and batch summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from omniforge.errors import TaskMetadataWarning

DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_RETRIES = 2
UNKNOWN_PHASE_LABEL = "unknown"


class ExecutionStatus(str, Enum):
    """Terminal per-task outcome within one batch run."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    TEST_FAILED = "test_failed"
    DEP_FAILED = "dep_failed"
    DEP_NOT_RUN = "dep_not_run"


@dataclass(frozen=True, slots=True)
class Task:
    """Discoverable unit of work parsed from a task file header."""

    id: str
    path: Path
    phase: int | None = None
    required_vars: frozenset[str] = frozenset()
    dependencies: tuple[str, ...] = ()
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    test_command: str | None = None

    @property
    def phase_sort_key(self) -> float:
        return float("inf") if self.phase is None else float(self.phase)


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """Persisted projection of a task: ``path|phase|required|dependencies``."""

    path: str
    phase: int | None
    required_vars: frozenset[str] = frozenset()
    dependencies: tuple[str, ...] = ()

    @classmethod
    def from_task(cls, task: Task) -> IndexEntry:
        return cls(
            path=task.id,
            phase=task.phase,
            required_vars=task.required_vars,
            dependencies=task.dependencies,
        )

    def to_line(self) -> str:
        phase = UNKNOWN_PHASE_LABEL if self.phase is None else str(self.phase)
        return "|".join(
            (
                self.path,
                phase,
                ",".join(sorted(self.required_vars)),
                ",".join(self.dependencies),
            ),
        )

    @classmethod
    def from_line(cls, line: str) -> IndexEntry:
        """Parse one index line; a malformed phase degrades to unknown."""

        parts = line.rstrip("\n").split("|")
        if len(parts) < 4:  # noqa: PLR2004
            parts += [""] * (4 - len(parts))
        path, phase_raw, required_raw, deps_raw = parts[0], parts[1], parts[2], parts[3]
        try:
            phase: int | None = int(phase_raw)
        except ValueError:
            phase = None
        return cls(
            path=path,
            phase=phase,
            required_vars=frozenset(_split_csv(required_raw)),
            dependencies=tuple(_split_csv(deps_raw)),
        )


@dataclass(slots=True)
class ExecutionResult:
    """In-memory outcome of one task within the current run."""

    task_id: str
    status: ExecutionStatus
    duration_seconds: float = 0.0
    attempts: int = 0
    exit_code: int | None = None
    skipped: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS


@dataclass(slots=True)
class RefreshResult:
    """Outcome of a catalog refresh."""

    entry_count: int
    warning_count: int
    rebuilt: bool
    warnings: tuple[TaskMetadataWarning, ...] = ()
    mostly_missing_required: bool = False


@dataclass(slots=True)
class BatchSummary:
    """Aggregate counters plus ordered per-task results for reporting."""

    results: list[ExecutionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def skipped(self) -> int:
        return sum(1 for result in self.results if result.skipped)

    def failed_ids(self) -> list[str]:
        return [result.task_id for result in self.results if not result.ok]

    def by_task_id(self) -> dict[str, ExecutionResult]:
        return {result.task_id: result for result in self.results}


def _split_csv(raw: str) -> list[str]:
    values: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        value = part.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        values.append(value)
    return values
