"""File-persisted task metadata index with a freshness window."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from omniforge.errors import IndexIOError, TaskMetadataWarning
from omniforge.orchestrator.metadata import (
    DEFAULT_TASK_GLOB,
    TaskDefaults,
    load_tasks,
)
from omniforge.orchestrator.models import IndexEntry, RefreshResult

logger = logging.getLogger(__name__)

DEFAULT_INDEX_MAX_AGE_SECONDS = 3_600


class TaskCatalog:
    """Scans a task source tree and serves queries from the persisted index.

    The index is rebuilt into a temp file and renamed over the live one, so a
    reader never sees a partially written index. A rebuild is skipped while
    the index file is younger than ``max_age_seconds`` unless forced.
    """

    def __init__(
        self,
        index_path: Path,
        *,
        max_age_seconds: int = DEFAULT_INDEX_MAX_AGE_SECONDS,
        task_pattern: str = DEFAULT_TASK_GLOB,
        defaults: TaskDefaults | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.index_path = index_path
        self.max_age_seconds = max_age_seconds
        self.task_pattern = task_pattern
        self.defaults = defaults or TaskDefaults()
        self._clock = clock
        self._entries: list[IndexEntry] | None = None

    def refresh(self, source_root: Path, *, force: bool = False) -> RefreshResult:
        """Rebuild the index from ``source_root`` unless the current one is fresh."""

        if not source_root.is_dir():
            raise IndexIOError(f"Task source root not found or not a directory: {source_root}")

        if not force and self.is_fresh():
            entries = self._ensure_loaded()
            logger.debug(
                "Index %s is fresh (%.0fs old), reusing %d entries",
                self.index_path,
                self.index_age_seconds() or 0.0,
                len(entries),
            )
            return RefreshResult(entry_count=len(entries), warning_count=0, rebuilt=False)

        logger.info("Building task index from %s", source_root)
        parsed = load_tasks(source_root, pattern=self.task_pattern, defaults=self.defaults)
        entries = [IndexEntry.from_task(item.task) for item in parsed]
        warnings: list[TaskMetadataWarning] = []
        missing_required = 0
        for item in parsed:
            warnings.extend(item.warnings)
            if not item.has_required:
                missing_required += 1
        for warning in warnings:
            logger.warning("Task metadata: %s: %s", warning.path, warning.message)

        self._write_index(entries)
        self._entries = entries

        mostly_missing = bool(entries) and missing_required * 2 > len(entries)
        logger.info(
            "Index complete: %d tasks, %d missing required vars",
            len(entries),
            missing_required,
        )
        if mostly_missing:
            logger.warning("Index built with warnings: most tasks lack Required metadata")
        return RefreshResult(
            entry_count=len(entries),
            warning_count=len(warnings),
            rebuilt=True,
            warnings=tuple(warnings),
            mostly_missing_required=mostly_missing,
        )

    def index_age_seconds(self) -> float | None:
        try:
            mtime = self.index_path.stat().st_mtime
        except FileNotFoundError:
            return None
        return max(0.0, self._clock() - mtime)

    def is_fresh(self) -> bool:
        age = self.index_age_seconds()
        return age is not None and age < self.max_age_seconds

    def entries(self) -> list[IndexEntry]:
        return list(self._ensure_loaded())

    def entries_for_phase(self, phase: int | None) -> set[IndexEntry]:
        return {entry for entry in self._ensure_loaded() if entry.phase == phase}

    def phases(self) -> list[int | None]:
        """Distinct phases ascending, with unknown (``None``) last."""

        known = sorted({entry.phase for entry in self._ensure_loaded() if entry.phase is not None})
        phases: list[int | None] = list(known)
        if any(entry.phase is None for entry in self._ensure_loaded()):
            phases.append(None)
        return phases

    def all_required_vars(self) -> set[str]:
        required: set[str] = set()
        for entry in self._ensure_loaded():
            required.update(entry.required_vars)
        return required

    def required_vars_for(self, task_id: str) -> set[str]:
        for entry in self._ensure_loaded():
            if entry.path == task_id:
                return set(entry.required_vars)
        return set()

    def missing_required_vars(self, env: Mapping[str, str]) -> list[str]:
        """Required variables that are unset or empty in ``env``."""

        return sorted(name for name in self.all_required_vars() if not env.get(name))

    def _ensure_loaded(self) -> list[IndexEntry]:
        if self._entries is None:
            self._entries = list(_read_index(self.index_path))
        return self._entries

    def _write_index(self, entries: Iterable[IndexEntry]) -> None:
        temp_path = self.index_path.with_name(f"{self.index_path.name}.tmp")
        try:
            self.index_path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as handle:
                for entry in entries:
                    handle.write(entry.to_line() + "\n")
            os.replace(temp_path, self.index_path)
        except OSError as error:
            raise IndexIOError(f"Cannot write task index {self.index_path}: {error}") from error


def _read_index(index_path: Path) -> Iterable[IndexEntry]:
    try:
        text = index_path.read_text("utf-8")
    except FileNotFoundError:
        return []
    except OSError as error:
        raise IndexIOError(f"Cannot read task index {index_path}: {error}") from error
    return [IndexEntry.from_line(line) for line in text.splitlines() if line.strip()]
