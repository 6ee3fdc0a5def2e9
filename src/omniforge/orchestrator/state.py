"""Append-only ledger of successfully completed tasks."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from omniforge.errors import StateStoreError

logger = logging.getLogger(__name__)

SUCCESS_MARKER = "=success:"


@dataclass(frozen=True, slots=True)
class StateEntry:
    """One completed task as recorded in the ledger."""

    task_key: str
    timestamp: str


def _utc_timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds")


class StateStore:
    """Durable ``task_key=success:<timestamp>`` ledger.

    Marks only ever append; the first success row for a key is authoritative
    and later marks for the same key are no-ops. The ledger is created lazily
    on first access, and a missing file reads as zero completions.
    """

    def __init__(self, path: Path, *, timestamp: Callable[[], str] = _utc_timestamp) -> None:
        self.path = path
        self._timestamp = timestamp

    def init(self) -> None:
        if self.path.exists():
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch()
        except OSError as error:
            raise StateStoreError(f"Cannot create state ledger {self.path}: {error}") from error
        logger.debug("Created state ledger: %s", self.path)

    def mark_success(self, task_key: str) -> bool:
        """Append a success row; returns False when the key was already marked."""

        self.init()
        if self.has_succeeded(task_key):
            logger.debug("Already marked: %s", task_key)
            return False
        line = f"{task_key}{SUCCESS_MARKER}{self._timestamp()}\n"
        try:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError as error:
            raise StateStoreError(f"Cannot append to state ledger {self.path}: {error}") from error
        logger.debug("Marked success: %s", task_key)
        return True

    def has_succeeded(self, task_key: str) -> bool:
        return any(entry.task_key == task_key for entry in self._read_entries())

    def clear(self, task_key: str) -> bool:
        """Rewrite the ledger without ``task_key``; returns whether anything was removed."""

        self.init()
        lines = self._read_lines()
        kept = [line for line in lines if _line_key(line) != task_key]
        if len(kept) == len(lines):
            return False
        temp_path = self.path.with_name(f"{self.path.name}.tmp")
        try:
            temp_path.write_text("".join(f"{line}\n" for line in kept), "utf-8")
            os.replace(temp_path, self.path)
        except OSError as error:
            raise StateStoreError(f"Cannot rewrite state ledger {self.path}: {error}") from error
        logger.info("Cleared state for: %s", task_key)
        return True

    def clear_all(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as error:
            raise StateStoreError(f"Cannot remove state ledger {self.path}: {error}") from error
        logger.info("Cleared all bootstrap state")

    def count_completed(self) -> int:
        return len(self.list_completed())

    def list_completed(self) -> list[StateEntry]:
        """Completed tasks in ledger order, first row per key only."""

        seen: set[str] = set()
        entries: list[StateEntry] = []
        for entry in self._read_entries():
            if entry.task_key in seen:
                continue
            seen.add(entry.task_key)
            entries.append(entry)
        return entries

    def _read_entries(self) -> list[StateEntry]:
        entries: list[StateEntry] = []
        for line in self._read_lines():
            key, marker, timestamp = line.partition(SUCCESS_MARKER)
            if not marker or not key:
                continue
            entries.append(StateEntry(task_key=key, timestamp=timestamp))
        return entries

    def _read_lines(self) -> list[str]:
        try:
            text = self.path.read_text("utf-8")
        except FileNotFoundError:
            return []
        except OSError as error:
            raise StateStoreError(f"Cannot read state ledger {self.path}: {error}") from error
        return [line for line in text.splitlines() if line.strip()]


def _line_key(line: str) -> str:
    key, marker, _ = line.partition(SUCCESS_MARKER)
    return key if marker else line.partition("=")[0]
