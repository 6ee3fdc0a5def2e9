"""Task header convention parsing and task file discovery.

A task file declares its metadata in comment lines near the top::

    # Phase: 2
    # Required: DB_NAME, DB_USER
    # Dependencies: 08-drizzle-setup.sh
    # Timeout: 600
    # Retries: 1
    # Test: test -f drizzle.config.ts

Keys are case-insensitive; only the first occurrence of each key within the
scanned header window counts.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from omniforge.errors import IndexIOError, TaskMetadataWarning
from omniforge.orchestrator.models import (
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
    Task,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADER_LINES = 50
DEFAULT_TASK_GLOB = "*.sh"

_HEADER_LINE_RE = re.compile(r"^\s*#+\s*(?P<key>[A-Za-z][A-Za-z ]*?)\s*:\s*(?P<value>.*?)\s*$")
_LEADING_INT_RE = re.compile(r"^\s*(\d+)")

_KEY_ALIASES = {
    "phase": "phase",
    "required": "required",
    "requires": "required",
    "require": "required",
    "dependencies": "dependencies",
    "dependency": "dependencies",
    "depends": "dependencies",
    "timeout": "timeout",
    "retries": "retries",
    "test": "test",
}


@dataclass(frozen=True, slots=True)
class TaskDefaults:
    """Fallback values applied when a header omits a key."""

    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    header_lines: int = DEFAULT_HEADER_LINES


@dataclass(frozen=True, slots=True)
class ParsedTask:
    """One parsed task file plus non-fatal metadata findings."""

    task: Task
    warnings: tuple[TaskMetadataWarning, ...]
    has_required: bool


def read_header_fields(path: Path, *, header_lines: int = DEFAULT_HEADER_LINES) -> dict[str, str]:
    """Return normalized ``key -> raw value`` for the first header lines of ``path``.

    Raises ``OSError`` when the file cannot be read.
    """

    fields: dict[str, str] = {}
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for index, line in enumerate(handle):
            if index >= header_lines:
                break
            match = _HEADER_LINE_RE.match(line)
            if match is None:
                continue
            key = _KEY_ALIASES.get(match.group("key").strip().lower())
            if key is None or key in fields:
                continue
            fields[key] = match.group("value")
    return fields


def parse_task_file(
    path: Path,
    *,
    root: Path,
    defaults: TaskDefaults | None = None,
) -> ParsedTask:
    """Build a ``Task`` from a file's header; malformed values degrade to defaults."""

    defaults = defaults or TaskDefaults()
    task_id = task_id_for(path, root)
    fields = read_header_fields(path, header_lines=defaults.header_lines)
    warnings: list[TaskMetadataWarning] = []

    phase: int | None = None
    phase_raw = fields.get("phase")
    if phase_raw is None:
        warnings.append(TaskMetadataWarning(task_id, "missing Phase header"))
    else:
        phase = _leading_int(phase_raw)
        if phase is None:
            warnings.append(TaskMetadataWarning(task_id, f"malformed Phase value: {phase_raw!r}"))

    required_raw = fields.get("required", "")
    required = frozenset(_split_list(required_raw))
    if not required:
        warnings.append(TaskMetadataWarning(task_id, "no Required variables declared"))

    timeout = _int_field(
        fields,
        "timeout",
        default=defaults.timeout_seconds,
        task_id=task_id,
        warnings=warnings,
    )
    retries = _int_field(
        fields,
        "retries",
        default=defaults.retries,
        task_id=task_id,
        warnings=warnings,
    )
    test_command = fields.get("test") or None

    task = Task(
        id=task_id,
        path=path,
        phase=phase,
        required_vars=required,
        dependencies=tuple(_split_list(fields.get("dependencies", ""))),
        timeout_seconds=max(1, timeout),
        retries=max(0, retries),
        test_command=test_command,
    )
    return ParsedTask(task=task, warnings=tuple(warnings), has_required=bool(required))


def discover_task_files(root: Path, *, pattern: str = DEFAULT_TASK_GLOB) -> list[Path]:
    """List task files under ``root`` in stable (sorted path) discovery order."""

    if not root.is_dir():
        raise IndexIOError(f"Task source root not found or not a directory: {root}")
    try:
        return sorted(path for path in root.rglob(pattern) if path.is_file())
    except OSError as error:
        raise IndexIOError(f"Task source root is unreadable: {root}: {error}") from error


def load_tasks(
    root: Path,
    *,
    pattern: str = DEFAULT_TASK_GLOB,
    defaults: TaskDefaults | None = None,
) -> list[ParsedTask]:
    """Parse every task under ``root``; unreadable files are logged and skipped."""

    parsed: list[ParsedTask] = []
    for path in discover_task_files(root, pattern=pattern):
        try:
            parsed.append(parse_task_file(path, root=root, defaults=defaults))
        except OSError as error:
            logger.warning("Skipping unreadable task file %s: %s", path, error)
    return parsed


def task_id_for(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.name


def _int_field(
    fields: dict[str, str],
    key: str,
    *,
    default: int,
    task_id: str,
    warnings: list[TaskMetadataWarning],
) -> int:
    raw = fields.get(key)
    if raw is None:
        return default
    value = _leading_int(raw)
    if value is None:
        warnings.append(
            TaskMetadataWarning(task_id, f"malformed {key.capitalize()} value: {raw!r}"),
        )
        return default
    return value


def _leading_int(raw: str) -> int | None:
    match = _LEADING_INT_RE.match(raw)
    if match is None:
        return None
    return int(match.group(1))


def _split_list(raw: str) -> list[str]:
    values: list[str] = []
    for part in raw.split(","):
        value = part.strip()
        if value and value not in values:
            values.append(value)
    return values
