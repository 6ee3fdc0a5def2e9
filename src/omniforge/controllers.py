"""Controllers for omniforge CLI commands."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from omniforge.config import Settings
from omniforge.orchestrator import (
    BatchRunner,
    BatchSummary,
    DependencyRunner,
    Sequencer,
    StateStore,
    Task,
    TaskCatalog,
)
from omniforge.orchestrator.metadata import parse_task_file, task_id_for
from omniforge.orchestrator.report import (
    render_index_lines,
    render_results_lines,
    render_state_lines,
)
from omniforge.prefetch import BackgroundPrefetcher, DownloadJob, JobStatus
from omniforge.profiles import PROFILES, FeatureFlags, resolve_profile

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexRefreshCommand:
    """CLI inputs for index refresh command."""

    project_root: Path | None
    force: bool


@dataclass(slots=True)
class IndexShowCommand:
    """CLI inputs for index show command."""

    project_root: Path | None
    check_env: bool


@dataclass(slots=True)
class RunBatchCommand:
    """CLI inputs for running an explicit list of task files."""

    project_root: Path | None
    scripts: tuple[str, ...]
    force: bool
    profile: str | None
    prefetch: bool | None
    prefetch_wait_seconds: float


@dataclass(slots=True)
class RunDirectoryCommand:
    """CLI inputs for a phase-ordered run over a task directory."""

    project_root: Path | None
    directory: Path | None
    force: bool
    profile: str | None
    prefetch: bool | None
    prefetch_wait_seconds: float


@dataclass(slots=True)
class ProjectCommand:
    """CLI inputs for commands that only need the project root."""

    project_root: Path | None


@dataclass(slots=True)
class StateClearCommand:
    """CLI inputs for clearing one ledger entry."""

    project_root: Path | None
    task_key: str


@dataclass(slots=True)
class CacheStartCommand:
    """CLI inputs for a foreground prefetch run."""

    project_root: Path | None
    profile: str | None
    wait_seconds: float


@dataclass(slots=True)
class CachePurgeCommand:
    """CLI inputs for cache purge command."""

    project_root: Path | None
    older_than_days: int | None


@dataclass(slots=True)
class CommandResult:
    lines: list[str]
    success: bool = True


class TaskCliController:
    """Coordinates index, run, and state command execution."""

    def refresh_index(self, command: IndexRefreshCommand) -> list[str]:
        settings = _settings(command.project_root)
        catalog = _catalog(settings)
        result = catalog.refresh(settings.catalog.tasks_dir, force=command.force)
        lines = [
            f"Index {'rebuilt' if result.rebuilt else 'reused'}: {catalog.index_path} "
            f"entries={result.entry_count} warnings={result.warning_count}",
        ]
        lines.extend(f"  [WARN] {item.path}: {item.message}" for item in result.warnings)
        if result.mostly_missing_required:
            lines.append("Most tasks declare no Required variables; check the task headers.")
        return lines

    def show_index(self, command: IndexShowCommand) -> list[str]:
        settings = _settings(command.project_root)
        catalog = _catalog(settings)
        catalog.refresh(settings.catalog.tasks_dir)
        lines = render_index_lines(catalog)
        if command.check_env:
            missing = catalog.missing_required_vars(os.environ)
            if missing:
                lines.append(f"Missing required variables: {', '.join(missing)}")
            else:
                lines.append("All required variables are set.")
        return lines

    def run_batch(self, command: RunBatchCommand) -> CommandResult:
        settings = _settings(command.project_root)
        flags = _feature_flags(command.profile or settings.stack_profile)
        tasks = [_task_for_script(script, settings) for script in command.scripts]
        with _prefetch(settings, flags, command.prefetch, command.prefetch_wait_seconds) as notes:
            summary = _batch_runner(settings, flags).run_batch(tasks, force=command.force)
        return _run_result(summary, notes)

    def run_directory(self, command: RunDirectoryCommand) -> CommandResult:
        settings = _settings(command.project_root)
        flags = _feature_flags(command.profile or settings.stack_profile)
        directory = (command.directory or settings.catalog.tasks_dir).resolve()
        with _prefetch(settings, flags, command.prefetch, command.prefetch_wait_seconds) as notes:
            summary = _batch_runner(settings, flags).run_directory(directory, force=command.force)
        return _run_result(summary, notes)

    def state_status(self, command: ProjectCommand) -> list[str]:
        settings = _settings(command.project_root)
        return render_state_lines(StateStore(settings.state_path))

    def state_clear(self, command: StateClearCommand) -> list[str]:
        settings = _settings(command.project_root)
        if StateStore(settings.state_path).clear(command.task_key):
            return [f"Cleared state for: {command.task_key}"]
        return [f"No state recorded for: {command.task_key}"]

    def state_reset(self, command: ProjectCommand) -> list[str]:
        settings = _settings(command.project_root)
        store = StateStore(settings.state_path)
        store.clear_all()
        return [f"State cleared: {store.path}"]

    def list_profiles(self) -> list[str]:
        lines = ["Stack profiles:"]
        for number, profile in enumerate(PROFILES.values(), start=1):
            marker = " (recommended)" if profile.recommended else ""
            lines.append(
                f"  {number}. {profile.key:<14} {profile.tagline}{marker} "
                f"[{profile.time_estimate}]",
            )
            lines.append(f"     {profile.description}")
            lines.append(f"     enables: {', '.join(profile.flags.enabled())}")
        return lines


class CacheCliController:
    """Coordinates package cache command execution."""

    def start(self, command: CacheStartCommand) -> CommandResult:
        settings = _settings(command.project_root)
        flags = _feature_flags(command.profile or settings.stack_profile)
        prefetcher = BackgroundPrefetcher.from_settings(settings.prefetch)
        job = prefetcher.start_for_config(flags)
        status = prefetcher.wait(job, command.wait_seconds)
        completed, total = prefetcher.progress(job)
        lines = [
            f"Prefetch {status.value}: {completed}/{total} processed, "
            f"{job.cached_count} cached, {job.failed_count} failed",
            f"Log: {job.log_path}",
        ]
        lines.extend(f"  [WARN] {item.package}: {item.message}" for item in job.warnings)
        return CommandResult(lines, success=job.failed_count == 0 and status is JobStatus.COMPLETED)

    def info(self, command: ProjectCommand) -> list[str]:
        settings = _settings(command.project_root)
        info = BackgroundPrefetcher.from_settings(settings.prefetch).cache_info()
        if not info.initialized:
            return ["Cache not initialized"]
        return [
            f"Location: {info.location}",
            f"Size: {info.size_bytes / (1024 * 1024):.1f} MB",
            f"Files: {info.file_count}",
            f"Entries: {info.entry_count}",
            f"Max Age: {info.max_age_seconds // 86_400} days",
        ]

    def purge(self, command: CachePurgeCommand) -> list[str]:
        settings = _settings(command.project_root)
        prefetcher = BackgroundPrefetcher.from_settings(settings.prefetch)
        older_than = (
            command.older_than_days * 86_400 if command.older_than_days is not None else None
        )
        evicted = prefetcher.purge(older_than_seconds=older_than)
        return [f"Cache purged: {len(evicted)} entries removed from {prefetcher.cache_dir}"]


def _settings(project_root: Path | None) -> Settings:
    settings = Settings.from_env(project_root=project_root)
    settings.validate()
    return settings


def _catalog(settings: Settings) -> TaskCatalog:
    return TaskCatalog(
        settings.catalog.index_path,
        max_age_seconds=settings.catalog.index_max_age_seconds,
        task_pattern=settings.catalog.task_glob,
        defaults=settings.task_defaults(),
    )


def _feature_flags(profile: str | None) -> FeatureFlags:
    if profile:
        return resolve_profile(profile).flags.apply_env(os.environ)
    return FeatureFlags.from_env()


def _batch_runner(settings: Settings, flags: FeatureFlags) -> BatchRunner:
    sequencer = Sequencer(
        shell=settings.sequencer.task_shell,
        retry_delay_seconds=settings.sequencer.retry_delay_seconds,
        grace_seconds=settings.sequencer.grace_seconds,
        cwd=settings.project_root,
        env={**flags.as_env(), "OMNIFORGE_PROJECT_ROOT": str(settings.project_root)},
        log_dir=settings.sequencer.log_dir,
    )
    return BatchRunner(
        runner=DependencyRunner(sequencer),
        store=StateStore(settings.state_path),
        task_pattern=settings.catalog.task_glob,
        defaults=settings.task_defaults(),
    )


def _task_for_script(script: str, settings: Settings) -> Task:
    """Parse ``script`` (a path, or a path relative to the task root) into a task."""

    root = settings.catalog.tasks_dir.resolve()
    candidate = Path(script).expanduser()
    path = candidate if candidate.is_absolute() or candidate.exists() else root / candidate
    path = path.resolve()
    try:
        return parse_task_file(path, root=root, defaults=settings.task_defaults()).task
    except OSError:
        # the batch runner reports the missing file as a failure
        return Task(id=task_id_for(path, root), path=path)


@contextmanager
def _prefetch(
    settings: Settings,
    flags: FeatureFlags,
    enabled: bool | None,
    wait_seconds: float,
) -> Iterator[list[str]]:
    notes: list[str] = []
    if not (settings.prefetch.start_on_run if enabled is None else enabled):
        yield notes
        return

    prefetcher: BackgroundPrefetcher | None = None
    job: DownloadJob | None = None
    try:
        prefetcher = BackgroundPrefetcher.from_settings(settings.prefetch)
        job = prefetcher.start_for_config(flags)
    except (OSError, SQLAlchemyError) as error:
        logger.warning("Prefetch could not start: %s", error)
        notes.append(f"Prefetch not started: {error}")
    try:
        yield notes
    finally:
        if prefetcher is not None and job is not None:
            status = prefetcher.wait(job, wait_seconds)
            completed, total = prefetcher.progress(job)
            notes.append(f"Prefetch {status.value}: {completed}/{total} ({job.log_path})")


def _run_result(summary: BatchSummary, notes: list[str]) -> CommandResult:
    lines = render_results_lines(summary)
    lines.extend(notes)
    return CommandResult(lines, success=summary.failed == 0)
