"""Runtime configuration for task orchestration and package prefetch."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from omniforge.orchestrator.metadata import DEFAULT_HEADER_LINES, DEFAULT_TASK_GLOB, TaskDefaults
from omniforge.orchestrator.models import DEFAULT_RETRIES, DEFAULT_TIMEOUT_SECONDS
from omniforge.orchestrator.process import DEFAULT_GRACE_SECONDS
from omniforge.orchestrator.sequencer import DEFAULT_RETRY_DELAY_SECONDS, DEFAULT_TASK_SHELL
from omniforge.profiles import parse_bool

PREFETCH_MODES = ("registry", "pnpm", "npm")
DEFAULT_NPM_REGISTRY = "https://registry.npmjs.org"
DEFAULT_CACHE_MAX_AGE_SECONDS = 604_800


@dataclass(slots=True)
class CatalogSettings:
    """Task discovery and index settings."""

    tasks_dir: Path = Path("tech_stack")
    index_path: Path = Path(".omniforge_index")
    index_max_age_seconds: int = 3_600
    header_lines: int = DEFAULT_HEADER_LINES
    task_glob: str = DEFAULT_TASK_GLOB


@dataclass(slots=True)
class SequencerSettings:
    """Per-task execution policy."""

    default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    default_retries: int = DEFAULT_RETRIES
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    grace_seconds: float = DEFAULT_GRACE_SECONDS
    task_shell: str = DEFAULT_TASK_SHELL
    log_dir: Path = Path("logs/tasks")


@dataclass(slots=True)
class PrefetchSettings:
    """Package cache warming settings."""

    cache_dir: Path = Path("~/.omniforge/cache")
    cache_max_age_seconds: int = DEFAULT_CACHE_MAX_AGE_SECONDS
    mode: str = "registry"
    registry_url: str = DEFAULT_NPM_REGISTRY
    fetch_timeout_seconds: float = 120.0
    start_on_run: bool = False


@dataclass(slots=True)
class Settings:
    """Application settings grouped by component."""

    project_root: Path = Path()
    state_path: Path = Path(".bootstrap_state")
    stack_profile: str | None = None
    catalog: CatalogSettings = field(default_factory=CatalogSettings)
    sequencer: SequencerSettings = field(default_factory=SequencerSettings)
    prefetch: PrefetchSettings = field(default_factory=PrefetchSettings)

    @classmethod
    def from_env(cls, project_root: Path | None = None) -> Settings:
        """Load settings from environment; relative defaults resolve under the project root."""

        root = (project_root or Path(os.getenv("OMNIFORGE_PROJECT_ROOT", "."))).resolve()
        return cls(
            project_root=root,
            state_path=_env_path("BOOTSTRAP_STATE_FILE", root / ".bootstrap_state"),
            stack_profile=os.getenv("STACK_PROFILE", "").strip() or None,
            catalog=CatalogSettings(
                tasks_dir=_env_path("OMNIFORGE_TASKS_DIR", root / "tech_stack"),
                index_path=_env_path("OMNIFORGE_INDEX_FILE", root / ".omniforge_index"),
                index_max_age_seconds=_env_int("OMNIFORGE_INDEX_MAX_AGE_SECONDS", 3_600),
                header_lines=_env_int("OMNIFORGE_HEADER_LINES", DEFAULT_HEADER_LINES),
                task_glob=os.getenv("OMNIFORGE_TASK_GLOB", DEFAULT_TASK_GLOB),
            ),
            sequencer=SequencerSettings(
                default_timeout_seconds=_env_int(
                    "SEQUENCER_DEFAULT_TIMEOUT",
                    DEFAULT_TIMEOUT_SECONDS,
                ),
                default_retries=_env_int("SEQUENCER_DEFAULT_RETRIES", DEFAULT_RETRIES),
                retry_delay_seconds=_env_float(
                    "SEQUENCER_RETRY_DELAY",
                    DEFAULT_RETRY_DELAY_SECONDS,
                ),
                grace_seconds=_env_float("SEQUENCER_GRACE_SECONDS", DEFAULT_GRACE_SECONDS),
                task_shell=os.getenv("OMNIFORGE_TASK_SHELL", DEFAULT_TASK_SHELL),
                log_dir=_env_path("OMNIFORGE_LOG_DIR", root / "logs" / "tasks"),
            ),
            prefetch=PrefetchSettings(
                cache_dir=_env_path(
                    "OMNIFORGE_CACHE_DIR",
                    Path("~/.omniforge/cache").expanduser(),
                ),
                cache_max_age_seconds=_env_int(
                    "OMNIFORGE_CACHE_MAX_AGE",
                    DEFAULT_CACHE_MAX_AGE_SECONDS,
                ),
                mode=os.getenv("OMNIFORGE_PREFETCH_MODE", "registry").strip().lower(),
                registry_url=os.getenv("OMNIFORGE_NPM_REGISTRY", DEFAULT_NPM_REGISTRY),
                fetch_timeout_seconds=_env_float("OMNIFORGE_PREFETCH_TIMEOUT_SECONDS", 120.0),
                start_on_run=_env_bool("OMNIFORGE_PREFETCH_ON_RUN", default=False),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on values the runners cannot honor."""

        if self.catalog.index_max_age_seconds < 0:
            raise ValueError("OMNIFORGE_INDEX_MAX_AGE_SECONDS must be >= 0.")
        if self.catalog.header_lines <= 0:
            raise ValueError("OMNIFORGE_HEADER_LINES must be > 0.")
        if self.sequencer.default_timeout_seconds <= 0:
            raise ValueError("SEQUENCER_DEFAULT_TIMEOUT must be > 0.")
        if self.sequencer.default_retries < 0:
            raise ValueError("SEQUENCER_DEFAULT_RETRIES must be >= 0.")
        if self.sequencer.retry_delay_seconds < 0:
            raise ValueError("SEQUENCER_RETRY_DELAY must be >= 0.")
        if self.sequencer.grace_seconds < 0:
            raise ValueError("SEQUENCER_GRACE_SECONDS must be >= 0.")
        if self.prefetch.cache_max_age_seconds < 0:
            raise ValueError("OMNIFORGE_CACHE_MAX_AGE must be >= 0.")
        if self.prefetch.mode not in PREFETCH_MODES:
            raise ValueError(
                f"OMNIFORGE_PREFETCH_MODE must be one of {', '.join(PREFETCH_MODES)}, "
                f"got {self.prefetch.mode!r}.",
            )
        if not self.prefetch.registry_url.startswith(("http://", "https://")):
            raise ValueError("OMNIFORGE_NPM_REGISTRY must be an http(s) URL.")
        if self.prefetch.fetch_timeout_seconds <= 0:
            raise ValueError("OMNIFORGE_PREFETCH_TIMEOUT_SECONDS must be > 0.")

    def task_defaults(self) -> TaskDefaults:
        return TaskDefaults(
            timeout_seconds=self.sequencer.default_timeout_seconds,
            retries=self.sequencer.default_retries,
            header_lines=self.catalog.header_lines,
        )


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name, "").strip()
    return Path(raw).expanduser().resolve() if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"{name} must be a number, got {raw!r}.") from error


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return parse_bool(raw, name=name)
