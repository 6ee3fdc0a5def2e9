"""Background package prefetch job.

The job runs on a daemon thread and talks to the foreground only through its
``DownloadJob`` handle (progress counters, a cancel event) and a job-scoped
log file. Failures stay inside the job: they are logged and counted, and the
task runners never depend on the outcome.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import IO

from omniforge.config import DEFAULT_CACHE_MAX_AGE_SECONDS, PrefetchSettings
from omniforge.errors import PrefetchWarning
from omniforge.prefetch.cache import CacheRegistry
from omniforge.prefetch.fetchers import PackageFetcher, build_fetcher
from omniforge.prefetch.packages import PackageSpec, packages_for_flags
from omniforge.profiles import FeatureFlags

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT_SECONDS = 300.0
_STOP_JOIN_SECONDS = 5.0


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


@dataclass(slots=True)
class DownloadJob:
    """Handle for one prefetch run."""

    job_id: str
    log_path: Path
    packages: tuple[str, ...]
    completed_count: int = 0
    cached_count: int = 0
    failed_count: int = 0
    status: JobStatus = JobStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    finished_at: datetime | None = None
    warnings: list[PrefetchWarning] = field(default_factory=list)
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    thread: threading.Thread | None = field(default=None, repr=False)

    @property
    def total(self) -> int:
        return len(self.packages)

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()


@dataclass(frozen=True, slots=True)
class CacheInfo:
    location: Path
    initialized: bool
    size_bytes: int
    file_count: int
    entry_count: int
    max_age_seconds: int


class BackgroundPrefetcher:
    """Warms the package cache for the enabled feature flags without blocking."""

    def __init__(
        self,
        cache_dir: Path,
        *,
        fetcher: PackageFetcher,
        max_age_seconds: int = DEFAULT_CACHE_MAX_AGE_SECONDS,
        registry: CacheRegistry | None = None,
    ) -> None:
        self.cache_dir = cache_dir
        self.fetcher = fetcher
        self.max_age_seconds = max_age_seconds
        self.registry = registry or CacheRegistry(cache_dir)
        self._jobs: list[DownloadJob] = []
        self._job_numbers = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: PrefetchSettings) -> BackgroundPrefetcher:
        return cls(
            settings.cache_dir,
            fetcher=build_fetcher(
                settings.mode,
                settings.cache_dir,
                registry_url=settings.registry_url,
                timeout_seconds=settings.fetch_timeout_seconds,
            ),
            max_age_seconds=settings.cache_max_age_seconds,
        )

    def start_for_config(self, flags: FeatureFlags) -> DownloadJob:
        """Sweep expired entries, then launch a job for the flags' package list."""

        self.registry.init_schema()
        self.registry.sweep(self.max_age_seconds, protected=self._in_flight_packages())

        started_at = datetime.now(tz=UTC)
        job_id = f"{started_at:%Y%m%d_%H%M%S}-{next(self._job_numbers)}"
        job = DownloadJob(
            job_id=job_id,
            log_path=self.registry.logs_dir / f"download_{job_id}.log",
            packages=tuple(packages_for_flags(flags)),
            started_at=started_at,
        )
        self._jobs.append(job)
        if not job.packages:
            job.status = JobStatus.COMPLETED
            job.finished_at = started_at
            logger.debug("No packages to prefetch")
            return job

        job.thread = threading.Thread(
            target=self._run_job,
            args=(job,),
            daemon=True,
            name=f"prefetch-{job.job_id}",
        )
        job.thread.start()
        logger.info("Prefetch job %s started: %d packages", job.job_id, job.total)
        return job

    @property
    def jobs(self) -> tuple[DownloadJob, ...]:
        """Jobs started and not yet released by ``wait`` or ``cancel``."""

        return tuple(self._jobs)

    def is_running(self, job: DownloadJob) -> bool:
        return job.thread is not None and job.thread.is_alive()

    def wait(
        self,
        job: DownloadJob,
        timeout_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
    ) -> JobStatus:
        """Block up to ``timeout_seconds``; a job still running then is stopped."""

        if job.thread is not None:
            job.thread.join(timeout=max(0.0, timeout_seconds))
        if not self.is_running(job):
            self._release(job)
            return job.status
        logger.warning("Prefetch timeout after %ss, stopping job %s", timeout_seconds, job.job_id)
        self.cancel(job)
        return JobStatus.TIMEOUT

    def cancel(self, job: DownloadJob) -> None:
        job.cancel_event.set()
        if job.thread is not None:
            job.thread.join(timeout=_STOP_JOIN_SECONDS)
            if job.thread.is_alive():
                logger.warning(
                    "Prefetch job %s did not stop within %ss",
                    job.job_id,
                    _STOP_JOIN_SECONDS,
                )
                return
        self._release(job)

    def progress(self, job: DownloadJob) -> tuple[int, int]:
        with job.lock:
            return job.completed_count, job.total

    def purge(self, *, older_than_seconds: float | None = None) -> list[str]:
        """Evict cache entries; packages of a job still in flight are kept."""

        protected = self._in_flight_packages()
        if older_than_seconds is not None:
            evicted = self.registry.sweep(older_than_seconds, protected=protected)
        else:
            evicted = self.registry.purge(protected=protected)
            self._purge_logs()
        logger.info("Cache purged: %d entries removed", len(evicted))
        return evicted

    def cache_size(self) -> int:
        return self.registry.size_bytes()

    def cache_info(self) -> CacheInfo:
        initialized = self.registry.db_path.exists()
        return CacheInfo(
            location=self.cache_dir,
            initialized=initialized,
            size_bytes=self.registry.size_bytes(),
            file_count=self.registry.file_count(),
            entry_count=len(self.registry.entries()) if initialized else 0,
            max_age_seconds=self.max_age_seconds,
        )

    def cached_path(self, package: str) -> Path | None:
        """Tarball for ``package`` if one is cached, looked up by spec then by file name."""

        if self.registry.db_path.exists():
            path = self.registry.cached_path(package)
            if path is not None:
                return path
        prefix = PackageSpec.parse(package).tarball_prefix
        tarball_dir = self.cache_dir / "npm"
        if not tarball_dir.is_dir():
            return None
        # "next-" must not pick up "next-auth-*.tgz"
        matches = sorted(
            path
            for path in tarball_dir.glob(f"{prefix}-*.tgz")
            if path.name[len(prefix) + 1 : len(prefix) + 2].isdigit()
        )
        return matches[-1] if matches else None

    def _release(self, job: DownloadJob) -> None:
        self._jobs = [item for item in self._jobs if item is not job]

    def _in_flight_packages(self) -> set[str]:
        return {
            package
            for job in self._jobs
            if self.is_running(job)
            for package in job.packages
        }

    def _purge_logs(self) -> None:
        active = {job.log_path for job in self._jobs if self.is_running(job)}
        logs_dir = self.registry.logs_dir
        if not logs_dir.is_dir():
            return
        for path in logs_dir.glob("download_*.log"):
            if path not in active:
                path.unlink(missing_ok=True)

    def _run_job(self, job: DownloadJob) -> None:
        try:
            with _job_log(job.log_path) as log:
                log.write(f"[{_now()}] Starting download of {job.total} packages\n")
                for index, package in enumerate(job.packages, start=1):
                    if job.cancel_requested:
                        log.write(f"[{_now()}] Cancelled after {index - 1}/{job.total}\n")
                        break
                    log.write(f"[{_now()}] [{index}/{job.total}] Downloading: {package}\n")
                    log.flush()
                    self._fetch_one(job, package, log)
                log.write(
                    f"[{_now()}] Download complete: "
                    f"{job.cached_count}/{job.total} succeeded\n",
                )
        except Exception:
            logger.exception("Prefetch job %s crashed", job.job_id)
        finally:
            job.status = JobStatus.CANCELLED if job.cancel_requested else JobStatus.COMPLETED
            job.finished_at = datetime.now(tz=UTC)
            logger.info(
                "Prefetch job %s %s: %d cached, %d failed",
                job.job_id,
                job.status.value,
                job.cached_count,
                job.failed_count,
            )

    def _fetch_one(self, job: DownloadJob, package: str, log: IO[str]) -> None:
        started = time.monotonic()
        try:
            outcome = self.fetcher.fetch(
                package,
                cancel_requested=lambda: job.cancel_requested,
                output=log,
            )
            if outcome.is_success:
                self.registry.record(package, path=outcome.path, size_bytes=outcome.size_bytes)
            error = outcome.error
            ok = outcome.is_success
        except Exception as exc:
            logger.exception("Unexpected error prefetching %s", package)
            error = str(exc)
            ok = False

        with job.lock:
            job.completed_count += 1
            if ok:
                job.cached_count += 1
            else:
                job.failed_count += 1
                job.warnings.append(PrefetchWarning(package=package, message=error or "failed"))

        if ok:
            log.write(f"  [OK] Cached: {package} ({time.monotonic() - started:.1f}s)\n")
        else:
            logger.warning("Failed to cache %s: %s", package, error)
            log.write(f"  [WARN] Failed to cache: {package} ({error})\n")
        log.flush()


@contextmanager
def _job_log(path: Path) -> Iterator[IO[str]]:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        yield handle


def _now() -> str:
    return datetime.now(tz=UTC).strftime("%Y-%m-%d %H:%M:%S")

