"""Cache registry: which package specs were warmed and when."""

from __future__ import annotations

import logging
import shutil
import sqlite3
from collections.abc import Callable, Collection, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

from sqlalchemy import Column, DateTime, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import Field, Session, SQLModel, col, create_engine, delete, select

logger = logging.getLogger(__name__)

REGISTRY_FILE_NAME = "cache.db"
CACHE_SUBDIRS = ("npm", "pnpm", "logs")
DEFAULT_BUSY_TIMEOUT_MS = 5_000


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class CacheEntry(SQLModel, table=True):
    __tablename__ = "cache_entries"  # type: ignore[bad-override]

    package_spec: str = Field(primary_key=True)
    cached_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    path: str | None = Field(default=None)
    size_bytes: int = Field(default=0)

    @property
    def cached_at_utc(self) -> datetime:
        return _to_utc_aware_datetime(self.cached_at)


class CacheRegistry:
    """Cache directory plus a SQLite registry of ``CacheEntry`` rows.

    Eviction never touches specs listed in ``protected``; the prefetcher
    passes the package list of a job that is still in flight.
    """

    def __init__(
        self,
        cache_dir: Path,
        *,
        clock: Callable[[], datetime] = utc_now,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.cache_dir = cache_dir
        self.db_path = cache_dir / REGISTRY_FILE_NAME
        self._clock = clock
        self._busy_timeout_ms = busy_timeout_ms
        self._engine: Engine | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            return self.init_schema()
        return self._engine

    @property
    def logs_dir(self) -> Path:
        return self.cache_dir / "logs"

    def init_schema(self) -> Engine:
        """Create the cache layout and the registry table if missing; returns the engine."""

        for name in CACHE_SUBDIRS:
            (self.cache_dir / name).mkdir(parents=True, exist_ok=True)
        engine = self._engine
        if engine is None:
            engine = build_sqlite_engine(
                db_path=self.db_path,
                busy_timeout_ms=self._busy_timeout_ms,
            )
            self._engine = engine
        SQLModel.metadata.create_all(engine, tables=[CacheEntry.__table__])
        return engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def record(
        self,
        package_spec: str,
        *,
        path: Path | None = None,
        size_bytes: int = 0,
        cached_at: datetime | None = None,
    ) -> CacheEntry:
        """Insert or refresh the entry for ``package_spec``."""

        stamp = _to_db_datetime(cached_at or self._clock())
        with Session(self.engine) as session:
            row = session.get(CacheEntry, package_spec)
            if row is None:
                row = CacheEntry(package_spec=package_spec, cached_at=stamp)
            row.cached_at = stamp
            row.path = str(path) if path is not None else None
            row.size_bytes = size_bytes
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def get(self, package_spec: str) -> CacheEntry | None:
        with Session(self.engine) as session:
            return session.get(CacheEntry, package_spec)

    def entries(self) -> list[CacheEntry]:
        with Session(self.engine) as session:
            return list(
                session.exec(select(CacheEntry).order_by(col(CacheEntry.package_spec))).all(),
            )

    def sweep(
        self,
        max_age_seconds: float,
        *,
        protected: Collection[str] = (),
    ) -> list[str]:
        """Evict entries cached more than ``max_age_seconds`` ago."""

        cutoff = _to_db_datetime(self._clock() - timedelta(seconds=max_age_seconds))
        with Session(self.engine) as session:
            stale = session.exec(
                select(CacheEntry).where(col(CacheEntry.cached_at) < cutoff),
            ).all()
            return self._evict(
                session,
                [row for row in stale if row.package_spec not in protected],
            )

    def purge(self, *, protected: Collection[str] = ()) -> list[str]:
        """Evict every entry not in ``protected`` and drop unregistered files."""

        with Session(self.engine) as session:
            rows = session.exec(select(CacheEntry)).all()
            keep_paths = {row.path for row in rows if row.package_spec in protected and row.path}
            evicted = self._evict(
                session,
                [row for row in rows if row.package_spec not in protected],
            )
        for name in ("npm", "pnpm"):
            directory = self.cache_dir / name
            if not directory.is_dir():
                continue
            for item in directory.iterdir():
                # partial downloads belong to a running fetch
                if str(item) in keep_paths or item.suffix == ".part":
                    continue
                if item.is_dir():
                    shutil.rmtree(item, ignore_errors=True)
                else:
                    item.unlink(missing_ok=True)
        return evicted

    def size_bytes(self) -> int:
        return sum(path.stat().st_size for path in self._iter_files())

    def file_count(self) -> int:
        return sum(1 for _ in self._iter_files())

    def cached_path(self, package_spec: str) -> Path | None:
        row = self.get(package_spec)
        if row is None or not row.path:
            return None
        path = Path(row.path)
        return path if path.is_file() else None

    def _evict(self, session: Session, rows: list[CacheEntry]) -> list[str]:
        evicted: list[str] = []
        for row in rows:
            if row.path:
                Path(row.path).unlink(missing_ok=True)
            evicted.append(row.package_spec)
        if evicted:
            session.exec(delete(CacheEntry).where(col(CacheEntry.package_spec).in_(evicted)))
            session.commit()
            logger.info("Evicted %d cache entries", len(evicted))
        return evicted

    def _iter_files(self) -> Iterator[Path]:
        if not self.cache_dir.is_dir():
            return
        for path in self.cache_dir.rglob("*"):
            if path.is_file():
                yield path


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int) -> Engine:
    """SQLAlchemy engine usable from the prefetch thread and the caller alike."""

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    event.listen(
        engine,
        "connect",
        lambda dbapi_connection, _: _apply_sqlite_pragmas(
            dbapi_connection,
            busy_timeout_ms=busy_timeout_ms,
        ),
    )
    return engine


def _apply_sqlite_pragmas(dbapi_connection: sqlite3.Connection, *, busy_timeout_ms: int) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.close()


def _to_db_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _to_utc_aware_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
