"""Best-effort package cache warming that runs beside the task runners."""

from omniforge.prefetch.cache import CacheEntry, CacheRegistry
from omniforge.prefetch.fetchers import (
    FetchOutcome,
    PackageFetcher,
    PackageManagerFetcher,
    RegistryFetcher,
)
from omniforge.prefetch.packages import PackageSpec, packages_for_flags
from omniforge.prefetch.prefetcher import BackgroundPrefetcher, CacheInfo, DownloadJob, JobStatus

__all__ = [
    "BackgroundPrefetcher",
    "CacheEntry",
    "CacheInfo",
    "CacheRegistry",
    "DownloadJob",
    "FetchOutcome",
    "JobStatus",
    "PackageFetcher",
    "PackageManagerFetcher",
    "PackageSpec",
    "RegistryFetcher",
    "packages_for_flags",
]
