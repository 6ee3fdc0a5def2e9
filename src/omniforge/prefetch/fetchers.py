"""Per-package cache warming backends."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol
from urllib.parse import quote

import httpx

from omniforge.orchestrator.process import run_with_deadline
from omniforge.prefetch.packages import SUPPORTED_MANAGERS, PackageSpec

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = "omniforge-prefetch/1.0"


class FetchCancelled(Exception):
    """Raised inside a fetch when the owning job was cancelled."""


@dataclass(slots=True)
class FetchOutcome:
    """Result of warming one package."""

    package: str
    is_success: bool
    path: Path | None = None
    size_bytes: int = 0
    error: str | None = None


class PackageFetcher(Protocol):
    def fetch(
        self,
        package: str,
        *,
        cancel_requested: Callable[[], bool],
        output: IO[str] | None = None,
    ) -> FetchOutcome:
        """Warm the cache for one package spec."""


class RegistryFetcher:
    """Downloads release tarballs straight from an npm-compatible registry."""

    def __init__(
        self,
        cache_dir: Path,
        *,
        registry_url: str = "https://registry.npmjs.org",
        timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.tarball_dir = cache_dir / "npm"
        self.registry_url = registry_url.rstrip("/")
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": DEFAULT_USER_AGENT, "Accept": "application/json"},
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def fetch(
        self,
        package: str,
        *,
        cancel_requested: Callable[[], bool],
        output: IO[str] | None = None,
    ) -> FetchOutcome:
        spec = PackageSpec.parse(package)
        if spec.manager not in SUPPORTED_MANAGERS:
            return FetchOutcome(package, False, error=f"unknown manager: {spec.manager}")
        try:
            version, tarball_url = self._resolve(spec)
            target = self.tarball_dir / f"{spec.tarball_prefix}-{version}.tgz"
            if target.is_file():
                return FetchOutcome(package, True, path=target, size_bytes=target.stat().st_size)
            size = self._download(tarball_url, target, cancel_requested=cancel_requested)
        except FetchCancelled:
            return FetchOutcome(package, False, error="cancelled")
        except httpx.TimeoutException:
            logger.warning("Timeout fetching %s", package)
            return FetchOutcome(package, False, error="timeout")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error fetching %s: %s", package, exc)
            return FetchOutcome(package, False, error=str(exc))
        except (KeyError, TypeError, ValueError) as exc:
            return FetchOutcome(package, False, error=f"unexpected registry metadata: {exc}")
        except OSError as exc:
            return FetchOutcome(package, False, error=f"cannot write tarball: {exc}")
        if output is not None:
            output.write(f"  fetched {tarball_url} ({size} bytes)\n")
        return FetchOutcome(package, True, path=target, size_bytes=size)

    def _resolve(self, spec: PackageSpec) -> tuple[str, str]:
        response = self._client.get(f"{self.registry_url}/{quote(spec.name, safe='@')}")
        response.raise_for_status()
        document = response.json()
        version = spec.version or document["dist-tags"]["latest"]
        if version not in document["versions"]:
            version = document["dist-tags"][version]
        return version, document["versions"][version]["dist"]["tarball"]

    def _download(
        self,
        url: str,
        target: Path,
        *,
        cancel_requested: Callable[[], bool],
    ) -> int:
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(f"{target.name}.part")
        size = 0
        try:
            with self._client.stream("GET", url) as response:
                response.raise_for_status()
                with partial.open("wb") as handle:
                    for chunk in response.iter_bytes():
                        if cancel_requested():
                            raise FetchCancelled(url)
                        handle.write(chunk)
                        size += len(chunk)
            os.replace(partial, target)
        finally:
            partial.unlink(missing_ok=True)
        return size

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RegistryFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class PackageManagerFetcher:
    """Delegates to ``pnpm store add`` / ``npm cache add``; the manager owns the store."""

    _COMMANDS = {
        "pnpm": ("pnpm", "store", "add"),
        "npm": ("npm", "cache", "add"),
    }

    def __init__(
        self,
        manager: str,
        *,
        timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        cwd: Path | None = None,
    ) -> None:
        if manager not in self._COMMANDS:
            raise ValueError(f"Unsupported package manager: {manager!r}")
        self.manager = manager
        self.timeout_seconds = timeout_seconds
        self.cwd = cwd

    def fetch(
        self,
        package: str,
        *,
        cancel_requested: Callable[[], bool],
        output: IO[str] | None = None,
    ) -> FetchOutcome:
        spec = PackageSpec.parse(package)
        if spec.manager not in SUPPORTED_MANAGERS:
            return FetchOutcome(package, False, error=f"unknown manager: {spec.manager}")
        argv = [*self._COMMANDS[self.manager], spec.requirement]
        try:
            result = run_with_deadline(
                argv,
                timeout_seconds=self.timeout_seconds,
                cwd=self.cwd,
                env=dict(os.environ),
                output=output,
                cancel_requested=cancel_requested,
            )
        except OSError as exc:
            return FetchOutcome(package, False, error=f"{self.manager} unavailable: {exc}")
        if result.cancelled:
            return FetchOutcome(package, False, error="cancelled")
        if result.timed_out:
            return FetchOutcome(package, False, error=f"timed out after {self.timeout_seconds}s")
        if result.exit_code != 0:
            return FetchOutcome(package, False, error=f"exit code {result.exit_code}")
        return FetchOutcome(package, True)


def build_fetcher(
    mode: str,
    cache_dir: Path,
    *,
    registry_url: str,
    timeout_seconds: float,
) -> PackageFetcher:
    if mode == "registry":
        return RegistryFetcher(
            cache_dir,
            registry_url=registry_url,
            timeout_seconds=timeout_seconds,
        )
    return PackageManagerFetcher(mode, timeout_seconds=timeout_seconds)
