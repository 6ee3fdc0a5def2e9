from __future__ import annotations

import os
from pathlib import Path

import allure
import pytest

from omniforge.prefetch.fetchers import PackageManagerFetcher

pytestmark = [
    allure.epic("Package Prefetch"),
    allure.feature("Package Manager Fetcher"),
]


def _fake_manager(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, body: str) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "pnpm"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir


def test_store_add_receives_the_requirement(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls = tmp_path / "calls"
    _fake_manager(tmp_path, monkeypatch, f'echo "$@" >> "{calls}"')

    outcome = PackageManagerFetcher("pnpm", timeout_seconds=10).fetch(
        "pnpm:@types/node@20.11.0",
        cancel_requested=lambda: False,
    )

    assert outcome.is_success
    assert calls.read_text("utf-8").strip() == "store add @types/node@20.11.0"


def test_non_zero_exit_is_a_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_manager(tmp_path, monkeypatch, "exit 7")

    outcome = PackageManagerFetcher("pnpm", timeout_seconds=10).fetch(
        "npm:next",
        cancel_requested=lambda: False,
    )

    assert not outcome.is_success
    assert outcome.error == "exit code 7"


def test_cancel_stops_a_running_manager(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_manager(tmp_path, monkeypatch, "sleep 30")

    outcome = PackageManagerFetcher("pnpm", timeout_seconds=60).fetch(
        "npm:next",
        cancel_requested=lambda: True,
    )

    assert outcome.error == "cancelled"


def test_missing_manager_binary_is_a_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("PATH", str(tmp_path))

    outcome = PackageManagerFetcher("pnpm").fetch("npm:next", cancel_requested=lambda: False)

    assert not outcome.is_success
    assert (outcome.error or "").startswith("pnpm unavailable")


def test_unsupported_manager_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported package manager"):
        PackageManagerFetcher("yarn")
