"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

_ENV_PREFIXES = ("OMNIFORGE_", "SEQUENCER_", "ENABLE_")
_ENV_NAMES = ("BOOTSTRAP_STATE_FILE", "STACK_PROFILE")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell configuration out of settings and flags."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES) or name in _ENV_NAMES:
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def tasks_root(tmp_path: Path) -> Path:
    root = tmp_path / "tech_stack"
    root.mkdir()
    return root


@pytest.fixture()
def write_task(tasks_root: Path) -> Callable[..., Path]:
    """Write a bash task file under ``tasks_root`` with ``# Key: value`` headers."""

    def _write(relative: str, body: str = "exit 0", **headers: object) -> Path:
        path = tasks_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = ["#!/usr/bin/env bash"]
        lines.extend(f"# {key.capitalize()}: {value}" for key, value in headers.items())
        lines.append(body)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
