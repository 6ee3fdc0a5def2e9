"""Error taxonomy shared by catalog, state, and prefetch components."""

from __future__ import annotations

from dataclasses import dataclass


class OmniforgeError(RuntimeError):
    """Environment-level failure raised to the caller."""


class IndexIOError(OmniforgeError):
    """Task source root is missing/unreadable or the index cannot be written."""


class StateStoreError(OmniforgeError):
    """State ledger cannot be created or written."""


class UnknownProfileError(OmniforgeError, KeyError):
    """Requested stack profile does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


@dataclass(frozen=True, slots=True)
class TaskMetadataWarning:
    """Missing or malformed header metadata in one task file."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class PrefetchWarning:
    """Best-effort prefetch failure for one package."""

    package: str
    message: str
