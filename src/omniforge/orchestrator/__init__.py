"""Task orchestration: discovery, ordered execution, and durable completion state.

Why strictly sequential?
~~~~~~~~~~~~~~~~~~~~~~~~
Install tasks mutate the same working tree and the same ``package.json``;
running two at once races on those files. Tasks therefore run one after
another on the caller's thread, and the only concurrent work in the package
is the best-effort prefetcher in :mod:`omniforge.prefetch`, which shares no
task state with this package.
"""

from omniforge.orchestrator.batch import BatchRunner, order_by_phase
from omniforge.orchestrator.catalog import TaskCatalog
from omniforge.orchestrator.dependencies import DependencyRunner
from omniforge.orchestrator.models import (
    BatchSummary,
    ExecutionResult,
    ExecutionStatus,
    IndexEntry,
    RefreshResult,
    Task,
)
from omniforge.orchestrator.sequencer import Sequencer
from omniforge.orchestrator.state import StateEntry, StateStore

__all__ = [
    "BatchRunner",
    "BatchSummary",
    "DependencyRunner",
    "ExecutionResult",
    "ExecutionStatus",
    "IndexEntry",
    "RefreshResult",
    "Sequencer",
    "StateEntry",
    "StateStore",
    "Task",
    "TaskCatalog",
    "order_by_phase",
]
