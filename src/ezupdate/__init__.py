"""
EzUpdate Multi-Manager Update and Rollback System

Applies updates across APT, DNF, Flatpak and Snap and keeps a durable
history of every change:
- One transaction record per updated unit, grouped by batch
- Append-only history log, replayable newest first
- Best-effort rollback through each manager's native inverse operation
"""

from .records import (
    Action,
    Backend,
    TransactionRecord,
    BULK_TRANSACTION,
    NONE_VERSION,
)
from .history import (
    HistoryStore,
    LATEST,
)
from .executor import (
    BatchExecutor,
    BatchPhase,
)
from .rollback import (
    RollbackEngine,
    RollbackStatus,
    RollbackSummary,
)

__all__ = [
    "Action",
    "Backend",
    "TransactionRecord",
    "BULK_TRANSACTION",
    "NONE_VERSION",
    "HistoryStore",
    "LATEST",
    "BatchExecutor",
    "BatchPhase",
    "RollbackEngine",
    "RollbackStatus",
    "RollbackSummary",
]
