"""Sync orchestration - Mirrors Safe transfers into the ledger."""

from safe_ledger.sync.models import (
    SafeSyncStatus,
    SyncProgress,
    SyncReport,
    SyncState,
)
from safe_ledger.sync.orchestrator import (
    DEFAULT_WRITE_DELAY_SECONDS,
    TRANSFER_LIMITS,
    TransferSync,
)
from safe_ledger.sync.publisher import (
    StatusEntry,
    SyncStatusPublisher,
)

__all__ = [
    # Models
    "SafeSyncStatus",
    "SyncProgress",
    "SyncReport",
    "SyncState",
    # Orchestrator
    "DEFAULT_WRITE_DELAY_SECONDS",
    "TRANSFER_LIMITS",
    "TransferSync",
    # Publisher
    "StatusEntry",
    "SyncStatusPublisher",
]
