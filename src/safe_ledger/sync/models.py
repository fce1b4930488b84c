"""Data models for sync runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from safe_ledger.chains import Chain, parse_chain


class SyncState(str, Enum):
    """Per-Safe state within a sync run."""

    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncState.COMPLETED, SyncState.ERROR)


@dataclass(frozen=True)
class SyncProgress:
    """Progress of one Safe.

    Attributes:
        current: Transfers considered so far, written or skipped.
        total: Transfers returned by the fetch (0 until it completes).
        skipped: Transfers already present in the ledger.
    """

    current: int = 0
    total: int = 0
    skipped: int = 0

    @property
    def written(self) -> int:
        return self.current - self.skipped


@dataclass(frozen=True)
class SafeSyncStatus:
    """Snapshot of one Safe's sync status."""

    safe_id: str
    address: str
    chain: Chain
    state: SyncState = SyncState.PENDING
    progress: SyncProgress = field(default_factory=SyncProgress)
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a flat dictionary."""
        return {
            "safe_id": self.safe_id,
            "address": self.address,
            "chain": self.chain.value,
            "state": self.state.value,
            "current": self.progress.current,
            "total": self.progress.total,
            "skipped": self.progress.skipped,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SafeSyncStatus:
        """Deserialize from ``to_dict`` output."""
        return cls(
            safe_id=str(data["safe_id"]),
            address=str(data["address"]),
            chain=parse_chain(data["chain"]),
            state=SyncState(data["state"]),
            progress=SyncProgress(
                current=int(data.get("current", 0)),
                total=int(data.get("total", 0)),
                skipped=int(data.get("skipped", 0)),
            ),
            message=data.get("message") or None,
        )


@dataclass
class SyncReport:
    """Final statuses of a sync run, in processing order."""

    organization_id: str
    statuses: list[SafeSyncStatus] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """True if every Safe completed."""
        return all(s.state is SyncState.COMPLETED for s in self.statuses)

    @property
    def failed(self) -> SafeSyncStatus | None:
        """The Safe that halted the run, if any."""
        return next((s for s in self.statuses if s.state is SyncState.ERROR), None)

    @property
    def written(self) -> int:
        return sum(s.progress.written for s in self.statuses)

    @property
    def skipped(self) -> int:
        return sum(s.progress.skipped for s in self.statuses)
