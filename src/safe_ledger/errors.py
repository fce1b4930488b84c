"""Exception hierarchy shared across the sync pipeline."""

from __future__ import annotations


class SafeLedgerError(Exception):
    """Base exception for Safe Ledger errors."""


class ValidationError(SafeLedgerError):
    """Raised for malformed addresses, unknown chains or bad parameters."""


class FetchError(SafeLedgerError):
    """Raised when the transaction service request fails."""

    def __init__(
        self,
        message: str,
        *,
        safe_address: str,
        chain: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.safe_address = safe_address
        self.chain = chain
        self.status_code = status_code


class WriteError(SafeLedgerError):
    """Raised when a ledger insert fails for reasons other than a duplicate."""

    def __init__(self, message: str, *, transfer_id: str) -> None:
        super().__init__(message)
        self.transfer_id = transfer_id


class ConflictError(SafeLedgerError):
    """Raised when an admin change collides with existing data."""


class SyncCancelledError(SafeLedgerError):
    """Raised inside a sync run when the caller cancels it."""
