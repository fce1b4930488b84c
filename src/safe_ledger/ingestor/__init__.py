"""Data ingestion layer - Safe Transaction Service transfer fetching."""

from safe_ledger.ingestor.models import (
    NATIVE_DECIMALS,
    SafeTransfer,
    TokenInfo,
    TransferPage,
    TransferType,
)
from safe_ledger.ingestor.safe_client import (
    SafeTransactionClient,
    filter_trusted_transfers,
)

__all__ = [
    # Models
    "NATIVE_DECIMALS",
    "SafeTransfer",
    "TokenInfo",
    "TransferPage",
    "TransferType",
    # Client
    "SafeTransactionClient",
    "filter_trusted_transfers",
]
