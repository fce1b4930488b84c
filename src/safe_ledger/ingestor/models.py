"""Data models for the ingestor module."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from safe_ledger.chains import Chain, parse_chain

NATIVE_DECIMALS = 18


class TransferType(str, Enum):
    """Kind of value movement reported by the transaction service."""

    ETHER_TRANSFER = "ETHER_TRANSFER"
    ERC20_TRANSFER = "ERC20_TRANSFER"


def parse_execution_date(value: str) -> datetime:
    """Parse the service's ISO-8601 timestamps, accepting a trailing ``Z``."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class TokenInfo:
    """Token metadata attached to ERC20 transfers."""

    name: str
    symbol: str
    decimals: int
    trusted: bool
    logo_uri: str | None = None
    address: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenInfo:
        """Create TokenInfo from the service's ``tokenInfo`` object."""
        return cls(
            name=str(data.get("name", "")),
            symbol=str(data.get("symbol", "")),
            decimals=int(data.get("decimals") or 0),
            trusted=bool(data.get("trusted", False)),
            logo_uri=data.get("logoUri"),
            address=data.get("address"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "trusted": self.trusted,
            "logoUri": self.logo_uri,
            "address": self.address,
        }


@dataclass(frozen=True)
class SafeTransfer:
    """A transfer stamped with the Safe and chain it was fetched for.

    The transaction service does not echo back which Safe or chain a row
    belongs to, so the client fills ``safe_address`` and ``chain`` in before
    handing records downstream.
    """

    transfer_id: str
    safe_address: str
    chain: Chain
    type: TransferType
    execution_date: datetime
    block_number: int
    transaction_hash: str
    from_address: str
    to_address: str
    value: str
    token_address: str | None = None
    token_info: TokenInfo | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SafeTransfer:
        """Create a SafeTransfer from a stamped service record.

        Args:
            data: Raw transfer record including ``safeAddress`` and ``chain``.

        Returns:
            SafeTransfer instance.
        """
        token_info_data = data.get("tokenInfo")
        return cls(
            transfer_id=str(data["transferId"]),
            safe_address=str(data["safeAddress"]),
            chain=parse_chain(data["chain"]),
            type=TransferType(data["type"]),
            execution_date=parse_execution_date(str(data["executionDate"])),
            block_number=int(data["blockNumber"]),
            transaction_hash=str(data["transactionHash"]),
            from_address=str(data["from"]),
            to_address=str(data["to"]),
            value=str(data.get("value") or "0"),
            token_address=data.get("tokenAddress"),
            token_info=TokenInfo.from_dict(token_info_data) if token_info_data else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the service's field names."""
        return {
            "transferId": self.transfer_id,
            "safeAddress": self.safe_address,
            "chain": self.chain.value,
            "type": self.type.value,
            "executionDate": self.execution_date.isoformat(),
            "blockNumber": self.block_number,
            "transactionHash": self.transaction_hash,
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "tokenAddress": self.token_address,
            "tokenInfo": self.token_info.to_dict() if self.token_info else None,
        }

    @property
    def is_native(self) -> bool:
        """True for native-currency transfers."""
        return self.token_info is None

    @property
    def decimals(self) -> int:
        """Token decimals, defaulting to the native 18."""
        if self.token_info and self.token_info.decimals:
            return self.token_info.decimals
        return NATIVE_DECIMALS

    @property
    def amount(self) -> Decimal:
        """Decimal-adjusted transfer value."""
        return Decimal(self.value) / (Decimal(10) ** self.decimals)


@dataclass(frozen=True)
class TransferPage:
    """Result of a single transfers request."""

    count: int
    results: tuple[SafeTransfer, ...]
