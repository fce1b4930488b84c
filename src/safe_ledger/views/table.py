"""Direction-tagged table rows for stored transfers.

A transfer can touch zero, one or two tracked Safes, so it projects onto
zero, one or two rows: ``out`` when its sender is tracked and ``in`` when
its receiver is tracked.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, fields
from decimal import Decimal
from enum import Enum

from safe_ledger.identity import SelectedSafe, create_safe_chain_unique_id
from safe_ledger.ingestor.models import NATIVE_DECIMALS
from safe_ledger.storage.repos import SafeDTO, TransferDTO

logger = logging.getLogger(__name__)

# Transfers worth less than this many units are dust and never displayed
DISPLAY_THRESHOLD = Decimal("0.99")


class ViewType(str, Enum):
    """Direction of a row relative to the tracked Safe."""

    IN = "in"
    OUT = "out"


@dataclass
class TransferTableItem(TransferDTO):
    """A stored transfer seen from one tracked side."""

    view_type: ViewType = ViewType.OUT

    @classmethod
    def from_transfer_dto(cls, transfer: TransferDTO, view_type: ViewType) -> TransferTableItem:
        values = {f.name: getattr(transfer, f.name) for f in fields(TransferDTO)}
        return cls(**values, view_type=view_type)

    @property
    def is_outgoing(self) -> bool:
        return self.view_type is ViewType.OUT

    @property
    def tracked_address(self) -> str:
        """Address of the tracked side of the row."""
        return self.from_address if self.is_outgoing else self.to_address

    @property
    def counterparty_address(self) -> str:
        return self.to_address if self.is_outgoing else self.from_address


def decimal_value(transfer: TransferDTO) -> Decimal:
    """Scale a transfer's base-unit value by its token decimals.

    Decimals default to 18 when missing or zero.
    """
    decimals = transfer.token_decimals or NATIVE_DECIMALS
    return Decimal(transfer.value or "0") / (Decimal(10) ** decimals)


@dataclass(frozen=True)
class Perspective:
    """Which Safes a table is drawn for.

    Attributes:
        selected: One (address, chain) pair, or None for every Safe of the
            organization.
    """

    selected: SelectedSafe | None = None

    def tracked_ids(self, all_safes: Iterable[SafeDTO]) -> set[str]:
        """Resolve the chain-scoped identities this perspective tracks."""
        if self.selected is not None:
            return {create_safe_chain_unique_id(self.selected.address, self.selected.chain)}
        return {create_safe_chain_unique_id(s.address, s.chain) for s in all_safes}


def to_table_rows(
    transfers: Iterable[TransferDTO],
    selected_safe: SelectedSafe | None,
    all_safes: Iterable[SafeDTO],
) -> list[TransferTableItem]:
    """Project transfers onto direction-tagged rows.

    Args:
        transfers: Stored transfers, in display order.
        selected_safe: Safe to view from, or None for all Safes.
        all_safes: The organization's Safes.

    Returns:
        Rows in input order; for a transfer between two tracked Safes the
        ``out`` row precedes the ``in`` row.
    """
    tracked = Perspective(selected_safe).tracked_ids(all_safes)
    rows: list[TransferTableItem] = []
    dropped = 0

    for transfer in transfers:
        if decimal_value(transfer) < DISPLAY_THRESHOLD:
            dropped += 1
            continue

        if create_safe_chain_unique_id(transfer.from_address, transfer.chain) in tracked:
            rows.append(TransferTableItem.from_transfer_dto(transfer, ViewType.OUT))
        if create_safe_chain_unique_id(transfer.to_address, transfer.chain) in tracked:
            rows.append(TransferTableItem.from_transfer_dto(transfer, ViewType.IN))

    if dropped:
        logger.debug("Dropped %d transfers below display threshold", dropped)
    return rows


get_table_rows = to_table_rows
