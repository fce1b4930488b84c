"""CSV export of table rows."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, localcontext

from safe_ledger.storage.repos import CategoryDTO, TransferCategoryDTO
from safe_ledger.views.table import TransferTableItem, decimal_value

CSV_COLUMNS = ("Date", "Safe", "Amount", "To/From", "Category", "Description")
ETH_LIKE_SYMBOLS = frozenset({"ETH", "WETH"})
DEFAULT_SYMBOL = "ETH"
DEFAULT_CATEGORY = "None"
DEFAULT_DESCRIPTION = "-"
ETH_LIKE_STEP = Decimal("0.1")
TOKEN_STEP = Decimal("1")
QUANTIZE_PRECISION = 100


def format_date(value: datetime) -> str:
    """Format a date like ``Jan 5, 2025``."""
    return f"{value:%b} {value.day}, {value.year}"


def format_amount(row: TransferTableItem) -> str:
    """Format a row's signed amount, e.g. ``-1,234.5 ETH`` or ``+300 USDC``."""
    value = decimal_value(row)
    symbol = row.token_symbol
    eth_like = not symbol or symbol in ETH_LIKE_SYMBOLS
    # Halves round away from zero
    with localcontext() as ctx:
        ctx.prec = QUANTIZE_PRECISION
        step = ETH_LIKE_STEP if eth_like else TOKEN_STEP
        rounded = value.quantize(step, rounding=ROUND_HALF_UP)
    if eth_like:
        amount = f"{rounded:,.1f} {symbol or DEFAULT_SYMBOL}"
    else:
        amount = f"{rounded:,.0f} {symbol}"
    return ("-" if row.is_outgoing else "+") + amount


def to_csv(
    rows: Iterable[TransferTableItem],
    categories: Iterable[CategoryDTO],
    category_mappings: Iterable[TransferCategoryDTO],
) -> str:
    """Serialize table rows to CSV text.

    Args:
        rows: Rows from ``to_table_rows``.
        categories: The organization's categories.
        category_mappings: Transfer annotations.

    Returns:
        CSV text with a header row and one line per table row.
    """
    names = {c.id: c.name for c in categories}
    mappings = {m.transfer_id: m for m in category_mappings}

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)

    for row in rows:
        mapping = mappings.get(row.transfer_id)
        category = names.get(mapping.category_id) if mapping and mapping.category_id else None
        description = mapping.description if mapping else None
        writer.writerow(
            (
                format_date(row.execution_date),
                row.tracked_address,
                format_amount(row),
                row.counterparty_address,
                category or DEFAULT_CATEGORY,
                description or DEFAULT_DESCRIPTION,
            )
        )

    return buffer.getvalue()


export_csv = to_csv
