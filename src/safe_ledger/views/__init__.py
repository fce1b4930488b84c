"""View projection - Table rows and CSV export for stored transfers."""

from safe_ledger.views.export import (
    CSV_COLUMNS,
    export_csv,
    format_amount,
    format_date,
    to_csv,
)
from safe_ledger.views.table import (
    DISPLAY_THRESHOLD,
    Perspective,
    TransferTableItem,
    ViewType,
    decimal_value,
    get_table_rows,
    to_table_rows,
)

__all__ = [
    # Table
    "DISPLAY_THRESHOLD",
    "Perspective",
    "TransferTableItem",
    "ViewType",
    "decimal_value",
    "get_table_rows",
    "to_table_rows",
    # Export
    "CSV_COLUMNS",
    "export_csv",
    "format_amount",
    "format_date",
    "to_csv",
]
