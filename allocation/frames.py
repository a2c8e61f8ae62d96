"""pandas bridges for allocation data.

Converts an already-normalized import DataFrame into ingest entries, and
reporting views into DataFrames for display or export. No file reading happens
here.
"""

import pandas as pd

from .config import (
    ALLOCATION_VIEW_COLUMNS,
    DESCRIPTION_COLUMN,
    ITEM_NUMBER_COLUMN,
    ITEM_TOTALS_COLUMNS,
    QUANTITY_COLUMN,
    REQUIRED_IMPORT_COLUMNS,
    SKU_COLUMN,
    STORE_ID_COLUMN,
)
from .errors import ValidationError
from .models import IngestEntry, ItemAllocationView, ItemTotalSummary


def validate_required_columns(
    df: pd.DataFrame,
    required_columns: list[str]
) -> tuple[bool, list[str]]:
    """Validate that DataFrame has all required columns.

    Args:
        df: DataFrame to validate
        required_columns: List of required column names

    Returns:
        Tuple of (is_valid, list_of_missing_columns)
    """
    missing = [col for col in required_columns if col not in df.columns]
    return len(missing) == 0, missing


def _cell_text(val) -> str:
    """Convert a cell to text, treating NaN/None as empty."""
    if val is None or pd.isna(val):
        return ""
    return str(val).strip()


def _cell_key(val) -> str:
    """Keys read as numbers come back as floats (101.0); keep them as "101"."""
    if isinstance(val, float) and not pd.isna(val) and val.is_integer():
        return str(int(val))
    return _cell_text(val)


def _cell_quantity(val, row_label) -> int:
    """Convert a quantity cell to int. Empty counts as 0; anything non-numeric is rejected."""
    if val is None or pd.isna(val) or val == "":
        return 0
    try:
        number = float(val)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Row {row_label}: quantity {val!r} is not a number") from e
    if not number.is_integer():
        raise ValidationError(f"Row {row_label}: quantity {val!r} is not a whole number")
    return int(number)


def entries_from_frame(df: pd.DataFrame) -> list[IngestEntry]:
    """
    Convert a normalized import DataFrame into IngestEntry values.

    Expected columns: ItemNumber, StoreId, Quantity (required) and
    Description, SKU (optional). Rows with a blank item number are kept so
    that AllocationPool.ingest rejects the batch instead of silently dropping
    data.

    Raises:
        ValidationError: Missing required columns or a non-numeric quantity
    """
    is_valid, missing = validate_required_columns(df, REQUIRED_IMPORT_COLUMNS)
    if not is_valid:
        raise ValidationError(f"Missing required columns: {', '.join(missing)}")

    entries = []
    for idx, row in df.iterrows():
        sku = _cell_text(row.get(SKU_COLUMN)) if SKU_COLUMN in df.columns else ""
        entries.append(IngestEntry(
            item_number=_cell_key(row[ITEM_NUMBER_COLUMN]),
            description=_cell_text(row.get(DESCRIPTION_COLUMN)) if DESCRIPTION_COLUMN in df.columns else "",
            store_id=_cell_key(row[STORE_ID_COLUMN]) or None,
            quantity=_cell_quantity(row[QUANTITY_COLUMN], idx),
            sku=sku or None,
        ))
    return entries


def item_totals_to_frame(summaries: list[ItemTotalSummary]) -> pd.DataFrame:
    """Item totals as a DataFrame with ITEM_TOTALS_COLUMNS."""
    return pd.DataFrame(
        [
            {
                "ItemNumber": s.item_number,
                "Description": s.description,
                "TotalQuantity": s.total_quantity,
                "PoolQuantity": s.pool_quantity,
                "AllocatedQuantity": s.allocated_quantity,
                "LocationCount": s.location_count,
            }
            for s in summaries
        ],
        columns=ITEM_TOTALS_COLUMNS,
    )


def allocation_views_to_frame(views: list[ItemAllocationView]) -> pd.DataFrame:
    """One row per (item, location) pair, in view order."""
    return pd.DataFrame(
        [
            {
                "ItemNumber": view.item_number,
                "Description": view.description,
                "Location": store.location,
                "Quantity": store.quantity,
            }
            for view in views
            for store in view.store_allocations
        ],
        columns=ALLOCATION_VIEW_COLUMNS,
    )
