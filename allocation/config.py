"""Default configuration values."""

# Number of deactivations that can be undone (oldest records are evicted first)
DEFAULT_UNDO_DEPTH = 10

# Allocating to a location that was never seen creates it (inactive locations always refuse)
DEFAULT_AUTO_CREATE_LOCATIONS = True

# Sort modes for item totals
SORT_QTY_DESC = "qty-desc"
SORT_QTY_ASC = "qty-asc"
SORT_ITEM_ASC = "item-asc"
SORT_ITEM_DESC = "item-desc"
SORT_MODES = [SORT_QTY_DESC, SORT_QTY_ASC, SORT_ITEM_ASC, SORT_ITEM_DESC]
DEFAULT_SORT_MODE = SORT_QTY_DESC

# Archive identifiers look like "20250114_093000_Jan_Batch"
ARCHIVE_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
ARCHIVE_FILE_EXTENSION = ".json"
SESSION_FILE_NAME = "session.json"

# Columns expected in a normalized import DataFrame
ITEM_NUMBER_COLUMN = "ItemNumber"
DESCRIPTION_COLUMN = "Description"
STORE_ID_COLUMN = "StoreId"
QUANTITY_COLUMN = "Quantity"
SKU_COLUMN = "SKU"
REQUIRED_IMPORT_COLUMNS = [ITEM_NUMBER_COLUMN, STORE_ID_COLUMN, QUANTITY_COLUMN]

# Output columns for reporting frames
ITEM_TOTALS_COLUMNS = [
    "ItemNumber",
    "Description",
    "TotalQuantity",
    "PoolQuantity",
    "AllocatedQuantity",
    "LocationCount",
]
ALLOCATION_VIEW_COLUMNS = [
    "ItemNumber",
    "Description",
    "Location",
    "Quantity",
]
