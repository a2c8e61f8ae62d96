# Configuration for the archive review script

# Directory holding session.json and the archive files
ARCHIVE_DIR = "archives"

# Sort order for item totals: "qty-desc", "qty-asc", "item-asc" or "item-desc"
TOTALS_SORT_MODE = "qty-desc"

# Logging level for the script
LOG_LEVEL = "INFO"
