"""
Configuration constants and defaults for Batch Engine.

This module contains plate geometry, numeric tolerances, validation thresholds,
message templates and column name mappings used throughout the package.
"""

from typing import Final

# ============================================================================
# Plate Geometry
# ============================================================================

# Row labels of a standard 96-well microplate, top to bottom
PLATE_ROWS: Final[tuple[str, ...]] = ("A", "B", "C", "D", "E", "F", "G", "H")

# Column numbers, left to right (1-based, as printed on the plate)
PLATE_COLS: Final[tuple[int, ...]] = tuple(range(1, 13))

WELLS_PER_PLATE: Final[int] = len(PLATE_ROWS) * len(PLATE_COLS)

# ============================================================================
# Pooling Parameters
# ============================================================================

# Target ratios are expressed as percentages of the pool
PERCENT_TOTAL: Final[float] = 100.0

# Allowed deviation of sum(target_ratio) from 100 caused by float rounding
RATIO_SUM_TOLERANCE: Final[float] = 0.01

# Quality score range for a finished pool
MIN_QUALITY_SCORE: Final[float] = 0.0
MAX_QUALITY_SCORE: Final[float] = 100.0

# ============================================================================
# Validation Thresholds
# ============================================================================

# A step whose actual duration exceeds estimated * factor gets a warning
DURATION_OVERRUN_FACTOR: Final[float] = 1.5

# Library concentration below this (nM) is considered very dilute
WARN_LOW_LIBRARY_CONCENTRATION_NM: Final[float] = 1.0

# Pipetting volumes below this (µl) are not accurate
MIN_PIPETTE_VOLUME_UL: Final[float] = 0.5

# ============================================================================
# Error and Warning Messages
# ============================================================================

ERROR_STEP_NOT_FOUND: Final[str] = "Step '{step_id}' not found in batch"
ERROR_INVALID_TRANSITION: Final[str] = "Cannot {action} '{entity_id}' while it is {current}"
ERROR_CONCURRENT_STEP: Final[str] = (
    "Cannot start step '{step_id}': step '{running_step_id}' is already running"
)
ERROR_WELL_NOT_EMPTY: Final[str] = "Well {position} is not empty (status: {current})"
ERROR_WELL_NO_SAMPLE: Final[str] = "Well {position} has no sample; cannot set status {requested}"
ERROR_WELL_NEEDS_CLEAR: Final[str] = (
    "Well {position} is {current}; use clear to return it to empty"
)
ERROR_INVALID_POSITION: Final[str] = "Invalid well position: '{position}'"
ERROR_NO_LIBRARIES: Final[str] = "No libraries selected for pooling"
ERROR_INVALID_TARGET: Final[str] = "{field} must be > 0, got {value}"
ERROR_LIBRARY_NOT_AVAILABLE: Final[str] = "Library '{library_id}' is not in the pending pool"
ERROR_DUPLICATE_VALUE: Final[str] = "Duplicate {column} found: '{value}'"
ERROR_MISSING_COLUMN: Final[str] = "Missing required column: {column}"

FLAG_BELOW_TARGET: Final[str] = (
    "Below target concentration ({concentration:.2f} nM < {target:.2f} nM)"
)
FLAG_INSUFFICIENT_VOLUME: Final[str] = (
    "Insufficient volume (need {needed:.2f} µl, have {available:.2f} µl)"
)
WARN_BELOW_MIN_PIPETTE: Final[str] = (
    "{library}: Below minimum pipetting volume ({volume:.2f} µl < {min_vol:.2f} µl)"
)
WARN_LOW_CONCENTRATION: Final[str] = (
    "{library}: Very low concentration ({value:.3f} nM) - library may be too dilute"
)
WARN_DURATION_OVERRUN: Final[str] = (
    "Step '{step}' took {actual} min, estimated {estimated} min"
)
WARN_WELL_PROBLEM: Final[str] = "Well {position} ({sample}) is {status}"

# ============================================================================
# Library Sheet Columns (Case-Insensitive Matching)
# ============================================================================

REQUIRED_COLUMNS: Final[list[str]] = [
    "Library ID",
    "Library Number",
    "Concentration (nM)",
    "Volume (µl)",
]

OPTIONAL_COLUMNS: Final[list[str]] = [
    "Library Name",
    "Sample ID",
    "Insert Size (bp)",
    "Priority",
]

# Maps alternative names to standard column names
COLUMN_ALIASES: Final[dict[str, str]] = {
    # Library ID variants
    "library_id": "Library ID",
    "id": "Library ID",
    # Library Number variants
    "library_number": "Library Number",
    "library": "Library Number",
    "lib": "Library Number",
    # Library Name variants
    "library_name": "Library Name",
    "name": "Library Name",
    # Sample variants
    "sample_id": "Sample ID",
    "sample_number": "Sample ID",
    "sample": "Sample ID",
    # Concentration variants
    "concentration": "Concentration (nM)",
    "conc": "Concentration (nM)",
    "nm": "Concentration (nM)",
    "concentration_nm": "Concentration (nM)",
    # Volume variants
    "volume": "Volume (µl)",
    "vol": "Volume (µl)",
    "volume (ul)": "Volume (µl)",
    "volume_ul": "Volume (µl)",
    # Insert size variants
    "insert_size": "Insert Size (bp)",
    "insert size": "Insert Size (bp)",
    "fragment_size": "Insert Size (bp)",
    # Priority
    "priority": "Priority",
}

# Column name -> Library field name
COLUMN_TO_FIELD: Final[dict[str, str]] = {
    "Library ID": "library_id",
    "Library Number": "library_number",
    "Library Name": "library_name",
    "Sample ID": "sample_id",
    "Concentration (nM)": "concentration",
    "Volume (µl)": "volume",
    "Insert Size (bp)": "insert_size",
    "Priority": "priority",
}

# ============================================================================
# Output Column Names
# ============================================================================

OUTPUT_STEP_COLUMNS: Final[list[str]] = [
    "Order",
    "Step ID",
    "Step Name",
    "Status",
    "Estimated (min)",
    "Actual (min)",
    "Start Time",
    "End Time",
    "Operator",
    "Notes",
]

OUTPUT_WELL_COLUMNS: Final[list[str]] = [
    "Position",
    "Row",
    "Column",
    "Sample ID",
    "Sample Name",
    "Status",
    "Volume (µl)",
    "Concentration",
    "Notes",
]

OUTPUT_RATIO_COLUMNS: Final[list[str]] = [
    "Library ID",
    "Library Number",
    "Original Concentration (nM)",
    "Target Ratio (%)",
    "Required Volume (µl)",
    "Dilution Factor",
    "Flags",
]

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME: Final[str] = "Batch Engine"

# ============================================================================
# Helper Functions
# ============================================================================


def normalize_column_name(name: str) -> str:
    """
    Normalize a column name for matching.

    Converts to lowercase, strips whitespace, and looks up aliases.

    Args:
        name: Raw column name from input file

    Returns:
        Standardized column name, or original if no match found
    """
    normalized = name.strip().lower()

    if normalized in COLUMN_ALIASES:
        return COLUMN_ALIASES[normalized]

    for col in REQUIRED_COLUMNS + OPTIONAL_COLUMNS:
        if col.lower() == normalized:
            return col

    return name
