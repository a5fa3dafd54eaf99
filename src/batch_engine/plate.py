"""
96-well plate layout functions.

A plate is a fixed row-major tuple of 96 wells. Addresses map to indices with
``row_index * 12 + (col - 1)``, so lookups never scan the plate. Mutations
return a new PlateLayout; the plate is never resized.
"""

import logging
import re

from batch_engine.config import (
    ERROR_WELL_NEEDS_CLEAR,
    ERROR_WELL_NO_SAMPLE,
    PLATE_COLS,
    PLATE_ROWS,
)
from batch_engine.exceptions import (
    InvalidWellPosition,
    InvalidWellState,
    WellNotEmpty,
)
from batch_engine.models import (
    FINAL_WELL_STATUSES,
    PlateLayout,
    WellPosition,
    WellStatus,
    create_empty_well,
)

logger = logging.getLogger(__name__)

_POSITION_PATTERN = re.compile(r"^\s*([A-Za-z])\s*0*(\d{1,2})\s*$")

_ROW_INDEX: dict[str, int] = {row: i for i, row in enumerate(PLATE_ROWS)}


# ============================================================================
# Addressing
# ============================================================================


def parse_position(position: str) -> tuple[str, int]:
    """
    Split a well address into row and column.

    Accepts "A1", "a1", "A01" and surrounding whitespace.

    Raises:
        InvalidWellPosition: If the address is malformed or off the plate
    """
    match = _POSITION_PATTERN.match(position or "")
    if match is None:
        raise InvalidWellPosition(position)

    row = match.group(1).upper()
    col = int(match.group(2))
    if row not in _ROW_INDEX or col not in PLATE_COLS:
        raise InvalidWellPosition(position)

    return row, col


def well_index(row: str, col: int) -> int:
    """
    Index of a well in the plate tuple.

    Raises:
        InvalidWellPosition: If row or col is off the plate
    """
    row_index = _ROW_INDEX.get(str(row).upper())
    if row_index is None or col not in PLATE_COLS:
        raise InvalidWellPosition(f"{row}{col}")
    return row_index * len(PLATE_COLS) + (col - 1)


def _index_for(position: str) -> int:
    row, col = parse_position(position)
    return well_index(row, col)


def _replace_well(plate: PlateLayout, index: int, well: WellPosition) -> PlateLayout:
    wells = plate.wells[:index] + (well,) + plate.wells[index + 1 :]
    return PlateLayout(wells=wells, plate_id=plate.plate_id)


# ============================================================================
# Plate Creation
# ============================================================================


def generate_plate(plate_id: str | None = None) -> PlateLayout:
    """
    Create a plate with 96 empty wells, A1..A12, B1..B12, ..., H12.

    Args:
        plate_id: Optional plate barcode

    Returns:
        PlateLayout with every well empty
    """
    wells = tuple(create_empty_well(row, col) for row in PLATE_ROWS for col in PLATE_COLS)
    return PlateLayout(wells=wells, plate_id=plate_id)


# ============================================================================
# Queries
# ============================================================================


def by_position(plate: PlateLayout, row: str, col: int) -> WellPosition:
    """Return the well at (row, col) in constant time."""
    return plate.wells[well_index(row, col)]


def get_well(plate: PlateLayout, position: str) -> WellPosition:
    """Return the well at an address such as "A1"."""
    return plate.wells[_index_for(position)]


def count_by_status(plate: PlateLayout, status: WellStatus | str) -> int:
    """Number of wells with the given status, from the plate's cached counts."""
    return plate.status_count(WellStatus(status))


def status_counts(plate: PlateLayout) -> dict[str, int]:
    """Counts for every status, in WellStatus order (for legends)."""
    return {status.value: plate.status_count(status) for status in WellStatus}


def loaded_wells(plate: PlateLayout) -> list[WellPosition]:
    """Wells that hold a sample, in row-major order."""
    return [well for well in plate.wells if well.has_sample]


def free_capacity(plate: PlateLayout) -> int:
    return plate.status_count(WellStatus.EMPTY)


# ============================================================================
# Mutations
# ============================================================================


def load_sample(
    plate: PlateLayout,
    position: str,
    sample_id: str,
    sample_name: str | None = None,
    volume: float | None = None,
    concentration: float | None = None,
    notes: str | None = None,
) -> PlateLayout:
    """
    Bind a sample to an empty well and mark it loaded.

    Args:
        plate: Current plate
        position: Well address, e.g. "A1"
        sample_id: Sample identifier
        sample_name: Sample display name
        volume: Sample volume in µl (optional)
        concentration: Sample concentration (optional)
        notes: Free-text notes (optional)

    Returns:
        New PlateLayout with the well loaded

    Raises:
        InvalidWellPosition: If the address is not on the plate
        WellNotEmpty: If the well already holds a sample
    """
    index = _index_for(position)
    well = plate.wells[index]

    if well.status != WellStatus.EMPTY:
        logger.warning("Rejected load of %s into %s (%s)", sample_id, well.position, well.status.value)
        raise WellNotEmpty(well.position, well.status.value)

    loaded = WellPosition(
        row=well.row,
        col=well.col,
        sample_id=sample_id,
        sample_name=sample_name,
        status=WellStatus.LOADED,
        volume=volume,
        concentration=concentration,
        notes=notes,
    )
    logger.debug("Loaded sample %s into well %s", sample_id, well.position)
    return _replace_well(plate, index, loaded)


def advance_status(
    plate: PlateLayout,
    position: str,
    new_status: WellStatus | str,
) -> PlateLayout:
    """
    Change the status of a well.

    Setting ``empty`` on a loaded or processing well unbinds its sample.
    Completed, failed and contaminated wells must go through clear_well.

    Raises:
        InvalidWellPosition: If the address is not on the plate
        InvalidWellState: If a non-empty status is set on a well with no
            sample, or a completed/failed/contaminated well is set to empty
    """
    new_status = WellStatus(new_status)
    index = _index_for(position)
    well = plate.wells[index]

    if new_status == WellStatus.EMPTY:
        if well.status in FINAL_WELL_STATUSES:
            logger.warning("Rejected reset of %s well %s", well.status.value, well.position)
            raise InvalidWellState(
                well.position,
                well.status.value,
                new_status.value,
                ERROR_WELL_NEEDS_CLEAR.format(position=well.position, current=well.status.value),
            )
        return _replace_well(plate, index, create_empty_well(well.row, well.col))

    if not well.has_sample:
        logger.warning("Rejected %s on empty well %s", new_status.value, well.position)
        raise InvalidWellState(
            well.position,
            well.status.value,
            new_status.value,
            ERROR_WELL_NO_SAMPLE.format(position=well.position, requested=new_status.value),
        )

    logger.debug("Well %s: %s -> %s", well.position, well.status.value, new_status.value)
    return _replace_well(plate, index, well.model_copy(update={"status": new_status}))


def clear_well(plate: PlateLayout, position: str) -> PlateLayout:
    """
    Unbind the sample of a well and reset it to empty. Always legal.

    Raises:
        InvalidWellPosition: If the address is not on the plate
    """
    index = _index_for(position)
    well = plate.wells[index]
    if well.has_sample:
        logger.debug("Cleared sample %s from well %s", well.sample_id, well.position)
    return _replace_well(plate, index, create_empty_well(well.row, well.col))


def annotate_well(plate: PlateLayout, position: str, notes: str | None) -> PlateLayout:
    """Set the notes of a well without changing its status."""
    index = _index_for(position)
    return _replace_well(plate, index, plate.wells[index].model_copy(update={"notes": notes}))
