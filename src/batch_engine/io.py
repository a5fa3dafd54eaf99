"""
Input/Output operations for Batch Engine.

This module handles reading library sheets, building tabular views of
batches, plates and pooling plans, and exporting them to Excel files.
"""

import logging
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import BinaryIO

import pandas as pd

from batch_engine import __version__
from batch_engine.config import (
    APP_NAME,
    COLUMN_TO_FIELD,
    OUTPUT_RATIO_COLUMNS,
    OUTPUT_STEP_COLUMNS,
    OUTPUT_WELL_COLUMNS,
    PLATE_COLS,
    PLATE_ROWS,
    normalize_column_name,
)
from batch_engine.models import (
    ExperimentBatch,
    Library,
    PlateLayout,
    PoolingRatio,
    PoolingTask,
    create_library_from_dict,
)
from batch_engine.validation import run_all_validations

logger = logging.getLogger(__name__)

# Identifier columns that pandas may have parsed as numbers
_TEXT_FIELDS = ("library_id", "library_number", "library_name", "sample_id")


# ============================================================================
# Library Sheet Loading
# ============================================================================


def load_spreadsheet(
    file_path_or_bytes: str | Path | bytes | BinaryIO,
    sheet_name: str | int = 0,
) -> pd.DataFrame:
    """
    Load a spreadsheet from file path or bytes.

    Args:
        file_path_or_bytes: Path to Excel/CSV file, bytes, or file-like object
        sheet_name: Sheet name or index to read (default: first sheet)

    Returns:
        DataFrame with raw data from spreadsheet

    Raises:
        FileNotFoundError: If file path doesn't exist
        ValueError: If file format is unsupported or corrupted
    """
    if isinstance(file_path_or_bytes, (str, Path)):
        file_path = Path(file_path_or_bytes)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

    try:
        if isinstance(file_path_or_bytes, (str, Path)):
            file_path = Path(file_path_or_bytes)
            if file_path.suffix.lower() == ".csv":
                df = pd.read_csv(file_path)
            else:
                df = pd.read_excel(file_path, sheet_name=sheet_name)
        elif isinstance(file_path_or_bytes, bytes):
            df = pd.read_excel(BytesIO(file_path_or_bytes), sheet_name=sheet_name)
        else:
            df = pd.read_excel(file_path_or_bytes, sheet_name=sheet_name)
    except Exception as e:
        raise ValueError(f"Error reading spreadsheet: {e}") from e

    # Remove completely empty rows
    df = df.dropna(how="all")
    return df.reset_index(drop=True)


def normalize_dataframe_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename columns to their standard names using the config aliases."""
    return df.rename(columns={col: normalize_column_name(str(col)) for col in df.columns})


def dataframe_to_dict_list(df: pd.DataFrame) -> list[dict]:
    """
    Convert DataFrame rows to dictionaries keyed by Library field names.

    NaN values become None; unknown columns are dropped.
    """
    records = []
    for record in df.to_dict(orient="records"):
        cleaned = {}
        for column, value in record.items():
            field = COLUMN_TO_FIELD.get(column)
            if field is None:
                continue
            if pd.isna(value):
                cleaned[field] = None
            elif field in _TEXT_FIELDS:
                cleaned[field] = str(value).strip()
            elif field == "priority":
                cleaned[field] = str(value).strip().lower()
            else:
                cleaned[field] = value
        records.append(cleaned)
    return records


def load_libraries(file_path_or_bytes: str | Path | bytes | BinaryIO) -> list[Library]:
    """
    Load a library sheet into pending Library records.

    Raises:
        FileNotFoundError: If file path doesn't exist
        ValueError: If the sheet fails validation
    """
    df = normalize_dataframe_columns(load_spreadsheet(file_path_or_bytes))

    validation = run_all_validations(df)
    if not validation.is_valid:
        raise ValueError(f"Library sheet is invalid:\n{validation.get_report()}")
    for warning in validation.warnings:
        logger.warning(warning)

    libraries = [create_library_from_dict(record) for record in dataframe_to_dict_list(df)]
    logger.info("Loaded %d libraries", len(libraries))
    return libraries


# ============================================================================
# Tabular Views
# ============================================================================


def steps_to_dataframe(batch: ExperimentBatch) -> pd.DataFrame:
    """One row per step, in step order."""
    rows = [
        {
            "Order": step.step_order,
            "Step ID": step.step_id,
            "Step Name": step.step_name,
            "Status": step.status.value,
            "Estimated (min)": step.estimated_duration,
            "Actual (min)": step.actual_duration,
            "Start Time": step.start_time,
            "End Time": step.end_time,
            "Operator": step.operator,
            "Notes": step.notes,
        }
        for step in batch.steps
    ]
    return pd.DataFrame(rows, columns=OUTPUT_STEP_COLUMNS)


def plate_to_dataframe(plate: PlateLayout) -> pd.DataFrame:
    """One row per well, A1 to H12."""
    rows = [
        {
            "Position": well.position,
            "Row": well.row,
            "Column": well.col,
            "Sample ID": well.sample_id,
            "Sample Name": well.sample_name,
            "Status": well.status.value,
            "Volume (µl)": well.volume,
            "Concentration": well.concentration,
            "Notes": well.notes,
        }
        for well in plate.wells
    ]
    return pd.DataFrame(rows, columns=OUTPUT_WELL_COLUMNS)


def plate_to_grid(plate: PlateLayout, value: str = "status") -> pd.DataFrame:
    """
    Lay the plate out as an 8×12 grid (rows A-H, columns 1-12).

    Args:
        plate: Plate to render
        value: Well attribute to show in each cell ("status", "sample_id", ...)
    """
    n_cols = len(PLATE_COLS)
    data = []
    for r in range(len(PLATE_ROWS)):
        cells = []
        for well in plate.wells[r * n_cols : (r + 1) * n_cols]:
            cell = getattr(well, value)
            cells.append(cell.value if value == "status" else cell)
        data.append(cells)
    return pd.DataFrame(data, index=list(PLATE_ROWS), columns=list(PLATE_COLS))


def ratios_to_dataframe(ratios: list[PoolingRatio] | tuple[PoolingRatio, ...]) -> pd.DataFrame:
    """One row per library of a pooling plan."""
    rows = [
        {
            "Library ID": ratio.library_id,
            "Library Number": ratio.library_number,
            "Original Concentration (nM)": ratio.original_concentration,
            "Target Ratio (%)": ratio.target_ratio,
            "Required Volume (µl)": ratio.required_volume,
            "Dilution Factor": ratio.dilution_factor,
            "Flags": "; ".join(ratio.flags),
        }
        for ratio in ratios
    ]
    return pd.DataFrame(rows, columns=OUTPUT_RATIO_COLUMNS)


# ============================================================================
# Excel Export
# ============================================================================


def export_pooling_plan_to_excel(
    task: PoolingTask,
    output_path: str | Path | None = None,
) -> bytes | None:
    """
    Export a pooling task to an Excel workbook.

    Sheets: PoolingRatios, Libraries, Metadata.

    Args:
        task: Pooling task (ratios may be empty)
        output_path: Optional path to save file (if None, returns bytes)

    Returns:
        Bytes of Excel file if output_path is None, otherwise None
    """
    libraries_df = pd.DataFrame([lib.model_dump(mode="json") for lib in task.libraries])

    metadata = _create_metadata_dict(
        {
            "Pool Code": task.pool_code,
            "Pool Name": task.pool_name,
            "Status": task.status.value,
            "Target Concentration (nM)": task.target_concentration,
            "Total Volume (µl)": task.total_volume,
            "Final Concentration (nM)": task.qc_result.final_concentration if task.qc_result else None,
            "Quality Score": task.qc_result.quality_score if task.qc_result else None,
        }
    )

    sheets = {
        "PoolingRatios": ratios_to_dataframe(task.pooling_ratios),
        "Libraries": libraries_df,
        "Metadata": pd.DataFrame(list(metadata.items()), columns=["Parameter", "Value"]),
    }
    logger.info("Exporting pooling plan %s", task.pool_code)
    return _write_workbook(sheets, output_path)


def export_batch_report_to_excel(
    batch: ExperimentBatch,
    plate: PlateLayout | None = None,
    output_path: str | Path | None = None,
) -> bytes | None:
    """
    Export a batch (and optionally its plate) to an Excel workbook.

    Sheets: Steps, PlateLayout and PlateGrid (if a plate is given), Metadata.

    Returns:
        Bytes of Excel file if output_path is None, otherwise None
    """
    metadata = _create_metadata_dict(
        {
            "Batch Code": batch.batch_code,
            "Batch Name": batch.batch_name,
            "Status": batch.status.value,
            "Progress (%)": batch.progress,
            "Operator": batch.operator,
            "Scheduled Start": batch.scheduled_start,
            "Estimated End": batch.estimated_end,
            "Actual End": batch.actual_end,
        }
    )

    sheets = {"Steps": steps_to_dataframe(batch)}
    if plate is not None:
        sheets["PlateLayout"] = plate_to_dataframe(plate)
        sheets["PlateGrid"] = plate_to_grid(plate).reset_index(names="Row")
    sheets["Metadata"] = pd.DataFrame(list(metadata.items()), columns=["Parameter", "Value"])

    logger.info("Exporting batch report %s", batch.batch_code)
    return _write_workbook(sheets, output_path)


def generate_export_filename(prefix: str = "pooling_plan") -> str:
    """Generate a timestamped .xlsx filename."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{prefix}_{timestamp}.xlsx"


def _write_workbook(
    sheets: dict[str, pd.DataFrame],
    output_path: str | Path | None,
) -> bytes | None:
    if output_path is None:
        buffer = BytesIO()
        writer_target = buffer
    else:
        writer_target = Path(output_path)

    with pd.ExcelWriter(writer_target, engine="openpyxl") as writer:
        for sheet_name, df in sheets.items():
            df.to_excel(writer, sheet_name=sheet_name, index=False, freeze_panes=(1, 0))

        for sheet_name in writer.sheets:
            _auto_adjust_column_widths(writer.sheets[sheet_name])

    if output_path is None:
        buffer.seek(0)
        return buffer.getvalue()
    return None


def _create_metadata_dict(details: dict | None = None) -> dict[str, str]:
    """
    Create metadata dictionary for export.

    Args:
        details: Entity-specific key/value pairs appended after the app info

    Returns:
        Dictionary of metadata key-value pairs, values as strings
    """
    metadata = {
        "Generated At": datetime.now().isoformat(),
        "App Name": APP_NAME,
        "App Version": __version__,
    }

    for key, value in (details or {}).items():
        if isinstance(value, datetime):
            metadata[key] = value.isoformat()
        else:
            metadata[key] = str(value) if value is not None else "None"

    return metadata


def _auto_adjust_column_widths(worksheet) -> None:
    """
    Auto-adjust column widths in an openpyxl worksheet.

    Args:
        worksheet: openpyxl worksheet object
    """
    for column in worksheet.columns:
        column_letter = column[0].column_letter
        max_length = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)

        # Cap at 50 characters
        worksheet.column_dimensions[column_letter].width = min(max_length + 2, 50)
