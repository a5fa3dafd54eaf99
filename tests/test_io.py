"""
Unit tests for I/O operations.

Tests library sheet loading, tabular views and Excel export.
"""

from datetime import datetime
from io import BytesIO

import pandas as pd
import pytest

from batch_engine.batch import StepTemplate, create_batch
from batch_engine.config import OUTPUT_RATIO_COLUMNS, OUTPUT_STEP_COLUMNS, OUTPUT_WELL_COLUMNS
from batch_engine.io import (
    dataframe_to_dict_list,
    export_batch_report_to_excel,
    export_pooling_plan_to_excel,
    generate_export_filename,
    load_libraries,
    load_spreadsheet,
    normalize_dataframe_columns,
    plate_to_dataframe,
    plate_to_grid,
    ratios_to_dataframe,
    steps_to_dataframe,
)
from batch_engine.models import LibraryStatus, Priority
from batch_engine.plate import advance_status, generate_plate, load_sample
from batch_engine.pooling import calculate_task_ratios, create_pooling_task
from batch_engine.steps import start_step

T0 = datetime(2024, 1, 20, 9, 0, 0)


@pytest.fixture
def library_csv(tmp_path):
    path = tmp_path / "libraries.csv"
    pd.DataFrame(
        {
            "id": [1, 2, 3],
            "Library": ["LIB001", "LIB002", "LIB003"],
            "conc": [15.5, 12.3, 18.7],
            "Volume": [50.0, 45.0, 40.0],
            "Priority": ["HIGH", None, "low"],
            "Comment": ["a", "b", "c"],
        }
    ).to_csv(path, index=False)
    return path


@pytest.fixture
def batch():
    templates = [
        StepTemplate(step_name="Sample loading", estimated_duration=30),
        StepTemplate(step_name="Cell lysis", estimated_duration=120),
    ]
    batch = create_batch("BATCH_001", "Batch", templates, operator="Operator A", scheduled_start=T0)
    return start_step(batch, "step1", now=T0)


@pytest.fixture
def plate():
    plate = generate_plate("PLATE_001")
    plate = load_sample(plate, "A1", "S001", "Sample1", 50.0, 12.3)
    return advance_status(plate, "A1", "processing")


@pytest.fixture
def task(library_csv):
    libraries = load_libraries(library_csv)
    task, _ = create_pooling_task("POOL001", "Pool 1", 10.0, 100.0, libraries, ["1", "2", "3"], now=T0)
    return calculate_task_ratios(task)


# ============================================================================
# Library Sheet Loading Tests
# ============================================================================


def test_load_spreadsheet_missing_file(tmp_path):
    """load_spreadsheet should raise FileNotFoundError for missing paths."""
    with pytest.raises(FileNotFoundError):
        load_spreadsheet(tmp_path / "missing.xlsx")


def test_load_spreadsheet_drops_empty_rows(tmp_path):
    path = tmp_path / "sheet.csv"
    path.write_text("Library ID,Library Number\n1,LIB001\n,\n2,LIB002\n")

    df = load_spreadsheet(path)

    assert len(df) == 2
    assert list(df.index) == [0, 1]


def test_normalize_dataframe_columns():
    """Aliases should map to standard names; unknown columns are kept."""
    df = pd.DataFrame(columns=["ID", " conc ", "vol", "Comment"])

    normalized = normalize_dataframe_columns(df)

    assert list(normalized.columns) == ["Library ID", "Concentration (nM)", "Volume (µl)", "Comment"]


def test_dataframe_to_dict_list():
    """Rows should become Library field dicts with string ids and NaN as None."""
    df = pd.DataFrame(
        {
            "Library ID": [7],
            "Library Number": ["LIB007"],
            "Concentration (nM)": [3.2],
            "Volume (µl)": [float("nan")],
            "Comment": ["ignored"],
        }
    )

    records = dataframe_to_dict_list(df)

    assert records == [
        {"library_id": "7", "library_number": "LIB007", "concentration": 3.2, "volume": None}
    ]


def test_load_libraries(library_csv):
    """load_libraries should return pending libraries from an aliased sheet."""
    libraries = load_libraries(library_csv)

    assert [lib.library_id for lib in libraries] == ["1", "2", "3"]
    assert libraries[0].library_number == "LIB001"
    assert libraries[0].concentration == 15.5
    assert libraries[0].priority == Priority.HIGH
    assert libraries[1].priority == Priority.MEDIUM
    assert all(lib.status == LibraryStatus.PENDING for lib in libraries)


def test_load_libraries_invalid_sheet(tmp_path):
    """A sheet that fails validation should raise ValueError with the report."""
    path = tmp_path / "bad.csv"
    path.write_text("Library ID,Library Number,Concentration (nM),Volume (µl)\n1,LIB001,-2,10\n1,LIB002,5,10\n")

    with pytest.raises(ValueError) as exc_info:
        load_libraries(path)

    message = str(exc_info.value)
    assert "Library sheet is invalid" in message
    assert "Value must be > 0" in message
    assert "Duplicate Library ID found: '1'" in message


# ============================================================================
# Tabular View Tests
# ============================================================================


def test_steps_to_dataframe(batch):
    df = steps_to_dataframe(batch)

    assert list(df.columns) == OUTPUT_STEP_COLUMNS
    assert list(df["Step ID"]) == ["step1", "step2"]
    assert list(df["Status"]) == ["running", "pending"]
    assert df.loc[0, "Start Time"] == T0


def test_plate_to_dataframe(plate):
    df = plate_to_dataframe(plate)

    assert list(df.columns) == OUTPUT_WELL_COLUMNS
    assert len(df) == 96
    assert df.loc[0, "Position"] == "A1"
    assert df.loc[0, "Status"] == "processing"
    assert df.loc[95, "Position"] == "H12"


def test_plate_to_grid(plate):
    """plate_to_grid should lay the plate out as 8 rows by 12 columns."""
    grid = plate_to_grid(plate)

    assert grid.shape == (8, 12)
    assert list(grid.index) == list("ABCDEFGH")
    assert list(grid.columns) == list(range(1, 13))
    assert grid.loc["A", 1] == "processing"
    assert grid.loc["A", 2] == "empty"
    assert plate_to_grid(plate, value="sample_id").loc["A", 1] == "S001"


def test_ratios_to_dataframe(task):
    df = ratios_to_dataframe(task.pooling_ratios)

    assert list(df.columns) == OUTPUT_RATIO_COLUMNS
    assert len(df) == 3
    assert df["Target Ratio (%)"].sum() == pytest.approx(100.0)


# ============================================================================
# Excel Export Tests
# ============================================================================


def test_export_pooling_plan_to_bytes(task):
    """Exporting without a path should return workbook bytes."""
    data = export_pooling_plan_to_excel(task)

    assert isinstance(data, bytes)
    sheets = pd.read_excel(BytesIO(data), sheet_name=None)
    assert list(sheets) == ["PoolingRatios", "Libraries", "Metadata"]
    assert len(sheets["PoolingRatios"]) == 3
    metadata = dict(zip(sheets["Metadata"]["Parameter"], sheets["Metadata"]["Value"]))
    assert metadata["Pool Code"] == "POOL001"
    assert metadata["App Name"] == "Batch Engine"


def test_export_batch_report_to_path(tmp_path, batch, plate):
    """Exporting with a path should write the file and return None."""
    output = tmp_path / "report.xlsx"

    result = export_batch_report_to_excel(batch, plate, output)

    assert result is None
    assert output.exists()
    sheets = pd.read_excel(output, sheet_name=None)
    assert list(sheets) == ["Steps", "PlateLayout", "PlateGrid", "Metadata"]
    assert len(sheets["PlateLayout"]) == 96
    assert list(sheets["PlateGrid"]["Row"]) == list("ABCDEFGH")


def test_export_batch_report_without_plate(batch):
    sheets = pd.read_excel(BytesIO(export_batch_report_to_excel(batch)), sheet_name=None)

    assert list(sheets) == ["Steps", "Metadata"]


def test_generate_export_filename():
    name = generate_export_filename("batch_report")

    assert name.startswith("batch_report_")
    assert name.endswith(".xlsx")
