"""
Validation logic for Batch Engine.

This module produces non-blocking reports (ValidationResult) for:
- Library sheets (column presence, row values, uniqueness)
- Pooling plans (libraries below target, insufficient or unpipettable volume)
- Batches (step invariants, duration overruns, failed quality checks)
- Plates (failed and contaminated wells)
"""

import pandas as pd

from batch_engine.config import (
    DURATION_OVERRUN_FACTOR,
    ERROR_DUPLICATE_VALUE,
    ERROR_MISSING_COLUMN,
    MIN_PIPETTE_VOLUME_UL,
    REQUIRED_COLUMNS,
    WARN_BELOW_MIN_PIPETTE,
    WARN_DURATION_OVERRUN,
    WARN_LOW_CONCENTRATION,
    WARN_LOW_LIBRARY_CONCENTRATION_NM,
    WARN_WELL_PROBLEM,
)
from batch_engine.models import (
    ExperimentBatch,
    PlateLayout,
    PoolingTask,
    QualityCheckStatus,
    StepStatus,
    ValidationResult,
    WellStatus,
)


# ============================================================================
# Library Sheet Validation
# ============================================================================


def validate_columns(df: pd.DataFrame) -> list[str]:
    """
    Validate that all required columns are present.

    Args:
        df: DataFrame with normalized column names

    Returns:
        List of error messages (empty if all columns present)
    """
    errors = []
    df_cols_lower = [str(col).lower() for col in df.columns]

    for req_col in REQUIRED_COLUMNS:
        if req_col not in df.columns and req_col.lower() not in df_cols_lower:
            errors.append(ERROR_MISSING_COLUMN.format(column=req_col))

    return errors


def _check_positive(
    row: pd.Series,
    row_num: int,
    column: str,
    errors: list[str],
    allow_zero: bool = False,
) -> float | None:
    """Parse a numeric cell, appending an error if it is missing or out of range."""
    val = row[column]
    if pd.isna(val):
        errors.append(f"Row {row_num}, {column}: Value cannot be empty")
        return None

    try:
        number = float(val)
    except (ValueError, TypeError):
        errors.append(f"Row {row_num}, {column}: Cannot parse as number, got '{val}'")
        return None

    if number < 0 or (number == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        errors.append(f"Row {row_num}, {column}: Value must be {bound}, got {number}")
        return None

    return number


def validate_library_rows(df: pd.DataFrame) -> tuple[list[str], list[str]]:
    """
    Validate values and basic constraints for each library row.

    Args:
        df: DataFrame with normalized column names

    Returns:
        Tuple of (errors, warnings)
    """
    errors = []
    warnings = []

    for idx, row in df.iterrows():
        row_num = idx + 1

        for column in ("Library ID", "Library Number"):
            if column in df.columns:
                val = row[column]
                if pd.isna(val) or str(val).strip() == "":
                    errors.append(f"Row {row_num}, {column}: Value cannot be empty")

        if "Concentration (nM)" in df.columns:
            conc = _check_positive(row, row_num, "Concentration (nM)", errors)
            if conc is not None and conc < WARN_LOW_LIBRARY_CONCENTRATION_NM:
                warnings.append(WARN_LOW_CONCENTRATION.format(library=f"Row {row_num}", value=conc))

        if "Volume (µl)" in df.columns:
            _check_positive(row, row_num, "Volume (µl)", errors, allow_zero=True)

        if "Insert Size (bp)" in df.columns and not pd.isna(row["Insert Size (bp)"]):
            _check_positive(row, row_num, "Insert Size (bp)", errors)

    return errors, warnings


def validate_uniqueness(df: pd.DataFrame) -> list[str]:
    """
    Check for duplicate values in columns that must be unique.

    Returns:
        List of error messages for duplicates
    """
    errors = []

    for column in ("Library ID", "Library Number"):
        if column not in df.columns:
            continue
        values = df[column].dropna().astype(str)
        for dup in values[values.duplicated()].unique():
            errors.append(ERROR_DUPLICATE_VALUE.format(column=column, value=dup))

    return errors


def run_all_validations(df: pd.DataFrame) -> ValidationResult:
    """
    Run all validation checks on a library sheet.

    Args:
        df: DataFrame with normalized column names

    Returns:
        ValidationResult with errors, warnings, and validity status
    """
    col_errors = validate_columns(df)
    if col_errors:
        return ValidationResult(is_valid=False, errors=col_errors)

    row_errors, row_warnings = validate_library_rows(df)
    unique_errors = validate_uniqueness(df)
    all_errors = row_errors + unique_errors

    return ValidationResult(
        is_valid=len(all_errors) == 0,
        errors=all_errors,
        warnings=row_warnings,
        summary={"num_libraries": len(df)},
    )


# ============================================================================
# Pooling Plan Validation
# ============================================================================


def validate_pooling_plan(
    task: PoolingTask,
    min_volume_ul: float = MIN_PIPETTE_VOLUME_UL,
) -> ValidationResult:
    """
    Review the computed ratios of a pooling task.

    Ratio flags (below target concentration, insufficient volume) become
    warnings, as do volumes below the minimum pipettable volume. A task
    without ratios is an error.

    Args:
        task: Pooling task with computed ratios
        min_volume_ul: Minimum pipettable volume in µl

    Returns:
        ValidationResult with summary of ratio totals
    """
    result = ValidationResult(is_valid=True)

    if not task.pooling_ratios:
        result.add_error(f"Pool {task.pool_code} has no computed ratios")
        return result

    for ratio in task.pooling_ratios:
        for flag in ratio.flags:
            result.add_warning(f"{ratio.library_number}: {flag}")
        if ratio.required_volume < min_volume_ul:
            result.add_warning(
                WARN_BELOW_MIN_PIPETTE.format(
                    library=ratio.library_number,
                    volume=ratio.required_volume,
                    min_vol=min_volume_ul,
                )
            )

    for library in task.libraries:
        if library.concentration < WARN_LOW_LIBRARY_CONCENTRATION_NM:
            result.add_warning(
                WARN_LOW_CONCENTRATION.format(library=library.library_number, value=library.concentration)
            )

    result.summary = {
        "pool_code": task.pool_code,
        "num_libraries": len(task.pooling_ratios),
        "total_ratio": round(sum(r.target_ratio for r in task.pooling_ratios), 6),
        "total_volume_ul": round(sum(r.required_volume for r in task.pooling_ratios), 6),
        "below_target": sum(1 for r in task.pooling_ratios if r.below_target),
    }
    return result


# ============================================================================
# Batch and Plate Validation
# ============================================================================


def validate_batch(batch: ExperimentBatch) -> ValidationResult:
    """
    Check a batch for invariant violations and operational warnings.

    Errors: more than one running step.
    Warnings: failed steps, steps that overran their estimate by more than
    DURATION_OVERRUN_FACTOR, failed quality checks.
    """
    result = ValidationResult(is_valid=True)

    running = [step.step_id for step in batch.steps if step.status == StepStatus.RUNNING]
    if len(running) > 1:
        result.add_error(f"More than one running step: {', '.join(running)}")

    for step in batch.steps:
        if step.status == StepStatus.FAILED:
            result.add_warning(f"Step '{step.step_name}' failed")
        if (
            step.actual_duration is not None
            and step.estimated_duration > 0
            and step.actual_duration > step.estimated_duration * DURATION_OVERRUN_FACTOR
        ):
            result.add_warning(
                WARN_DURATION_OVERRUN.format(
                    step=step.step_name,
                    actual=step.actual_duration,
                    estimated=step.estimated_duration,
                )
            )

    for check in batch.quality_checks:
        if check.status == QualityCheckStatus.FAILED:
            result.add_warning(f"Quality check '{check.check_point}' failed")

    result.summary = {
        "batch_code": batch.batch_code,
        "status": batch.status.value,
        "progress": batch.progress,
        "total_steps": len(batch.steps),
    }
    return result


def validate_plate(plate: PlateLayout) -> ValidationResult:
    """Warn about failed and contaminated wells and summarize well counts."""
    result = ValidationResult(is_valid=True)

    for well in plate.wells:
        if well.status in (WellStatus.FAILED, WellStatus.CONTAMINATED):
            result.add_warning(
                WARN_WELL_PROBLEM.format(
                    position=well.position, sample=well.sample_id, status=well.status.value
                )
            )

    result.summary = {status.value: plate.status_count(status) for status in WellStatus}
    return result
