"""
Progress aggregation for experiment batches.

Every function here is a pure function of a step sequence ordered by
``step_order``: calling it twice on the same steps gives the same result, and
nothing is cached between calls.

Rules:
- current step: first running step, else first pending step, else N
- progress: round(100 * completed / counted), skipped steps are not counted,
  failed steps count in the denominator only
- status: failed > completed > in_progress > pending
"""

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from batch_engine.models import (
    BatchProgress,
    BatchStatus,
    ExperimentStep,
    StepStatus,
)


def current_step_index(steps: Sequence[ExperimentStep]) -> int:
    """
    Locate the step the batch is currently on.

    Args:
        steps: Steps ordered by step_order

    Returns:
        Index of the first running step; if none is running, the index of the
        first pending step; if every step is terminal, len(steps)
    """
    for index, step in enumerate(steps):
        if step.status == StepStatus.RUNNING:
            return index

    for index, step in enumerate(steps):
        if step.status == StepStatus.PENDING:
            return index

    return len(steps)


def count_steps(steps: Sequence[ExperimentStep]) -> tuple[int, int]:
    """
    Count completed steps and steps that take part in progress weighting.

    Returns:
        Tuple of (completed_count, counted_count), where counted excludes
        skipped steps
    """
    completed = sum(1 for step in steps if step.status == StepStatus.COMPLETED)
    counted = sum(1 for step in steps if step.status != StepStatus.SKIPPED)
    return completed, counted


def compute_progress(steps: Sequence[ExperimentStep]) -> int:
    """
    Calculate batch progress as an integer percentage.

    Formula: round(100 × completed / counted), rounding halves up.
    A batch whose steps are all skipped (or that has no steps) is at 0.
    """
    completed, counted = count_steps(steps)
    if counted == 0:
        return 0

    # Decimal keeps 12.5 -> 13 instead of banker's rounding to 12
    ratio = Decimal(100 * completed) / Decimal(counted)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def derive_batch_status(steps: Sequence[ExperimentStep]) -> BatchStatus:
    """
    Derive the overall batch status from the step statuses.

    Precedence:
        1. failed if any step failed
        2. completed if every non-skipped step is completed
        3. in_progress if any step is running
        4. pending otherwise
    """
    if not steps:
        return BatchStatus.PENDING

    statuses = [step.status for step in steps]

    if StepStatus.FAILED in statuses:
        return BatchStatus.FAILED

    if all(status in (StepStatus.COMPLETED, StepStatus.SKIPPED) for status in statuses):
        return BatchStatus.COMPLETED

    if StepStatus.RUNNING in statuses:
        return BatchStatus.IN_PROGRESS

    return BatchStatus.PENDING


def summarize_progress(steps: Sequence[ExperimentStep]) -> BatchProgress:
    """
    Compute every derived batch value in one pass.

    Args:
        steps: Steps ordered by step_order

    Returns:
        BatchProgress snapshot
    """
    completed, counted = count_steps(steps)

    return BatchProgress(
        current_step_index=current_step_index(steps),
        progress=compute_progress(steps),
        status=derive_batch_status(steps),
        completed_steps=completed,
        counted_steps=counted,
        total_steps=len(steps),
    )
