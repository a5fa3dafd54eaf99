"""
Batch lifecycle functions.

This module covers everything around the step state machine:
- Creating a batch from protocol step templates
- Annotating steps (notes, operator, parameters)
- Recording quality checkpoints
- Cancelling and archiving batches
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from batch_engine.exceptions import InvalidTransition, StepNotFound
from batch_engine.models import (
    BatchStatus,
    ExperimentBatch,
    ExperimentStep,
    QualityCheck,
    QualityCheckStatus,
    StepStatus,
)
from batch_engine.steps import ensure_not_archived, mark_failed

logger = logging.getLogger(__name__)


class StepTemplate(BaseModel):
    """Protocol template entry used to create a step."""

    step_name: str = Field(..., min_length=1)
    estimated_duration: int = Field(0, ge=0, description="Estimated duration in minutes")
    requirements: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


# ============================================================================
# Batch Creation
# ============================================================================


def create_batch(
    batch_code: str,
    batch_name: str,
    templates: Sequence[StepTemplate],
    operator: str | None = None,
    scheduled_start: datetime | None = None,
    notes: str = "",
    quality_check_points: Iterable[str] = (),
) -> ExperimentBatch:
    """
    Create a batch with one pending step per template.

    Steps are numbered step1..stepN in template order. If a start time is
    scheduled, the estimated end is the start plus the sum of the estimated
    step durations.

    Args:
        batch_code: Unique batch code
        batch_name: Display name
        templates: Protocol steps in execution order
        operator: Operator responsible for the batch
        scheduled_start: Planned start time (optional)
        notes: Free-text batch notes
        quality_check_points: Names of quality checkpoints to create as pending

    Returns:
        New ExperimentBatch with all steps pending
    """
    steps = tuple(
        ExperimentStep(
            step_id=f"step{order}",
            step_name=template.step_name,
            step_order=order,
            estimated_duration=template.estimated_duration,
            requirements=list(template.requirements),
            parameters=dict(template.parameters),
        )
        for order, template in enumerate(templates, start=1)
    )

    checks = tuple(
        QualityCheck(check_id=f"qc{i}", check_point=point)
        for i, point in enumerate(quality_check_points, start=1)
    )

    estimated_end = None
    if scheduled_start is not None:
        total_minutes = sum(template.estimated_duration for template in templates)
        estimated_end = scheduled_start + timedelta(minutes=total_minutes)

    batch = ExperimentBatch(
        batch_code=batch_code,
        batch_name=batch_name,
        steps=steps,
        operator=operator,
        scheduled_start=scheduled_start,
        estimated_end=estimated_end,
        notes=notes,
        quality_checks=checks,
    )

    logger.info("Created batch %s with %d steps", batch_code, len(steps))
    return batch


# ============================================================================
# Annotation and Quality Checks
# ============================================================================


def annotate_step(
    batch: ExperimentBatch,
    step_id: str,
    notes: str | None = None,
    operator: str | None = None,
    parameters: dict[str, Any] | None = None,
) -> ExperimentBatch:
    """
    Update the free-text fields of a step without changing its status.

    Parameters are merged into the existing map; the engine does not
    interpret them.

    Raises:
        StepNotFound: If the batch has no such step
        InvalidTransition: If the batch is archived
    """
    index = batch.step_position(step_id)
    if index is None:
        raise StepNotFound(step_id)
    ensure_not_archived(batch, "annotate")

    step = batch.steps[index]
    update: dict[str, Any] = {}
    if notes is not None:
        update["notes"] = notes
    if operator is not None:
        update["operator"] = operator
    if parameters is not None:
        update["parameters"] = {**step.parameters, **parameters}

    steps = batch.steps[:index] + (step.model_copy(update=update),) + batch.steps[index + 1 :]
    return batch.model_copy(update={"steps": steps})


def record_quality_check(
    batch: ExperimentBatch,
    check_id: str,
    passed: bool,
    operator: str | None = None,
    result: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> ExperimentBatch:
    """
    Record the outcome of a pending quality checkpoint.

    Raises:
        InvalidTransition: If the checkpoint is unknown or already recorded, or the batch is archived
    """
    now = now or datetime.now()
    ensure_not_archived(batch, "record quality check on")

    for index, check in enumerate(batch.quality_checks):
        if check.check_id == check_id:
            break
    else:
        raise InvalidTransition(check_id, "unknown", "record")

    if check.status != QualityCheckStatus.PENDING:
        logger.warning("Quality check %s of batch %s already recorded", check_id, batch.batch_code)
        raise InvalidTransition(check_id, check.status.value, "record")

    recorded = check.model_copy(
        update={
            "status": QualityCheckStatus.PASSED if passed else QualityCheckStatus.FAILED,
            "check_time": now,
            "operator": operator,
            "result": result,
            "notes": notes,
        }
    )
    checks = batch.quality_checks[:index] + (recorded,) + batch.quality_checks[index + 1 :]
    return batch.model_copy(update={"quality_checks": checks})


def pending_quality_checks(batch: ExperimentBatch) -> list[QualityCheck]:
    return [check for check in batch.quality_checks if check.status == QualityCheckStatus.PENDING]


# ============================================================================
# Cancellation and Archiving
# ============================================================================


def cancel_batch(
    batch: ExperimentBatch,
    reason: str | None = None,
    now: datetime | None = None,
) -> ExperimentBatch:
    """
    Cancel a batch that still has work left.

    The current step (running, or the first pending one) is marked failed and
    every other pending step is skipped, so the derived status becomes
    ``failed``.

    Raises:
        InvalidTransition: If every step is already terminal or the batch is archived
    """
    now = now or datetime.now()

    ensure_not_archived(batch, "cancel")

    current = batch.current_step
    if current is None:
        raise InvalidTransition(batch.batch_code, batch.status.value, "cancel")

    steps = []
    for step in batch.steps:
        if step.step_id == current.step_id:
            steps.append(mark_failed(step, reason, now))
        elif step.status == StepStatus.PENDING:
            steps.append(step.model_copy(update={"status": StepStatus.SKIPPED}))
        else:
            steps.append(step)

    cancelled = batch.model_copy(
        update={"steps": tuple(steps), "cancelled_at": now, "actual_end": now}
    )
    logger.info("Cancelled batch %s at step %s", batch.batch_code, current.step_id)
    return cancelled


def archive_batch(batch: ExperimentBatch, now: datetime | None = None) -> ExperimentBatch:
    """
    Archive a finished batch. Archived batches are kept but reject transitions.

    Raises:
        InvalidTransition: If the batch is not completed/failed or already archived
    """
    now = now or datetime.now()

    if batch.is_archived:
        raise InvalidTransition(batch.batch_code, "archived", "archive")
    if batch.status not in (BatchStatus.COMPLETED, BatchStatus.FAILED):
        raise InvalidTransition(batch.batch_code, batch.status.value, "archive")

    logger.info("Archived batch %s (%s)", batch.batch_code, batch.status.value)
    return batch.model_copy(update={"archived_at": now})

