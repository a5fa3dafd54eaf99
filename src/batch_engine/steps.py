"""
Step state machine for experiment batches.

Each transition takes a batch and a step id and returns a new batch with the
step updated; progress, current step and batch status are recomputed from the
new step list. A rejected transition raises and leaves the input batch as it
was.

    pending ──start──> running ──complete──> completed
       │  ^               │
       │  └────pause──────┤
       │                  └──fail──> failed
       ├──fail──> failed
       └──skip──> skipped
"""

import logging
from collections.abc import Callable
from datetime import datetime

from batch_engine.exceptions import (
    ConcurrentStepConflict,
    InvalidTransition,
    StepNotFound,
)
from batch_engine.models import (
    BatchStatus,
    ExperimentBatch,
    ExperimentStep,
    StepStatus,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Helpers
# ============================================================================


def _locate(batch: ExperimentBatch, step_id: str) -> tuple[int, ExperimentStep]:
    index = batch.step_position(step_id)
    if index is None:
        logger.warning("Batch %s has no step %s", batch.batch_code, step_id)
        raise StepNotFound(step_id)
    return index, batch.steps[index]


def _reject(batch: ExperimentBatch, step: ExperimentStep, action: str) -> InvalidTransition:
    logger.warning(
        "Rejected %s of step %s in batch %s (status: %s)",
        action,
        step.step_id,
        batch.batch_code,
        step.status.value,
    )
    return InvalidTransition(step.step_id, step.status.value, action)


def ensure_not_archived(batch: ExperimentBatch, action: str) -> None:
    if batch.is_archived:
        logger.warning("Rejected %s on archived batch %s", action, batch.batch_code)
        raise InvalidTransition(batch.batch_code, "archived", action)


def _elapsed_seconds(step: ExperimentStep, end: datetime) -> float:
    """Running time of the step: banked time plus the current segment."""
    elapsed = step.accumulated_seconds
    if step.start_time is not None:
        elapsed += max((end - step.start_time).total_seconds(), 0.0)
    return elapsed


def _to_minutes(seconds: float) -> int:
    """Round a duration in seconds to whole minutes, halves up."""
    return int(seconds / 60 + 0.5)


def mark_failed(step: ExperimentStep, notes: str | None, now: datetime) -> ExperimentStep:
    """
    Return the step as failed at ``now``.

    A running step also gets its ``actual_duration``; a pending one has none.
    """
    update = {
        "status": StepStatus.FAILED,
        "end_time": now,
        "notes": notes if notes is not None else step.notes,
    }
    if step.status == StepStatus.RUNNING:
        update["actual_duration"] = _to_minutes(_elapsed_seconds(step, now))
    return step.model_copy(update=update)


def replace_step(
    batch: ExperimentBatch,
    index: int,
    step: ExperimentStep,
    now: datetime,
) -> ExperimentBatch:
    """
    Return a copy of the batch with the step at ``index`` replaced.

    Sets ``actual_end`` the first time the derived status becomes terminal.
    """
    steps = batch.steps[:index] + (step,) + batch.steps[index + 1 :]
    updated = batch.model_copy(update={"steps": steps})

    if updated.actual_end is None and updated.status in (BatchStatus.COMPLETED, BatchStatus.FAILED):
        updated = updated.model_copy(update={"actual_end": now})

    logger.debug(
        "Batch %s: step %s is %s, progress %d%%, status %s",
        batch.batch_code,
        step.step_id,
        step.status.value,
        updated.progress,
        updated.status.value,
    )
    return updated


# ============================================================================
# Transitions
# ============================================================================


def start_step(
    batch: ExperimentBatch,
    step_id: str,
    operator: str | None = None,
    now: datetime | None = None,
) -> ExperimentBatch:
    """
    Start a pending step.

    Args:
        batch: Current batch
        step_id: Step to start
        operator: Operator starting the step (kept from before if None)
        now: Transition time (default: current time)

    Returns:
        Updated batch with the step running

    Raises:
        StepNotFound: If the batch has no such step
        InvalidTransition: If the step is not pending or the batch is archived
        ConcurrentStepConflict: If another step is already running
    """
    now = now or datetime.now()
    index, step = _locate(batch, step_id)
    ensure_not_archived(batch, "start")

    if step.status != StepStatus.PENDING:
        raise _reject(batch, step, "start")

    running = batch.running_step
    if running is not None:
        logger.warning(
            "Rejected start of step %s in batch %s: %s is running",
            step_id,
            batch.batch_code,
            running.step_id,
        )
        raise ConcurrentStepConflict(step_id, running.step_id)

    started = step.model_copy(
        update={
            "status": StepStatus.RUNNING,
            "start_time": now,
            "operator": operator if operator is not None else step.operator,
        }
    )
    return replace_step(batch, index, started, now)


def complete_step(
    batch: ExperimentBatch,
    step_id: str,
    now: datetime | None = None,
) -> ExperimentBatch:
    """
    Complete a running step.

    ``actual_duration`` is the total time the step spent running, including
    segments before any pause, rounded to whole minutes.

    Raises:
        StepNotFound: If the batch has no such step
        InvalidTransition: If the step is not running or the batch is archived
    """
    now = now or datetime.now()
    index, step = _locate(batch, step_id)
    ensure_not_archived(batch, "complete")

    if step.status != StepStatus.RUNNING:
        raise _reject(batch, step, "complete")

    completed = step.model_copy(
        update={
            "status": StepStatus.COMPLETED,
            "end_time": now,
            "actual_duration": _to_minutes(_elapsed_seconds(step, now)),
        }
    )
    return replace_step(batch, index, completed, now)


def fail_step(
    batch: ExperimentBatch,
    step_id: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> ExperimentBatch:
    """
    Mark a running or pending step as failed.

    Failing a pending step records a pre-empted failure with no duration.
    Failure is terminal for the step.

    Raises:
        StepNotFound: If the batch has no such step
        InvalidTransition: If the step is already terminal or the batch is archived
    """
    now = now or datetime.now()
    index, step = _locate(batch, step_id)
    ensure_not_archived(batch, "fail")

    if step.status not in (StepStatus.RUNNING, StepStatus.PENDING):
        raise _reject(batch, step, "fail")

    return replace_step(batch, index, mark_failed(step, notes, now), now)


def pause_step(
    batch: ExperimentBatch,
    step_id: str,
    now: datetime | None = None,
) -> ExperimentBatch:
    """
    Return a running step to pending.

    The running time so far is banked in ``accumulated_seconds`` and counts
    toward ``actual_duration`` when the step is eventually completed; the time
    spent paused does not. No end time or duration is recorded.

    Raises:
        StepNotFound: If the batch has no such step
        InvalidTransition: If the step is not running or the batch is archived
    """
    now = now or datetime.now()
    index, step = _locate(batch, step_id)
    ensure_not_archived(batch, "pause")

    if step.status != StepStatus.RUNNING:
        raise _reject(batch, step, "pause")

    paused = step.model_copy(
        update={
            "status": StepStatus.PENDING,
            "start_time": None,
            "accumulated_seconds": _elapsed_seconds(step, now),
        }
    )
    return replace_step(batch, index, paused, now)


def skip_step(
    batch: ExperimentBatch,
    step_id: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> ExperimentBatch:
    """
    Skip a pending step.

    Skipped steps are terminal and excluded from progress and duration
    accounting.

    Raises:
        StepNotFound: If the batch has no such step
        InvalidTransition: If the step is not pending or the batch is archived
    """
    now = now or datetime.now()
    index, step = _locate(batch, step_id)
    ensure_not_archived(batch, "skip")

    if step.status != StepStatus.PENDING:
        raise _reject(batch, step, "skip")

    skipped = step.model_copy(
        update={
            "status": StepStatus.SKIPPED,
            "notes": notes if notes is not None else step.notes,
        }
    )
    return replace_step(batch, index, skipped, now)


# ============================================================================
# Dispatch
# ============================================================================


STEP_ACTIONS: dict[str, Callable[..., ExperimentBatch]] = {
    "start": start_step,
    "complete": complete_step,
    "fail": fail_step,
    "pause": pause_step,
    "skip": skip_step,
}


def apply_transition(
    batch: ExperimentBatch,
    step_id: str,
    action: str,
    now: datetime | None = None,
) -> ExperimentBatch:
    """
    Apply a transition by action name (start, complete, fail, pause, skip).

    Raises:
        InvalidTransition: If the action name is unknown
        StepNotFound, ConcurrentStepConflict: As raised by the transition
    """
    handler = STEP_ACTIONS.get(str(action).strip().lower())
    if handler is None:
        raise InvalidTransition(step_id, "any state", action)
    return handler(batch, step_id, now=now)
