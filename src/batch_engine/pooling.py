"""
Pooling task lifecycle.

Libraries wait in a pending pool until they are assigned to exactly one
pooling task. A task moves pending -> in_progress -> completed | failed:

1. create_pooling_task: take the selected libraries out of the pending pool
2. calculate_task_ratios: compute volumes and dilution factors
3. start_pooling / complete_pooling / fail_pooling
4. release_libraries: hand libraries of an unstarted or failed task back
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from batch_engine.compute import calculate_ratios, is_positive_finite
from batch_engine.exceptions import (
    InvalidTarget,
    InvalidTransition,
    LibraryNotAvailable,
    NoLibrariesSelected,
)
from batch_engine.models import (
    Library,
    LibraryStatus,
    PoolingQCResult,
    PoolingStatus,
    PoolingTask,
)

logger = logging.getLogger(__name__)


def _reject(task: PoolingTask, action: str) -> InvalidTransition:
    logger.warning("Rejected %s of pool %s (status: %s)", action, task.pool_code, task.status.value)
    return InvalidTransition(task.pool_code, task.status.value, action)


# ============================================================================
# Task Creation
# ============================================================================


def create_pooling_task(
    pool_code: str,
    pool_name: str,
    target_concentration: float,
    total_volume: float,
    pending_libraries: Sequence[Library],
    selected_ids: Iterable[str],
    created_by: str | None = None,
    now: datetime | None = None,
) -> tuple[PoolingTask, list[Library]]:
    """
    Create a pooling task from libraries in the pending pool.

    Args:
        pool_code: Unique pool code
        pool_name: Display name
        target_concentration: Target pooled concentration in nM
        total_volume: Target pool volume in µl
        pending_libraries: Current pending pool
        selected_ids: Library ids to assign to the new task, in pool order
        created_by: Operator creating the task
        now: Creation time (default: current time)

    Returns:
        Tuple of (task, remaining_pending_libraries)

    Raises:
        NoLibrariesSelected: If no library id is selected
        LibraryNotAvailable: If a selected id is not in the pending pool
        InvalidTarget: If target concentration or volume is not > 0
    """
    selected = list(dict.fromkeys(selected_ids))
    if not selected:
        raise NoLibrariesSelected()
    if not is_positive_finite(target_concentration):
        raise InvalidTarget("target_concentration", target_concentration)
    if not is_positive_finite(total_volume):
        raise InvalidTarget("total_volume", total_volume)

    available = {
        lib.library_id: lib
        for lib in pending_libraries
        if lib.status == LibraryStatus.PENDING and lib.pool_code is None
    }
    for library_id in selected:
        if library_id not in available:
            raise LibraryNotAvailable(library_id)

    members = tuple(
        available[library_id].model_copy(
            update={"status": LibraryStatus.ASSIGNED, "pool_code": pool_code}
        )
        for library_id in selected
    )
    chosen = set(selected)
    remaining = [lib for lib in pending_libraries if lib.library_id not in chosen]

    task = PoolingTask(
        pool_code=pool_code,
        pool_name=pool_name,
        created_by=created_by,
        created_at=now or datetime.now(),
        target_concentration=target_concentration,
        total_volume=total_volume,
        libraries=members,
    )

    logger.info("Created pool %s with %d libraries", pool_code, len(members))
    return task, remaining


# ============================================================================
# Ratio Calculation
# ============================================================================


def calculate_task_ratios(task: PoolingTask) -> PoolingTask:
    """
    Compute pooling ratios for a task, replacing any previous result.

    Raises:
        NoLibrariesSelected: If the task has no libraries
        InvalidTransition: If the task is already finished
    """
    if task.status in (PoolingStatus.COMPLETED, PoolingStatus.FAILED):
        raise _reject(task, "calculate ratios for")

    ratios = calculate_ratios(task.target_concentration, task.total_volume, task.libraries)
    flagged = sum(1 for ratio in ratios if ratio.flags)
    if flagged:
        logger.warning("Pool %s: %d of %d libraries flagged", task.pool_code, flagged, len(ratios))

    return task.model_copy(update={"pooling_ratios": tuple(ratios)})


# ============================================================================
# Task Transitions
# ============================================================================


def start_pooling(task: PoolingTask) -> PoolingTask:
    """
    Move a pending task with computed ratios to in_progress.

    Raises:
        InvalidTransition: If the task is not pending or has no ratios yet
    """
    if task.status != PoolingStatus.PENDING:
        raise _reject(task, "start")
    if not task.pooling_ratios:
        logger.warning("Pool %s has no ratios yet", task.pool_code)
        raise InvalidTransition(task.pool_code, "without ratios", "start")

    return task.model_copy(update={"status": PoolingStatus.IN_PROGRESS})


def complete_pooling(
    task: PoolingTask,
    final_concentration: float,
    final_volume: float,
    quality_score: float,
) -> PoolingTask:
    """
    Finish an in-progress task with its QC measurements.

    Member libraries become ``pooled``.

    Raises:
        InvalidTransition: If the task is not in progress
        ValidationError: If the QC values are out of range
    """
    if task.status != PoolingStatus.IN_PROGRESS:
        raise _reject(task, "complete")

    qc_result = PoolingQCResult(
        final_concentration=final_concentration,
        final_volume=final_volume,
        quality_score=quality_score,
    )
    libraries = tuple(
        lib.model_copy(update={"status": LibraryStatus.POOLED}) for lib in task.libraries
    )

    logger.info(
        "Completed pool %s: %.2f nM, %.1f µl, score %.0f",
        task.pool_code,
        final_concentration,
        final_volume,
        quality_score,
    )
    return task.model_copy(
        update={"status": PoolingStatus.COMPLETED, "qc_result": qc_result, "libraries": libraries}
    )


def fail_pooling(task: PoolingTask) -> PoolingTask:
    """
    Mark a pending or in-progress task as failed.

    Raises:
        InvalidTransition: If the task is already completed or failed
    """
    if task.status not in (PoolingStatus.PENDING, PoolingStatus.IN_PROGRESS):
        raise _reject(task, "fail")

    logger.info("Pool %s failed", task.pool_code)
    return task.model_copy(update={"status": PoolingStatus.FAILED})


def release_libraries(task: PoolingTask) -> tuple[PoolingTask, list[Library]]:
    """
    Return the libraries of a pending or failed task to the pending pool.

    Returns:
        Tuple of (task without libraries or ratios, released libraries)

    Raises:
        InvalidTransition: If the task is in progress or completed
    """
    if task.status not in (PoolingStatus.PENDING, PoolingStatus.FAILED):
        raise _reject(task, "release libraries of")

    released = [
        lib.model_copy(update={"status": LibraryStatus.PENDING, "pool_code": None})
        for lib in task.libraries
    ]
    emptied = task.model_copy(update={"libraries": (), "pooling_ratios": ()})

    logger.info("Released %d libraries from pool %s", len(released), task.pool_code)
    return emptied, released
