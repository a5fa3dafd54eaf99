"""
Unit tests for the pooling task lifecycle.

Tests library assignment from the pending pool, ratio calculation on a task,
task transitions and releasing libraries back to the pool.
"""

from datetime import datetime

import pytest
from pydantic import ValidationError

from batch_engine.exceptions import (
    InvalidTarget,
    InvalidTransition,
    LibraryNotAvailable,
    NoLibrariesSelected,
)
from batch_engine.models import Library, LibraryStatus, PoolingStatus
from batch_engine.pooling import (
    calculate_task_ratios,
    complete_pooling,
    create_pooling_task,
    fail_pooling,
    release_libraries,
    start_pooling,
)

T0 = datetime(2024, 1, 20, 9, 0, 0)


@pytest.fixture
def pending_pool():
    return [
        Library(library_id="1", library_number="LIB001", concentration=15.5, volume=50.0),
        Library(library_id="2", library_number="LIB002", concentration=12.3, volume=45.0),
        Library(library_id="3", library_number="LIB003", concentration=18.7, volume=40.0),
        Library(library_id="4", library_number="LIB004", concentration=8.2, volume=30.0),
    ]


@pytest.fixture
def task(pending_pool):
    task, _ = create_pooling_task(
        "POOL001", "Pool 1", 10.0, 100.0, pending_pool, ["1", "2", "3"], created_by="Operator A", now=T0
    )
    return task


# ============================================================================
# create_pooling_task Tests
# ============================================================================


def test_create_assigns_selected_libraries(pending_pool):
    """Selected libraries should be assigned to the task and leave the pool."""
    task, remaining = create_pooling_task(
        "POOL001", "Pool 1", 10.0, 100.0, pending_pool, ["3", "1"], now=T0
    )

    assert task.status == PoolingStatus.PENDING
    assert task.created_at == T0
    assert [lib.library_id for lib in task.libraries] == ["3", "1"]
    assert all(lib.status == LibraryStatus.ASSIGNED for lib in task.libraries)
    assert all(lib.pool_code == "POOL001" for lib in task.libraries)
    assert [lib.library_id for lib in remaining] == ["2", "4"]
    assert task.pooling_ratios == ()


def test_create_ignores_duplicate_selection(pending_pool):
    """Selecting the same library twice should assign it once."""
    task, _ = create_pooling_task("POOL001", "Pool 1", 10.0, 100.0, pending_pool, ["1", "1", "2"])

    assert task.library_count == 2


def test_create_leaves_input_pool_unchanged(pending_pool):
    create_pooling_task("POOL001", "Pool 1", 10.0, 100.0, pending_pool, ["1"])

    assert pending_pool[0].status == LibraryStatus.PENDING
    assert pending_pool[0].pool_code is None


def test_create_without_selection(pending_pool):
    """An empty selection should raise NoLibrariesSelected."""
    with pytest.raises(NoLibrariesSelected):
        create_pooling_task("POOL001", "Pool 1", 10.0, 100.0, pending_pool, [])


def test_create_unknown_library(pending_pool):
    """Selecting a library outside the pending pool should raise LibraryNotAvailable."""
    with pytest.raises(LibraryNotAvailable) as exc_info:
        create_pooling_task("POOL001", "Pool 1", 10.0, 100.0, pending_pool, ["1", "99"])

    assert exc_info.value.library_id == "99"


def test_library_belongs_to_one_task(pending_pool):
    """A library already assigned to a task cannot join a second one."""
    first, remaining = create_pooling_task("POOL001", "Pool 1", 10.0, 100.0, pending_pool, ["1"])

    with pytest.raises(LibraryNotAvailable):
        create_pooling_task("POOL002", "Pool 2", 10.0, 100.0, remaining + list(first.libraries), ["1"])


@pytest.mark.parametrize(
    "concentration, volume, field",
    [
        (0, 100, "target_concentration"),
        (10, -1, "total_volume"),
        (float("nan"), 100, "target_concentration"),
        (10, float("nan"), "total_volume"),
    ],
)
def test_create_invalid_targets(pending_pool, concentration, volume, field):
    with pytest.raises(InvalidTarget) as exc_info:
        create_pooling_task("POOL001", "Pool 1", concentration, volume, pending_pool, ["1"])

    assert exc_info.value.field == field


# ============================================================================
# calculate_task_ratios Tests
# ============================================================================


def test_calculate_task_ratios(task):
    """Ratios should be computed for every member library."""
    task = calculate_task_ratios(task)

    assert len(task.pooling_ratios) == 3
    assert sum(r.target_ratio for r in task.pooling_ratios) == pytest.approx(100.0)
    assert task.pooling_ratios[0].dilution_factor == pytest.approx(1.55)


def test_recalculate_replaces_previous_ratios(task):
    """Recomputing should replace the ratio list, not append to it."""
    task = calculate_task_ratios(calculate_task_ratios(task))

    assert len(task.pooling_ratios) == 3


def test_calculate_ratios_on_finished_task(task):
    task = fail_pooling(task)

    with pytest.raises(InvalidTransition):
        calculate_task_ratios(task)


# ============================================================================
# Task Transitions
# ============================================================================


def test_full_lifecycle(task):
    """pending -> in_progress -> completed should record QC and pool libraries."""
    task = calculate_task_ratios(task)
    task = start_pooling(task)
    assert task.status == PoolingStatus.IN_PROGRESS

    task = complete_pooling(task, final_concentration=9.8, final_volume=98.5, quality_score=92)

    assert task.status == PoolingStatus.COMPLETED
    assert task.qc_result.final_concentration == 9.8
    assert task.qc_result.quality_score == 92
    assert all(lib.status == LibraryStatus.POOLED for lib in task.libraries)


def test_start_without_ratios(task):
    """Starting before ratios are computed should raise InvalidTransition."""
    with pytest.raises(InvalidTransition, match="without ratios"):
        start_pooling(task)


def test_start_twice(task):
    task = start_pooling(calculate_task_ratios(task))

    with pytest.raises(InvalidTransition):
        start_pooling(task)


def test_complete_pending_task(task):
    """Completing a task that has not started should raise InvalidTransition."""
    with pytest.raises(InvalidTransition, match="Cannot complete 'POOL001' while it is pending"):
        complete_pooling(task, 9.8, 98.5, 92)


def test_complete_invalid_quality_score(task):
    """A quality score outside 0-100 should raise ValidationError."""
    task = start_pooling(calculate_task_ratios(task))

    with pytest.raises(ValidationError):
        complete_pooling(task, 9.8, 98.5, 120)


def test_fail_in_progress_task(task):
    task = fail_pooling(start_pooling(calculate_task_ratios(task)))

    assert task.status == PoolingStatus.FAILED


def test_fail_completed_task(task):
    """A completed task cannot fail."""
    task = complete_pooling(start_pooling(calculate_task_ratios(task)), 9.8, 98.5, 92)

    with pytest.raises(InvalidTransition):
        fail_pooling(task)


# ============================================================================
# release_libraries Tests
# ============================================================================


def test_release_failed_task(task):
    """Libraries of a failed task should return to the pending pool."""
    task = fail_pooling(calculate_task_ratios(task))

    emptied, released = release_libraries(task)

    assert emptied.libraries == ()
    assert emptied.pooling_ratios == ()
    assert [lib.library_id for lib in released] == ["1", "2", "3"]
    assert all(lib.status == LibraryStatus.PENDING for lib in released)
    assert all(lib.pool_code is None for lib in released)


def test_released_libraries_can_be_reassigned(task, pending_pool):
    _, released = release_libraries(task)
    remaining = [lib for lib in pending_pool if lib.library_id == "4"]

    second, _ = create_pooling_task("POOL002", "Pool 2", 10.0, 50.0, remaining + released, ["2", "4"])

    assert second.library_count == 2


def test_release_in_progress_task(task):
    """Libraries of a running task cannot be released."""
    task = start_pooling(calculate_task_ratios(task))

    with pytest.raises(InvalidTransition):
        release_libraries(task)
