"""
Unit tests for batch lifecycle functions.

Tests batch creation from step templates, step annotation, quality
checkpoints, cancellation and archiving.
"""

from datetime import datetime, timedelta

import pytest

from batch_engine.batch import (
    StepTemplate,
    annotate_step,
    archive_batch,
    cancel_batch,
    create_batch,
    pending_quality_checks,
    record_quality_check,
)
from batch_engine.exceptions import InvalidTransition, StepNotFound
from batch_engine.models import BatchStatus, QualityCheckStatus, StepStatus
from batch_engine.steps import complete_step, fail_step, start_step

T0 = datetime(2024, 1, 20, 9, 0, 0)

TEMPLATES = [
    StepTemplate(step_name="Sample loading", estimated_duration=30, requirements=["Label tubes"]),
    StepTemplate(
        step_name="Cell lysis",
        estimated_duration=120,
        parameters={"temperature": 56, "speed": 1400},
    ),
    StepTemplate(step_name="DNA extraction", estimated_duration=90),
    StepTemplate(step_name="Quality check", estimated_duration=45),
]


@pytest.fixture
def batch():
    return create_batch(
        "BATCH_20240120_001",
        "Environmental DNA extraction",
        TEMPLATES,
        operator="Operator A",
        scheduled_start=T0,
        quality_check_points=["DNA concentration", "Purity ratio"],
    )


# ============================================================================
# create_batch Tests
# ============================================================================


def test_create_batch_steps(batch):
    """create_batch should create one pending step per template."""
    assert [s.step_id for s in batch.steps] == ["step1", "step2", "step3", "step4"]
    assert [s.step_order for s in batch.steps] == [1, 2, 3, 4]
    assert all(s.status == StepStatus.PENDING for s in batch.steps)
    assert batch.steps[0].requirements == ["Label tubes"]
    assert batch.steps[1].parameters == {"temperature": 56, "speed": 1400}
    assert batch.progress == 0
    assert batch.status == BatchStatus.PENDING


def test_create_batch_estimated_end(batch):
    """estimated_end should be the start plus the sum of estimates."""
    assert batch.estimated_end == T0 + timedelta(minutes=285)


def test_create_batch_without_schedule():
    batch = create_batch("B2", "Unscheduled", TEMPLATES[:1])

    assert batch.estimated_end is None


def test_create_batch_quality_checks(batch):
    assert [c.check_id for c in batch.quality_checks] == ["qc1", "qc2"]
    assert len(pending_quality_checks(batch)) == 2


# ============================================================================
# annotate_step Tests
# ============================================================================


def test_annotate_step_merges_parameters(batch):
    """annotate_step should set notes and merge parameters without touching status."""
    updated = annotate_step(batch, "step2", notes="Extended incubation", parameters={"temperature": 60})
    step = updated.get_step("step2")

    assert step.notes == "Extended incubation"
    assert step.parameters == {"temperature": 60, "speed": 1400}
    assert step.status == StepStatus.PENDING
    assert batch.get_step("step2").parameters["temperature"] == 56


def test_annotate_unknown_step(batch):
    with pytest.raises(StepNotFound):
        annotate_step(batch, "step9", notes="x")


# ============================================================================
# Quality Check Tests
# ============================================================================


def test_record_quality_check(batch):
    """Recording a checkpoint should set its outcome and time."""
    updated = record_quality_check(
        batch, "qc1", passed=False, operator="Operator B", result="4.2 ng/µl", now=T0
    )
    check = updated.quality_checks[0]

    assert check.status == QualityCheckStatus.FAILED
    assert check.check_time == T0
    assert check.result == "4.2 ng/µl"
    assert [c.check_id for c in pending_quality_checks(updated)] == ["qc2"]


def test_record_quality_check_twice(batch):
    """A checkpoint can only be recorded once."""
    batch = record_quality_check(batch, "qc1", passed=True, now=T0)

    with pytest.raises(InvalidTransition, match="while it is passed"):
        record_quality_check(batch, "qc1", passed=False, now=T0)


def test_record_unknown_quality_check(batch):
    with pytest.raises(InvalidTransition):
        record_quality_check(batch, "qc9", passed=True)


# ============================================================================
# cancel_batch Tests
# ============================================================================


def test_cancel_running_batch(batch):
    """Cancelling should fail the running step and skip the pending ones."""
    batch = start_step(batch, "step1", now=T0)
    batch = complete_step(batch, "step1", now=T0 + timedelta(minutes=30))
    batch = start_step(batch, "step2", now=T0 + timedelta(minutes=30))

    cancelled = cancel_batch(batch, reason="Reagent contamination", now=T0 + timedelta(hours=1))

    statuses = [s.status for s in cancelled.steps]
    assert statuses == [StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.SKIPPED]
    assert cancelled.get_step("step2").notes == "Reagent contamination"
    assert cancelled.status == BatchStatus.FAILED
    assert cancelled.cancelled_at == T0 + timedelta(hours=1)
    assert cancelled.actual_end == T0 + timedelta(hours=1)
    assert cancelled.progress == 50


def test_cancel_pending_batch(batch):
    """Cancelling an unstarted batch should fail its first step."""
    cancelled = cancel_batch(batch, now=T0)

    assert cancelled.steps[0].status == StepStatus.FAILED
    assert all(s.status == StepStatus.SKIPPED for s in cancelled.steps[1:])
    assert cancelled.status == BatchStatus.FAILED


def test_cancel_finished_batch(batch):
    """A batch with no work left cannot be cancelled."""
    batch = cancel_batch(batch, now=T0)

    with pytest.raises(InvalidTransition):
        cancel_batch(batch, now=T0)


# ============================================================================
# archive_batch Tests
# ============================================================================


def test_archive_failed_batch(batch):
    archived = archive_batch(cancel_batch(batch, now=T0), now=T0 + timedelta(days=1))

    assert archived.is_archived
    assert archived.archived_at == T0 + timedelta(days=1)


def test_archive_active_batch(batch):
    """Only completed or failed batches can be archived."""
    with pytest.raises(InvalidTransition, match="while it is pending"):
        archive_batch(batch)


def test_archive_twice(batch):
    archived = archive_batch(cancel_batch(batch, now=T0), now=T0)

    with pytest.raises(InvalidTransition, match="archived"):
        archive_batch(archived, now=T0)


def test_cancel_archived_batch(batch):
    archived = archive_batch(cancel_batch(batch, now=T0), now=T0)

    with pytest.raises(InvalidTransition):
        cancel_batch(archived)


def test_cancel_records_duration_of_running_step(batch):
    """A running step failed by cancellation should get the same duration as fail_step."""
    batch = start_step(batch, "step1", now=T0)

    cancelled = cancel_batch(batch, now=T0 + timedelta(minutes=40))
    failed = fail_step(batch, "step1", now=T0 + timedelta(minutes=40))

    assert cancelled.get_step("step1").actual_duration == 40
    assert cancelled.get_step("step1") == failed.get_step("step1")


def test_cancel_pending_step_has_no_duration(batch):
    cancelled = cancel_batch(batch, now=T0)

    assert cancelled.get_step("step1").actual_duration is None
    assert cancelled.get_step("step1").end_time == T0


def test_archived_batch_rejects_annotation(batch):
    """Archived batches should reject step annotation and quality check records."""
    archived = archive_batch(cancel_batch(batch, now=T0), now=T0)

    with pytest.raises(InvalidTransition, match="archived"):
        annotate_step(archived, "step1", notes="late note")
    with pytest.raises(InvalidTransition, match="archived"):
        record_quality_check(archived, "qc1", passed=True, now=T0)
