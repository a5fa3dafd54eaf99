"""
Data models for Batch Engine using Pydantic.

This module defines the entities tracked by the engine: experiment batches and
their steps, 96-well plate layouts, sequencing libraries and pooling tasks.
Entities are frozen; every mutation in the engine builds a new instance.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    Field,
    PrivateAttr,
    computed_field,
    field_validator,
    model_validator,
)

from batch_engine.config import (
    MAX_QUALITY_SCORE,
    MIN_QUALITY_SCORE,
    PERCENT_TOTAL,
    PLATE_COLS,
    PLATE_ROWS,
    RATIO_SUM_TOLERANCE,
    WELLS_PER_PLATE,
)


# ============================================================================
# Status Enums
# ============================================================================


class StepStatus(str, Enum):
    """Lifecycle status of one protocol step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED})


class BatchStatus(str, Enum):
    """Batch status, always derived from the step statuses."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class WellStatus(str, Enum):
    EMPTY = "empty"
    LOADED = "loaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CONTAMINATED = "contaminated"


# Wells in these states can only return to empty through an explicit clear
FINAL_WELL_STATUSES = frozenset({WellStatus.COMPLETED, WellStatus.FAILED, WellStatus.CONTAMINATED})


class QualityCheckStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class LibraryStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    POOLED = "pooled"
    SEQUENCED = "sequenced"


class PoolingStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ============================================================================
# Experiment Batch Models
# ============================================================================


class ExperimentStep(BaseModel):
    """
    One ordered stage of a batch protocol (e.g. DNA extraction, PCR).

    ``parameters`` is an opaque map assigned by the protocol template; the
    engine stores it but never interprets it.
    """

    step_id: str = Field(..., min_length=1, description="Step identifier, unique within a batch")
    step_name: str = Field(..., min_length=1, description="Display name of the step")
    step_order: int = Field(..., ge=1, description="Position in the protocol (1..N)")
    status: StepStatus = Field(StepStatus.PENDING, description="Lifecycle status")
    estimated_duration: int = Field(0, ge=0, description="Estimated duration in minutes")
    actual_duration: int | None = Field(None, ge=0, description="Measured duration in minutes")
    start_time: datetime | None = Field(None, description="Start of the current running segment")
    end_time: datetime | None = Field(None, description="Time the step became completed/failed")
    accumulated_seconds: float = Field(
        0.0, ge=0, description="Running time banked by earlier pauses"
    )
    operator: str | None = Field(None, description="Operator responsible for the step")
    notes: str | None = Field(None, description="Free-text notes")
    requirements: list[str] = Field(default_factory=list, description="Operator checklist")
    parameters: dict[str, Any] = Field(default_factory=dict, description="Protocol parameters")

    @property
    def is_terminal(self) -> bool:
        """Check if the step can no longer change status."""
        return self.status in TERMINAL_STEP_STATUSES

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "step_id": "step2",
                    "step_name": "Cell lysis",
                    "step_order": 2,
                    "status": "running",
                    "estimated_duration": 120,
                    "start_time": "2024-01-20T10:00:00",
                    "operator": "Operator A",
                    "requirements": ["Add lysis buffer", "Mix samples", "Incubate"],
                    "parameters": {"temperature": 56, "duration": 120, "speed": 1400},
                }
            ]
        },
    }


class QualityCheck(BaseModel):
    """A quality checkpoint recorded against a batch."""

    check_id: str = Field(..., min_length=1)
    check_point: str = Field(..., min_length=1, description="What is being checked")
    status: QualityCheckStatus = QualityCheckStatus.PENDING
    check_time: datetime | None = None
    operator: str | None = None
    result: str | None = None
    notes: str | None = None

    model_config = {"frozen": True}


class BatchProgress(BaseModel):
    """Snapshot of the values derived from a batch's step list."""

    current_step_index: int = Field(..., ge=0, description="Index of the current step, N if past the end")
    progress: int = Field(..., ge=0, le=100, description="Percent of counted steps completed")
    status: BatchStatus = Field(..., description="Derived batch status")
    completed_steps: int = Field(..., ge=0)
    counted_steps: int = Field(..., ge=0, description="Steps that are not skipped")
    total_steps: int = Field(..., ge=0)

    model_config = {"frozen": True}


class ExperimentBatch(BaseModel):
    """
    One execution instance of a multi-step laboratory protocol.

    ``progress``, ``current_step_index`` and ``status`` are computed from the
    steps on every access and can never be set independently.
    """

    batch_code: str = Field(..., min_length=1, description="Unique batch code")
    batch_name: str = Field(..., min_length=1, description="Display name")
    steps: tuple[ExperimentStep, ...] = Field(default=(), description="Steps ordered by step_order")
    operator: str | None = Field(None, description="Operator responsible for the batch")
    scheduled_start: datetime | None = None
    estimated_end: datetime | None = None
    actual_end: datetime | None = None
    cancelled_at: datetime | None = None
    archived_at: datetime | None = None
    notes: str = ""
    quality_checks: tuple[QualityCheck, ...] = ()

    _step_index: dict[str, int] = PrivateAttr(default_factory=dict)

    @field_validator("steps")
    @classmethod
    def validate_step_order(cls, v: tuple[ExperimentStep, ...]) -> tuple[ExperimentStep, ...]:
        """Sort steps by step_order and require orders 1..N with unique ids."""
        ordered = tuple(sorted(v, key=lambda step: step.step_order))
        orders = [step.step_order for step in ordered]
        if orders != list(range(1, len(ordered) + 1)):
            raise ValueError(f"step_order must be 1..{len(ordered)} without gaps, got {orders}")

        ids = [step.step_id for step in ordered]
        if len(set(ids)) != len(ids):
            raise ValueError(f"step_id values must be unique, got {ids}")

        return ordered

    @field_validator("quality_checks")
    @classmethod
    def validate_check_ids(cls, v: tuple[QualityCheck, ...]) -> tuple[QualityCheck, ...]:
        ids = [check.check_id for check in v]
        if len(set(ids)) != len(ids):
            raise ValueError(f"check_id values must be unique, got {ids}")
        return v

    def model_post_init(self, __context: Any) -> None:
        self._step_index = {step.step_id: i for i, step in enumerate(self.steps)}

    def step_position(self, step_id: str) -> int | None:
        """Return the index of a step in ``steps``, or None if unknown."""
        return self._step_index.get(step_id)

    def get_step(self, step_id: str) -> ExperimentStep | None:
        index = self.step_position(step_id)
        return None if index is None else self.steps[index]

    @computed_field
    @property
    def progress(self) -> int:
        return self.snapshot().progress

    @computed_field
    @property
    def current_step_index(self) -> int:
        return self.snapshot().current_step_index

    @computed_field
    @property
    def status(self) -> BatchStatus:
        return self.snapshot().status

    @property
    def current_step(self) -> ExperimentStep | None:
        """The step at current_step_index, or None once every step is terminal."""
        index = self.current_step_index
        return self.steps[index] if index < len(self.steps) else None

    @property
    def running_step(self) -> ExperimentStep | None:
        for step in self.steps:
            if step.status == StepStatus.RUNNING:
                return step
        return None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def snapshot(self) -> BatchProgress:
        """Derive the progress snapshot for the current steps."""
        from batch_engine.progress import summarize_progress

        return summarize_progress(self.steps)

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "batch_code": "BATCH_20240120_001",
                    "batch_name": "Environmental DNA extraction",
                    "operator": "Operator A",
                    "scheduled_start": "2024-01-20T09:00:00",
                    "steps": [
                        {"step_id": "step1", "step_name": "Sample loading", "step_order": 1},
                        {"step_id": "step2", "step_name": "Cell lysis", "step_order": 2},
                    ],
                }
            ]
        },
    }


# ============================================================================
# Plate Models
# ============================================================================


class WellPosition(BaseModel):
    """
    One of the 96 fixed positions on a microplate.

    A well with status ``empty`` never has a bound sample, and a well with any
    other status always has one.
    """

    row: str = Field(..., description="Row label A-H")
    col: int = Field(..., description="Column number 1-12")
    sample_id: str | None = None
    sample_name: str | None = None
    status: WellStatus = WellStatus.EMPTY
    volume: float | None = Field(None, ge=0, description="Sample volume in µl")
    concentration: float | None = Field(None, ge=0, description="Sample concentration")
    notes: str | None = None

    @field_validator("row")
    @classmethod
    def validate_row(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in PLATE_ROWS:
            raise ValueError(f"row must be one of {PLATE_ROWS}, got '{v}'")
        return v

    @field_validator("col")
    @classmethod
    def validate_col(cls, v: int) -> int:
        if v not in PLATE_COLS:
            raise ValueError(f"col must be within 1-{len(PLATE_COLS)}, got {v}")
        return v

    @model_validator(mode="after")
    def validate_sample_binding(self) -> "WellPosition":
        """Ensure empty wells hold no sample and non-empty wells hold one."""
        if self.status == WellStatus.EMPTY and self.sample_id is not None:
            raise ValueError(f"Empty well {self.position} cannot hold sample {self.sample_id}")
        if self.status != WellStatus.EMPTY and self.sample_id is None:
            raise ValueError(f"Well {self.position} is {self.status.value} but has no sample")
        return self

    @computed_field
    @property
    def position(self) -> str:
        return f"{self.row}{self.col}"

    @property
    def has_sample(self) -> bool:
        return self.sample_id is not None

    model_config = {"frozen": True}


class PlateLayout(BaseModel):
    """
    A 96-well plate held as a fixed row-major tuple.

    The well at ``(row, col)`` is stored at ``row_index * 12 + (col - 1)``.
    Status counts are computed once per instance.
    """

    wells: tuple[WellPosition, ...]
    plate_id: str | None = None

    _status_counts: dict[WellStatus, int] = PrivateAttr(default_factory=dict)

    @field_validator("wells")
    @classmethod
    def validate_geometry(cls, v: tuple[WellPosition, ...]) -> tuple[WellPosition, ...]:
        """Require exactly 96 wells in row-major order."""
        if len(v) != WELLS_PER_PLATE:
            raise ValueError(f"A plate must have exactly {WELLS_PER_PLATE} wells, got {len(v)}")

        n_cols = len(PLATE_COLS)
        for index, well in enumerate(v):
            expected_row = PLATE_ROWS[index // n_cols]
            expected_col = index % n_cols + 1
            if well.row != expected_row or well.col != expected_col:
                raise ValueError(
                    f"Well at index {index} must be {expected_row}{expected_col}, got {well.position}"
                )
        return v

    def model_post_init(self, __context: Any) -> None:
        counts = {status: 0 for status in WellStatus}
        for well in self.wells:
            counts[well.status] += 1
        self._status_counts = counts

    def status_count(self, status: WellStatus) -> int:
        return self._status_counts[WellStatus(status)]

    model_config = {"frozen": True}


# ============================================================================
# Pooling Models
# ============================================================================


class Library(BaseModel):
    """
    A sequencing library available for pooling.

    A library is owned by at most one pooling task (``pool_code``); libraries
    with no owner sit in the pending pool.
    """

    library_id: str = Field(..., min_length=1, description="Unique library identifier")
    library_number: str = Field(..., min_length=1, description="Library number, e.g. LIB001")
    library_name: str | None = Field(None, description="Display name")
    sample_id: str | None = Field(None, description="Source sample reference")
    concentration: float = Field(..., gt=0, description="Concentration in nM")
    volume: float = Field(..., ge=0, description="Available volume in µl")
    insert_size: float | None = Field(None, gt=0, description="Insert size in bp")
    status: LibraryStatus = LibraryStatus.PENDING
    pool_code: str | None = Field(None, description="Owning pooling task, None while pending")
    priority: Priority = Priority.MEDIUM

    @field_validator("library_id", "library_number")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        """Strip leading/trailing whitespace from identifiers."""
        return v.strip()

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "library_id": "1",
                    "library_number": "LIB001",
                    "library_name": "Library 1",
                    "sample_id": "S001",
                    "concentration": 15.5,
                    "volume": 50.0,
                    "insert_size": 350,
                    "status": "pending",
                    "priority": "high",
                }
            ]
        },
    }


class PoolingRatio(BaseModel):
    """Per-library result of a pooling ratio calculation."""

    library_id: str
    library_number: str
    original_concentration: float = Field(..., gt=0, description="Library concentration in nM")
    target_ratio: float = Field(..., gt=0, le=100, description="Share of the pool in percent")
    required_volume: float = Field(..., ge=0, description="Volume to pipette in µl")
    dilution_factor: float = Field(..., gt=0, description="Original / target concentration")
    flags: list[str] = Field(default_factory=list, description="Warnings for the caller")

    @property
    def below_target(self) -> bool:
        """Library is already more dilute than the target concentration."""
        return self.dilution_factor < 1

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "library_id": "1",
                    "library_number": "LIB001",
                    "original_concentration": 15.5,
                    "target_ratio": 33.33,
                    "required_volume": 33.33,
                    "dilution_factor": 1.55,
                    "flags": [],
                }
            ]
        },
    }


class PoolingQCResult(BaseModel):
    """Final QC measurements of a finished pool."""

    final_concentration: float = Field(..., gt=0, description="Measured concentration in nM")
    final_volume: float = Field(..., gt=0, description="Measured volume in µl")
    quality_score: float = Field(..., ge=MIN_QUALITY_SCORE, le=MAX_QUALITY_SCORE)

    model_config = {"frozen": True}


class PoolingTask(BaseModel):
    """
    Combining several libraries into one pool at a target concentration.

    When ``pooling_ratios`` is present it has one entry per member library and
    the target ratios add up to 100.
    """

    pool_code: str = Field(..., min_length=1, description="Unique pool code")
    pool_name: str = Field(..., min_length=1)
    status: PoolingStatus = PoolingStatus.PENDING
    created_by: str | None = None
    created_at: datetime | None = None
    target_concentration: float = Field(..., gt=0, description="Target concentration in nM")
    total_volume: float = Field(..., gt=0, description="Target pool volume in µl")
    libraries: tuple[Library, ...] = ()
    pooling_ratios: tuple[PoolingRatio, ...] = ()
    qc_result: PoolingQCResult | None = None

    @model_validator(mode="after")
    def validate_ratios(self) -> "PoolingTask":
        """Ensure computed ratios match the member libraries and sum to 100."""
        if not self.pooling_ratios:
            return self

        member_ids = [lib.library_id for lib in self.libraries]
        ratio_ids = [ratio.library_id for ratio in self.pooling_ratios]
        if sorted(member_ids) != sorted(ratio_ids):
            raise ValueError(
                f"pooling_ratios must have one entry per library: {member_ids} vs {ratio_ids}"
            )

        total = sum(ratio.target_ratio for ratio in self.pooling_ratios)
        if abs(total - PERCENT_TOTAL) > RATIO_SUM_TOLERANCE:
            raise ValueError(f"Target ratios must sum to {PERCENT_TOTAL:g}, got {total:.4f}")

        return self

    @property
    def library_count(self) -> int:
        return len(self.libraries)

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "pool_code": "POOL001",
                    "pool_name": "Pool 1",
                    "status": "pending",
                    "created_by": "Operator A",
                    "target_concentration": 10.0,
                    "total_volume": 100.0,
                }
            ]
        },
    }


# ============================================================================
# Validation Models
# ============================================================================


class ValidationResult(BaseModel):
    """
    Result of non-blocking validation checks.

    Contains all errors, warnings, and summary information.
    """

    is_valid: bool = Field(..., description="True if no blocking errors")
    errors: list[str] = Field(default_factory=list, description="Blocking validation errors")
    warnings: list[str] = Field(default_factory=list, description="Non-blocking warnings")
    summary: dict[str, Any] = Field(default_factory=dict, description="Summary statistics")

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def add_error(self, message: str) -> None:
        """Add an error message."""
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def get_report(self) -> str:
        """
        Generate a human-readable report.

        Returns:
            Formatted string with errors, warnings, and summary
        """
        lines = []

        if self.has_errors:
            lines.append("ERRORS:")
            for error in self.errors:
                lines.append(f"  - {error}")
            lines.append("")

        if self.has_warnings:
            lines.append("WARNINGS:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")
            lines.append("")

        if self.summary:
            lines.append("SUMMARY:")
            for key, value in self.summary.items():
                lines.append(f"  {key}: {value}")

        return "\n".join(lines)


# ============================================================================
# Helper Functions for Model Creation
# ============================================================================


def create_library_from_dict(data: dict[str, Any]) -> Library:
    """
    Create a Library from a dictionary (e.g., from a DataFrame row).

    Keys with a None value are dropped so model defaults apply.

    Raises:
        ValidationError: If data doesn't meet validation requirements
    """
    return Library(**{key: value for key, value in data.items() if value is not None})


def create_empty_well(row: str, col: int) -> WellPosition:
    """Create a fresh, empty well at the given address."""
    return WellPosition(row=row, col=col)
