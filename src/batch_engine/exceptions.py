"""
Error taxonomy for Batch Engine.

Every error is raised synchronously at the offending call and carries enough
context (step id, well position, invalid input) for the caller to build a
message. All errors derive from ValueError so existing ``except ValueError``
handlers keep working.
"""

from batch_engine.config import (
    ERROR_CONCURRENT_STEP,
    ERROR_INVALID_POSITION,
    ERROR_INVALID_TARGET,
    ERROR_INVALID_TRANSITION,
    ERROR_LIBRARY_NOT_AVAILABLE,
    ERROR_NO_LIBRARIES,
    ERROR_STEP_NOT_FOUND,
    ERROR_WELL_NOT_EMPTY,
)


class BatchEngineError(ValueError):
    """Base class for all engine errors."""


# ============================================================================
# Step / Task Transitions
# ============================================================================


class InvalidTransition(BatchEngineError):
    """A transition was requested from a state that does not permit it."""

    def __init__(self, entity_id: str, current: str, action: str):
        self.entity_id = entity_id
        self.current = current
        self.action = action
        super().__init__(
            ERROR_INVALID_TRANSITION.format(action=action, entity_id=entity_id, current=current)
        )


class ConcurrentStepConflict(BatchEngineError):
    """Another step in the same batch is already running."""

    def __init__(self, step_id: str, running_step_id: str):
        self.step_id = step_id
        self.running_step_id = running_step_id
        super().__init__(
            ERROR_CONCURRENT_STEP.format(step_id=step_id, running_step_id=running_step_id)
        )


class StepNotFound(BatchEngineError):
    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(ERROR_STEP_NOT_FOUND.format(step_id=step_id))


# ============================================================================
# Plate
# ============================================================================


class WellNotEmpty(BatchEngineError):
    """A sample was loaded into a well that already holds one."""

    def __init__(self, position: str, current: str):
        self.position = position
        self.current = current
        super().__init__(ERROR_WELL_NOT_EMPTY.format(position=position, current=current))


class InvalidWellState(BatchEngineError):
    """A status change would break the well-state invariants."""

    def __init__(self, position: str, current: str, requested: str, message: str):
        self.position = position
        self.current = current
        self.requested = requested
        super().__init__(message)


class InvalidWellPosition(BatchEngineError):
    def __init__(self, position: str):
        self.position = position
        super().__init__(ERROR_INVALID_POSITION.format(position=position))


# ============================================================================
# Pooling
# ============================================================================


class NoLibrariesSelected(BatchEngineError):
    def __init__(self):
        super().__init__(ERROR_NO_LIBRARIES)


class InvalidTarget(BatchEngineError):
    """Target concentration or volume is not strictly positive."""

    def __init__(self, field: str, value: float):
        self.field = field
        self.value = value
        super().__init__(ERROR_INVALID_TARGET.format(field=field, value=value))


class LibraryNotAvailable(BatchEngineError):
    def __init__(self, library_id: str):
        self.library_id = library_id
        super().__init__(ERROR_LIBRARY_NOT_AVAILABLE.format(library_id=library_id))
