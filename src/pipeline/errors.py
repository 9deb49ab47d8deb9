"""
Error taxonomy for the safety pipeline.

Registry-level errors (NotFound, AlreadyRunning, ValidationFailed on upload)
are returned to the caller without touching case state. Stage errors move the
case to failed and are recorded on the case document.
"""

from typing import Optional

from src.models.enums import LayerName


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    code = "PipelineError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(PipelineError):
    """Unknown case or item."""

    code = "NotFound"


class AlreadyRunning(PipelineError):
    """The case lock is held or the case is mid-execution."""

    code = "AlreadyRunning"


class ValidationFailed(PipelineError):
    """Malformed upload input, or a layer commit with bad items/references."""

    code = "ValidationFailed"


class LayerConflict(PipelineError):
    """Store status did not match the writer's expected prior status."""

    code = "Conflict"


class StageError(PipelineError):
    """Failure of a single stage; fatal for the current execute attempt."""

    code = "StageError"

    def __init__(self, stage: LayerName, message: str, attempts: Optional[int] = None):
        super().__init__(message)
        self.stage = LayerName(stage)
        self.attempts = attempts


class StageTimeout(StageError):
    """Collaborator exceeded its per-call bound."""

    code = "StageTimeout"


class StageValidationFailed(StageError):
    """Collaborator output was malformed or referenced unknown items."""

    code = "StageValidationFailed"


class StageConflict(StageError):
    """Optimistic-concurrency mismatch while committing the stage's layer."""

    code = "StageConflict"
