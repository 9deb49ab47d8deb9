"""
Adverse Event Safety Pipeline - Enumerations

Centralized enum definitions for case lifecycle and layer bookkeeping.
"""

from enum import Enum


class CaseStatus(str, Enum):
    """Lifecycle status of a case, the sole progress signal exposed to clients."""

    READY = "ready"  # Uploaded or reset, nothing committed yet
    EXTRACTING = "extracting"  # Foundation stage running
    ANALYZING = "analyzing"  # Strategic stage running
    RECOMMENDING = "recommending"  # Synthesis stage running
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_in_progress(self) -> bool:
        return self in (
            CaseStatus.EXTRACTING,
            CaseStatus.ANALYZING,
            CaseStatus.RECOMMENDING,
        )


class LayerName(str, Enum):
    """The three ordered layers of a case document."""

    FOUNDATION = "foundation"  # Extracted events
    STRATEGIC = "strategic"  # Risk assessments
    SYNTHESIS = "synthesis"  # Safety alerts / recommendations

    @property
    def rank(self) -> int:
        return LAYER_ORDER.index(self)


LAYER_ORDER: tuple[LayerName, ...] = (
    LayerName.FOUNDATION,
    LayerName.STRATEGIC,
    LayerName.SYNTHESIS,
)


class EventCategory(str, Enum):
    """Category of an extracted clinical event."""

    SYMPTOM = "symptom"
    VITAL_SIGN = "vital_sign"
    LAB_RESULT = "lab_result"
    MEDICATION = "medication"
    OTHER = "other"


class RiskSeverity(str, Enum):
    """Severity grading for a risk assessment."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


class AlertLevel(str, Enum):
    """Urgency of a safety alert."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ActionType(str, Enum):
    """Outcome of one stage attempt, as recorded in the audit trail."""

    STAGE_COMPLETED = "stage_completed"
    STAGE_TIMEOUT = "stage_timeout"
    STAGE_REJECTED = "stage_rejected"  # Output failed shape or reference validation
    STAGE_CONFLICT = "stage_conflict"  # Store rejected the commit on status mismatch
