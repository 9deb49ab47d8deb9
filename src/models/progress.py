"""
Progress tracking models for case execution.

The case status is the only progress signal; these updates mirror each
status transition for in-process listeners (log sinks, push transports).
"""

from dataclasses import dataclass, field
from typing import Protocol

from src.models.enums import CaseStatus


# Rough completion percentage reported alongside each status
STATUS_PERCENT: dict[CaseStatus, int] = {
    CaseStatus.READY: 0,
    CaseStatus.EXTRACTING: 10,
    CaseStatus.ANALYZING: 40,
    CaseStatus.RECOMMENDING: 70,
    CaseStatus.COMPLETE: 100,
    CaseStatus.FAILED: 100,
}


@dataclass
class ProgressUpdate:
    """
    Progress update event for status listeners.

    Attributes:
        case_id: Case being executed
        status: Status the case just moved to
        message: Human-readable status message
        percent: Overall progress percentage (0-100)
        detail: Optional extra information (stage, error code, etc.)
    """
    case_id: str
    status: CaseStatus
    message: str
    percent: int
    detail: dict = field(default_factory=dict)


class ProgressCallback(Protocol):
    """Protocol for progress callback functions."""

    def __call__(self, update: ProgressUpdate) -> None:
        """Called on every status transition during case execution."""
        ...
