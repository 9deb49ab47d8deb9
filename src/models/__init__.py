"""Data models for the adverse-event safety pipeline."""

from src.models.case import (
    ActionRecord,
    AdverseEventReport,
    Case,
    CaseLayers,
    ExtractedEvent,
    FoundationItem,
    HandoffRecord,
    RiskAssessment,
    SafetyAlert,
    StageFailure,
    StrategicItem,
    SynthesisItem,
)
from src.models.enums import ActionType, CaseStatus, LayerName
from src.models.progress import ProgressCallback, ProgressUpdate

__all__ = [
    "ActionRecord",
    "ActionType",
    "AdverseEventReport",
    "Case",
    "CaseLayers",
    "CaseStatus",
    "ExtractedEvent",
    "FoundationItem",
    "HandoffRecord",
    "LayerName",
    "ProgressCallback",
    "ProgressUpdate",
    "RiskAssessment",
    "SafetyAlert",
    "StageFailure",
    "StrategicItem",
    "SynthesisItem",
]
