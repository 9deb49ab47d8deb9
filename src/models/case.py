"""
Adverse Event Safety Pipeline - Case Document Schemas

One Case is one adverse-event report plus its full processing record: three
ordered layers (foundation, strategic, synthesis), each a typed variant over a
common envelope, and the append-only handoff/action audit trail.
"""

from datetime import date, datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from src.models.enums import (
    LAYER_ORDER,
    ActionType,
    AlertLevel,
    CaseStatus,
    EventCategory,
    LayerName,
    RiskSeverity,
)


# =============================================================================
# REPORT
# =============================================================================


class AdverseEventReport(BaseModel):
    """Raw report text and intake metadata. Never modified after upload."""

    text: str = Field(..., min_length=1, description="Narrative report text")
    report_date: Optional[date] = None
    reporter: Optional[str] = Field(default=None, description="e.g., physician, pharmacist, patient")
    source_filename: Optional[str] = None
    page_count: Optional[int] = Field(default=None, ge=0)

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("report text must not be blank")
        return value


# =============================================================================
# LAYER PAYLOADS
# =============================================================================


class ExtractedEvent(BaseModel):
    """A clinical fact pulled from the report (foundation payload)."""

    term: str = Field(..., min_length=1)
    category: EventCategory = EventCategory.OTHER
    value: Optional[str] = None  # e.g. "180/110" for a blood pressure reading
    confidence: float = Field(ge=0.0, le=1.0, default=1.0)


class RiskAssessment(BaseModel):
    """A risk judged from one or more extracted events (strategic payload)."""

    risk_type: str = Field(..., min_length=1)
    severity: RiskSeverity
    score: float = Field(..., ge=0.0, le=1.0)
    rationale: str = ""


class SafetyAlert(BaseModel):
    """An actionable recommendation (synthesis payload)."""

    alert_level: AlertLevel
    recommendation: str = Field(..., min_length=1)
    confidence: float = Field(ge=0.0, le=1.0, default=0.5)


# =============================================================================
# LAYER ITEMS
# =============================================================================


class FoundationItem(BaseModel):
    """Foundation items are provenance roots and carry no references."""

    item_id: str = Field(..., min_length=1)
    payload: ExtractedEvent
    references: list[str] = Field(default_factory=list, max_length=0)


class StrategicItem(BaseModel):
    item_id: str = Field(..., min_length=1)
    payload: RiskAssessment
    references: list[str] = Field(..., min_length=1)


class SynthesisItem(BaseModel):
    item_id: str = Field(..., min_length=1)
    payload: SafetyAlert
    references: list[str] = Field(..., min_length=1)


LayerItem = Union[FoundationItem, StrategicItem, SynthesisItem]

# Item type per layer, selected by the fixed stage order
LAYER_ITEM_MODELS: dict[LayerName, type[BaseModel]] = {
    LayerName.FOUNDATION: FoundationItem,
    LayerName.STRATEGIC: StrategicItem,
    LayerName.SYNTHESIS: SynthesisItem,
}


# =============================================================================
# LAYERS
# =============================================================================


class LayerEnvelope(BaseModel):
    """Fields shared by every layer regardless of payload type."""

    completed: bool = False
    processed_at: Optional[datetime] = None


class FoundationLayer(LayerEnvelope):
    name: Literal["foundation"] = "foundation"
    items: list[FoundationItem] = Field(default_factory=list)


class StrategicLayer(LayerEnvelope):
    name: Literal["strategic"] = "strategic"
    items: list[StrategicItem] = Field(default_factory=list)


class SynthesisLayer(LayerEnvelope):
    name: Literal["synthesis"] = "synthesis"
    items: list[SynthesisItem] = Field(default_factory=list)


class CaseLayers(BaseModel):
    """The fixed, ordered set of layers for one case."""

    foundation: FoundationLayer = Field(default_factory=FoundationLayer)
    strategic: StrategicLayer = Field(default_factory=StrategicLayer)
    synthesis: SynthesisLayer = Field(default_factory=SynthesisLayer)

    def get(self, name: LayerName) -> Union[FoundationLayer, StrategicLayer, SynthesisLayer]:
        return getattr(self, LayerName(name).value)

    def completed_names(self) -> list[LayerName]:
        return [name for name in LAYER_ORDER if self.get(name).completed]

    def first_incomplete(self) -> Optional[LayerName]:
        for name in LAYER_ORDER:
            if not self.get(name).completed:
                return name
        return None


# =============================================================================
# AUDIT RECORDS
# =============================================================================


class HandoffRecord(BaseModel):
    """Summary passed from one stage to the next."""

    source_stage: LayerName
    destination_stage: LayerName
    summary: str
    snapshot: dict[str, Union[bool, int, float, str]] = Field(default_factory=dict)
    timestamp: datetime


class ActionRecord(BaseModel):
    """One collaborator invocation, successful or not."""

    stage: LayerName
    action_type: ActionType
    detail: str
    inference_time_ms: float = Field(..., ge=0.0)
    declared_latency_ms: Optional[float] = None  # As reported by the collaborator
    attempt: int = Field(default=1, ge=1)
    timestamp: datetime


class StageFailure(BaseModel):
    """The error that moved a case to failed, surfaced verbatim."""

    code: str
    stage: LayerName
    message: str
    occurred_at: datetime


# =============================================================================
# CASE
# =============================================================================


class Case(BaseModel):
    """The persisted document for one adverse-event case."""

    case_id: str
    patient_id: str
    report: AdverseEventReport
    status: CaseStatus = CaseStatus.READY
    error: Optional[StageFailure] = None

    # Observability
    total_processing_time_ms: float = 0.0
    over_budget: bool = False

    created_at: datetime
    updated_at: datetime

    layers: CaseLayers = Field(default_factory=CaseLayers)
    handoffs: list[HandoffRecord] = Field(default_factory=list)
    actions: list[ActionRecord] = Field(default_factory=list)

    def find_item(self, item_id: str) -> Optional[tuple[LayerName, LayerItem]]:
        """Locate an item by id across all layers."""
        for name in LAYER_ORDER:
            for item in self.layers.get(name).items:
                if item.item_id == item_id:
                    return name, item
        return None

    def item_index(self) -> dict[str, LayerName]:
        """Map every committed item id to the layer holding it."""
        index: dict[str, LayerName] = {}
        for name in LAYER_ORDER:
            for item in self.layers.get(name).items:
                index[item.item_id] = name
        return index
