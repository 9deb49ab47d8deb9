"""
Adverse Event Safety Pipeline - Inference Boundary Schemas

Request/response envelopes exchanged with the per-stage inference
collaborators. Items travel as plain dicts and are only trusted after the
stage runner validates them against the layer's item model.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from src.models.case import AdverseEventReport
from src.models.enums import LayerName


class StageRequest(BaseModel):
    """Input for one stage, built only from committed case state."""

    case_id: str
    stage: LayerName
    report: Optional[AdverseEventReport] = None  # Foundation stage only
    upstream: dict[LayerName, list[dict[str, Any]]] = Field(default_factory=dict)

    def upstream_items(self, layer: LayerName) -> list[dict[str, Any]]:
        return self.upstream.get(LayerName(layer), [])


class StageResponse(BaseModel):
    """Output of one collaborator call."""

    items: list[dict[str, Any]]
    latency_ms: Optional[float] = Field(default=None, ge=0.0)
    model: Optional[str] = None
