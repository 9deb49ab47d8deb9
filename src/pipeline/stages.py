"""
Stage definitions - the fixed three-stage order and what each stage reads.
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

from src.models.case import LAYER_ITEM_MODELS, Case
from src.models.enums import LAYER_ORDER, CaseStatus, LayerName
from src.models.inference import StageRequest


@dataclass(frozen=True)
class StageDefinition:
    """Static description of one stage."""

    layer: LayerName
    running_status: CaseStatus  # Status while this stage executes
    item_model: type[BaseModel]

    @property
    def upstream(self) -> tuple[LayerName, ...]:
        """Layers this stage may read: strictly earlier ones."""
        return LAYER_ORDER[: self.layer.rank]

    @property
    def next_layer(self) -> Optional[LayerName]:
        following = LAYER_ORDER[self.layer.rank + 1:]
        return following[0] if following else None

    @property
    def is_final(self) -> bool:
        return self.next_layer is None


STAGES: dict[LayerName, StageDefinition] = {
    LayerName.FOUNDATION: StageDefinition(
        layer=LayerName.FOUNDATION,
        running_status=CaseStatus.EXTRACTING,
        item_model=LAYER_ITEM_MODELS[LayerName.FOUNDATION],
    ),
    LayerName.STRATEGIC: StageDefinition(
        layer=LayerName.STRATEGIC,
        running_status=CaseStatus.ANALYZING,
        item_model=LAYER_ITEM_MODELS[LayerName.STRATEGIC],
    ),
    LayerName.SYNTHESIS: StageDefinition(
        layer=LayerName.SYNTHESIS,
        running_status=CaseStatus.RECOMMENDING,
        item_model=LAYER_ITEM_MODELS[LayerName.SYNTHESIS],
    ),
}


def build_stage_request(case: Case, stage_def: StageDefinition) -> StageRequest:
    """
    Assemble a stage's input from the committed case document.

    Foundation reads the uploaded report; later stages read only the items
    of completed upstream layers.
    """
    upstream = {}
    for layer in stage_def.upstream:
        committed = case.layers.get(layer)
        if committed.completed:
            upstream[layer] = [item.model_dump(mode="json") for item in committed.items]

    return StageRequest(
        case_id=case.case_id,
        stage=stage_def.layer,
        report=case.report if stage_def.layer == LayerName.FOUNDATION else None,
        upstream=upstream,
    )


def summarize_layer(layer: LayerName, items: list[BaseModel]) -> tuple[str, dict]:
    """Build the handoff summary and snapshot for a freshly committed layer."""
    if layer == LayerName.FOUNDATION:
        vitals = sum(1 for item in items if item.payload.category == "vital_sign")
        terms = ", ".join(item.payload.term for item in items[:5]) or "none"
        return (
            f"Extracted {len(items)} events ({terms})",
            {"event_count": len(items), "vital_sign_count": vitals},
        )

    if layer == LayerName.STRATEGIC:
        critical = sum(1 for item in items if item.payload.severity == "critical")
        max_score = max((item.payload.score for item in items), default=0.0)
        return (
            f"Assessed {len(items)} risks, {critical} critical",
            {
                "risk_count": len(items),
                "critical_count": critical,
                "max_score": max_score,
                "has_critical": critical > 0,
            },
        )

    critical = sum(1 for item in items if item.payload.alert_level == "critical")
    return (
        f"Issued {len(items)} alerts, {critical} critical",
        {"alert_count": len(items), "critical_count": critical},
    )
