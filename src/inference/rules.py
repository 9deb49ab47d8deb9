"""
Rule-based stage collaborators.

Deterministic keyword and vital-sign rules standing in for the three models
when no LLM backend is configured. Same inputs always give the same items,
which also makes them useful for demos and replay.
"""

import re
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from src.models.enums import AlertLevel, EventCategory, LayerName, RiskSeverity
from src.models.inference import StageRequest, StageResponse


# Symptom lexicon: canonical term -> surface forms
SYMPTOM_TERMS: dict[str, tuple[str, ...]] = {
    "headache": ("headache", "cephalalgia"),
    "confusion": ("confusion", "confused", "disoriented"),
    "dizziness": ("dizziness", "dizzy", "vertigo"),
    "blurred vision": ("blurred vision", "visual disturbance"),
    "seizure": ("seizure", "convulsion"),
    "syncope": ("syncope", "fainted", "loss of consciousness"),
    "chest pain": ("chest pain", "chest tightness"),
    "shortness of breath": ("shortness of breath", "dyspnea", "dyspnoea"),
    "palpitations": ("palpitations",),
    "nausea": ("nausea", "nauseous"),
    "vomiting": ("vomiting", "emesis"),
    "rash": ("rash", "urticaria", "hives"),
    "swelling": ("angioedema", "facial swelling", "swelling"),
    "fever": ("fever", "pyrexia"),
    "fatigue": ("fatigue", "lethargy"),
}

NEUROLOGICAL = {"headache", "confusion", "dizziness", "blurred vision", "seizure", "syncope"}
CARDIOPULMONARY = {"chest pain", "shortness of breath", "palpitations", "syncope"}
HYPERSENSITIVITY = {"rash", "swelling"}

SEVERITY_MODIFIER = re.compile(r"\b(severe|moderate|mild|acute|worsening)\s+$", re.IGNORECASE)
BP_PATTERN = re.compile(r"\b(?:BP|blood pressure)[:\s]*(\d{2,3})\s*/\s*(\d{2,3})", re.IGNORECASE)
HR_PATTERN = re.compile(r"\b(?:HR|heart rate|pulse)[:\s]*(\d{2,3})\b", re.IGNORECASE)


class RuleBasedCollaborator(ABC):
    """Base class: times `derive` and wraps its items in a StageResponse."""

    stage: LayerName
    name = "rules"

    async def infer(self, request: StageRequest) -> StageResponse:
        start = time.perf_counter()
        items = self.derive(request)
        latency_ms = (time.perf_counter() - start) * 1000
        return StageResponse(items=items, latency_ms=latency_ms, model=self.name)

    @abstractmethod
    def derive(self, request: StageRequest) -> list[dict[str, Any]]:
        """Produce this stage's items from the request."""
        pass

    async def ping(self) -> bool:
        return True


class RuleBasedEventExtractor(RuleBasedCollaborator):
    """Extracts symptoms and vital signs from the report text."""

    stage = LayerName.FOUNDATION
    name = "EventExtractor[rules]"

    def derive(self, request: StageRequest) -> list[dict[str, Any]]:
        if request.report is None:
            return []
        text = request.report.text
        lowered = text.lower()

        # (position, event) so items come out in reading order
        found: list[tuple[int, dict[str, Any]]] = []

        for term, forms in SYMPTOM_TERMS.items():
            matches = [re.search(rf"\b{re.escape(form)}\b", lowered) for form in forms]
            positions = [match.start() for match in matches if match]
            if not positions:
                continue
            pos = min(positions)
            modifier = SEVERITY_MODIFIER.search(lowered[max(0, pos - 12):pos])
            found.append((pos, {
                "term": term,
                "category": EventCategory.SYMPTOM.value,
                "value": modifier.group(1).lower() if modifier else None,
                "confidence": 0.9,
            }))

        for match in BP_PATTERN.finditer(text):
            found.append((match.start(), {
                "term": "blood pressure",
                "category": EventCategory.VITAL_SIGN.value,
                "value": f"{match.group(1)}/{match.group(2)}",
                "confidence": 0.95,
            }))

        for match in HR_PATTERN.finditer(text):
            found.append((match.start(), {
                "term": "heart rate",
                "category": EventCategory.VITAL_SIGN.value,
                "value": match.group(1),
                "confidence": 0.95,
            }))

        found.sort(key=lambda pair: pair[0])
        return [
            {"item_id": f"evt-{i}", "payload": event, "references": []}
            for i, (_, event) in enumerate(found, 1)
        ]


def _blood_pressure(event: dict[str, Any]) -> Optional[tuple[int, int]]:
    if event.get("term") != "blood pressure" or not event.get("value"):
        return None
    systolic, _, diastolic = str(event["value"]).partition("/")
    try:
        return int(systolic), int(diastolic)
    except ValueError:
        return None


class RuleBasedRiskAnalyzer(RuleBasedCollaborator):
    """Groups extracted events into risk assessments."""

    stage = LayerName.STRATEGIC
    name = "RiskAnalyzer[rules]"

    def derive(self, request: StageRequest) -> list[dict[str, Any]]:
        events = request.upstream_items(LayerName.FOUNDATION)
        if not events:
            return []

        by_term: dict[str, list[str]] = {}
        for event in events:
            by_term.setdefault(event["payload"]["term"], []).append(event["item_id"])

        def ids_for(terms: set[str]) -> list[str]:
            return [item_id for term in sorted(terms & by_term.keys()) for item_id in by_term[term]]

        risks: list[dict[str, Any]] = []
        used: set[str] = set()

        crisis_ids = []
        for event in events:
            bp = _blood_pressure(event["payload"])
            if bp and (bp[0] >= 180 or bp[1] >= 110):
                crisis_ids.append(event["item_id"])
        neuro_ids = ids_for(NEUROLOGICAL)
        if crisis_ids:
            with_neuro = bool(neuro_ids)
            risks.append(self._risk(
                "hypertensive_crisis",
                RiskSeverity.CRITICAL if with_neuro else RiskSeverity.HIGH,
                0.9 if with_neuro else 0.7,
                "Severely elevated blood pressure"
                + (" with neurological symptoms suggesting end-organ involvement" if with_neuro else ""),
                crisis_ids + neuro_ids,
            ))
            used.update(crisis_ids + neuro_ids)
        elif neuro_ids:
            serious = {"seizure", "confusion", "syncope"} & by_term.keys()
            risks.append(self._risk(
                "neurological_event",
                RiskSeverity.HIGH if serious else RiskSeverity.MODERATE,
                0.7 if serious else 0.45,
                "Neurological symptoms reported",
                neuro_ids,
            ))
            used.update(neuro_ids)

        cardio_ids = [i for i in ids_for(CARDIOPULMONARY) if i not in used]
        if cardio_ids:
            risks.append(self._risk(
                "cardiopulmonary_event",
                RiskSeverity.HIGH,
                0.75,
                "Cardiopulmonary symptoms reported",
                cardio_ids,
            ))
            used.update(cardio_ids)

        allergy_ids = ids_for(HYPERSENSITIVITY)
        if allergy_ids:
            airway = "shortness of breath" in by_term or "swelling" in by_term
            risks.append(self._risk(
                "hypersensitivity_reaction",
                RiskSeverity.CRITICAL if airway else RiskSeverity.MODERATE,
                0.85 if airway else 0.4,
                "Skin or mucosal reaction" + (" with possible airway involvement" if airway else ""),
                allergy_ids + ids_for({"shortness of breath"}),
            ))
            used.update(allergy_ids)

        remaining = [event["item_id"] for event in events if event["item_id"] not in used]
        if not risks and remaining:
            risks.append(self._risk(
                "unclassified_adverse_event",
                RiskSeverity.LOW,
                0.2,
                "Events did not match a known risk pattern",
                remaining,
            ))

        for i, risk in enumerate(risks, 1):
            risk["item_id"] = f"risk-{i}"
        return risks

    @staticmethod
    def _risk(
        risk_type: str,
        severity: RiskSeverity,
        score: float,
        rationale: str,
        references: list[str],
    ) -> dict[str, Any]:
        return {
            "item_id": "",
            "payload": {
                "risk_type": risk_type,
                "severity": severity.value,
                "score": score,
                "rationale": rationale,
            },
            "references": list(dict.fromkeys(references)),
        }


RECOMMENDATIONS = {
    RiskSeverity.CRITICAL: (
        AlertLevel.CRITICAL,
        "Immediate clinical evaluation required; consider suspending the suspect product "
        "and expedite regulatory reporting.",
    ),
    RiskSeverity.HIGH: (
        AlertLevel.WARNING,
        "Prompt clinical review recommended; monitor closely and assess causality.",
    ),
    RiskSeverity.MODERATE: (
        AlertLevel.WARNING,
        "Follow up with the reporter and monitor for progression.",
    ),
    RiskSeverity.LOW: (
        AlertLevel.INFO,
        "Record for routine signal review.",
    ),
}


class RuleBasedRecommender(RuleBasedCollaborator):
    """Turns each risk assessment into a safety alert."""

    stage = LayerName.SYNTHESIS
    name = "RecommendationSLM[rules]"

    def derive(self, request: StageRequest) -> list[dict[str, Any]]:
        alerts = []
        for i, risk in enumerate(request.upstream_items(LayerName.STRATEGIC), 1):
            payload = risk["payload"]
            level, advice = RECOMMENDATIONS[RiskSeverity(payload["severity"])]
            label = payload["risk_type"].replace("_", " ")
            alerts.append({
                "item_id": f"alert-{i}",
                "payload": {
                    "alert_level": level.value,
                    "recommendation": f"{label.capitalize()}: {advice}",
                    "confidence": payload["score"],
                },
                "references": [risk["item_id"]],
            })
        return alerts


def build_rule_collaborators() -> dict[LayerName, RuleBasedCollaborator]:
    return {
        LayerName.FOUNDATION: RuleBasedEventExtractor(),
        LayerName.STRATEGIC: RuleBasedRiskAnalyzer(),
        LayerName.SYNTHESIS: RuleBasedRecommender(),
    }
