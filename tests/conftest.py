"""
Pytest configuration and shared fixtures for the test suite.
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

import pytest

from src.models.case import AdverseEventReport
from src.models.enums import LayerName
from src.models.inference import StageRequest, StageResponse
from src.pipeline.config import PipelineConfig
from src.pipeline.ledger import ProvenanceLedger
from src.pipeline.registry import build_registry
from src.pipeline.store import LayerStore


FIXED_NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)

SCENARIO_REPORT = "Patient reports severe headache, confusion, BP 180/110 two hours after dose."


# ============================================================================
# Stub collaborators
# ============================================================================


class StubCollaborator:
    """
    Inference collaborator returning canned items.

    Args:
        items: Item dicts, or a callable building them from the request
        delays: Per-call sleep in seconds, consumed in order (last one repeats)
        latency_ms: Declared latency to report
        error: Exception to raise instead of answering
    """

    def __init__(
        self,
        items: Union[list[dict], Callable[[StageRequest], list[dict]], None] = None,
        delays: Optional[list[float]] = None,
        latency_ms: Optional[float] = None,
        error: Optional[Exception] = None,
        name: str = "stub",
    ):
        self.items = items if items is not None else []
        self.delays = list(delays or [])
        self.latency_ms = latency_ms
        self.error = error
        self.name = name
        self.calls: list[StageRequest] = []

    async def infer(self, request: StageRequest) -> StageResponse:
        self.calls.append(request)
        if self.delays:
            delay = self.delays.pop(0) if len(self.delays) > 1 else self.delays[0]
            await asyncio.sleep(delay)
        if self.error is not None:
            raise self.error
        items = self.items(request) if callable(self.items) else self.items
        return StageResponse(items=copy.deepcopy(items), latency_ms=self.latency_ms)

    async def ping(self) -> bool:
        return True


class StepTimer:
    """Fake monotonic timer advancing a fixed step per call."""

    def __init__(self, step: float = 0.125):
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        self.now += self.step
        return self.now


# ============================================================================
# Scenario items
# ============================================================================


def event_item(item_id: str, term: str, category: str = "symptom", value: Any = None) -> dict:
    return {
        "item_id": item_id,
        "payload": {"term": term, "category": category, "value": value, "confidence": 0.9},
        "references": [],
    }


def risk_item(item_id: str, references: list[str], severity: str = "critical", score: float = 0.9) -> dict:
    return {
        "item_id": item_id,
        "payload": {
            "risk_type": "hypertensive_crisis",
            "severity": severity,
            "score": score,
            "rationale": "Severely elevated BP with neurological symptoms",
        },
        "references": references,
    }


def alert_item(item_id: str, references: list[str], level: str = "critical") -> dict:
    return {
        "item_id": item_id,
        "payload": {
            "alert_level": level,
            "recommendation": "Immediate clinical evaluation",
            "confidence": 0.85,
        },
        "references": references,
    }


@pytest.fixture
def foundation_items():
    return [event_item("evt-1", "headache", value="severe"), event_item("evt-2", "confusion")]


@pytest.fixture
def strategic_items():
    return [risk_item("risk-1", ["evt-1", "evt-2"])]


@pytest.fixture
def synthesis_items():
    return [alert_item("alert-1", ["risk-1"])]


@pytest.fixture
def scenario_collaborators(foundation_items, strategic_items, synthesis_items):
    """EventExtractor, RiskAnalyzer and RecommendationSLM stubs for the headache scenario."""
    return {
        LayerName.FOUNDATION: StubCollaborator(foundation_items, name="EventExtractor[stub]"),
        LayerName.STRATEGIC: StubCollaborator(strategic_items, name="RiskAnalyzer[stub]"),
        LayerName.SYNTHESIS: StubCollaborator(synthesis_items, name="RecommendationSLM[stub]"),
    }


# ============================================================================
# Store / registry fixtures
# ============================================================================


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def sample_report():
    return AdverseEventReport(text=SCENARIO_REPORT, reporter="physician")


@pytest.fixture
def store(fixed_clock):
    return LayerStore(clock=fixed_clock)


@pytest.fixture
def ledger(store):
    return ProvenanceLedger(store)


@pytest.fixture
def fast_config():
    """Short timeouts so timeout paths run quickly."""
    return PipelineConfig(stage_timeout_s=0.05, latency_budget_ms=500.0)


@pytest.fixture
def make_registry(fixed_clock, fast_config):
    """Factory for registries wired with stub collaborators."""

    def _create(collaborators, config: Optional[PipelineConfig] = None, **kwargs):
        kwargs.setdefault("clock", fixed_clock)
        return build_registry(
            config=config or fast_config,
            collaborators=collaborators,
            **kwargs,
        )

    return _create
