"""Tests for the provenance ledger."""

import pytest

from conftest import FIXED_NOW, alert_item
from src.models.case import ActionRecord, HandoffRecord, StrategicItem
from src.models.enums import ActionType, CaseStatus, LayerName
from src.pipeline.errors import NotFound
from src.pipeline.ledger import verify_references


@pytest.fixture
def completed_case_id(store, sample_report, foundation_items, strategic_items, synthesis_items):
    """Case with all three scenario layers committed."""
    case_id = store.create_case(sample_report, "patient-1").case_id
    store.transition(case_id, CaseStatus.READY, CaseStatus.EXTRACTING)
    store.commit_layer(case_id, LayerName.FOUNDATION, foundation_items, CaseStatus.EXTRACTING)
    store.commit_layer(case_id, LayerName.STRATEGIC, strategic_items, CaseStatus.ANALYZING)
    store.commit_layer(case_id, LayerName.SYNTHESIS, synthesis_items, CaseStatus.RECOMMENDING)
    return case_id


def action(ms: float, action_type=ActionType.STAGE_COMPLETED) -> ActionRecord:
    return ActionRecord(
        stage=LayerName.FOUNDATION,
        action_type=action_type,
        detail="test",
        inference_time_ms=ms,
        timestamp=FIXED_NOW,
    )


class TestAuditTrail:
    """Tests for handoff and action records."""

    def test_append_action_accumulates_total(self, store, ledger, sample_report):
        case_id = store.create_case(sample_report, "p1").case_id

        ledger.append_action(case_id, action(120.0))
        case = ledger.append_action(case_id, action(30.5, ActionType.STAGE_TIMEOUT))

        assert len(case.actions) == 2
        assert case.total_processing_time_ms == pytest.approx(150.5)
        assert case.total_processing_time_ms == sum(a.inference_time_ms for a in case.actions)

    def test_append_handoff(self, store, ledger, sample_report):
        case_id = store.create_case(sample_report, "p1").case_id
        record = HandoffRecord(
            source_stage=LayerName.FOUNDATION,
            destination_stage=LayerName.STRATEGIC,
            summary="Extracted 2 events",
            snapshot={"event_count": 2},
            timestamp=FIXED_NOW,
        )

        case = ledger.append_handoff(case_id, record)

        assert case.handoffs == [record]

    def test_unknown_case(self, ledger):
        with pytest.raises(NotFound):
            ledger.append_action("nope", action(1.0))


class TestTracedChain:
    """Tests for backward reference tracing."""

    def test_chain_from_alert(self, ledger, completed_case_id):
        chain = ledger.traced_chain(completed_case_id, "alert-1")

        assert len(chain) == 3
        assert [link.layer for link in chain.links] == [
            LayerName.SYNTHESIS,
            LayerName.STRATEGIC,
            LayerName.FOUNDATION,
        ]
        assert [item.item_id for item in chain.items] == ["alert-1", "risk-1", "evt-1", "evt-2"]
        assert {item.item_id for item in chain.roots} == {"evt-1", "evt-2"}

    def test_chain_from_foundation_item(self, ledger, completed_case_id):
        chain = ledger.traced_chain(completed_case_id, "evt-2")

        assert len(chain) == 1
        assert chain.roots[0].item_id == "evt-2"

    def test_shared_roots_are_not_duplicated(self, store, ledger, sample_report, foundation_items):
        case_id = store.create_case(sample_report, "p1").case_id
        store.transition(case_id, CaseStatus.READY, CaseStatus.EXTRACTING)
        store.commit_layer(case_id, LayerName.FOUNDATION, foundation_items, CaseStatus.EXTRACTING)
        store.commit_layer(
            case_id,
            LayerName.STRATEGIC,
            [
                {"item_id": "risk-1", "payload": {"risk_type": "a", "severity": "high", "score": 0.7}, "references": ["evt-1"]},
                {"item_id": "risk-2", "payload": {"risk_type": "b", "severity": "low", "score": 0.2}, "references": ["evt-1", "evt-2"]},
            ],
            CaseStatus.ANALYZING,
        )
        store.commit_layer(
            case_id,
            LayerName.SYNTHESIS,
            [alert_item("alert-1", ["risk-1", "risk-2", "evt-1"])],
            CaseStatus.RECOMMENDING,
        )

        chain = ledger.traced_chain(case_id, "alert-1")

        assert [item.item_id for item in chain.roots] == ["evt-1", "evt-2"]
        assert len(chain.items) == 5

    def test_to_dict(self, ledger, completed_case_id):
        data = ledger.traced_chain(completed_case_id, "risk-1").to_dict()

        assert data["item_id"] == "risk-1"
        assert [link["layer"] for link in data["links"]] == ["strategic", "foundation"]
        assert data["links"][1]["items"][0]["payload"]["term"] == "headache"

    def test_unknown_item(self, ledger, completed_case_id):
        with pytest.raises(NotFound):
            ledger.traced_chain(completed_case_id, "alert-99")

    def test_unknown_case(self, ledger):
        with pytest.raises(NotFound):
            ledger.traced_chain("nope", "alert-1")

    def test_broken_reference_raises(self, store, ledger, completed_case_id):
        """A document edited out of band never yields a partial chain."""

        def corrupt(case):
            case.layers.strategic.items[0] = StrategicItem(
                item_id="risk-1",
                payload=case.layers.strategic.items[0].payload,
                references=["evt-1", "evt-404"],
            )

        store.mutate(completed_case_id, corrupt)

        with pytest.raises(NotFound, match="evt-404"):
            ledger.traced_chain(completed_case_id, "alert-1")


class TestVerifyReferences:
    """Tests for whole-document provenance checks."""

    def test_clean_case(self, store, completed_case_id):
        assert verify_references(store.get_case(completed_case_id)) == []

    def test_reports_violations(self, store, completed_case_id):
        def corrupt(case):
            case.layers.synthesis.items[0].references = ["ghost"]
            case.layers.strategic.items[0].references = ["alert-1"]

        case = store.mutate(completed_case_id, corrupt)

        violations = verify_references(case)
        assert "alert-1 -> ghost: unknown item" in violations
        assert "risk-1 -> alert-1: not an earlier layer" in violations
