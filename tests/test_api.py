"""Tests for the HTTP surface."""

import asyncio
import pytest
from fastapi.testclient import TestClient

from conftest import SCENARIO_REPORT, StepTimer, StubCollaborator
from api.main import create_app
from src.models.enums import LayerName


@pytest.fixture
def registry(make_registry, scenario_collaborators):
    return make_registry(scenario_collaborators, timer=StepTimer(0.125))


@pytest.fixture
def client(registry):
    with TestClient(create_app(registry)) as test_client:
        yield test_client


def upload(client, **overrides) -> str:
    body = {"report_text": SCENARIO_REPORT, "patient_id": "patient-1"}
    body.update(overrides)
    response = client.post("/upload", json=body)
    assert response.status_code == 201
    return response.json()["case_id"]


class TestUpload:
    """Tests for POST /upload."""

    def test_upload(self, client):
        response = client.post(
            "/upload",
            json={
                "report_text": SCENARIO_REPORT,
                "patient_id": "patient-1",
                "report_date": "2025-03-14",
                "reporter": "physician",
                "source_filename": "report.pdf",
                "page_count": 2,
            },
        )

        assert response.status_code == 201
        assert response.json()["status"] == "ready"

        case = client.get(f"/context/{response.json()['case_id']}").json()
        assert case["report"]["report_date"] == "2025-03-14"
        assert case["report"]["page_count"] == 2

    @pytest.mark.parametrize("body", [
        {"report_text": "", "patient_id": "p1"},
        {"report_text": "   ", "patient_id": "p1"},
        {"patient_id": "p1"},
        {"report_text": "Rash", "patient_id": "p1", "page_count": -1},
    ])
    def test_invalid_upload(self, client, body):
        response = client.post("/upload", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationFailed"


class TestCaseLifecycle:
    """Tests for execute, context, trace and reset."""

    def test_execute_and_fetch(self, client):
        case_id = upload(client)

        response = client.post(f"/execute/{case_id}")

        assert response.status_code == 200
        case = response.json()
        assert case["status"] == "complete"
        assert case["total_processing_time_ms"] == pytest.approx(375.0)
        assert len(case["actions"]) == 3
        assert len(case["handoffs"]) == 2
        assert case["layers"]["synthesis"]["items"][0]["references"] == ["risk-1"]
        assert client.get(f"/context/{case_id}").json() == case

    def test_failed_case_returns_200_with_error(self, client, scenario_collaborators):
        scenario_collaborators[LayerName.FOUNDATION].error = RuntimeError("model down")
        case_id = upload(client)

        response = client.post(f"/execute/{case_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["error"]["code"] == "StageError"
        assert response.json()["error"]["stage"] == "foundation"

    def test_trace(self, client):
        case_id = upload(client)
        client.post(f"/execute/{case_id}")

        response = client.get(f"/trace/{case_id}/alert-1")

        assert response.status_code == 200
        links = response.json()["links"]
        assert [link["layer"] for link in links] == ["synthesis", "strategic", "foundation"]
        assert {item["item_id"] for item in links[-1]["items"]} == {"evt-1", "evt-2"}
        assert response.json()["reference_violations"] == []

    def test_trace_reports_broken_references(self, client, registry):
        case_id = upload(client)
        client.post(f"/execute/{case_id}")

        def corrupt(case):
            case.layers.synthesis.items[0].references = ["ghost"]

        registry.store.mutate(case_id, corrupt)
        response = client.get(f"/trace/{case_id}/evt-1")

        assert response.status_code == 200
        assert [link["layer"] for link in response.json()["links"]] == ["foundation"]
        assert response.json()["reference_violations"] == ["alert-1 -> ghost: unknown item"]

    def test_trace_unknown_item(self, client):
        case_id = upload(client)
        assert client.get(f"/trace/{case_id}/alert-1").status_code == 404

    def test_reset(self, client):
        case_id = upload(client)
        client.post(f"/execute/{case_id}")

        response = client.post(f"/reset/{case_id}")

        assert response.status_code == 200
        case = response.json()
        assert case["status"] == "ready"
        assert case["actions"] == []
        assert case["report"]["text"] == SCENARIO_REPORT

    def test_list_and_delete(self, client):
        first = upload(client)
        second = upload(client, patient_id="patient-2")

        listed = client.get("/cases").json()
        assert [row["case_id"] for row in listed] == [first, second]

        assert client.delete(f"/context/{first}").status_code == 204
        assert [row["case_id"] for row in client.get("/cases").json()] == [second]

    @pytest.mark.parametrize("method,path", [
        ("get", "/context/nope"),
        ("post", "/execute/nope"),
        ("post", "/reset/nope"),
        ("delete", "/context/nope"),
        ("get", "/trace/nope/alert-1"),
    ])
    def test_unknown_case_is_404(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_locked_case_is_409(self, client, registry):
        case_id = upload(client)
        lock = registry._lock_for(case_id)
        asyncio.run(lock.acquire())

        assert client.post(f"/execute/{case_id}").status_code == 409
        assert client.post(f"/reset/{case_id}").status_code == 409

        lock.release()
        assert client.post(f"/execute/{case_id}").status_code == 200


class TestHealthAndStats:
    """Tests for /health and /stats."""

    def test_health(self, client):
        assert client.get("/health").json() == {"store": "up", "inference": "up"}

    def test_health_reports_inference_down(self, registry, scenario_collaborators):
        class Offline(StubCollaborator):
            async def ping(self) -> bool:
                return False

        registry.collaborators[LayerName.STRATEGIC] = Offline()
        with TestClient(create_app(registry)) as client:
            assert client.get("/health").json() == {"store": "up", "inference": "down"}

    def test_stats(self, client):
        case_id = upload(client)
        client.post(f"/execute/{case_id}")

        stats = client.get("/stats").json()

        assert stats["total_cases"] == 1
        assert stats["over_budget_cases"] == 0
        assert stats["stages"]["foundation"]["calls"] == 1

    def test_root(self, client):
        assert client.get("/").json()["docs"] == "/docs"
