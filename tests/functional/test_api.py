# tests/functional/test_api.py
"""
Functional tests for the consistency engine HTTP API.
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from loan_engine.demo_data import ATLAS_ID, BEACON_ID
from tests.conftest import headers

AGENT = headers("user-agent", "Agent Bank")
RISK = headers("user-risk")
LEGAL = headers("user-legal")


def first_drift(client: TestClient, workspace_id: str, **params) -> dict:
    response = client.get("/drifts", params={"workspaceId": workspace_id, **params}, headers=LEGAL)
    assert response.status_code == 200
    return response.json()[0]


def test_health_endpoint_returns_ok(test_client: TestClient):
    """/healthz returns status, environment and database details."""
    response = test_client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["environment"] == "test"
    assert data["version"] == "0.1.0"
    assert data["database"]["database_type"] == "SQLite"
    assert abs(time.time() - data["timestamp"]) < 10
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["X-Request-Id"]


def test_request_id_is_echoed(test_client: TestClient):
    response = test_client.get("/healthz", headers={"X-Request-Id": "trace-123"})
    assert response.headers["X-Request-Id"] == "trace-123"


@pytest.mark.asyncio
async def test_health_endpoint_async(async_client):
    """Health endpoint with the async client."""
    response = await async_client.get("/healthz", headers={"X-Actor-Id": "user-agent"})

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_unexpected_failure_is_structured(async_client, monkeypatch):
    """Errors outside the engine taxonomy still answer with code and message."""
    def unavailable(engine):
        raise RuntimeError("database inspector unavailable")

    monkeypatch.setattr("loan_engine.app.get_database_info", unavailable)
    response = await async_client.get("/healthz")

    assert response.status_code == 500
    assert response.json() == {"code": "INTERNAL_ERROR", "message": "Internal server error"}


def test_identity_header_required(demo_client: TestClient):
    """Calls without X-Actor-Id are rejected with UNAUTHORIZED."""
    response = demo_client.get("/drifts", params={"workspaceId": ATLAS_ID})

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


def test_non_member_forbidden(demo_client: TestClient):
    response = demo_client.get(f"/graph/{ATLAS_ID}", headers=headers("stranger"))

    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


def test_unknown_resources_not_found(demo_client: TestClient):
    assert demo_client.get("/drifts/drift-missing", headers=AGENT).json()["code"] == "NOT_FOUND"
    assert demo_client.get("/graph/ws-missing", headers=AGENT).status_code == 404
    assert demo_client.get("/graph/nodes/node-missing", headers=AGENT).status_code == 404

    missing = demo_client.post("/drifts/drift-missing/approve", json={"reason": "Agreed"}, headers=RISK)
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


def test_missing_workspace_id_is_validation_error(demo_client: TestClient):
    response = demo_client.get("/drifts", headers=AGENT)

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


class TestGraphApi:
    def test_sync_reports_score_and_counts(self, demo_client: TestClient):
        response = demo_client.post(f"/workspaces/{ATLAS_ID}/sync", headers=AGENT)

        assert response.status_code == 200
        data = response.json()
        assert data == {
            "integrityScore": 87,
            "nodeCount": 10,
            "edgeCount": 5,
            "driftCount": 3,
            "simplified": True,
        }

    def test_graph_and_node_navigation(self, demo_client: TestClient):
        graph = demo_client.get(f"/graph/{BEACON_ID}", headers=AGENT).json()

        assert graph["integrityScore"] == 95
        assert len(graph["nodes"]) == 10
        assert len(graph["edges"]) == 5

        variable_node = next(n for n in graph["nodes"] if n["variableId"])
        location = demo_client.get(f"/graph/nodes/{variable_node['id']}/locate", headers=AGENT).json()
        assert location["variableId"] == variable_node["variableId"]

        connected = demo_client.get(f"/graph/nodes/{variable_node['id']}/connected", headers=AGENT).json()
        assert [n["clauseId"] for n in connected] == [location["clauseId"]]

    def test_recompute(self, demo_client: TestClient):
        response = demo_client.post(f"/graph/{BEACON_ID}/recompute", headers=AGENT)

        assert response.status_code == 200
        assert response.json()["integrityScore"] == 95


class TestDriftApi:
    def test_list_is_high_first_and_camel_case(self, demo_client: TestClient):
        items = demo_client.get("/drifts", params={"workspaceId": ATLAS_ID}, headers=LEGAL).json()

        assert len(items) == 3
        assert [item["severity"] for item in items] == ["HIGH", "HIGH", "MEDIUM"]
        assert items[0]["status"] == "unresolved"
        assert "baselineValue" in items[0]

    def test_filters(self, demo_client: TestClient):
        params = {"workspaceId": ATLAS_ID, "keyword": "leverage", "type": "covenant"}
        items = demo_client.get("/drifts", params=params, headers=LEGAL).json()

        assert [item["title"] for item in items] == ["Maximum Leverage Ratio Change"]

    def test_counts(self, demo_client: TestClient):
        count = demo_client.get("/drifts/high-drift-count", params={"workspaceId": ATLAS_ID}, headers=RISK)
        blocked = demo_client.get("/drifts/publish-blocked", params={"workspaceId": BEACON_ID}, headers=RISK)

        assert count.json() == {"count": 2}
        assert blocked.json() == {"blocked": False}

    def test_override_then_conflict(self, demo_client: TestClient):
        drift = first_drift(demo_client, ATLAS_ID, severity="HIGH")

        response = demo_client.post(f"/drifts/{drift['id']}/override", json={"reason": "Amendment signed"}, headers=AGENT)
        assert response.status_code == 200
        assert response.json()["status"] == "overridden"
        assert response.json()["baselineValue"] == drift["currentValue"]

        again = demo_client.post(f"/drifts/{drift['id']}/override", json={"reason": "Again"}, headers=AGENT)
        assert again.status_code == 409
        assert again.json()["code"] == "CONFLICT"

    def test_empty_reason_rejected(self, demo_client: TestClient):
        drift = first_drift(demo_client, ATLAS_ID)

        response = demo_client.post(f"/drifts/{drift['id']}/approve", json={"reason": "  "}, headers=RISK)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert demo_client.get(f"/drifts/{drift['id']}", headers=RISK).json()["status"] == "unresolved"

    def test_approve_requires_risk_role(self, demo_client: TestClient):
        drift = first_drift(demo_client, ATLAS_ID)

        denied = demo_client.post(f"/drifts/{drift['id']}/approve", json={"reason": "OK"}, headers=LEGAL)
        allowed = demo_client.post(f"/drifts/{drift['id']}/approve", json={"reason": "OK"}, headers=RISK)

        assert denied.status_code == 403
        assert allowed.json()["status"] == "approved"

    def test_variable_edit_creates_drift(self, demo_client: TestClient):
        graph = demo_client.get(f"/graph/{BEACON_ID}", headers=AGENT).json()
        node = next(n for n in graph["nodes"] if n["label"] == "Cross Default Threshold")

        response = demo_client.patch(
            f"/variables/{node['variableId']}",
            json={"value": "12,000,000", "reason": "Lender request", "reasonCategory": "borrower_request"},
            headers=LEGAL,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["variable"]["value"] == "12,000,000"
        assert data["drift"]["title"] == "Cross Default Threshold Change"
        assert data["drift"]["severity"] == "MEDIUM"

    def test_variable_edit_rejects_unknown_fields(self, demo_client: TestClient):
        graph = demo_client.get(f"/graph/{BEACON_ID}", headers=AGENT).json()
        node = next(n for n in graph["nodes"] if n["variableId"])

        response = demo_client.patch(f"/variables/{node['variableId']}", json={"baselineValue": "1"}, headers=LEGAL)
        assert response.status_code == 400

    def test_recompute(self, demo_client: TestClient):
        response = demo_client.post("/drifts/recompute", params={"workspaceId": ATLAS_ID}, headers=AGENT)
        assert response.json() == {"driftCount": 3}


class TestGoldenRecordApi:
    def test_atlas_in_review(self, demo_client: TestClient):
        data = demo_client.get(f"/golden-records/{ATLAS_ID}", headers=RISK).json()

        assert data["status"] == "IN_REVIEW"
        assert data["integrityScore"] == 87
        assert data["unresolvedHighDriftCount"] == 2
        assert json.loads(data["schemaJson"])["version"] == "1.0"

    def test_publish_blocked_body(self, demo_client: TestClient):
        response = demo_client.post(f"/golden-records/{ATLAS_ID}/publish", json={"reason": "Closing"}, headers=AGENT)

        assert response.status_code == 403
        body = response.json()
        assert body["code"] == "FORBIDDEN"
        assert "IN_REVIEW" in body["message"]
        assert body["details"] == {"integrityScore": 87, "unresolvedHighDriftCount": 2}

        check = demo_client.get(f"/golden-records/{ATLAS_ID}/publish-check", headers=AGENT).json()
        assert check["allowed"] is False

    def test_publish_ready_record(self, demo_client: TestClient):
        response = demo_client.post(f"/golden-records/{BEACON_ID}/publish", json={"reason": "Closing"}, headers=AGENT)

        assert response.status_code == 200
        assert {c["status"] for c in response.json()["connectors"]} == {"READY"}

        events = demo_client.get(
            "/audit-events", params={"workspaceId": BEACON_ID, "eventType": "PUBLISH"}, headers=AGENT
        ).json()
        assert len(events) == 1
        assert events[0]["actorName"] == "Agent Bank"
        assert events[0]["reason"] == "Closing"

    def test_publish_requires_reason(self, demo_client: TestClient):
        response = demo_client.post(f"/golden-records/{BEACON_ID}/publish", json={}, headers=AGENT)
        assert response.status_code == 400

    def test_export(self, demo_client: TestClient):
        response = demo_client.post(f"/golden-records/{BEACON_ID}/export", headers=AGENT)

        assert response.status_code == 200
        data = response.json()
        assert data["filename"].startswith("golden_record_Project_Beacon_")
        assert json.loads(data["schemaJson"])["workspace"]["currency"] == "EUR"

    def test_connectors_and_covenants(self, demo_client: TestClient):
        connectors = demo_client.get(f"/golden-records/{ATLAS_ID}/connectors", headers=AGENT).json()
        covenants = demo_client.get(f"/golden-records/{ATLAS_ID}/covenants", headers=AGENT).json()

        assert len(connectors) == 4
        assert {c["calculationBasis"] for c in covenants} == {
            "Total Net Debt / Consolidated EBITDA",
            "Consolidated EBITDA / Net Finance Charges",
        }


class TestGovernanceApi:
    def test_admin_patch(self, demo_client: TestClient):
        response = demo_client.patch(
            f"/workspaces/{ATLAS_ID}/governance", json={"legalCanRevertDraft": True}, headers=AGENT
        )

        assert response.status_code == 200
        assert response.json()["legalCanRevertDraft"] is True
        assert response.json()["publishBlockedWhenHighDrift"] is True

        rules = demo_client.get(f"/workspaces/{ATLAS_ID}/governance", headers=LEGAL).json()
        assert rules["legalCanRevertDraft"] is True

    def test_non_admin_patch_forbidden(self, demo_client: TestClient):
        response = demo_client.patch(
            f"/workspaces/{ATLAS_ID}/governance", json={"legalCanRevertDraft": True}, headers=RISK
        )
        assert response.status_code == 403

    @pytest.mark.parametrize("body", [{"unknownRule": True}, {"legalCanRevertDraft": "maybe"}])
    def test_invalid_patch(self, demo_client: TestClient, body):
        response = demo_client.patch(f"/workspaces/{ATLAS_ID}/governance", json=body, headers=AGENT)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
