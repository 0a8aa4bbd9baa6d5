"""Tests for the Lab-Verdict HTTP API.

This suite covers:
- Root and health endpoints
- Ad-hoc evaluation with inline and stored rules
- Result submission, re-validation and audit trail
- Critical notification listing and acknowledgment
- Error handling (404, 409, 422, 503)
"""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from src.adapters.storage import DuckDBAdapter
from src.api.dependencies import get_storage_adapter
from src.api.main import app
from src.domain.ports import Result, RuleRepositoryError
from src.domain.results import CriticalResultNotification
from src.domain.rules import parse_rule

CRITICAL_RULE = {
    "id": "glu-crit",
    "testCode": "GLU",
    "ruleType": "critical",
    "priority": 1,
    "conditions": {"criticalLow": 40, "criticalHigh": 500},
}

RANGE_RULE = {
    "id": "glu-range",
    "testCode": "GLU",
    "ruleType": "range",
    "priority": 2,
    "conditions": {"minValue": 70, "maxValue": 100},
}


def result_body(result_id="res-1", value=95, **fields):
    body = {"id": result_id, "tenantId": "lab-1", "patientId": "P001", "testCode": "GLU", "value": value}
    body.update(fields)
    return body


@pytest.fixture
def storage():
    adapter = DuckDBAdapter(db_path=":memory:")
    assert adapter.initialize_schema().is_success()
    for document in (CRITICAL_RULE, RANGE_RULE):
        adapter.save_rule(parse_rule(document).value, tenant_id="lab-1")
    yield adapter
    adapter.close()


@pytest.fixture
def client(storage):
    app.dependency_overrides[get_storage_adapter] = lambda: storage
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


class TestRootEndpoint:
    """Test the root endpoint."""

    def test_root_endpoint_returns_info(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Lab-Verdict API"
        assert data["version"] == "1.0.0"
        assert data["docs"] == "/api/docs"
        assert data["health"] == "/api/health"

    def test_process_time_header(self, client):
        response = client.get("/")
        assert "X-Process-Time" in response.headers

    def test_request_id_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestHealthEndpoint:
    """Test the health check endpoint."""

    def test_healthy(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"]["status"] == "connected"
        assert data["database"]["type"] == "duckdb"
        assert data["overdue_notifications"] == 0

    def test_degraded_when_notification_overdue(self, client, storage):
        storage.emit_critical_notification(CriticalResultNotification(
            result_id="old-1", tenant_id="lab-1", created_at=datetime.now() - timedelta(hours=2)
        ))

        data = client.get("/api/health").json()
        assert data["status"] == "degraded"
        assert data["overdue_notifications"] == 1

    def test_unhealthy_when_query_fails(self):
        mock = Mock(spec=DuckDBAdapter)
        mock.query = Mock(return_value=Result.failure_result("connection lost", error_type="StorageError"))
        app.dependency_overrides[get_storage_adapter] = lambda: mock
        try:
            with TestClient(app) as test_client:
                response = test_client.get("/api/health")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        assert response.json()["status"] == "unhealthy"
        assert response.json()["database"]["status"] == "disconnected"


class TestValidateEndpoint:
    """Test ad-hoc evaluation."""

    def test_inline_rules(self, client):
        response = client.post("/api/validate", json={"testCode": "GLU", "value": 550, "rules": [CRITICAL_RULE]})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "requires_review"
        assert data["flag"] == "critical_high"
        assert data["is_critical"] is True
        assert data["verdict"]["warnings"] == ["Critical high value: 550 (>= 500)"]

    def test_stored_rules(self, client):
        response = client.post("/api/validate", json={"testCode": "GLU", "tenantId": "lab-1", "value": 65})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "validated"
        assert data["flag"] == "low"
        assert data["verdict"]["applied_rule_ids"] == ["glu-crit", "glu-range"]

    def test_no_rules_is_validated(self, client):
        response = client.post("/api/validate", json={"testCode": "NA", "tenantId": "lab-1", "value": 140})

        assert response.status_code == 200
        assert response.json()["status"] == "validated"
        assert response.json()["flag"] == "normal"

    def test_delta_with_previous_value(self, client):
        rule = {
            "id": "glu-delta",
            "testCode": "GLU",
            "ruleType": "delta",
            "conditions": {"deltaType": "absolute", "deltaThreshold": 20},
        }
        response = client.post(
            "/api/validate", json={"testCode": "GLU", "value": 130, "previousValue": 100, "rules": [rule]}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "requires_review"

    def test_malformed_inline_rule(self, client):
        response = client.post(
            "/api/validate",
            json={"testCode": "GLU", "value": 95, "rules": [CRITICAL_RULE, {"id": "x", "ruleType": "bogus"}]}
        )

        assert response.status_code == 422
        assert len(response.json()["detail"]) == 1

    def test_missing_value(self, client):
        response = client.post("/api/validate", json={"testCode": "GLU"})
        assert response.status_code == 422

    def test_repository_unavailable(self):
        mock = Mock(spec=DuckDBAdapter)
        mock.fetch_rules = Mock(side_effect=RuleRepositoryError("down", tenant_id="default", test_code="GLU"))
        app.dependency_overrides[get_storage_adapter] = lambda: mock
        try:
            with TestClient(app) as test_client:
                response = test_client.post("/api/validate", json={"testCode": "GLU", "value": 95})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503


class TestResultEndpoints:
    """Test result submission and re-validation."""

    def test_submit_normal_result(self, client):
        response = client.post("/api/results", json=result_body(value=85))

        assert response.status_code == 201
        data = response.json()
        assert data["result_id"] == "res-1"
        assert data["outcome"]["status"] == "validated"

        stored = client.get("/api/results/res-1").json()
        assert stored["status"] == "validated"
        assert stored["isCritical"] is False

    def test_submitted_status_is_ignored(self, client):
        body = result_body(value=600, status="validated", flag="normal", isCritical=False)

        response = client.post("/api/results", json=body)

        assert response.status_code == 201
        assert response.json()["outcome"]["status"] == "requires_review"
        stored = client.get("/api/results/res-1").json()
        assert stored["status"] == "requires_review"
        assert stored["flag"] == "critical_high"
        assert stored["isCritical"] is True
        pending = client.get("/api/notifications/pending").json()
        assert [n["resultId"] for n in pending] == ["res-1"]

    def test_duplicate_id_rejected(self, client):
        client.post("/api/results", json=result_body(value=600))

        response = client.post("/api/results", json=result_body(value=80))

        assert response.status_code == 409
        stored = client.get("/api/results/res-1").json()
        assert stored["value"] == 600
        assert stored["isCritical"] is True

    def test_submit_invalid_result(self, client):
        response = client.post("/api/results", json={"id": "res-1", "testCode": "GLU"})
        assert response.status_code == 422

    def test_get_missing_result(self, client):
        assert client.get("/api/results/nope").status_code == 404

    def test_validate_missing_result(self, client):
        assert client.post("/api/results/nope/validate").status_code == 404

    def test_already_processed(self, client):
        client.post("/api/results", json=result_body(value=85))

        response = client.post("/api/results/res-1/validate")
        assert response.status_code == 409

        forced = client.post("/api/results/res-1/validate", params={"force": "true"})
        assert forced.status_code == 200
        assert forced.json()["outcome"]["status"] == "validated"

    def test_audit_trail(self, client):
        client.post("/api/results", json=result_body(value=85))
        client.post("/api/results/res-1/validate", params={"force": "true"})

        response = client.get("/api/results/res-1/audit")

        assert response.status_code == 200
        entries = response.json()
        assert len(entries) == 2
        assert all(entry["action"] == "validation" for entry in entries)
        assert entries[0]["final_status"] == "validated"


class TestNotificationEndpoints:
    """Test critical notification listing and acknowledgment."""

    def test_critical_result_creates_notification(self, client):
        response = client.post("/api/results", json=result_body(value=550))

        assert response.status_code == 201
        assert response.json()["outcome"]["is_critical"] is True

        pending = client.get("/api/notifications/pending", params={"tenant_id": "lab-1"}).json()
        assert len(pending) == 1
        assert pending[0]["resultId"] == "res-1"
        assert pending[0]["notificationStatus"] == "pending"
        assert pending[0]["flag"] == "critical_high"

    def test_no_notification_for_normal_result(self, client):
        client.post("/api/results", json=result_body(value=85))
        assert client.get("/api/notifications/pending").json() == []

    def test_overdue_filter(self, client):
        client.post("/api/results", json=result_body(value=550))
        overdue = client.get("/api/notifications/pending", params={"overdue_minutes": 15}).json()
        assert overdue == []

    def test_acknowledge(self, client):
        client.post("/api/results", json=result_body(value=550))

        response = client.post(
            "/api/notifications/res-1/acknowledge",
            json={"acknowledgedBy": "Dr. Reyes", "notifiedTo": "Ward 4", "notificationMethod": "phone"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["notificationStatus"] == "acknowledged"
        assert data["acknowledgedBy"] == "Dr. Reyes"
        assert data["notificationMethod"] == "phone"
        assert client.get("/api/notifications/pending").json() == []

    def test_acknowledge_twice(self, client):
        client.post("/api/results", json=result_body(value=550))
        client.post("/api/notifications/res-1/acknowledge", json={"acknowledgedBy": "Dr. Reyes"})

        response = client.post("/api/notifications/res-1/acknowledge", json={"acknowledgedBy": "Dr. Chen"})
        assert response.status_code == 409

    def test_acknowledge_unknown(self, client):
        response = client.post("/api/notifications/nope/acknowledge", json={"acknowledgedBy": "Dr. Reyes"})
        assert response.status_code == 404

    def test_acknowledge_requires_actor(self, client):
        client.post("/api/results", json=result_body(value=550))
        response = client.post("/api/notifications/res-1/acknowledge", json={})
        assert response.status_code == 422
