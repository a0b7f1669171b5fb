"""
Pytest test module for the HTTP API.

Uses the FastAPI TestClient against an application wired to the in-memory
version registry (see conftest.py). The AI collaborator is replaced through
`app.dependency_overrides` with a client served by httpx.MockTransport.

Test Categories:
- TestDashboardEndpoints: create / read / history / versions
- TestPatchEndpoints: simulate / commit / rollback
- TestErrorEnvelope: status mapping, trace ids, request validation
- TestIdentityAndRateLimit: gateway identity headers and request budgets
- TestProposeEndpoint: AI-proposed edits are simulated, never committed
- TestInsightsEndpoint: validation gate and rule output
- TestHealth: health and root endpoints
"""

import json
from typing import Any, Dict

import httpx
import pytest

from dashforge.core.config import Settings
from dashforge.core.dependencies import get_proposal_client, get_settings_dependency
from dashforge.core.rate_limit import FixedWindowRateLimiter
from dashforge.services.proposal import ProposalClient
from dashforge.tests.conftest import make_daily_rows


ADD_CPL = [{"op": "add", "path": "/kpis/-", "value": {"key": "cpl", "label": "CPL"}}]


def create_dashboard(client, document: Dict[str, Any], dashboard_id: str = "sales") -> Dict[str, Any]:
    response = client.post("/dashboards", json={"dashboardId": dashboard_id, "document": document})
    assert response.status_code == 201, response.text
    return response.json()


class TestDashboardEndpoints:
    """Tests for dashboard creation and reads."""

    def test_create(self, client, sample_document) -> None:
        data = create_dashboard(client, sample_document)
        assert data["ok"] is True
        assert data["dashboardId"] == "sales"
        assert data["version"] == 1
        assert data["document"]["version"] == 1
        assert data["traceId"]

    def test_create_duplicate(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        response = client.post("/dashboards", json={"dashboardId": "sales", "document": sample_document})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_get(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        data = client.get("/dashboards/sales").json()
        assert data["version"] == 1
        assert data["document"]["title"] == "Sales Funnel"
        assert data["updatedAt"]

    def test_get_unknown(self, client) -> None:
        response = client.get("/dashboards/missing")
        assert response.status_code == 404
        body = response.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "NOT_FOUND"

    def test_history(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        for version in (1, 2, 3):
            client.post("/dashboards/sales/commit", json={
                "expectedVersion": version,
                "operations": [{"op": "replace", "path": "/title", "value": f"Title {version}"}],
                "note": f"edit {version}",
            })

        data = client.get("/dashboards/sales/history", params={"limit": 2}).json()
        assert [v["version"] for v in data["versions"]] == [4, 3]
        assert data["versions"][0]["note"] == "edit 3"
        assert "document" not in data["versions"][0]

    def test_version_snapshot(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        client.post("/dashboards/sales/commit", json={"expectedVersion": 1, "operations": ADD_CPL})
        data = client.get("/dashboards/sales/versions/1").json()
        assert data["version"] == 1
        assert len(data["document"]["kpis"]) == 2

    def test_unknown_version(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        assert client.get("/dashboards/sales/versions/9").status_code == 404


class TestPatchEndpoints:
    """Tests for simulate, commit and rollback."""

    def test_simulate_valid(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        response = client.post("/dashboards/sales/simulate", json={"currentVersion": 1, "operations": ADD_CPL})
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["valid"] is True
        assert data["willBeVersion"] == 2
        assert data["previewMetrics"]["kpisCount"] == 3
        assert data["diffSummary"] == ["KPIs: 2 -> 3 (+1)"]
        assert client.get("/dashboards/sales").json()["version"] == 1, "Simulation must not commit"

    def test_simulate_invalid_is_200(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        response = client.post("/dashboards/sales/simulate", json={
            "currentVersion": 1,
            "operations": [{"op": "replace", "path": "/tenant_id", "value": "other"}],
        })
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["valid"] is False
        assert data["error"]["code"] == "PATCH_PATH_FORBIDDEN"
        assert data["previewDocument"] is None

    def test_simulate_unknown_dashboard_is_200(self, client) -> None:
        response = client.post("/dashboards/missing/simulate", json={"currentVersion": 1, "operations": ADD_CPL})
        assert response.status_code == 200
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_commit(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        response = client.post("/dashboards/sales/commit", json={
            "expectedVersion": 1,
            "operations": ADD_CPL,
            "note": "Add CPL",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["committedVersion"] == 2
        assert data["previousVersion"] == 1
        assert data["diffSummary"] == ["KPIs: 2 -> 3 (+1)"]
        assert client.get("/dashboards/sales").json()["document"]["kpis"][-1]["key"] == "cpl"

    def test_commit_conflict(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        client.post("/dashboards/sales/commit", json={"expectedVersion": 1, "operations": ADD_CPL})
        response = client.post("/dashboards/sales/commit", json={"expectedVersion": 1, "operations": ADD_CPL})
        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "VERSION_CONFLICT"
        assert error["details"]["currentVersion"] == 2

    def test_commit_forbidden_path(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        response = client.post("/dashboards/sales/commit", json={
            "expectedVersion": 1,
            "operations": [{"op": "replace", "path": "/data_source_id", "value": "other"}],
        })
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "PATCH_PATH_FORBIDDEN"
        assert client.get("/dashboards/sales").json()["version"] == 1

    def test_non_object_root_rejected(self, client) -> None:
        create_dashboard(client, {"version": 1, "kpis": [{"key": "leads"}]})
        operations = [{"op": "replace", "path": "", "value": [1, 2]}]

        simulated = client.post("/dashboards/sales/simulate", json={"currentVersion": 1, "operations": operations})
        assert simulated.status_code == 200
        assert simulated.json()["valid"] is False
        assert simulated.json()["error"]["code"] == "VALIDATION_ERROR"

        committed = client.post("/dashboards/sales/commit", json={"expectedVersion": 1, "operations": operations})
        assert committed.status_code == 400
        assert committed.json()["error"]["code"] == "VALIDATION_ERROR"
        assert client.get("/dashboards/sales").json()["version"] == 1

    def test_rollback(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        client.post("/dashboards/sales/commit", json={
            "expectedVersion": 1,
            "operations": [{"op": "replace", "path": "/title", "value": "Changed"}],
        })
        data = client.post("/dashboards/sales/rollback", json={"targetVersion": 1}).json()
        assert data["committedVersion"] == 3
        assert data["rolledBackTo"] == 1
        assert data["note"] == "Rollback to version 1"
        assert client.get("/dashboards/sales").json()["document"]["title"] == "Sales Funnel"

    def test_rollback_unknown_version(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        response = client.post("/dashboards/sales/rollback", json={"targetVersion": 5})
        assert response.status_code == 404


class TestErrorEnvelope:
    """Tests for the shared error envelope."""

    def test_trace_id_echoed(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        response = client.get("/dashboards/sales", headers={"X-Trace-Id": "trace-123"})
        assert response.headers["X-Trace-Id"] == "trace-123"
        assert response.json()["traceId"] == "trace-123"

    def test_trace_id_on_errors(self, client) -> None:
        response = client.get("/dashboards/missing", headers={"X-Trace-Id": "trace-404"})
        assert response.headers["X-Trace-Id"] == "trace-404"
        assert response.json()["traceId"] == "trace-404"

    def test_generated_trace_id(self, client) -> None:
        response = client.get("/dashboards/missing")
        assert len(response.json()["traceId"]) == 8

    def test_request_validation(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        response = client.post("/dashboards/sales/simulate", json={"currentVersion": 1, "operations": []})
        assert response.status_code == 400
        body = response.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["details"]["errors"]


class TestIdentityAndRateLimit:
    """Tests for caller identity and rate limiting."""

    @pytest.fixture
    def strict_client(self, app, client):
        settings = Settings(_env_file=None, database_url=None, ai_api_url=None, require_identity=True)
        app.dependency_overrides[get_settings_dependency] = lambda: settings
        return client

    def test_missing_identity(self, strict_client) -> None:
        response = strict_client.get("/dashboards/sales")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_FAILED"

    def test_viewer_cannot_edit(self, strict_client, sample_document) -> None:
        response = strict_client.post(
            "/dashboards",
            json={"document": sample_document},
            headers={"X-User-Id": "u1", "X-User-Role": "viewer"},
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_editor_can_edit(self, strict_client, sample_document) -> None:
        response = strict_client.post(
            "/dashboards",
            json={"dashboardId": "sales", "document": sample_document},
            headers={"X-User-Id": "u1", "X-User-Role": "editor"},
        )
        assert response.status_code == 201
        history = strict_client.get("/dashboards/sales/history", headers={"X-User-Id": "u1"}).json()
        assert history["versions"][0]["createdBy"] == "u1"

    def test_rate_limited(self, app, client) -> None:
        app.state.rate_limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60)
        body = {"rows": make_daily_rows(3), "dateRange": {"start": "2024-06-01", "end": "2024-06-03"}}
        assert client.post("/insights", json=body).status_code == 200
        response = client.post("/insights", json=body)
        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "RATE_LIMITED"
        assert error["details"]["retryAfterSeconds"] > 0


class TestProposeEndpoint:
    """Tests for POST /dashboards/{id}/propose."""

    @staticmethod
    def override_client(app, content: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

        client = ProposalClient(
            url="https://ai.example.com/v1",
            api_key=None,
            model="test-model",
            transport=httpx.MockTransport(handler),
        )
        app.dependency_overrides[get_proposal_client] = lambda: client

    def test_proposal_is_simulated(self, app, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        self.override_client(app, json.dumps({"patch": ADD_CPL, "summary": ["Add CPL"], "confidence": 0.7}))

        response = client.post("/dashboards/sales/propose", json={
            "userRequest": "Add a CPL KPI",
            "availableFields": ["spend", "leads"],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["proposal"]["patch"] == ADD_CPL
        assert data["proposal"]["confidence"] == 0.7
        assert data["simulation"]["valid"] is True
        assert data["simulation"]["willBeVersion"] == 2
        assert client.get("/dashboards/sales").json()["version"] == 1, "Proposals are never committed"

    def test_policy_violating_proposal(self, app, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        patch = [{"op": "remove", "path": "/ui/tabs/2"}]
        self.override_client(app, json.dumps({"patch": patch, "summary": ["Remove Details"]}))

        data = client.post("/dashboards/sales/propose", json={"userRequest": "Remove the details tab"}).json()
        assert data["ok"] is True
        assert data["simulation"]["valid"] is False
        assert data["simulation"]["errors"][0]["code"] == "GUARDRAIL_BLOCKED"

    def test_unparseable_proposal(self, app, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        self.override_client(app, "Sorry, I can't do that.")
        response = client.post("/dashboards/sales/propose", json={"userRequest": "Add CPL"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "PARSE_ERROR"

    def test_not_configured(self, client, sample_document) -> None:
        create_dashboard(client, sample_document)
        response = client.post("/dashboards/sales/propose", json={"userRequest": "Add CPL"})
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "CONFIG_ERROR"


class TestInsightsEndpoint:
    """Tests for POST /insights."""

    DATE_RANGE = {"start": "2024-06-08", "end": "2024-06-14"}

    def test_insights_generated(self, client) -> None:
        response = client.post("/insights", json={
            "rows": make_daily_rows(7, spend=100.0, leads=10, sales=1),
            "previousRows": make_daily_rows(7, spend=100.0, leads=20, sales=1),
            "dateRange": self.DATE_RANGE,
            "source": "facebook_ads",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["validation"]["isValid"] is True
        assert [i["ruleId"] for i in data["insights"]] == ["cpl_increase", "leads_drop"]
        first = data["insights"][0]
        assert first["priority"] == "critical"
        assert first["trace"]["source"] == "facebook_ads"
        assert first["trace"]["dateRange"] == self.DATE_RANGE
        assert data["aggregates"]["cpl"] == pytest.approx(10.0)
        assert data["previousAggregates"]["cpl"] == pytest.approx(5.0)

    def test_insufficient_data(self, client) -> None:
        response = client.post("/insights", json={"rows": make_daily_rows(2), "dateRange": self.DATE_RANGE})
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["insights"] == []
        assert data["validation"]["errors"][0]["code"] == "INSUFFICIENT_DATA"
        assert data["error"]["code"] == "VALIDATION_ERROR"

    def test_empty_dataset(self, client) -> None:
        data = client.post("/insights", json={"rows": [], "dateRange": self.DATE_RANGE}).json()
        assert data["ok"] is False
        assert data["validation"]["errors"][0]["message"] == "Dataset is empty"
        assert data["aggregates"] == {}

    def test_supplied_aggregates(self, client) -> None:
        data = client.post("/insights", json={
            "rows": make_daily_rows(3),
            "aggregates": {"spend": 300.0, "leads": 30.0, "cpl": 10.0},
            "previousAggregates": {"spend": 300.0, "leads": 60.0, "cpl": 5.0},
            "dateRange": self.DATE_RANGE,
        }).json()
        assert data["ok"] is True
        assert {i["ruleId"] for i in data["insights"]} == {"cpl_increase", "leads_drop"}

    def test_validator_defaults_from_settings(self, app, client) -> None:
        settings = Settings(_env_file=None, database_url=None, ai_api_url=None, min_rows_for_insights=5)
        app.dependency_overrides[get_settings_dependency] = lambda: settings
        data = client.post("/insights", json={"rows": make_daily_rows(3), "dateRange": self.DATE_RANGE}).json()
        assert data["ok"] is False
        assert data["validation"]["errors"][0]["details"]["minRows"] == 5

    def test_missing_date_range(self, client) -> None:
        response = client.post("/insights", json={"rows": make_daily_rows(3)})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestHealth:
    """Tests for the health and root endpoints."""

    def test_health(self, client) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"

    def test_root(self, client) -> None:
        assert client.get("/").json()["name"] == "DashForge API"
