"""API tests for evaluation, kill switches and audit."""

from fastapi.testclient import TestClient
from flagengine.core.config import settings
from flagengine.services.hasher import bucket

ADMIN_HEADERS = {"X-Actor-Id": "alice-admin", "X-Actor-Role": "ADMIN"}


def _create(client, key="dark-mode", **body):
    payload = {"key": key, "name": key.title(), **body}
    response = client.post("/api/flags", json=payload, headers=ADMIN_HEADERS)
    assert response.status_code == 201
    return response.json()["data"]


class TestEvaluationAPI:
    def test_evaluate_post(self, client):
        _create(client, enabled=True, rolloutPercentage=100)

        response = client.post("/api/evaluate", json={"flagKey": "dark-mode", "userId": "alice"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data == {
            "flagKey": "dark-mode",
            "userId": "alice",
            "enabled": True,
            "bucket": bucket("dark-mode", "alice"),
            "reason": "ROLLOUT_IN",
            "snapshotVersion": data["snapshotVersion"],
        }
        assert response.headers["X-Snapshot-Version"] == str(data["snapshotVersion"])

    def test_evaluate_needs_no_actor(self, client):
        _create(client)
        response = client.get("/api/evaluate/dark-mode/alice")
        assert response.status_code == 200
        assert response.json()["data"]["reason"] == "DISABLED"

    def test_evaluate_unknown_flag(self, client):
        response = client.post("/api/evaluate", json={"flagKey": "ghost", "userId": "alice"})
        assert response.status_code == 404

    def test_evaluate_empty_user(self, client):
        _create(client)
        response = client.post("/api/evaluate", json={"flagKey": "dark-mode", "userId": ""})
        assert response.status_code == 400

    def test_bulk(self, client):
        _create(client, enabled=True, rolloutPercentage=100)

        response = client.post(
            "/api/evaluate/bulk",
            json={"evaluations": [{"flagKey": "dark-mode", "userId": "alice"}, {"flagKey": "ghost", "userId": "bob"}]},
        )

        data = response.json()["data"]
        assert [result["flagKey"] for result in data["results"]] == ["dark-mode"]
        assert data["missing"] == [{"flagKey": "ghost", "userId": "bob"}]

    def test_snapshot_version_advances_after_mutation(self, client):
        _create(client, enabled=True)
        before = client.get("/api/evaluate/dark-mode/alice").json()["data"]["snapshotVersion"]
        client.post("/api/flags/dark-mode/toggle", json={"enabled": False}, headers=ADMIN_HEADERS)
        after = client.get("/api/evaluate/dark-mode/alice").json()["data"]

        assert after["snapshotVersion"] > before
        assert after["enabled"] is False


class TestKillSwitchAPI:
    def test_activate_and_deactivate(self, client):
        _create(client, enabled=True, rolloutPercentage=100)

        activated = client.post(
            "/api/admin/killswitch/dark-mode/activate", json={"reason": "Incident #7"}, headers=ADMIN_HEADERS
        )
        assert activated.status_code == 200
        assert activated.json()["data"]["active"] is True
        assert activated.json()["data"]["activatedBy"] == "alice-admin"

        evaluation = client.get("/api/evaluate/dark-mode/alice").json()["data"]
        assert (evaluation["enabled"], evaluation["reason"]) == (False, "KILL_SWITCH")

        active = client.get("/api/admin/killswitch/active", headers=ADMIN_HEADERS).json()["data"]
        assert [switch["flagKey"] for switch in active] == ["dark-mode"]

        deactivated = client.post("/api/admin/killswitch/dark-mode/deactivate", headers=ADMIN_HEADERS)
        assert deactivated.json()["data"]["active"] is False
        assert client.get("/api/evaluate/dark-mode/alice").json()["data"]["enabled"] is True

    def test_activate_requires_reason(self, client):
        _create(client)
        response = client.post("/api/admin/killswitch/dark-mode/activate", json={"reason": ""}, headers=ADMIN_HEADERS)
        assert response.status_code == 400

    def test_unknown_flag(self, client):
        response = client.get("/api/admin/killswitch/ghost", headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_get_implicit_inactive(self, client):
        _create(client)
        response = client.get("/api/admin/killswitch/dark-mode", headers=ADMIN_HEADERS)
        assert response.json()["data"]["active"] is False


class TestAuditAPI:
    def test_recent_and_history(self, client):
        _create(client, key="alpha")
        _create(client, key="beta")
        client.post("/api/flags/alpha/toggle", json={"enabled": True}, headers=ADMIN_HEADERS)

        recent = client.get("/api/audit?limit=2", headers=ADMIN_HEADERS).json()["data"]
        assert [(entry["entityKey"], entry["action"]) for entry in recent] == [("alpha", "TOGGLE"), ("beta", "CREATE")]

        history = client.get("/api/audit/flag/alpha", headers=ADMIN_HEADERS).json()["data"]
        assert [entry["action"] for entry in history] == ["TOGGLE", "CREATE"]

        by_actor = client.get("/api/audit/user/alice-admin", headers=ADMIN_HEADERS).json()["data"]
        assert len(by_actor) == 3

    def test_since_hours(self, client):
        _create(client)
        response = client.get("/api/audit?sinceHours=1", headers=ADMIN_HEADERS)
        assert len(response.json()["data"]) == 1

    def test_invalid_limit(self, client):
        assert client.get("/api/audit?limit=0", headers=ADMIN_HEADERS).status_code == 400

    def test_audit_requires_admin(self, client):
        assert client.get("/api/audit").status_code == 401


class TestOperationalEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        body = response.json()
        assert body["checks"]["database"] is True
        assert body["checks"]["redis"] is None

    def test_metrics(self, client):
        _create(client, enabled=True, rolloutPercentage=100)
        client.get("/api/evaluate/dark-mode/alice")

        response = client.get("/metrics")
        assert response.status_code == 200
        assert "flagengine_evaluations_total" in response.text

    def test_default_rate_limit_applies_to_every_route(self, flag_engine, monkeypatch):
        from flagengine.main import create_app

        monkeypatch.setattr(settings, "RATE_LIMIT_DEFAULT", "2/minute")
        app = create_app(flag_engine)

        with TestClient(app) as limited:
            statuses = [limited.get("/api/flags", headers=ADMIN_HEADERS).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]
