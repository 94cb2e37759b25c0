"""
API endpoint tests
"""
import jwt
import pytest
from fastapi.testclient import TestClient

from approval_engine.api.app import create_app
from approval_engine.config import EngineSettings
from approval_engine.services import build_services
from approval_engine.storage.repository import InMemoryTemplateRepository, InMemoryInstanceRepository


def actor(actor_id, role):
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}


ADMIN = actor("admin-1", "ADMIN")
ORGANIZER = actor("org-1", "ORGANIZER")
BOARD = actor("board-1", "BOARD")


def create_scenario(client):
    """Create the review/board/auto-complete template over HTTP"""
    response = client.post(
        "/api/v1/templates/",
        json={"name": "T", "entity_type": "CONTESTANT", "description": "Scenario"},
        headers=ADMIN
    )
    assert response.status_code == 201
    template_id = response.json()["id"]

    steps = {}
    for name, order, role, actions, auto in [
        ("S1", 1, "ORGANIZER", ["APPROVE", "REJECT"], False),
        ("S2", 2, "BOARD", ["APPROVE", "REJECT"], False),
        ("S3", 3, "ADMIN", ["COMPLETE"], True),
    ]:
        response = client.post(
            f"/api/v1/templates/{template_id}/steps",
            json={"name": name, "step_order": order, "required_role": role,
                  "actions": actions, "auto_advance": auto},
            headers=ADMIN
        )
        assert response.status_code == 201
        steps[name] = response.json()["id"]

    for source, target in [("S1", "S2"), ("S2", "S3")]:
        response = client.post(
            f"/api/v1/templates/{template_id}/transitions",
            json={"from_step_id": steps[source], "to_step_id": steps[target], "condition": "APPROVE"},
            headers=ADMIN
        )
        assert response.status_code == 201

    return template_id, steps


class TestApprovalAPI:
    """API tests with header-supplied identities"""

    @pytest.fixture
    def client(self):
        settings = EngineSettings(sweeper_enabled=False, auth_disabled=True)
        services = build_services(InMemoryTemplateRepository(), InMemoryInstanceRepository(), settings)
        app = create_app(settings, services=services)
        with TestClient(app) as client:
            yield client

    def test_root_and_health(self, client):
        assert client.get("/").json()["name"] == "Approval Engine API"

        response = client.get("/api/v1/monitoring/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["checks"]["sweeper"] is False
        assert "X-Request-ID" in response.headers

    def test_template_lifecycle(self, client):
        template_id, steps = create_scenario(client)

        response = client.get(f"/api/v1/templates/{template_id}", headers=ORGANIZER)
        assert response.status_code == 200
        body = response.json()
        assert [s["name"] for s in body["steps"]] == ["S1", "S2", "S3"]
        assert len(body["transitions"]) == 2

        response = client.post(f"/api/v1/templates/{template_id}/validate", headers=ORGANIZER)
        assert response.json() == {"is_valid": True, "errors": []}

        response = client.get("/api/v1/templates/", params={"entity_type": "CONTESTANT"}, headers=ORGANIZER)
        assert [t["id"] for t in response.json()] == [template_id]

        response = client.patch(f"/api/v1/templates/{template_id}", json={"description": "new"}, headers=ADMIN)
        assert response.json()["description"] == "new"

        response = client.delete(f"/api/v1/templates/{template_id}", headers=ADMIN)
        assert response.json() == {"template_id": template_id, "deleted": True}
        assert client.get(f"/api/v1/templates/{template_id}", headers=ADMIN).status_code == 404

    def test_template_writes_require_admin(self, client):
        response = client.post(
            "/api/v1/templates/",
            json={"name": "T", "entity_type": "CONTESTANT"},
            headers=ORGANIZER
        )
        assert response.status_code == 403

    def test_missing_role_is_unauthorized(self, client):
        response = client.get("/api/v1/templates/", headers={"X-Actor-Id": "someone"})
        assert response.status_code == 401

    def test_validation_errors_map_to_400(self, client):
        template_id, steps = create_scenario(client)

        response = client.post(
            f"/api/v1/templates/{template_id}/steps",
            json={"name": "Dup", "step_order": 1, "required_role": "ADMIN", "actions": ["COMPLETE"]},
            headers=ADMIN
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

        response = client.post(
            f"/api/v1/templates/{template_id}/transitions",
            json={"from_step_id": steps["S1"], "to_step_id": "elsewhere", "condition": "APPROVE"},
            headers=ADMIN
        )
        assert response.status_code == 400

    def test_instance_flow(self, client):
        template_id, steps = create_scenario(client)

        response = client.post(
            "/api/v1/instances/",
            json={"template_id": template_id, "entity_type": "CONTESTANT", "entity_id": "c-1"},
            headers=ORGANIZER
        )
        assert response.status_code == 201
        instance = response.json()
        assert instance["current_step_id"] == steps["S1"]
        assert instance["initiated_by"] == "org-1"
        instance_id = instance["id"]

        response = client.post(
            f"/api/v1/instances/{instance_id}/advance",
            json={"action": "APPROVE", "comments": "looks good"},
            headers=ORGANIZER
        )
        assert response.status_code == 200
        assert response.json()["current_step_id"] == steps["S2"]

        response = client.post(f"/api/v1/instances/{instance_id}/advance", json={"action": "APPROVE"}, headers=BOARD)
        assert response.json()["status"] == "COMPLETED"
        assert response.json()["version"] == 2

        details = client.get(f"/api/v1/instances/{instance_id}", headers=ORGANIZER).json()
        assert details["template"]["id"] == template_id
        assert details["current_step"]["name"] == "S3"

        history = client.get(f"/api/v1/instances/{instance_id}/history", headers=ORGANIZER).json()
        assert [e["action"] for e in history] == ["APPROVE", "APPROVE", "COMPLETE"]
        assert history[0]["comments"] == "looks good"

        listed = client.get(
            "/api/v1/instances/",
            params={"entity_type": "CONTESTANT", "entity_id": "c-1", "status": "COMPLETED"},
            headers=ORGANIZER
        ).json()
        assert [i["id"] for i in listed] == [instance_id]

    def test_engine_errors_map_to_status_codes(self, client):
        template_id, _ = create_scenario(client)
        instance_id = client.post(
            "/api/v1/instances/",
            json={"template_id": template_id, "entity_type": "CONTESTANT", "entity_id": "c-1"},
            headers=ORGANIZER
        ).json()["id"]

        response = client.post(f"/api/v1/instances/{instance_id}/advance", json={"action": "APPROVE"}, headers=BOARD)
        assert response.status_code == 403
        assert "permission" in response.json()["message"]

        response = client.post(f"/api/v1/instances/{instance_id}/advance", json={"action": "CERTIFY"}, headers=ORGANIZER)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_action"

        response = client.get("/api/v1/instances/missing", headers=ORGANIZER)
        assert response.status_code == 404

    def test_cancel_instance(self, client):
        template_id, _ = create_scenario(client)
        instance_id = client.post(
            "/api/v1/instances/",
            json={"template_id": template_id, "entity_type": "CONTESTANT", "entity_id": "c-1"},
            headers=ORGANIZER
        ).json()["id"]

        response = client.post(f"/api/v1/instances/{instance_id}/cancel", json={"reason": "dup"}, headers=BOARD)
        assert response.status_code == 403

        response = client.post(f"/api/v1/instances/{instance_id}/cancel", json={"reason": "dup"}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"

    def test_metrics_bottlenecks_and_sweep(self, client):
        template_id, _ = create_scenario(client)
        instance_id = client.post(
            "/api/v1/instances/",
            json={"template_id": template_id, "entity_type": "CONTESTANT", "entity_id": "c-1"},
            headers=ORGANIZER
        ).json()["id"]
        client.post(f"/api/v1/instances/{instance_id}/advance", json={"action": "REJECT"}, headers=ORGANIZER)

        metrics = client.get("/api/v1/metrics/", params={"template_id": template_id}, headers=ORGANIZER).json()
        assert metrics["total_instances"] == 1
        assert metrics["completion_rate"] == 0.0
        assert metrics["avg_completion_time"] is None

        report = client.get(f"/api/v1/templates/{template_id}/bottlenecks", headers=ORGANIZER).json()
        assert report["template_id"] == template_id
        assert report["threshold"] == 1.5

        assert client.post("/api/v1/monitoring/sweep", headers=ORGANIZER).status_code == 403
        sweep = client.post("/api/v1/monitoring/sweep", headers=ADMIN).json()
        assert sweep["scanned"] == 0


class TestJWTAuthentication:
    """API tests with bearer tokens"""

    SECRET = "approval-engine-test-secret-0123456789"

    @pytest.fixture
    def client(self):
        settings = EngineSettings(sweeper_enabled=False, auth_disabled=False, jwt_secret_key=self.SECRET)
        services = build_services(InMemoryTemplateRepository(), InMemoryInstanceRepository(), settings)
        with TestClient(create_app(settings, services=services)) as client:
            yield client

    def token(self, subject, role, secret=None):
        return jwt.encode({"sub": subject, "role": role}, secret or self.SECRET, algorithm="HS256")

    def test_missing_token(self, client):
        response = client.get("/api/v1/templates/")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_invalid_token(self, client):
        token = self.token("admin-1", "ADMIN", secret="another-secret-entirely-0123456789")
        headers = {"Authorization": f"Bearer {token}"}
        response = client.get("/api/v1/templates/", headers=headers)
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    def test_identity_from_token(self, client):
        headers = {"Authorization": f"Bearer {self.token('admin-1', 'ADMIN')}"}
        response = client.post(
            "/api/v1/templates/",
            json={"name": "T", "entity_type": "CONTESTANT"},
            headers=headers
        )
        assert response.status_code == 201

    def test_health_needs_no_token(self, client):
        assert client.get("/api/v1/monitoring/health").status_code == 200
