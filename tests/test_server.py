"""Tests for the HTTP server."""

import pytest
from fastapi.testclient import TestClient

from rideai.config import SystemConfig
from rideai.server import app as app_module
from rideai.server.app import create_app
from rideai.system import RideAISystem


@pytest.fixture
def client():
    """Test client whose lifespan starts a system with no provider keys."""
    config = SystemConfig.for_testing(instance_id="server-test")
    app = create_app(system=RideAISystem(config))
    with TestClient(app) as test_client:
        yield test_client
    assert app_module._system is None


class TestRootEndpoint:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "rideai"


class TestHealthEndpoint:
    """Tests for /v1/health endpoint."""

    def test_health_returns_ok(self, client):
        response = client.get("/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["instance_id"] == "server-test"
        assert data["providers"]["ml"]["status"] == "healthy"
        assert data["interactions"] == 0


class TestInvokeEndpoint:
    """Tests for /v1/invoke/{feature}."""

    def test_price(self, client):
        response = client.post(
            "/v1/invoke/price",
            json={"payload": {"distance": 8.5, "time": 25, "hour": 12}},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "ml"
        assert data["value"]["final_price"] == 19.95
        assert data["cost"] == "0"
        assert data["is_fallback"] is False
        assert data["error_kind"] == "none"

    def test_invalid_payload_is_still_200(self, client):
        response = client.post("/v1/invoke/match", json={"payload": {"drivers": []}})
        assert response.status_code == 200
        data = response.json()
        assert data["error_kind"] == "invalid_input"
        assert data["value"]["message"] == "No drivers available"

    def test_unknown_feature(self, client):
        response = client.post("/v1/invoke/teleport", json={"payload": {}})
        assert response.status_code == 404

    def test_interactions_are_counted(self, client):
        client.post("/v1/invoke/chat", json={"payload": {"message": "hello"}})
        assert client.get("/v1/health").json()["interactions"] == 1


class TestUsageEndpoints:
    """Tests for /v1/usage."""

    def test_usage_and_reset(self, client):
        client.post("/v1/invoke/price", json={"payload": {"distance": 2, "time": 5}})

        data = client.get("/v1/usage").json()
        assert data["totals"]["request_count"] == 1
        assert data["records"][0]["provider_id"] == "ml"
        assert data["records"][0]["feature"] == "price"

        assert client.post("/v1/usage/reset").json() == {"success": True}
        assert client.get("/v1/usage").json()["totals"]["request_count"] == 0


class TestCredentialEndpoints:
    """Tests for /v1/credentials."""

    def test_list_never_returns_secrets(self, client):
        client.put("/v1/credentials/openai", json={"secret": "sk-hidden"})

        response = client.get("/v1/credentials")

        assert response.status_code == 200
        assert "sk-hidden" not in response.text
        by_id = {c["provider_id"]: c for c in response.json()}
        assert set(by_id) == {"openai", "gemini", "mapbox"}
        assert by_id["openai"]["configured"] is True
        assert by_id["openai"]["validity"] == "unknown"
        assert by_id["gemini"]["configured"] is False

    def test_blank_secret_clears(self, client):
        client.put("/v1/credentials/gemini", json={"secret": "AIzaTest"})
        response = client.put("/v1/credentials/gemini", json={"secret": ""})
        assert response.json()["configured"] is False

    def test_unknown_provider(self, client):
        assert client.put("/v1/credentials/ml", json={"secret": "x"}).status_code == 404

    def test_validate_format_error(self, client):
        client.put("/v1/credentials/openai", json={"secret": "wrong-prefix"})

        response = client.post("/v1/credentials/openai/validate")

        assert response.status_code == 200
        assert response.json() == {"provider_id": "openai", "valid": False, "reason": "format"}
