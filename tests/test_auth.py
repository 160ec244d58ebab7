"""
Tests for API key authentication and the unauthenticated routes.

Tests cover:
- Bearer and X-API-Key headers
- Missing or wrong keys (401)
- No keys configured (503)
- Health, readiness and service info without auth
"""

import pytest
from fastapi.testclient import TestClient

from conftest import AUTH_HEADERS, TEST_API_KEY, make_settings

from yaklog.main import create_app


PROTECTED_ROUTES = [
    ("get", "/api/v1/messages"),
    ("post", "/api/v1/messages"),
    ("get", "/api/v1/messages/1"),
    ("patch", "/api/v1/messages/1"),
    ("delete", "/api/v1/messages/1"),
    ("get", "/api/v1/channels"),
    ("get", "/api/v1/context?channel=general"),
]


@pytest.fixture
def unconfigured_client(tmp_path):
    """Client for an app started with an empty YAKLOG_API_KEYS."""
    with TestClient(create_app(make_settings(tmp_path, YAKLOG_API_KEYS=""))) as test_client:
        yield test_client


class TestApiKeys:

    @pytest.mark.parametrize("method,path", PROTECTED_ROUTES)
    def test_missing_key_rejected(self, client, method, path):
        response = client.request(method.upper(), path)

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_wrong_bearer_rejected(self, client):
        response = client.get("/api/v1/messages", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_non_bearer_scheme_rejected(self, client):
        response = client.get("/api/v1/messages", headers={"Authorization": f"Basic {TEST_API_KEY}"})

        assert response.status_code == 401

    def test_bearer_accepted(self, client):
        response = client.get("/api/v1/messages", headers=AUTH_HEADERS)

        assert response.status_code == 200

    def test_x_api_key_accepted(self, client):
        response = client.get("/api/v1/messages", headers={"X-API-Key": TEST_API_KEY})

        assert response.status_code == 200

    def test_any_configured_key_accepted(self, tmp_path):
        app = create_app(make_settings(tmp_path, YAKLOG_API_KEYS="first, second ,"))
        with TestClient(app) as multi_client:
            assert multi_client.get("/api/v1/channels", headers={"X-API-Key": "second"}).status_code == 200
            assert multi_client.get("/api/v1/channels", headers={"X-API-Key": "third"}).status_code == 401

    @pytest.mark.parametrize("method,path", PROTECTED_ROUTES)
    def test_no_keys_configured_is_503(self, unconfigured_client, method, path):
        response = unconfigured_client.request(method.upper(), path, headers=AUTH_HEADERS)

        assert response.status_code == 503
        assert response.json()["error"] == "ServiceMisconfigured"


class TestPublicRoutes:

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "yaklog"}

    def test_health_without_keys(self, unconfigured_client):
        assert unconfigured_client.get("/api/v1/health").status_code == 200

    def test_ready(self, client):
        response = client.get("/api/v1/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_keys(self, unconfigured_client):
        response = unconfigured_client.get("/api/v1/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        assert "YAKLOG_API_KEYS" in response.json()["reason"]

    def test_service_info(self, client):
        data = client.get("/").json()

        assert data["name"] == "yaklog"
        assert data["health"] == "/api/v1/health"
        assert data["api_base"] == "/api/v1"

    def test_unknown_route(self, client):
        response = client.get("/nowhere")

        assert response.status_code == 404
        assert response.json() == {"error": "NotFound", "message": "Route not found."}

    def test_response_headers(self, client):
        response = client.get("/api/v1/health")

        assert "x-request-id" in response.headers
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_cors_preflight_allows_patch(self, client):
        response = client.options(
            "/api/v1/messages/1",
            headers={
                "Origin": "http://example.com",
                "Access-Control-Request-Method": "PATCH",
                "Access-Control-Request-Headers": "Authorization",
            },
        )

        assert response.status_code == 200
        assert "PATCH" in response.headers["access-control-allow-methods"]
