"""Tests for GET /health."""

from fastapi.testclient import TestClient


class TestHealth:
    def test_ok_envelope(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {"data": {"status": "ok"}}

    def test_public_behind_auth(self, auth_client: TestClient):
        """No session is needed even with the auth middleware installed."""
        response = auth_client.get("/health")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ok"

    def test_no_provider_call(self, auth_client: TestClient, provider_mock):
        auth_client.get("/health")

        assert not provider_mock.calls
