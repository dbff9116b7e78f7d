"""Tests for request id propagation, security headers and health endpoints."""

import re

from fastapi import status
from httpx import ASGITransport, AsyncClient

from matcha_auth.config.settings import Environment, settings
from matcha_auth.database import client as db_client
from matcha_auth.main import create_app


class TestRequestId:
    async def test_generated_when_missing(self, client):
        response = await client.get("/health")
        assert re.fullmatch(r"[0-9a-f]{32}", response.headers["x-request-id"])

    async def test_incoming_id_is_reused(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "trace-abc.123"})
        assert response.headers["x-request-id"] == "trace-abc.123"

    async def test_malformed_incoming_id_is_replaced(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "bad id\twith spaces"})
        assert response.headers["x-request-id"] != "bad id\twith spaces"
        assert re.fullmatch(r"[0-9a-f]{32}", response.headers["x-request-id"])


class TestSecurityHeaders:
    async def test_headers_present(self, client):
        response = await client.get("/health")
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"
        assert response.headers["referrer-policy"] == "strict-origin-when-cross-origin"

    async def test_no_hsts_in_development(self, client):
        response = await client.get("/health")
        assert "strict-transport-security" not in response.headers

    async def test_hsts_in_production(self, db_engine):
        prod = settings.model_copy(update={"environment": Environment.PRODUCTION, "timing_floor_ms": 0})
        app = create_app(prod)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/health")
        assert response.headers["strict-transport-security"].startswith("max-age=")

    async def test_headers_on_error_responses(self, client):
        response = await client.get("/auth/me")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.headers["x-frame-options"] == "DENY"


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy"}

    async def test_ready_when_database_answers(self, client):
        response = await client.get("/health/ready")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "ready"}

    async def test_not_ready_without_database(self, client, monkeypatch):
        monkeypatch.setattr(db_client, "_engine", None)

        response = await client.get("/health/ready")
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
