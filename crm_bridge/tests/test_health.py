"""
Tests for health check endpoints
"""
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from crm_bridge.main import app
from crm_bridge.routes import health
from crm_bridge.routes.health import DependencyStatus, determine_overall_status

client = TestClient(app)


@pytest.fixture(autouse=True)
def clear_cache():
    health._dependency_cache = None
    health._cache_timestamp = 0.0
    yield
    health._dependency_cache = None


def patched_checks(supabase: str, evolution: str):
    return (
        patch.object(health, "check_supabase", AsyncMock(return_value=DependencyStatus(
            name="supabase", status=supabase, latency_ms=3.2 if supabase == "healthy" else None
        ))),
        patch.object(health, "check_evolution_api", AsyncMock(return_value=DependencyStatus(
            name="evolution_api", status=evolution, latency_ms=12.5 if evolution == "healthy" else None
        ))),
    )


class TestBasicHealthCheck:
    """Test basic health check endpoint"""

    def test_basic_health_returns_200(self):
        response = client.get("/api/v1/health")
        assert response.status_code == 200

    def test_basic_health_response_structure(self):
        data = client.get("/api/v1/health").json()

        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["uptime_seconds"] >= 0
        assert "timestamp" in data


class TestDependencyHealthCheck:
    """Test dependency health check endpoint"""

    def test_all_healthy(self):
        supabase, evolution = patched_checks("healthy", "healthy")
        with supabase, evolution:
            data = client.get("/api/v1/health/dependencies").json()

        assert data["overall_status"] == "healthy"
        assert set(data["dependencies"]) == {"supabase", "evolution_api"}

    def test_evolution_down_is_degraded(self):
        supabase, evolution = patched_checks("healthy", "unhealthy")
        with supabase, evolution:
            data = client.get("/api/v1/health/dependencies").json()

        assert data["overall_status"] == "degraded"

    def test_supabase_down_is_unhealthy(self):
        supabase, evolution = patched_checks("unhealthy", "healthy")
        with supabase, evolution:
            data = client.get("/api/v1/health/dependencies").json()

        assert data["overall_status"] == "unhealthy"

    def test_caching_behavior(self):
        supabase, evolution = patched_checks("healthy", "healthy")
        with supabase as check, evolution:
            first = client.get("/api/v1/health/dependencies").json()
            second = client.get("/api/v1/health/dependencies").json()

        assert first["checked_at"] == second["checked_at"]
        assert check.await_count == 1

    def test_check_exception_is_unhealthy(self):
        with patch.object(health, "check_supabase", AsyncMock(side_effect=RuntimeError("boom"))), \
                patch.object(health, "check_evolution_api", AsyncMock(return_value=DependencyStatus(
                    name="evolution_api", status="healthy"))):
            data = client.get("/api/v1/health/dependencies").json()

        assert data["dependencies"]["supabase"]["status"] == "unhealthy"
        assert "boom" in data["dependencies"]["supabase"]["error_message"]


class TestDependencyChecks:
    @pytest.mark.asyncio
    async def test_evolution_without_key_is_degraded(self):
        with patch.object(health, "settings") as settings:
            settings.evolution_api_key = ""
            result = await health.check_evolution_api()

        assert result.status == "degraded"

    @pytest.mark.asyncio
    async def test_supabase_without_credentials(self):
        with patch.object(health, "settings") as settings:
            settings.supabase_url = ""
            result = await health.check_supabase()

        assert result.status == "unhealthy"
        assert result.error_message == "Supabase credentials not configured"

    def test_overall_status_rules(self):
        ok = DependencyStatus(name="x", status="healthy")
        assert determine_overall_status({"supabase": ok, "evolution_api": ok}) == "healthy"
        assert determine_overall_status({
            "supabase": ok,
            "evolution_api": DependencyStatus(name="evolution_api", status="degraded"),
        }) == "degraded"
