"""Tests for health and root API endpoints."""

import inspect

import pytest
from fastapi.routing import APIRoute
from httpx import AsyncClient

from app.api import (
    analytics_router,
    fees_router,
    forecast_router,
    jobs_router,
    leakage_router,
    opportunities_router,
)
from app.core.database import get_db
from app.main import app, prewarm_all_services

REVENUE_ROUTERS = (
    leakage_router,
    fees_router,
    analytics_router,
    forecast_router,
    opportunities_router,
    jobs_router,
)


class TestHealthEndpoint:
    """Test health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_returns_200(self, bare_client: AsyncClient) -> None:
        """Test health endpoint returns 200 OK."""
        response = await bare_client.get("/health")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_health_returns_healthy_status(self, bare_client: AsyncClient) -> None:
        """Test health endpoint returns healthy status."""
        response = await bare_client.get("/health")
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "revenue-optimization-engine"
        assert data["version"] == "0.1.0"

    @pytest.mark.asyncio
    async def test_health_returns_timestamp(self, bare_client: AsyncClient) -> None:
        """Test health endpoint returns timestamp."""
        response = await bare_client.get("/health")
        data = response.json()
        # Should be ISO format
        assert "T" in data["timestamp"]


class TestReadyEndpoint:
    """Test readiness endpoint."""

    @pytest.mark.asyncio
    async def test_ready_reports_queue_and_benchmarks(self, bare_client: AsyncClient) -> None:
        """Test readiness includes queue availability and benchmark version."""
        response = await bare_client.get("/ready")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "ready"
        assert data["queue_available"] is False
        assert data["benchmarks"]["benchmark_codes"] > 0
        assert "version" in data["benchmarks"]


class TestRootEndpoint:
    """Test root endpoint."""

    @pytest.mark.asyncio
    async def test_root_returns_service_info(self, bare_client: AsyncClient) -> None:
        """Test root endpoint returns service info and links."""
        response = await bare_client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "Revenue Optimization Engine" in data["service"]
        assert data["docs"] == "/docs"
        assert data["health"] == "/health"


class TestAPIMetadata:
    """Test API metadata and configuration."""

    def test_app_title(self) -> None:
        assert app.title == "Revenue Optimization Engine"

    def test_app_version(self) -> None:
        assert app.version == "0.1.0"

    def test_revenue_routes_registered(self) -> None:
        paths = set(app.openapi()["paths"])
        assert "/revenue/leakage/detect" in paths
        assert "/revenue/fees/implement" in paths
        assert "/revenue/forecast" in paths
        assert "/revenue/jobs" in paths

    def test_revenue_endpoints_are_async(self) -> None:
        revenue_routes = [
            route for router in REVENUE_ROUTERS for route in router.routes if isinstance(route, APIRoute)
        ]

        assert revenue_routes
        for route in revenue_routes:
            assert inspect.iscoroutinefunction(route.endpoint), route.path

    def test_session_dependency_is_async(self) -> None:
        assert inspect.isasyncgenfunction(get_db)


class TestPrewarm:
    """Test analyzer prewarming."""

    def test_prewarm_loads_every_analyzer(self) -> None:
        stats = prewarm_all_services()

        assert stats["services_loaded"] == 6
        assert set(stats["services"]) == {
            "leakage_detector",
            "fee_optimizer",
            "service_mix",
            "coding_optimizer",
            "contract_analyzer",
            "revenue_forecaster",
        }
