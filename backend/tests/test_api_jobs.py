"""Tests for the background revenue analysis job endpoints."""

from unittest.mock import MagicMock, patch

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from app.jobs.revenue_analysis import run_revenue_analysis


class TestEnqueueRevenueAnalysis:
    """Test POST /revenue/jobs."""

    @pytest.mark.asyncio
    async def test_enqueue_returns_202(self, client: AsyncClient, mock_enqueue_job: MagicMock) -> None:
        with patch("app.api.jobs.enqueue_job", mock_enqueue_job):
            response = await client.post("/revenue/jobs", json={"as_of": "2024-06-30"})

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "queued"
        assert data["result"] is None

        mock_enqueue_job.assert_called_once()
        args, kwargs = mock_enqueue_job.call_args
        assert args == (run_revenue_analysis, "org-1")
        assert kwargs["as_of"] == "2024-06-30"
        assert kwargs["user_id"] == "user-1"
        assert kwargs["queue_name"] == "revenue_analysis"
        assert kwargs["job_id"] == data["job_id"]

    @pytest.mark.asyncio
    async def test_enqueue_without_as_of(self, client: AsyncClient, mock_enqueue_job: MagicMock) -> None:
        with patch("app.api.jobs.enqueue_job", mock_enqueue_job):
            response = await client.post("/revenue/jobs", json={})

        assert response.status_code == 202
        assert mock_enqueue_job.call_args.kwargs["as_of"] is None

    @pytest.mark.asyncio
    async def test_queue_unavailable_returns_503(self, client: AsyncClient) -> None:
        with patch("app.api.jobs.enqueue_job", side_effect=RedisConnectionError("refused")):
            response = await client.post("/revenue/jobs", json={})

        assert response.status_code == 503
        assert response.json()["detail"] == "Job queue unavailable"

    @pytest.mark.asyncio
    async def test_requires_organization(self, client: AsyncClient, mock_enqueue_job: MagicMock) -> None:
        del client.headers["X-Organization-ID"]

        with patch("app.api.jobs.enqueue_job", mock_enqueue_job):
            response = await client.post("/revenue/jobs", json={})

        assert response.status_code == 400
        mock_enqueue_job.assert_not_called()


class TestGetRevenueJob:
    """Test GET /revenue/jobs/{job_id}."""

    @pytest.mark.asyncio
    async def test_unknown_job_returns_404(self, client: AsyncClient) -> None:
        with patch("app.api.jobs.get_job_status", return_value=None):
            response = await client.get("/revenue/jobs/missing")

        assert response.status_code == 404
        assert "missing" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_queued_job_has_no_result(self, client: AsyncClient) -> None:
        with (
            patch("app.api.jobs.get_job_status", return_value="queued"),
            patch("app.api.jobs.get_job_result") as mock_result,
        ):
            response = await client.get("/revenue/jobs/job-1")

        assert response.json() == {"job_id": "job-1", "status": "queued", "result": None}
        mock_result.assert_not_called()

    @pytest.mark.asyncio
    async def test_finished_job_returns_result(self, client: AsyncClient) -> None:
        result = {
            "success": True,
            "organization_id": "org-1",
            "as_of": "2024-06-30",
            "analyzers": {"leakage": {"persisted": 2, "failed": 0, "skipped": 0}},
        }
        with (
            patch("app.api.jobs.get_job_status", return_value="finished"),
            patch("app.api.jobs.get_job_result", return_value=result),
        ):
            response = await client.get("/revenue/jobs/job-1")

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "finished"
        assert data["result"]["analyzers"]["leakage"]["persisted"] == 2

    @pytest.mark.asyncio
    async def test_other_organization_job_returns_404(self, client: AsyncClient) -> None:
        with (
            patch("app.api.jobs.get_job_status", return_value="finished"),
            patch("app.api.jobs.get_job_result", return_value={"success": True, "organization_id": "org-2"}),
        ):
            response = await client.get("/revenue/jobs/job-1")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_queue_unavailable_returns_503(self, client: AsyncClient) -> None:
        with patch("app.api.jobs.get_job_status", side_effect=RedisConnectionError("refused")):
            response = await client.get("/revenue/jobs/job-1")

        assert response.status_code == 503
