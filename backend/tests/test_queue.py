"""Tests for Redis queue configuration."""

from unittest.mock import MagicMock, patch

import pytest

# Skip all tests if rq is not installed
rq = pytest.importorskip("rq", reason="rq package required for queue tests")

from rq.exceptions import NoSuchJobError  # noqa: E402
from rq.job import JobStatus  # noqa: E402

from app.core import queue  # noqa: E402


@pytest.fixture(autouse=True)
def reset_queue_cache():
    """Each test starts without cached queues."""
    queue._queues.clear()
    yield
    queue._queues.clear()


class TestQueueNames:
    """Test queue naming."""

    def test_analysis_queue_name(self) -> None:
        assert queue.QUEUE_NAMES == {"analysis": "revenue_analysis"}


class TestGetQueue:
    """Test cached queue construction."""

    @patch("app.core.queue.get_redis")
    @patch("app.core.queue.Queue")
    def test_queue_cached_per_name(self, mock_queue_class: MagicMock, mock_get_redis: MagicMock) -> None:
        first = queue.get_queue("revenue_analysis")
        second = queue.get_queue("revenue_analysis")

        assert first is second
        mock_queue_class.assert_called_once_with(name="revenue_analysis", connection=mock_get_redis.return_value)

    @patch("app.core.queue.get_redis")
    @patch("app.core.queue.Queue")
    def test_analysis_queue(self, mock_queue_class: MagicMock, mock_get_redis: MagicMock) -> None:
        queue.get_analysis_queue()

        assert mock_queue_class.call_args.kwargs["name"] == "revenue_analysis"


class TestEnqueueJob:
    """Test job enqueueing."""

    @patch("app.core.queue.get_queue")
    def test_enqueue_passes_options(self, mock_get_queue: MagicMock) -> None:
        func = MagicMock()

        queue.enqueue_job(func, "org-1", queue_name="revenue_analysis", job_id="job-1", as_of="2024-06-30")

        mock_get_queue.assert_called_once_with("revenue_analysis")
        mock_get_queue.return_value.enqueue.assert_called_once_with(
            func, "org-1", job_timeout=600, job_id="job-1", as_of="2024-06-30",
        )

    @patch("app.core.queue.get_queue")
    def test_enqueue_without_job_id(self, mock_get_queue: MagicMock) -> None:
        queue.enqueue_job(MagicMock(), job_timeout=30)

        kwargs = mock_get_queue.return_value.enqueue.call_args.kwargs
        assert kwargs["job_id"] is None
        assert kwargs["job_timeout"] == 30


class TestJobLookup:
    """Test job status and result lookups."""

    @patch("app.core.queue.get_redis")
    @patch("app.core.queue.Job.fetch", side_effect=NoSuchJobError("missing"))
    def test_missing_job(self, mock_fetch: MagicMock, mock_get_redis: MagicMock) -> None:
        assert queue.get_job("missing") is None
        assert queue.get_job_status("missing") is None
        assert queue.get_job_result("missing") is None

    @patch("app.core.queue.get_redis")
    @patch("app.core.queue.Job.fetch")
    def test_status_value(self, mock_fetch: MagicMock, mock_get_redis: MagicMock) -> None:
        mock_fetch.return_value.get_status.return_value = JobStatus.FINISHED

        assert queue.get_job_status("job-1") == "finished"
        mock_fetch.assert_called_once_with("job-1", connection=mock_get_redis.return_value)

    @patch("app.core.queue.get_redis")
    @patch("app.core.queue.Job.fetch")
    def test_result(self, mock_fetch: MagicMock, mock_get_redis: MagicMock) -> None:
        mock_fetch.return_value.return_value.return_value = {"success": True}

        assert queue.get_job_result("job-1") == {"success": True}


class TestClearQueues:
    """Test queue cleanup."""

    def test_clear_empties_cached_queues(self) -> None:
        cached = MagicMock()
        queue._queues["revenue_analysis"] = cached

        queue.clear_queues()

        cached.empty.assert_called_once()
        assert queue._queues == {}
