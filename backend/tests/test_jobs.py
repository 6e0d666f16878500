"""Tests for background job functions."""

from datetime import date
from unittest.mock import MagicMock, patch

from sqlalchemy.exc import OperationalError

from app.jobs.revenue_analysis import run_revenue_analysis


def _mock_session_class(mock_session_class: MagicMock) -> MagicMock:
    mock_session = MagicMock()
    mock_session_class.return_value.__enter__ = MagicMock(return_value=mock_session)
    mock_session_class.return_value.__exit__ = MagicMock(return_value=None)
    return mock_session


class TestRunRevenueAnalysis:
    """Test run_revenue_analysis behavior."""

    @patch("app.jobs.revenue_analysis.RevenueEngine")
    @patch("app.jobs.revenue_analysis.get_sync_engine")
    @patch("app.jobs.revenue_analysis.Session")
    def test_runs_all_analyzers_and_commits(
        self,
        mock_session_class: MagicMock,
        mock_get_sync_engine: MagicMock,
        mock_engine_class: MagicMock,
    ) -> None:
        mock_session = _mock_session_class(mock_session_class)
        counts = {"leakage": {"persisted": 3, "failed": 0, "skipped": 0}}
        mock_engine_class.return_value.run_all.return_value = counts

        result = run_revenue_analysis("org-1", as_of="2024-06-30", user_id="user-1")

        assert result == {
            "success": True,
            "organization_id": "org-1",
            "as_of": "2024-06-30",
            "analyzers": counts,
        }
        mock_session_class.assert_called_once_with(mock_get_sync_engine.return_value)
        mock_engine_class.assert_called_once_with(mock_session, "org-1", user_id="user-1")
        mock_engine_class.return_value.run_all.assert_called_once_with(as_of=date(2024, 6, 30))
        mock_session.commit.assert_called_once()

    @patch("app.jobs.revenue_analysis.RevenueEngine")
    @patch("app.jobs.revenue_analysis.get_sync_engine")
    @patch("app.jobs.revenue_analysis.Session")
    def test_defaults_to_today(
        self,
        mock_session_class: MagicMock,
        mock_get_sync_engine: MagicMock,
        mock_engine_class: MagicMock,
    ) -> None:
        _mock_session_class(mock_session_class)
        mock_engine_class.return_value.run_all.return_value = {}

        result = run_revenue_analysis("org-1")

        assert result["success"] is True
        assert result["as_of"] is None
        mock_engine_class.return_value.run_all.assert_called_once_with(as_of=None)

    @patch("app.jobs.revenue_analysis.RevenueEngine")
    @patch("app.jobs.revenue_analysis.get_sync_engine")
    @patch("app.jobs.revenue_analysis.Session")
    def test_failure_reports_error_without_commit(
        self,
        mock_session_class: MagicMock,
        mock_get_sync_engine: MagicMock,
        mock_engine_class: MagicMock,
    ) -> None:
        mock_session = _mock_session_class(mock_session_class)
        mock_engine_class.return_value.run_all.side_effect = OperationalError("SELECT 1", {}, Exception("gone"))

        result = run_revenue_analysis("org-1", as_of="2024-06-30")

        assert result["success"] is False
        assert result["organization_id"] == "org-1"
        assert "gone" in result["error"]
        mock_session.commit.assert_not_called()
