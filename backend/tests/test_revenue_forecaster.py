"""Tests for the Revenue Forecaster.

Tests trend analysis, seasonality, scenario projection, pipeline,
goal variance and action recommendations.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from app.schemas.base import ForecastScenario, GoalPeriod, Priority, TrendDirection
from app.services.aggregation import (
    AppointmentRecord,
    ChargeRecord,
    GoalRecord,
    RevenueSnapshot,
    add_months,
)
from app.services.revenue_forecaster import (
    RevenueForecaster,
    get_revenue_forecaster,
    history_window,
    reset_revenue_forecaster,
)


def _history(start: date, revenues: list[str], collection_share: str = "0.8") -> list[ChargeRecord]:
    """One charge (and encounter) per month starting at ``start``."""
    charges = []
    for i, revenue in enumerate(revenues):
        month = add_months(start, i)
        fee = Decimal(revenue)
        charges.append(ChargeRecord(
            id=f"c{i}",
            code="98941",
            service_date=month.replace(day=10),
            fee=fee,
            paid_amount=fee * Decimal(collection_share),
            encounter_id=f"e{i}",
        ))
    return charges


def _snapshot(as_of: date, lookback: int, charges, appointments=(), goals=()) -> RevenueSnapshot:
    return RevenueSnapshot(
        organization_id="org-1",
        start_date=add_months(as_of, -lookback),
        end_date=as_of,
        as_of=as_of,
        charges=tuple(charges),
        appointments=tuple(appointments),
        goals=tuple(goals),
    )


def _flat_snapshot(**kwargs) -> RevenueSnapshot:
    as_of = date(2024, 7, 15)
    return _snapshot(as_of, 6, _history(date(2024, 1, 1), ["1000"] * 6), **kwargs)


def _appointments(count: int) -> list[AppointmentRecord]:
    return [AppointmentRecord(f"a{i}", datetime(2024, 7, 20, 9, 0)) for i in range(count)]


class TestForecasterInit:
    """Test forecaster initialization."""

    def test_singleton_pattern(self):
        assert get_revenue_forecaster() is get_revenue_forecaster()

    def test_singleton_reset(self):
        first = get_revenue_forecaster()
        reset_revenue_forecaster()
        assert get_revenue_forecaster() is not first

    def test_get_stats(self):
        stats = RevenueForecaster().get_stats()

        assert stats["scenarios"] == ["conservative", "baseline", "optimistic"]
        assert stats["pipeline_days"] == 90


class TestHistoryWindow:
    """Test history window bounds."""

    def test_calendar_months_before_as_of(self):
        assert history_window(date(2024, 7, 15), 6) == (date(2024, 1, 1), date(2024, 6, 30))

    def test_crosses_year(self):
        assert history_window(date(2024, 2, 1), 3) == (date(2023, 11, 1), date(2024, 1, 31))


class TestTrend:
    """Test historical trend analysis."""

    def setup_method(self):
        self.forecaster = RevenueForecaster()

    def test_flat_history(self):
        trend = self.forecaster.forecast(_flat_snapshot(), horizon_months=3).trend

        assert len(trend.months) == 6
        assert trend.average_monthly_revenue == Decimal("1000.00")
        assert trend.average_monthly_collections == Decimal("800.00")
        assert trend.monthly_growth_rate == 0.0
        assert trend.volatility == 0.0
        assert trend.direction == TrendDirection.STABLE
        assert trend.revenue_per_encounter == Decimal("1000.00")
        assert trend.collection_rate == Decimal("0.8000")

    def test_growing_history(self):
        snapshot = _snapshot(date(2024, 4, 10), 3, _history(date(2024, 1, 1), ["1000", "1100", "1210"]))

        trend = self.forecaster.forecast(snapshot, lookback_months=3).trend

        assert trend.growth_rates == [0.1, 0.1]
        assert trend.monthly_growth_rate == pytest.approx(0.1)
        assert trend.annualized_growth_rate == pytest.approx(1.1 ** 12 - 1, rel=1e-5)
        assert trend.direction == TrendDirection.INCREASING
        assert trend.volatility > 0

    def test_declining_history(self):
        snapshot = _snapshot(date(2024, 4, 10), 3, _history(date(2024, 1, 1), ["1000", "900", "810"]))

        trend = self.forecaster.forecast(snapshot, lookback_months=3).trend

        assert trend.direction == TrendDirection.DECREASING

    def test_charges_in_as_of_month_excluded(self):
        charges = _history(date(2024, 1, 1), ["1000"] * 6) + [
            ChargeRecord("now", "98941", date(2024, 7, 2), Decimal("9999"))
        ]

        trend = self.forecaster.forecast(_snapshot(date(2024, 7, 15), 6, charges)).trend

        assert trend.average_monthly_revenue == Decimal("1000.00")


class TestSeasonality:
    """Test calendar month factors."""

    def setup_method(self):
        self.forecaster = RevenueForecaster()
        revenues = ["1000"] * 11 + ["2000"]
        self.snapshot = _snapshot(date(2025, 1, 15), 12, _history(date(2024, 1, 1), revenues))

    def test_factors(self):
        result = self.forecaster.forecast(self.snapshot)

        assert result.seasonality[12] == Decimal("1.8462")
        assert result.seasonality[1] == Decimal("0.9231")

    def test_disabled(self):
        result = self.forecaster.forecast(self.snapshot, include_seasonality=False)

        assert set(result.seasonality.values()) == {Decimal("1")}

    def test_short_history_has_no_seasonality(self):
        snapshot = _snapshot(date(2024, 4, 10), 3, _history(date(2024, 1, 1), ["1000", "3000", "1000"]))

        result = self.forecaster.forecast(snapshot, lookback_months=3)

        assert set(result.seasonality.values()) == {Decimal("1")}

    def test_seasonal_adjustment_applied(self):
        result = self.forecaster.forecast(self.snapshot, horizon_months=12, include_pipeline=False)

        baseline = next(s for s in result.scenarios if s.scenario == ForecastScenario.BASELINE)
        december = next(m for m in baseline.months if m.month == "2025-12")
        assert december.seasonal_adjustment > 0


class TestProjection:
    """Test scenario projection."""

    def setup_method(self):
        self.forecaster = RevenueForecaster()

    def test_flat_baseline(self):
        result = self.forecaster.forecast(_flat_snapshot(), horizon_months=3)

        assert [s.scenario for s in result.scenarios] == list(ForecastScenario)
        baseline = result.scenarios[1]
        assert [m.month for m in baseline.months] == ["2024-07", "2024-08", "2024-09"]
        assert [m.forecast_revenue for m in baseline.months] == [Decimal("1000.00")] * 3
        assert baseline.months[-1].cumulative_revenue == Decimal("3000.00")
        assert baseline.total_revenue == Decimal("3000.00")
        assert baseline.total_collections == Decimal("2400.00")
        assert baseline.months[0].lower_bound == baseline.months[0].upper_bound

    def test_growth_scenarios(self):
        snapshot = _snapshot(date(2024, 4, 10), 3, _history(date(2024, 1, 1), ["1000", "1100", "1210"]))

        result = self.forecaster.forecast(snapshot, horizon_months=2, lookback_months=3)

        first_months = {s.scenario: s.months[0] for s in result.scenarios}
        # Average 1103.33 grown one month at 10% x scenario multiplier
        assert first_months[ForecastScenario.BASELINE].base_revenue == Decimal("1213.66")
        assert first_months[ForecastScenario.OPTIMISTIC].base_revenue == Decimal("1230.21")
        assert first_months[ForecastScenario.CONSERVATIVE].base_revenue == Decimal("1202.63")
        month = first_months[ForecastScenario.BASELINE]
        assert month.lower_bound < month.forecast_revenue < month.upper_bound

    def test_pipeline_fills_first_three_months(self):
        # 6 appointments x $1000 x 0.85 = 5100 over 3 months
        result = self.forecaster.forecast(
            _flat_snapshot(appointments=_appointments(6)), horizon_months=4,
        )

        assert result.pipeline_value == Decimal("5100.00")
        assert result.monthly_pipeline == Decimal("1700.00")
        baseline = result.scenarios[1]
        assert [m.forecast_revenue for m in baseline.months] == [
            Decimal("1700.00"), Decimal("1700.00"), Decimal("1700.00"), Decimal("1000.00"),
        ]

    def test_small_pipeline_does_not_add(self):
        result = self.forecaster.forecast(_flat_snapshot(appointments=_appointments(3)), horizon_months=3)

        assert result.pipeline_value == Decimal("2550.00")
        assert result.scenarios[1].months[0].pipeline_adjustment == Decimal("0.00")

    def test_pipeline_disabled(self):
        result = self.forecaster.forecast(
            _flat_snapshot(appointments=_appointments(6)), horizon_months=3, include_pipeline=False,
        )

        assert result.pipeline_value == Decimal("0")

    def test_scenario_subset(self):
        result = self.forecaster.forecast(
            _flat_snapshot(), horizon_months=3, scenarios=[ForecastScenario.OPTIMISTIC],
        )

        assert [s.scenario for s in result.scenarios] == [ForecastScenario.OPTIMISTIC]

    @pytest.mark.parametrize("horizon,lookback", [(0, 12), (25, 12), (12, 2), (12, 37)])
    def test_out_of_range(self, horizon, lookback):
        with pytest.raises(ValueError):
            self.forecaster.forecast(_flat_snapshot(), horizon_months=horizon, lookback_months=lookback)

    def test_empty_history(self):
        result = self.forecaster.forecast(_snapshot(date(2024, 7, 15), 6, []), horizon_months=2)

        assert result.trend.months == []
        assert result.scenarios[1].total_revenue == Decimal("0")
        assert result.actions == []


class TestGoalsAndActions:
    """Test goal variance and action recommendations."""

    def setup_method(self):
        self.forecaster = RevenueForecaster()

    def _goal(self, goal_id="g1", start=date(2024, 7, 1), end=date(2024, 9, 30), target="3500", active=True):
        return GoalRecord(goal_id, "Q3 target", GoalPeriod.QUARTERLY, start, end, Decimal(target), active)

    def test_goal_behind(self):
        result = self.forecaster.forecast(_flat_snapshot(goals=[self._goal()]), horizon_months=3)

        assert len(result.goal_variances) == 1
        variance = result.goal_variances[0]
        assert variance.forecast_amount == Decimal("3000.00")
        assert variance.variance == Decimal("-500.00")
        assert variance.variance_percent == Decimal("-14.29")
        assert not variance.on_track
        assert variance.recommendation.startswith("Behind target")

    def test_goal_ahead(self):
        result = self.forecaster.forecast(_flat_snapshot(goals=[self._goal(target="2500")]), horizon_months=3)

        variance = result.goal_variances[0]
        assert variance.on_track
        assert variance.recommendation.startswith("Well ahead")

    def test_goals_outside_horizon_or_inactive_skipped(self):
        goals = [
            self._goal("g1", date(2025, 1, 1), date(2025, 3, 31)),
            self._goal("g2", active=False),
        ]

        result = self.forecaster.forecast(_flat_snapshot(goals=goals), horizon_months=3)

        assert result.goal_variances == []

    def test_actions_sized_from_gap(self):
        result = self.forecaster.forecast(_flat_snapshot(goals=[self._goal()]), horizon_months=3)

        by_title = {a.title: a for a in result.actions}
        assert by_title["Improve scheduling efficiency"].estimated_impact == Decimal("75.00")
        assert by_title["Launch a patient recall campaign"].estimated_impact == Decimal("100.00")
        # Flat growth: 5% of annual revenue
        assert by_title["Add a new service line"].estimated_impact == Decimal("600.00")
        impacts = [a.estimated_impact for a in result.actions]
        assert impacts == sorted(impacts, reverse=True)

    def test_declining_trend_action(self):
        snapshot = _snapshot(date(2024, 4, 10), 3, _history(date(2024, 1, 1), ["1000", "900", "810"]))

        result = self.forecaster.forecast(snapshot, lookback_months=3)

        decline = next(a for a in result.actions if a.title == "Reverse declining revenue trend")
        assert decline.priority == Priority.CRITICAL

    def test_low_collections_action(self):
        snapshot = _snapshot(
            date(2024, 7, 15), 6, _history(date(2024, 1, 1), ["1000"] * 6, collection_share="0.5"),
        )

        result = self.forecaster.forecast(snapshot)

        collections = next(a for a in result.actions if a.title == "Improve collections")
        # 12000 x (0.70 - 0.50)
        assert collections.estimated_impact == Decimal("2400.00")

    def test_low_season_action(self):
        snapshot = _snapshot(
            date(2024, 7, 15), 6, _history(date(2024, 1, 1), ["1000"] * 5 + ["500"]),
        )

        result = self.forecaster.forecast(snapshot)

        promotion = next(a for a in result.actions if a.title == "Run low-season promotions")
        assert "June" in promotion.description


class TestGoalProgress:
    """Test live goal progress."""

    def test_on_track_mid_period(self):
        goal = GoalRecord("g1", "January", GoalPeriod.MONTHLY, date(2024, 1, 1), date(2024, 1, 31), Decimal("3100"))
        charges = [
            ChargeRecord("c1", "98941", date(2024, 1, 5), Decimal("1200")),
            ChargeRecord("c2", "98941", date(2024, 1, 20), Decimal("500")),
            ChargeRecord("c3", "98941", date(2023, 12, 30), Decimal("900")),
        ]

        progress = RevenueForecaster.goal_progress(goal, charges, date(2024, 1, 10))

        assert progress.actual_amount == Decimal("1200.00")
        assert progress.elapsed_fraction == Decimal("0.3226")
        assert progress.percent_achieved == Decimal("38.71")
        assert progress.on_track

    def test_completed_period_behind(self):
        goal = GoalRecord("g1", "January", GoalPeriod.MONTHLY, date(2024, 1, 1), date(2024, 1, 31), Decimal("3100"))
        charges = [ChargeRecord("c1", "98941", date(2024, 1, 5), Decimal("1200"))]

        progress = RevenueForecaster.goal_progress(goal, charges, date(2024, 3, 1))

        assert progress.elapsed_fraction == Decimal("1.0000")
        assert progress.variance == Decimal("-1900.00")
        assert not progress.on_track

    def test_future_goal(self):
        goal = GoalRecord("g1", "Next year", GoalPeriod.ANNUAL, date(2025, 1, 1), date(2025, 12, 31), Decimal("100000"))

        progress = RevenueForecaster.goal_progress(goal, [], date(2024, 6, 1))

        assert progress.elapsed_fraction == Decimal("0.0000")
        assert progress.on_track
