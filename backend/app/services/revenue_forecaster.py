"""Revenue Forecaster.

Projects monthly revenue from history:

- Historical trend (average, month-over-month growth, volatility)
- Seasonality factors per calendar month
- Pipeline from scheduled appointments
- Conservative, baseline and optimistic scenarios with confidence bands
- Variance against active revenue goals
- Action recommendations to close goal gaps

All figures derive from the snapshot and the explicit as_of date.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable

import numpy as np

from app.schemas.base import EffortLevel, ForecastScenario, Priority, TrendDirection
from app.services.aggregation import (
    ChargeRecord,
    Dimension,
    GoalRecord,
    RevenueSnapshot,
    add_months,
    aggregate,
    month_end,
    month_key,
    month_start,
)
from app.services.benchmarks import BenchmarkTables, EngineAssumptions, resolve_tables
from app.services.scoring import ZERO, money, percent, priority_for, safe_div, to_decimal

logger = logging.getLogger(__name__)

MIN_HORIZON, MAX_HORIZON, DEFAULT_HORIZON = 1, 24, 12
MIN_LOOKBACK, MAX_LOOKBACK, DEFAULT_LOOKBACK = 3, 36, 12

SCENARIO_MULTIPLIERS: dict[ForecastScenario, Decimal] = {
    ForecastScenario.CONSERVATIVE: Decimal("0.9"),
    ForecastScenario.BASELINE: Decimal("1.0"),
    ForecastScenario.OPTIMISTIC: Decimal("1.15"),
}

TREND_THRESHOLD = 0.02  # Monthly growth
MIN_SEASONALITY_MONTHS = 6
PIPELINE_MONTHS = 3
CONFIDENCE_Z = Decimal("1.96")

# Action sizing
SCHEDULING_GAP_SHARE = Decimal("0.15")
RECALL_GAP_SHARE = Decimal("0.20")
LOW_COLLECTION_RATE = Decimal("0.70")
LOW_SEASON_FACTOR = Decimal("0.9")
LOW_SEASON_RECOVERY = Decimal("0.5")
NEW_SERVICE_LINE_SHARE = Decimal("0.05")


@dataclass
class HistoricalTrend:
    """Summary of monthly revenue history."""

    months: list[str]
    monthly_revenue: list[Decimal]
    average_monthly_revenue: Decimal
    average_monthly_collections: Decimal
    growth_rates: list[float]
    monthly_growth_rate: float
    annualized_growth_rate: float
    volatility: float
    revenue_per_encounter: Decimal
    collection_rate: Decimal
    direction: TrendDirection


@dataclass
class ForecastMonth:
    """One projected month in a scenario."""

    month: str
    base_revenue: Decimal
    seasonal_adjustment: Decimal
    pipeline_adjustment: Decimal
    forecast_revenue: Decimal
    cumulative_revenue: Decimal
    forecast_collections: Decimal
    lower_bound: Decimal
    upper_bound: Decimal


@dataclass
class ScenarioForecast:
    """Forecast months for one scenario."""

    scenario: ForecastScenario
    growth_multiplier: Decimal
    months: list[ForecastMonth]
    total_revenue: Decimal
    total_collections: Decimal


@dataclass
class GoalVariance:
    """Forecast vs target for one goal."""

    goal_id: str
    goal_name: str
    target_amount: Decimal
    forecast_amount: Decimal
    variance: Decimal
    variance_percent: Decimal
    on_track: bool
    recommendation: str


@dataclass
class ForecastAction:
    """Recommended action to improve forecast revenue."""

    title: str
    description: str
    estimated_impact: Decimal
    effort_level: EffortLevel
    timeframe: str
    priority: Priority


@dataclass
class GoalProgress:
    """Live progress of a goal, recomputed from charges."""

    goal_id: str
    goal_name: str
    target_amount: Decimal
    actual_amount: Decimal
    variance: Decimal
    percent_achieved: Decimal
    elapsed_fraction: Decimal
    on_track: bool


@dataclass
class ForecastResult:
    """Result from a revenue forecast."""

    as_of: date
    horizon_months: int
    lookback_months: int
    trend: HistoricalTrend
    seasonality: dict[int, Decimal]
    pipeline_value: Decimal
    monthly_pipeline: Decimal
    scenarios: list[ScenarioForecast]
    goal_variances: list[GoalVariance] = field(default_factory=list)
    actions: list[ForecastAction] = field(default_factory=list)


def history_window(as_of: date, lookback_months: int) -> tuple[date, date]:
    """Calendar months before the month of ``as_of``."""
    return add_months(as_of, -lookback_months), month_start(as_of) - timedelta(days=1)


# ============================================================================
# Revenue Forecaster
# ============================================================================

_revenue_forecaster: "RevenueForecaster | None" = None
_forecaster_lock = threading.Lock()


def get_revenue_forecaster() -> "RevenueForecaster":
    """Get the singleton revenue forecaster instance."""
    global _revenue_forecaster
    if _revenue_forecaster is None:
        with _forecaster_lock:
            if _revenue_forecaster is None:
                _revenue_forecaster = RevenueForecaster()
    return _revenue_forecaster


def reset_revenue_forecaster() -> None:
    """Reset the singleton instance (for testing)."""
    global _revenue_forecaster
    with _forecaster_lock:
        _revenue_forecaster = None


class RevenueForecaster:
    """Forecasts revenue scenarios and goal variance."""

    def __init__(
        self,
        benchmarks: BenchmarkTables | None = None,
        assumptions: EngineAssumptions | None = None,
    ) -> None:
        self._assumptions = assumptions or EngineAssumptions()
        self._benchmarks = resolve_tables(benchmarks or BenchmarkTables(), self._assumptions)

    def forecast(
        self,
        snapshot: RevenueSnapshot,
        horizon_months: int = DEFAULT_HORIZON,
        lookback_months: int = DEFAULT_LOOKBACK,
        include_seasonality: bool = True,
        include_pipeline: bool = True,
        scenarios: Iterable[ForecastScenario] | None = None,
    ) -> ForecastResult:
        """Forecast revenue for the months starting at the month of as_of.

        Args:
            snapshot: History window from ``history_window`` plus pending
                appointments and active goals.
            horizon_months: Months to project (1-24).
            lookback_months: Months of history (3-36).
            include_seasonality: Apply calendar month factors.
            include_pipeline: Add scheduled appointment revenue.
            scenarios: Scenarios to project (all when None).

        Returns:
            ForecastResult with trend, scenarios, goal variance and actions.

        Raises:
            ValueError: If horizon or lookback is out of range.
        """
        if not MIN_HORIZON <= horizon_months <= MAX_HORIZON:
            raise ValueError(f"horizon_months must be {MIN_HORIZON}-{MAX_HORIZON}")
        if not MIN_LOOKBACK <= lookback_months <= MAX_LOOKBACK:
            raise ValueError(f"lookback_months must be {MIN_LOOKBACK}-{MAX_LOOKBACK}")

        as_of = snapshot.as_of
        start, end = history_window(as_of, lookback_months)
        history = snapshot.between(start, end)
        buckets = self._monthly_buckets(history.billable_charges)

        trend = self.analyze_trend(buckets)
        seasonality = self.seasonality_factors(buckets, trend, include_seasonality)

        pipeline_value = ZERO
        if include_pipeline:
            pending = sum(1 for a in snapshot.appointments if a.is_pending)
            pipeline_value = money(
                pending * trend.revenue_per_encounter * self._assumptions.pipeline_conversion_rate
            )
        monthly_pipeline = money(pipeline_value / PIPELINE_MONTHS)

        wanted = list(scenarios) if scenarios else list(ForecastScenario)
        projected = {
            scenario: self.project(scenario, trend, seasonality, monthly_pipeline, as_of, horizon_months)
            for scenario in set(wanted) | {ForecastScenario.BASELINE}
        }

        goal_variances = self.goal_variances(snapshot.goals, projected[ForecastScenario.BASELINE])
        actions = self.recommend_actions(trend, seasonality, goal_variances)

        logger.info(
            "Forecast for %s: %d history months, trend %s, baseline %s over %d months",
            snapshot.organization_id,
            len(trend.months),
            trend.direction.value,
            projected[ForecastScenario.BASELINE].total_revenue,
            horizon_months,
        )
        return ForecastResult(
            as_of=as_of,
            horizon_months=horizon_months,
            lookback_months=lookback_months,
            trend=trend,
            seasonality=seasonality,
            pipeline_value=pipeline_value,
            monthly_pipeline=monthly_pipeline,
            scenarios=[projected[s] for s in ForecastScenario if s in wanted],
            goal_variances=goal_variances,
            actions=actions,
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @staticmethod
    def _monthly_buckets(charges: Iterable[ChargeRecord]) -> dict[str, dict]:
        """Revenue, collections and encounters per month with charges."""
        grouped = aggregate(
            charges,
            Dimension.MONTH,
            measures={"revenue": lambda c: c.fee, "collections": lambda c: c.paid_amount},
        )
        encounters: dict[str, set[str]] = {}
        for charge in charges:
            if charge.encounter_id:
                encounters.setdefault(month_key(charge.service_date), set()).add(charge.encounter_id)

        return {
            key: {
                "revenue": grouped[key].sum("revenue"),
                "collections": grouped[key].sum("collections"),
                "encounters": len(encounters.get(key, ())),
            }
            for key in sorted(grouped)
        }

    @staticmethod
    def analyze_trend(buckets: dict[str, dict]) -> HistoricalTrend:
        """Growth, volatility and direction of monthly revenue."""
        months = list(buckets)
        revenues = [buckets[m]["revenue"] for m in months]
        total_revenue = sum(revenues, ZERO)
        total_collections = sum((buckets[m]["collections"] for m in months), ZERO)
        total_encounters = sum(buckets[m]["encounters"] for m in months)

        growth_rates = [
            float((current - previous) / previous)
            for previous, current in zip(revenues, revenues[1:])
            if previous
        ]
        monthly_growth = float(np.mean(growth_rates)) if growth_rates else 0.0
        values = np.array([float(r) for r in revenues]) if revenues else np.array([0.0])
        mean = float(values.mean())
        volatility = float(values.std() / mean) if mean else 0.0

        if monthly_growth > TREND_THRESHOLD:
            direction = TrendDirection.INCREASING
        elif monthly_growth < -TREND_THRESHOLD:
            direction = TrendDirection.DECREASING
        else:
            direction = TrendDirection.STABLE

        return HistoricalTrend(
            months=months,
            monthly_revenue=[money(r) for r in revenues],
            average_monthly_revenue=money(safe_div(total_revenue, len(months))),
            average_monthly_collections=money(safe_div(total_collections, len(months))),
            growth_rates=[round(g, 4) for g in growth_rates],
            monthly_growth_rate=round(monthly_growth, 6),
            annualized_growth_rate=round((1 + monthly_growth) ** 12 - 1, 6),
            volatility=round(volatility, 6),
            revenue_per_encounter=money(safe_div(total_revenue, total_encounters)),
            collection_rate=safe_div(total_collections, total_revenue).quantize(Decimal("0.0001")),
            direction=direction,
        )

    @staticmethod
    def seasonality_factors(
        buckets: dict[str, dict],
        trend: HistoricalTrend,
        enabled: bool = True,
    ) -> dict[int, Decimal]:
        """Factor per calendar month (1.0 when absent or disabled)."""
        factors = {month: Decimal("1") for month in range(1, 13)}
        if not enabled or len(buckets) < MIN_SEASONALITY_MONTHS:
            return factors
        overall = trend.average_monthly_revenue
        if not overall:
            return factors

        by_calendar_month: dict[int, list[Decimal]] = {}
        for key, bucket in buckets.items():
            by_calendar_month.setdefault(int(key[5:7]), []).append(bucket["revenue"])
        for month, revenues in by_calendar_month.items():
            average = sum(revenues, ZERO) / len(revenues)
            factors[month] = (average / overall).quantize(Decimal("0.0001"))
        return factors

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    @staticmethod
    def project(
        scenario: ForecastScenario,
        trend: HistoricalTrend,
        seasonality: dict[int, Decimal],
        monthly_pipeline: Decimal,
        as_of: date,
        horizon_months: int,
    ) -> ScenarioForecast:
        """Project one scenario month by month."""
        multiplier = SCENARIO_MULTIPLIERS[scenario]
        growth = to_decimal(trend.monthly_growth_rate) * multiplier
        average = trend.average_monthly_revenue
        spread = CONFIDENCE_Z * to_decimal(trend.volatility)

        months = []
        cumulative = ZERO
        total_collections = ZERO
        for i in range(1, horizon_months + 1):
            month = add_months(as_of, i - 1)
            base = average * (1 + growth) ** i
            seasonal = base * (seasonality.get(month.month, Decimal("1")) - 1)
            pipeline = max(ZERO, monthly_pipeline - base) if i <= PIPELINE_MONTHS else ZERO
            forecast = money(base + seasonal + pipeline)
            cumulative += forecast
            collections = money(forecast * trend.collection_rate)
            total_collections += collections
            band = forecast * spread

            months.append(ForecastMonth(
                month=month_key(month),
                base_revenue=money(base),
                seasonal_adjustment=money(seasonal),
                pipeline_adjustment=money(pipeline),
                forecast_revenue=forecast,
                cumulative_revenue=cumulative,
                forecast_collections=collections,
                lower_bound=money(max(ZERO, forecast - band)),
                upper_bound=money(forecast + band),
            ))

        return ScenarioForecast(
            scenario=scenario,
            growth_multiplier=multiplier,
            months=months,
            total_revenue=cumulative,
            total_collections=total_collections,
        )

    # ------------------------------------------------------------------
    # Goals and actions
    # ------------------------------------------------------------------

    @staticmethod
    def goal_variances(
        goals: Iterable[GoalRecord],
        baseline: ScenarioForecast,
    ) -> list[GoalVariance]:
        """Baseline forecast vs target for each active goal overlapping the horizon."""
        variances = []
        for goal in goals:
            if not goal.is_active:
                continue
            overlapping = [
                m for m in baseline.months
                if _month_date(m.month) <= goal.period_end
                and month_end(_month_date(m.month)) >= goal.period_start
            ]
            if not overlapping:
                continue

            forecast = sum((m.forecast_revenue for m in overlapping), ZERO)
            variance = forecast - goal.target_amount
            variance_percent = money(percent(variance, goal.target_amount))
            variances.append(GoalVariance(
                goal_id=goal.id,
                goal_name=goal.name,
                target_amount=money(goal.target_amount),
                forecast_amount=money(forecast),
                variance=money(variance),
                variance_percent=variance_percent,
                on_track=variance >= ZERO,
                recommendation=_goal_recommendation(variance_percent),
            ))
        return variances

    def recommend_actions(
        self,
        trend: HistoricalTrend,
        seasonality: dict[int, Decimal],
        goal_variances: list[GoalVariance],
    ) -> list[ForecastAction]:
        """Heuristic actions sized from goal gaps and trend signals."""
        actions = []
        annual_revenue = trend.average_monthly_revenue * 12

        gap = sum((-g.variance for g in goal_variances if g.variance < ZERO), ZERO)
        if gap > ZERO:
            actions.append(_action(
                "Improve scheduling efficiency",
                "Fill cancellations from a waitlist and tighten appointment templates to "
                "close the goal gap.",
                gap * SCHEDULING_GAP_SHARE, EffortLevel.MODERATE, "30-60 days", Priority.HIGH,
            ))
            actions.append(_action(
                "Launch a patient recall campaign",
                "Contact inactive patients and patients overdue for re-evaluation.",
                gap * RECALL_GAP_SHARE, EffortLevel.EASY, "2-4 weeks", Priority.HIGH,
            ))

        if trend.direction == TrendDirection.DECREASING:
            decline = annual_revenue * abs(to_decimal(trend.monthly_growth_rate))
            actions.append(_action(
                "Reverse declining revenue trend",
                f"Revenue is falling {abs(trend.monthly_growth_rate) * 100:.1f}% per month. "
                f"Review referral sources, cancellations and payer changes.",
                decline, EffortLevel.MODERATE, "Immediate", Priority.CRITICAL,
            ))

        if trend.months and trend.collection_rate < LOW_COLLECTION_RATE:
            impact = annual_revenue * (LOW_COLLECTION_RATE - trend.collection_rate)
            actions.append(_action(
                "Improve collections",
                f"Only {trend.collection_rate * 100:.1f}% of charges are collected. Verify "
                f"eligibility up front and work denials weekly.",
                impact, EffortLevel.MODERATE, "60-90 days", priority_for(impact),
            ))

        low_months = sorted(m for m, f in seasonality.items() if f < LOW_SEASON_FACTOR)
        if low_months:
            shortfall = sum(
                (trend.average_monthly_revenue * (1 - seasonality[m]) for m in low_months), ZERO
            )
            names = ", ".join(date(2000, m, 1).strftime("%B") for m in low_months)
            actions.append(_action(
                "Run low-season promotions",
                f"Revenue dips in {names}. Schedule wellness promotions and recall outreach "
                f"ahead of these months.",
                shortfall * LOW_SEASON_RECOVERY, EffortLevel.EASY, "Before low season",
                Priority.MEDIUM,
            ))

        if trend.months and trend.direction != TrendDirection.INCREASING:
            impact = annual_revenue * NEW_SERVICE_LINE_SHARE
            actions.append(_action(
                "Add a new service line",
                "Growth is flat. Evaluate services such as rehab, massage or nutrition "
                "counseling to add revenue.",
                impact, EffortLevel.COMPLEX, "3-6 months", priority_for(impact),
            ))

        actions.sort(key=lambda a: a.estimated_impact, reverse=True)
        return actions

    @staticmethod
    def goal_progress(
        goal: GoalRecord,
        charges: Iterable[ChargeRecord],
        as_of: date,
    ) -> GoalProgress:
        """Actual revenue against a goal's target as of a date.

        On track means actual revenue has kept pace with the elapsed share of
        the goal period.
        """
        period_days = (goal.period_end - goal.period_start).days + 1
        cutoff = min(as_of, goal.period_end)
        elapsed_days = max(0, (cutoff - goal.period_start).days + 1)
        elapsed = min(Decimal("1"), Decimal(elapsed_days) / Decimal(max(period_days, 1)))

        actual = sum(
            (c.fee for c in charges if goal.period_start <= c.service_date <= cutoff),
            ZERO,
        )
        return GoalProgress(
            goal_id=goal.id,
            goal_name=goal.name,
            target_amount=money(goal.target_amount),
            actual_amount=money(actual),
            variance=money(actual - goal.target_amount),
            percent_achieved=money(percent(actual, goal.target_amount)),
            elapsed_fraction=elapsed.quantize(Decimal("0.0001")),
            on_track=actual >= goal.target_amount * elapsed,
        )

    def get_stats(self) -> dict:
        """Get forecaster statistics."""
        return {
            "scenarios": [s.value for s in SCENARIO_MULTIPLIERS],
            "pipeline_conversion_rate": str(self._assumptions.pipeline_conversion_rate),
            "pipeline_days": self._assumptions.pipeline_days,
        }


# ============================================================================
# Helpers
# ============================================================================

def _month_date(key: str) -> date:
    return date(int(key[:4]), int(key[5:7]), 1)


def _goal_recommendation(variance_percent: Decimal) -> str:
    if variance_percent >= 10:
        return "Well ahead of target. Consider raising the goal or reinvesting in growth."
    if variance_percent >= 0:
        return "On track. Maintain current scheduling and collection practices."
    if variance_percent >= -10:
        return "Slightly behind. Fill open schedule slots and follow up on recalls."
    if variance_percent >= -25:
        return "Behind target. Launch a recall campaign and review cancellations."
    return "Significantly behind. Revisit the target and take corrective action now."


def _action(
    title: str,
    description: str,
    impact: Decimal,
    effort: EffortLevel,
    timeframe: str,
    priority: Priority,
) -> ForecastAction:
    return ForecastAction(
        title=title,
        description=description,
        estimated_impact=money(impact),
        effort_level=effort,
        timeframe=timeframe,
        priority=priority,
    )
