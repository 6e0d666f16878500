"""Fee Schedule Optimizer.

Recommends fee increases per code by comparing the practice's current fee
with four reference points:

1. The benchmark rate for the code
2. The average reimbursement actually received
3. The best-paying payer's average payment
4. The regional rate (benchmark x regional multiplier)

Fees are only ever raised. Each rule sets a floor and the highest floor
wins; rules that fire add to the recommendation's confidence.

Also tracks how implemented fee changes perform against their projection.

Note: Recommendations are advisory. Fee changes must be approved and
implemented through the review workflow.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable

from app.schemas.base import Priority
from app.services.aggregation import Dimension, RevenueSnapshot, aggregate
from app.services.benchmarks import BenchmarkTables, EngineAssumptions, resolve_tables
from app.services.errors import RecordNotFoundError
from app.services.scoring import (
    FEE_PRIORITIES,
    ZERO,
    money,
    percent,
    priority_for,
    safe_div,
)

logger = logging.getLogger(__name__)


# Benchmark rule: (fee below this share of benchmark, raise to this share, confidence)
BENCHMARK_FLOORS: tuple[tuple[Decimal, Decimal, int], ...] = (
    (Decimal("1.25"), Decimal("1.50"), 20),
    (Decimal("1.75"), Decimal("1.75"), 15),
)
OVERPRICED_SHARE = Decimal("3.00")

REIMBURSEMENT_TRIGGER = Decimal("1.20")
REIMBURSEMENT_TARGET = Decimal("1.50")
REIMBURSEMENT_CONFIDENCE = 15

TOP_PAYER_TRIGGER = Decimal("1.30")
TOP_PAYER_TARGET = Decimal("1.50")
TOP_PAYER_CONFIDENCE = 10

REGIONAL_TRIGGER = Decimal("1.50")
REGIONAL_TARGET = Decimal("1.75")

BASE_CONFIDENCE = 50
MAX_CONFIDENCE = 95
MIN_FEE_CHANGE = Decimal("5")
DEFAULT_MIN_UTILIZATION = 5

# Effectiveness tracking
BASELINE_DAYS = 90
UNDER_PERFORMING_PERCENT = Decimal("80")
OVER_PERFORMING_PERCENT = Decimal("120")


@dataclass
class FeeRecommendation:
    """Recommended fee for one code."""

    cpt_code: str
    code_name: str
    current_fee: Decimal
    recommended_fee: Decimal
    fee_change: Decimal
    change_percent: Decimal
    reasoning: list[str]
    benchmark_rate: Decimal | None
    regional_rate: Decimal | None
    top_payer_rate: Decimal | None
    top_payer_name: str | None
    avg_reimbursement: Decimal | None
    avg_allowed: Decimal | None
    utilization: int
    projected_annual_impact: Decimal
    confidence: int
    priority: Priority

    @property
    def annual_impact(self) -> Decimal:
        return self.projected_annual_impact

    @property
    def has_change(self) -> bool:
        return self.fee_change > ZERO


@dataclass
class FeeAnalysisSummary:
    """Rollup over a fee analysis run."""

    codes_analyzed: int
    increases_recommended: int
    total_projected_impact: Decimal
    average_confidence: Decimal
    by_priority: dict[Priority, int]


@dataclass
class FeeAnalysisResult:
    """Result from a fee schedule analysis."""

    fee_schedule_id: str
    fee_schedule_name: str
    window_months: Decimal
    recommendations: list[FeeRecommendation]
    summary: FeeAnalysisSummary


@dataclass
class ImplementedFeeChange:
    """An implemented fee change to evaluate."""

    analysis_id: str
    cpt_code: str
    previous_fee: Decimal
    new_fee: Decimal
    effective_date: date
    projected_annual_impact: Decimal


@dataclass
class FeeEffectiveness:
    """Before/after comparison for one implemented fee change."""

    analysis_id: str
    cpt_code: str
    effective_date: date
    avg_fee_before: Decimal
    avg_fee_after: Decimal
    volume_before: int
    volume_after: int
    monthly_volume_after: Decimal
    projected_annual_impact: Decimal
    actual_annual_impact: Decimal
    variance: Decimal
    effectiveness_percent: Decimal


@dataclass
class EffectivenessReport:
    """Effectiveness of all tracked fee changes."""

    changes: list[FeeEffectiveness] = field(default_factory=list)
    total_projected: Decimal = ZERO
    total_actual: Decimal = ZERO
    avg_effectiveness_percent: Decimal = ZERO
    under_performing: int = 0
    over_performing: int = 0


# ============================================================================
# Fee Schedule Optimizer
# ============================================================================

_fee_optimizer: "FeeScheduleOptimizer | None" = None
_fee_lock = threading.Lock()


def get_fee_optimizer() -> "FeeScheduleOptimizer":
    """Get the singleton fee optimizer instance."""
    global _fee_optimizer
    if _fee_optimizer is None:
        with _fee_lock:
            if _fee_optimizer is None:
                _fee_optimizer = FeeScheduleOptimizer()
    return _fee_optimizer


def reset_fee_optimizer() -> None:
    """Reset the singleton instance (for testing)."""
    global _fee_optimizer
    with _fee_lock:
        _fee_optimizer = None


class FeeScheduleOptimizer:
    """Computes recommended fees and tracks implemented changes."""

    def __init__(
        self,
        benchmarks: BenchmarkTables | None = None,
        assumptions: EngineAssumptions | None = None,
    ) -> None:
        self._assumptions = assumptions or EngineAssumptions()
        self._benchmarks = resolve_tables(benchmarks or BenchmarkTables(), self._assumptions)

    def analyze(
        self,
        snapshot: RevenueSnapshot,
        fee_schedule_id: str | None = None,
        codes: Iterable[str] | None = None,
        min_utilization: int = DEFAULT_MIN_UTILIZATION,
    ) -> FeeAnalysisResult:
        """Recommend fees for every code that meets the utilization floor.

        Args:
            snapshot: Charges and claim lines for the analysis window.
            fee_schedule_id: Schedule to analyze (organization default when None).
            codes: Restrict to these codes.
            min_utilization: Minimum billed units in the window.

        Returns:
            FeeAnalysisResult sorted by projected annual impact.

        Raises:
            RecordNotFoundError: If the fee schedule does not exist.
        """
        schedule = snapshot.fee_schedule(fee_schedule_id)
        if schedule is None:
            raise RecordNotFoundError("fee schedule", fee_schedule_id)

        wanted = set(codes) if codes else None
        usage = aggregate(
            snapshot.billable_charges,
            Dimension.CODE,
            measures={"fee": lambda c: c.fee, "units": lambda c: c.units},
            where=lambda c: wanted is None or c.code in wanted,
        )
        paid_lines = [line for line in snapshot.claim_lines if line.is_paid]
        paid_by_code = aggregate(
            paid_lines,
            Dimension.CODE,
            measures={"paid": lambda line: line.paid, "allowed": lambda line: line.allowed},
        )
        window_months = Decimal(snapshot.window_days) / 30

        recommendations = []
        for code, stats in usage.items():
            utilization = int(stats.sum("units"))
            if utilization < min_utilization:
                continue
            current_fee = schedule.items.get(code)
            if current_fee is None:
                current_fee = stats.avg("fee")

            paid_stats = paid_by_code.get(code)
            avg_paid = paid_stats.avg("paid") if paid_stats else None
            avg_allowed = paid_stats.avg("allowed") if paid_stats else None
            top_payer_id, top_payer_rate = self._top_payer(
                [line for line in paid_lines if line.code == code]
            )

            recommendations.append(self.recommend(
                code=code,
                current_fee=current_fee,
                utilization=utilization,
                window_months=window_months,
                avg_reimbursement=avg_paid,
                avg_allowed=avg_allowed,
                top_payer_rate=top_payer_rate,
                top_payer_name=snapshot.payer_name(top_payer_id) if top_payer_id else None,
            ))

        recommendations.sort(key=lambda r: r.projected_annual_impact, reverse=True)
        summary = self._summarize(recommendations)

        logger.info(
            "Fee analysis for %s on schedule %s: %d codes, %d increases, projected %s",
            snapshot.organization_id,
            schedule.name,
            summary.codes_analyzed,
            summary.increases_recommended,
            summary.total_projected_impact,
        )
        return FeeAnalysisResult(
            fee_schedule_id=schedule.id,
            fee_schedule_name=schedule.name,
            window_months=window_months,
            recommendations=recommendations,
            summary=summary,
        )

    def recommend(
        self,
        code: str,
        current_fee: Decimal,
        utilization: int,
        window_months: Decimal = Decimal("12"),
        avg_reimbursement: Decimal | None = None,
        avg_allowed: Decimal | None = None,
        top_payer_rate: Decimal | None = None,
        top_payer_name: str | None = None,
    ) -> FeeRecommendation:
        """Apply the fee rules to one code.

        Codes missing from the benchmark table skip the benchmark and
        regional rules.
        """
        benchmark = self._benchmarks.rate(code)
        regional = self._benchmarks.regional_rate(code)
        recommended = current_fee
        confidence = BASE_CONFIDENCE
        reasoning: list[str] = []

        if benchmark:
            for trigger, target, boost in BENCHMARK_FLOORS:
                if current_fee < benchmark * trigger:
                    recommended = max(recommended, benchmark * target)
                    confidence += boost
                    reasoning.append(
                        f"Current fee is {money(percent(current_fee, benchmark))}% of the "
                        f"benchmark rate ${money(benchmark)}; raise to at least "
                        f"{int(target * 100)}% (${money(benchmark * target)})."
                    )
                    break
            else:
                if current_fee > benchmark * OVERPRICED_SHARE:
                    reasoning.append(
                        f"Current fee is over {int(OVERPRICED_SHARE * 100)}% of the benchmark "
                        f"rate; the code may be overpriced."
                    )

        if avg_reimbursement and current_fee < avg_reimbursement * REIMBURSEMENT_TRIGGER:
            floor = avg_reimbursement * REIMBURSEMENT_TARGET
            recommended = max(recommended, floor)
            confidence += REIMBURSEMENT_CONFIDENCE
            reasoning.append(
                f"Average reimbursement ${money(avg_reimbursement)} is close to the billed fee; "
                f"payers may be paying less than they would allow."
            )

        if top_payer_rate and current_fee < top_payer_rate * TOP_PAYER_TRIGGER:
            recommended = max(recommended, top_payer_rate * TOP_PAYER_TARGET)
            confidence += TOP_PAYER_CONFIDENCE
            reasoning.append(
                f"Top payer{f' {top_payer_name}' if top_payer_name else ''} pays "
                f"${money(top_payer_rate)}; the fee leaves money on the table."
            )

        if regional and recommended < regional * REGIONAL_TRIGGER:
            recommended = max(recommended, regional * REGIONAL_TARGET)
            reasoning.append(
                f"Fee is below {int(REGIONAL_TRIGGER * 100)}% of the regional rate "
                f"${money(regional)}."
            )

        confidence = min(confidence, MAX_CONFIDENCE)
        recommended = money(recommended)
        current_fee = money(current_fee)
        change = recommended - current_fee
        if change < MIN_FEE_CHANGE:
            recommended = current_fee
            change = money(ZERO)
            reasoning.append("Current fee is within the recommended range; no change needed.")

        annual_factor = safe_div(Decimal("12"), window_months)
        projected = money(change * utilization * self._assumptions.cash_share * annual_factor)

        return FeeRecommendation(
            cpt_code=code,
            code_name=self._benchmarks.name(code),
            current_fee=current_fee,
            recommended_fee=recommended,
            fee_change=change,
            change_percent=money(percent(change, current_fee)),
            reasoning=reasoning,
            benchmark_rate=money(benchmark) if benchmark is not None else None,
            regional_rate=money(regional) if regional is not None else None,
            top_payer_rate=money(top_payer_rate) if top_payer_rate else None,
            top_payer_name=top_payer_name,
            avg_reimbursement=money(avg_reimbursement) if avg_reimbursement else None,
            avg_allowed=money(avg_allowed) if avg_allowed else None,
            utilization=utilization,
            projected_annual_impact=projected,
            confidence=confidence,
            priority=priority_for(projected, FEE_PRIORITIES),
        )

    def track_effectiveness(
        self,
        snapshot: RevenueSnapshot,
        changes: Iterable[ImplementedFeeChange],
    ) -> EffectivenessReport:
        """Compare fee and volume before and after each implemented change.

        The snapshot must cover the 90 days before the earliest effective
        date through ``as_of``.
        """
        report = EffectivenessReport()
        cash_share = self._assumptions.cash_share

        for change in changes:
            before = [
                c for c in snapshot.billable_charges
                if c.code == change.cpt_code
                and change.effective_date - timedelta(days=BASELINE_DAYS)
                <= c.service_date < change.effective_date
            ]
            after = [
                c for c in snapshot.billable_charges
                if c.code == change.cpt_code
                and change.effective_date <= c.service_date <= snapshot.as_of
            ]

            volume_before = sum(c.units for c in before)
            volume_after = sum(c.units for c in after)
            avg_before = (
                safe_div(sum((c.fee for c in before), ZERO), len(before))
                if before else change.previous_fee
            )
            avg_after = (
                safe_div(sum((c.fee for c in after), ZERO), len(after))
                if after else change.new_fee
            )
            # Volume is averaged over at least one month
            months_after = max(Decimal(1), Decimal((snapshot.as_of - change.effective_date).days) / 30)
            monthly_volume = safe_div(Decimal(volume_after), months_after)
            actual = money((avg_after - avg_before) * monthly_volume * 12 * cash_share)
            projected = money(change.projected_annual_impact)
            effectiveness = money(percent(actual, projected))

            report.changes.append(FeeEffectiveness(
                analysis_id=change.analysis_id,
                cpt_code=change.cpt_code,
                effective_date=change.effective_date,
                avg_fee_before=money(avg_before),
                avg_fee_after=money(avg_after),
                volume_before=volume_before,
                volume_after=volume_after,
                monthly_volume_after=money(monthly_volume),
                projected_annual_impact=projected,
                actual_annual_impact=actual,
                variance=actual - projected,
                effectiveness_percent=effectiveness,
            ))
            report.total_projected += projected
            report.total_actual += actual
            if effectiveness < UNDER_PERFORMING_PERCENT:
                report.under_performing += 1
            elif effectiveness > OVER_PERFORMING_PERCENT:
                report.over_performing += 1

        if report.changes:
            report.avg_effectiveness_percent = money(safe_div(
                sum((c.effectiveness_percent for c in report.changes), ZERO),
                len(report.changes),
            ))
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _top_payer(lines: list) -> tuple[str | None, Decimal | None]:
        """Payer with the highest average payment for a code."""
        by_payer = aggregate(lines, Dimension.PAYER, measures={"paid": lambda line: line.paid})
        best_id, best_rate = None, None
        for payer_id, stats in by_payer.items():
            rate = stats.avg("paid")
            if best_rate is None or rate > best_rate:
                best_id, best_rate = payer_id, rate
        return best_id, best_rate

    @staticmethod
    def _summarize(recommendations: list[FeeRecommendation]) -> FeeAnalysisSummary:
        by_priority = {priority: 0 for priority in Priority}
        for rec in recommendations:
            by_priority[rec.priority] += 1
        return FeeAnalysisSummary(
            codes_analyzed=len(recommendations),
            increases_recommended=sum(1 for r in recommendations if r.has_change),
            total_projected_impact=money(
                sum((r.projected_annual_impact for r in recommendations), ZERO)
            ),
            average_confidence=money(
                safe_div(sum(r.confidence for r in recommendations), len(recommendations))
            ),
            by_priority=by_priority,
        )

    def get_stats(self) -> dict:
        """Get optimizer statistics."""
        return {
            "benchmark_codes": len(self._benchmarks.rates),
            "regional_multiplier": str(self._benchmarks.regional_multiplier),
            "cash_share": str(self._assumptions.cash_share),
        }
