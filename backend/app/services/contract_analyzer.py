"""Payer Contract Analyzer.

Builds a scorecard for each payer contract:

- Billed, allowed and paid totals, denial rate and payment speed
- Per-code payment vs benchmark and regional market tiers
- Overall rating and renegotiation priority
- Talking points for the renegotiation conversation

Also provides a what-if calculator for proposed rate changes. The what-if
is pure: nothing is persisted.
"""

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

from app.schemas.base import ClaimStatus, PayerType, Priority
from app.services.aggregation import Dimension, RevenueSnapshot, aggregate
from app.services.benchmarks import BenchmarkTables, EngineAssumptions, resolve_tables
from app.services.errors import RecordNotFoundError
from app.services.scoring import (
    ZERO,
    escalate,
    money,
    non_negative,
    percent,
    priority_rank,
    safe_div,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_CLAIMS = 10

HIGH_DENIAL_RATE = Decimal("15")
SLOW_PAYMENT_DAYS = Decimal("45")
VOLUME_LEVERAGE_CLAIMS = 100
AVERAGE_RATING_OPPORTUNITY = Decimal("10000")
GOOD_RATING_OPPORTUNITY = Decimal("5000")

BELOW_MARKET = "below_market"
AT_MARKET = "at_market"
ABOVE_MARKET = "above_market"
NO_BENCHMARK = "no_benchmark"


@dataclass
class CodeRateComparison:
    """One code's payment from a payer vs market."""

    code: str
    code_name: str
    units: int
    annual_volume: Decimal
    avg_paid_per_unit: Decimal
    benchmark_rate: Decimal | None
    percent_of_benchmark: Decimal | None
    expected_rate: Decimal | None  # Benchmark x payer type ratio
    market_low: Decimal | None
    market_mid: Decimal | None
    market_high: Decimal | None
    market_position: str
    annual_gap: Decimal


@dataclass
class PayerScorecard:
    """Contract performance for one payer."""

    payer_id: str
    payer_name: str
    payer_type: PayerType
    claim_count: int
    total_billed: Decimal
    total_allowed: Decimal
    total_paid: Decimal
    reimbursement_rate: Decimal
    denial_rate: Decimal
    avg_days_to_payment: Decimal
    codes: list[CodeRateComparison]
    opportunity: Decimal
    rating: str
    priority: Priority
    talking_points: list[str] = field(default_factory=list)

    @property
    def annual_impact(self) -> Decimal:
        return self.opportunity

    @property
    def needs_renegotiation(self) -> bool:
        return self.priority in (Priority.CRITICAL, Priority.HIGH)


@dataclass
class ContractSummary:
    """Rollup over all analyzed payers."""

    payers_analyzed: int
    total_opportunity: Decimal
    renegotiation_candidates: int
    by_rating: dict[str, int]


@dataclass
class ContractAnalysisResult:
    """Result from a contract analysis."""

    scorecards: list[PayerScorecard]
    summary: ContractSummary


@dataclass
class RateChangeImpact:
    """Projected effect of a proposed rate for one code."""

    code: str
    annual_volume: Decimal
    current_rate: Decimal
    proposed_rate: Decimal
    current_annual_revenue: Decimal
    proposed_annual_revenue: Decimal
    annual_delta: Decimal


@dataclass
class ContractModelResult:
    """Result from a what-if contract change."""

    payer_id: str
    payer_name: str
    changes: list[RateChangeImpact]
    total_current_revenue: Decimal
    total_proposed_revenue: Decimal
    total_annual_delta: Decimal


# ============================================================================
# Contract Analyzer
# ============================================================================

_contract_analyzer: "ContractAnalyzer | None" = None
_contract_lock = threading.Lock()


def get_contract_analyzer() -> "ContractAnalyzer":
    """Get the singleton contract analyzer instance."""
    global _contract_analyzer
    if _contract_analyzer is None:
        with _contract_lock:
            if _contract_analyzer is None:
                _contract_analyzer = ContractAnalyzer()
    return _contract_analyzer


def reset_contract_analyzer() -> None:
    """Reset the singleton instance (for testing)."""
    global _contract_analyzer
    with _contract_lock:
        _contract_analyzer = None


def rate_contract(reimbursement_rate: Decimal, opportunity: Decimal) -> tuple[str, Priority]:
    """Rating and base priority from reimbursement rate and opportunity size."""
    if reimbursement_rate < 40:
        return "poor", Priority.CRITICAL
    if reimbursement_rate < 50:
        return "below_average", Priority.HIGH
    if reimbursement_rate < 60:
        priority = Priority.HIGH if opportunity >= AVERAGE_RATING_OPPORTUNITY else Priority.MEDIUM
        return "average", priority
    if reimbursement_rate < 70:
        priority = Priority.MEDIUM if opportunity >= GOOD_RATING_OPPORTUNITY else Priority.LOW
        return "good", priority
    return "excellent", Priority.LOW


class ContractAnalyzer:
    """Scores payer contracts against benchmark and market rates."""

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
        payer_id: str | None = None,
        min_claims: int = DEFAULT_MIN_CLAIMS,
    ) -> ContractAnalysisResult:
        """Build scorecards for every payer meeting the claim volume floor.

        Args:
            snapshot: Claims and claim lines for the analysis window.
            payer_id: Only analyze this payer.
            min_claims: Minimum claims in the window.

        Returns:
            ContractAnalysisResult with scorecards, most urgent first.
        """
        scoped = snapshot.for_payer(payer_id)
        annual_factor = safe_div(Decimal("12"), Decimal(scoped.window_days) / 30)
        claims_by_payer = aggregate(scoped.claims, Dimension.PAYER)

        scorecards = []
        for pid, stats in claims_by_payer.items():
            if stats.count < min_claims:
                continue
            scorecards.append(self.score_payer(scoped, pid, annual_factor))

        scorecards.sort(key=lambda s: (priority_rank(s.priority), -s.opportunity, s.payer_name))

        by_rating: dict[str, int] = {}
        for card in scorecards:
            by_rating[card.rating] = by_rating.get(card.rating, 0) + 1
        summary = ContractSummary(
            payers_analyzed=len(scorecards),
            total_opportunity=money(sum((s.opportunity for s in scorecards), ZERO)),
            renegotiation_candidates=sum(1 for s in scorecards if s.needs_renegotiation),
            by_rating=by_rating,
        )

        logger.info(
            "Contract analysis for %s: %d payers, %d renegotiation candidates",
            snapshot.organization_id,
            summary.payers_analyzed,
            summary.renegotiation_candidates,
        )
        return ContractAnalysisResult(scorecards=scorecards, summary=summary)

    def score_payer(
        self,
        snapshot: RevenueSnapshot,
        payer_id: str,
        annual_factor: Decimal = Decimal("1"),
    ) -> PayerScorecard:
        """Scorecard for one payer."""
        claims = [c for c in snapshot.claims if c.payer_id == payer_id]
        billed = sum((c.total_charged for c in claims), ZERO)
        allowed = sum((c.total_allowed for c in claims), ZERO)
        paid = sum((c.total_paid for c in claims), ZERO)
        denied = sum(1 for c in claims if c.status == ClaimStatus.DENIED)
        payment_days = [c.days_to_payment for c in claims if c.days_to_payment is not None]

        reimbursement_rate = percent(paid, billed)
        denial_rate = percent(denied, len(claims))
        avg_days = safe_div(Decimal(sum(payment_days)), len(payment_days))
        payer_type = snapshot.payer_type(payer_id)

        codes = self._compare_codes(snapshot, payer_id, payer_type, annual_factor)
        opportunity = money(sum((c.annual_gap for c in codes), ZERO))

        rating, priority = rate_contract(reimbursement_rate, opportunity)
        if denial_rate > HIGH_DENIAL_RATE or avg_days > SLOW_PAYMENT_DAYS:
            priority = escalate(priority)

        card = PayerScorecard(
            payer_id=payer_id,
            payer_name=snapshot.payer_name(payer_id),
            payer_type=payer_type,
            claim_count=len(claims),
            total_billed=money(billed),
            total_allowed=money(allowed),
            total_paid=money(paid),
            reimbursement_rate=money(reimbursement_rate),
            denial_rate=money(denial_rate),
            avg_days_to_payment=money(avg_days),
            codes=codes,
            opportunity=opportunity,
            rating=rating,
            priority=priority,
        )
        card.talking_points = self._talking_points(card)
        return card

    def _compare_codes(
        self,
        snapshot: RevenueSnapshot,
        payer_id: str,
        payer_type: PayerType,
        annual_factor: Decimal,
    ) -> list[CodeRateComparison]:
        by_code = aggregate(
            snapshot.claim_lines,
            Dimension.CODE,
            measures={"paid": lambda line: line.paid, "units": lambda line: line.units},
            where=lambda line: line.payer_id == payer_id and line.is_paid,
        )
        tiers = self._benchmarks.market_tiers
        ratio = self._benchmarks.payer_type_ratios.get(payer_type, Decimal("1"))

        comparisons = []
        for code, stats in by_code.items():
            units = int(stats.sum("units"))
            avg_paid = safe_div(stats.sum("paid"), units)
            annual_volume = Decimal(units) * annual_factor
            benchmark = self._benchmarks.rate(code)

            if benchmark is None:
                comparisons.append(CodeRateComparison(
                    code=code, code_name=self._benchmarks.name(code), units=units,
                    annual_volume=money(annual_volume), avg_paid_per_unit=money(avg_paid),
                    benchmark_rate=None, percent_of_benchmark=None, expected_rate=None,
                    market_low=None, market_mid=None, market_high=None,
                    market_position=NO_BENCHMARK, annual_gap=money(ZERO),
                ))
                continue

            regional = self._benchmarks.regional_rate(code)
            low, mid, high = (regional * tiers[t] for t in ("low", "mid", "high"))
            if avg_paid < low:
                position = BELOW_MARKET
                gap = non_negative((mid - avg_paid) * annual_volume)
            elif avg_paid > high:
                position, gap = ABOVE_MARKET, ZERO
            else:
                position, gap = AT_MARKET, ZERO

            comparisons.append(CodeRateComparison(
                code=code,
                code_name=self._benchmarks.name(code),
                units=units,
                annual_volume=money(annual_volume),
                avg_paid_per_unit=money(avg_paid),
                benchmark_rate=money(benchmark),
                percent_of_benchmark=money(percent(avg_paid, benchmark)),
                expected_rate=money(benchmark * ratio),
                market_low=money(low),
                market_mid=money(mid),
                market_high=money(high),
                market_position=position,
                annual_gap=money(gap),
            ))

        comparisons.sort(key=lambda c: (-c.annual_gap, c.code))
        return comparisons

    @staticmethod
    def _talking_points(card: PayerScorecard) -> list[str]:
        points = []
        for code in card.codes:
            if code.market_position != BELOW_MARKET:
                continue
            point = (
                f"{code.code} ({code.code_name}): paying ${code.avg_paid_per_unit} vs market "
                f"midpoint ${code.market_mid}; request ${code.market_mid} "
                f"(annual gap ${code.annual_gap})."
            )
            if code.expected_rate is not None and code.avg_paid_per_unit < code.expected_rate:
                payer_type = card.payer_type.value.replace("_", " ")
                point += f" {payer_type.capitalize()} payers typically pay ${code.expected_rate}."
            points.append(point)
        if card.denial_rate > HIGH_DENIAL_RATE:
            points.append(
                f"Denial rate of {card.denial_rate}% is above the {HIGH_DENIAL_RATE}% "
                f"threshold; request clearer coverage criteria and a denial review process."
            )
        if card.avg_days_to_payment > SLOW_PAYMENT_DAYS:
            points.append(
                f"Average payment takes {card.avg_days_to_payment} days; negotiate prompt "
                f"payment terms of {SLOW_PAYMENT_DAYS} days or less."
            )
        if card.claim_count > VOLUME_LEVERAGE_CLAIMS:
            points.append(
                f"The practice submitted {card.claim_count} claims in the period; use this "
                f"volume as leverage for better rates."
            )
        return points

    def model_contract_change(
        self,
        snapshot: RevenueSnapshot,
        payer_id: str,
        proposed_rates: Mapping[str, Decimal],
    ) -> ContractModelResult:
        """Project the annual revenue effect of proposed per-code rates.

        Args:
            snapshot: Claim lines giving the payer's historical volume.
            payer_id: Payer whose contract is modeled.
            proposed_rates: Code to proposed rate per unit.

        Returns:
            ContractModelResult with per-code and total deltas.

        Raises:
            RecordNotFoundError: If the payer is unknown.
        """
        if payer_id not in snapshot.payers:
            raise RecordNotFoundError("payer", payer_id)

        annual_factor = safe_div(Decimal("12"), Decimal(snapshot.window_days) / 30)
        by_code = aggregate(
            snapshot.claim_lines,
            Dimension.CODE,
            measures={"paid": lambda line: line.paid, "units": lambda line: line.units},
            where=lambda line: line.payer_id == payer_id and line.is_paid,
        )

        changes = []
        for code, proposed in proposed_rates.items():
            stats = by_code.get(code)
            units = stats.sum("units") if stats else ZERO
            current_rate = safe_div(stats.sum("paid"), units) if stats else ZERO
            annual_volume = units * annual_factor
            current_revenue = current_rate * annual_volume
            proposed_revenue = Decimal(proposed) * annual_volume
            changes.append(RateChangeImpact(
                code=code,
                annual_volume=money(annual_volume),
                current_rate=money(current_rate),
                proposed_rate=money(proposed),
                current_annual_revenue=money(current_revenue),
                proposed_annual_revenue=money(proposed_revenue),
                annual_delta=money(proposed_revenue - current_revenue),
            ))

        total_current = sum((c.current_annual_revenue for c in changes), ZERO)
        total_proposed = sum((c.proposed_annual_revenue for c in changes), ZERO)
        return ContractModelResult(
            payer_id=payer_id,
            payer_name=snapshot.payer_name(payer_id),
            changes=changes,
            total_current_revenue=money(total_current),
            total_proposed_revenue=money(total_proposed),
            total_annual_delta=money(total_proposed - total_current),
        )

    def get_stats(self) -> dict:
        """Get analyzer statistics."""
        return {
            "benchmark_codes": len(self._benchmarks.rates),
            "market_tiers": list(self._benchmarks.market_tiers),
            "payer_types": len(self._benchmarks.payer_type_ratios),
        }
