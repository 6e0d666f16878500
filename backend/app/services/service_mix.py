"""Service Mix Analyzer.

Evaluates what the practice does and for whom, in four views:

- Category profitability (revenue, reimbursement and revenue per minute)
- Payer mix (reimbursement, denials and payment speed)
- Provider time vs revenue (revenue per hour and utilization)
- Capacity recommendations (where to shift time and volume)

Results depend only on the snapshot and its explicit date range, so two
runs over the same records produce identical numbers.
"""

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal

from app.schemas.base import ClaimStatus, Priority
from app.services.aggregation import Dimension, RevenueSnapshot, aggregate
from app.services.benchmarks import (
    OTHER_CATEGORY_KEY,
    BenchmarkTables,
    EngineAssumptions,
    ServiceCategory,
    resolve_tables,
)
from app.services.scoring import (
    ZERO,
    money,
    non_negative,
    percent,
    priority_for,
    priority_rank,
    safe_div,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_VOLUME = 10

# Category classification
HIGH_MARGIN_REVENUE_PER_MINUTE = Decimal("3.00")
HIGH_MARGIN_REIMBURSEMENT = Decimal("60")
UNPROFITABLE_REVENUE_PER_MINUTE = Decimal("1.50")
UNPROFITABLE_REIMBURSEMENT = Decimal("30")

# Payer signals (percent)
PAYER_LOW_REIMBURSEMENT = Decimal("40")
PAYER_SIGNIFICANT_SHARE = Decimal("10")
PAYER_HIGH_DENIAL = Decimal("20")
PAYER_SLOW_DAYS = Decimal("60")
PAYER_GROW_REIMBURSEMENT = Decimal("70")

# Provider signals
LOW_REVENUE_PER_HOUR = Decimal("150")
HIGH_REVENUE_PER_HOUR = Decimal("300")
LOW_UTILIZATION = Decimal("50")
HIGH_UTILIZATION = Decimal("90")

# Capacity recommendations
EXPAND_SHARE = Decimal("0.25")
UNPROFITABLE_RECOVERY_SHARE = Decimal("0.50")
REBALANCE_REIMBURSEMENT = Decimal("50")
REBALANCE_MIN_SHARE = Decimal("5")
REBALANCE_RECOVERY_SHARE = Decimal("0.30")
UTILIZATION_TARGET = Decimal("70")
UTILIZATION_FLOOR = Decimal("60")

HIGH_MARGIN = "high_margin"
UNPROFITABLE = "unprofitable"
NEUTRAL = "neutral"

_OTHER_CATEGORY = ServiceCategory(
    OTHER_CATEGORY_KEY, "Other Services", frozenset(), 0,
    "Keep billing other services consistently.",
    "Review miscellaneous codes for payer coverage.",
)


@dataclass
class Signal:
    """A flagged condition with its priority."""

    priority: Priority
    message: str


@dataclass
class CategoryProfitability:
    """Profitability of one service category."""

    key: str
    label: str
    volume: int
    charge_count: int
    revenue: Decimal
    reimbursement: Decimal
    reimbursement_rate: Decimal
    profit_margin: Decimal
    minutes: int
    revenue_per_minute: Decimal
    classification: str
    recommendation: str
    priority: Priority


@dataclass
class PayerMixEntry:
    """Volume and payment behavior of one payer."""

    payer_id: str
    payer_name: str
    claim_count: int
    billed: Decimal
    paid: Decimal
    reimbursement_rate: Decimal
    denial_rate: Decimal
    avg_days_to_payment: Decimal
    volume_share: Decimal
    signals: list[Signal] = field(default_factory=list)

    @property
    def priority(self) -> Priority:
        if not self.signals:
            return Priority.LOW
        return min((s.priority for s in self.signals), key=priority_rank)


@dataclass
class ProviderProductivity:
    """Time and revenue for one provider."""

    provider_id: str | None
    provider_name: str
    encounter_count: int
    units: int
    minutes: int
    revenue: Decimal
    revenue_per_hour: Decimal
    avg_minutes_per_encounter: Decimal
    avg_revenue_per_encounter: Decimal
    utilization: Decimal
    signals: list[Signal] = field(default_factory=list)

    @property
    def priority(self) -> Priority:
        if not self.signals:
            return Priority.LOW
        return min((s.priority for s in self.signals), key=priority_rank)


@dataclass
class CapacityRecommendation:
    """Actionable capacity or mix change with an estimated impact."""

    kind: str  # expand_category, review_category, rebalance_payers, raise_utilization
    title: str
    description: str
    estimated_impact: Decimal
    priority: Priority
    entity_type: str
    entity_id: str
    details: dict = field(default_factory=dict)
    is_material: bool = False

    @property
    def annual_impact(self) -> Decimal:
        return self.estimated_impact


@dataclass
class ServiceMixSummary:
    """Top-line service mix figures."""

    total_revenue: Decimal
    total_reimbursement: Decimal
    reimbursement_rate: Decimal
    total_minutes: int
    revenue_per_hour: Decimal
    high_margin_categories: int
    unprofitable_categories: int
    payer_count: int
    provider_count: int
    total_opportunity: Decimal


@dataclass
class ServiceMixResult:
    """Result from a service mix analysis."""

    categories: list[CategoryProfitability]
    payers: list[PayerMixEntry]
    providers: list[ProviderProductivity]
    recommendations: list[CapacityRecommendation]
    summary: ServiceMixSummary


# ============================================================================
# Service Mix Analyzer
# ============================================================================

_service_mix_analyzer: "ServiceMixAnalyzer | None" = None
_service_mix_lock = threading.Lock()


def get_service_mix_analyzer() -> "ServiceMixAnalyzer":
    """Get the singleton service mix analyzer instance."""
    global _service_mix_analyzer
    if _service_mix_analyzer is None:
        with _service_mix_lock:
            if _service_mix_analyzer is None:
                _service_mix_analyzer = ServiceMixAnalyzer()
    return _service_mix_analyzer


def reset_service_mix_analyzer() -> None:
    """Reset the singleton instance (for testing)."""
    global _service_mix_analyzer
    with _service_mix_lock:
        _service_mix_analyzer = None


class ServiceMixAnalyzer:
    """Analyzes category profitability, payer mix and provider capacity."""

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
        provider_id: str | None = None,
        min_volume: int = DEFAULT_MIN_VOLUME,
    ) -> ServiceMixResult:
        """Produce the four service mix views.

        Args:
            snapshot: Records for the analysis window.
            provider_id: Only consider this provider's records.
            min_volume: Minimum units for a category to be evaluated.

        Returns:
            ServiceMixResult with views, recommendations and summary.
        """
        scoped = snapshot.for_provider(provider_id)
        categories = self.analyze_categories(scoped, min_volume)
        payers = self.analyze_payers(scoped)
        providers = self.analyze_providers(scoped)
        recommendations = self.recommend_capacity(categories, payers, providers)
        summary = self._summarize(scoped, categories, payers, providers, recommendations)

        logger.info(
            "Service mix for %s: %d categories, %d payers, %d providers, %d recommendations",
            snapshot.organization_id,
            len(categories),
            len(payers),
            len(providers),
            len(recommendations),
        )
        return ServiceMixResult(
            categories=categories,
            payers=payers,
            providers=providers,
            recommendations=recommendations,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Category profitability
    # ------------------------------------------------------------------

    def category_of(self, code: str) -> ServiceCategory:
        return self._benchmarks.category_for(code) or _OTHER_CATEGORY

    def analyze_categories(
        self,
        snapshot: RevenueSnapshot,
        min_volume: int = DEFAULT_MIN_VOLUME,
    ) -> list[CategoryProfitability]:
        """Profitability per service category, highest revenue first."""
        by_category = aggregate(
            snapshot.billable_charges,
            by=lambda c: self.category_of(c.code).key,
            measures={
                "units": lambda c: c.units,
                "revenue": lambda c: c.fee,
                "paid": lambda c: c.paid_amount,
                "minutes": lambda c: c.units * self.category_of(c.code).minutes_per_unit,
            },
        )
        lookup = {c.key: c for c in self._benchmarks.service_categories}
        lookup[OTHER_CATEGORY_KEY] = _OTHER_CATEGORY
        overhead = self._assumptions.overhead_rate

        results = []
        for key, stats in by_category.items():
            volume = int(stats.sum("units"))
            if volume < min_volume:
                continue
            category = lookup[key]
            revenue = stats.sum("revenue")
            reimbursement = stats.sum("paid")
            minutes = int(stats.sum("minutes"))
            rate = percent(reimbursement, revenue)
            revenue_per_minute = safe_div(revenue, minutes)
            classification = self._classify(category, rate, revenue_per_minute)

            if classification == HIGH_MARGIN:
                recommendation, priority = category.expand_advice, Priority.MEDIUM
            elif classification == UNPROFITABLE:
                recommendation, priority = category.review_advice, Priority.HIGH
            else:
                recommendation = f"{category.label} performs in line with expectations."
                priority = Priority.LOW

            results.append(CategoryProfitability(
                key=key,
                label=category.label,
                volume=volume,
                charge_count=stats.count,
                revenue=money(revenue),
                reimbursement=money(reimbursement),
                reimbursement_rate=money(rate),
                profit_margin=money(rate * (1 - overhead)),
                minutes=minutes,
                revenue_per_minute=money(revenue_per_minute),
                classification=classification,
                recommendation=recommendation,
                priority=priority,
            ))

        results.sort(key=lambda c: (-c.revenue, c.key))
        return results

    @staticmethod
    def _classify(category: ServiceCategory, rate: Decimal, revenue_per_minute: Decimal) -> str:
        if category.minutes_per_unit == 0:
            if rate > HIGH_MARGIN_REIMBURSEMENT:
                return HIGH_MARGIN
            if rate < UNPROFITABLE_REIMBURSEMENT:
                return UNPROFITABLE
            return NEUTRAL
        if revenue_per_minute > HIGH_MARGIN_REVENUE_PER_MINUTE and rate > HIGH_MARGIN_REIMBURSEMENT:
            return HIGH_MARGIN
        if revenue_per_minute < UNPROFITABLE_REVENUE_PER_MINUTE or rate < UNPROFITABLE_REIMBURSEMENT:
            return UNPROFITABLE
        return NEUTRAL

    # ------------------------------------------------------------------
    # Payer mix
    # ------------------------------------------------------------------

    def analyze_payers(self, snapshot: RevenueSnapshot) -> list[PayerMixEntry]:
        """Payment behavior per payer over claims submitted in range."""
        by_payer = aggregate(
            snapshot.claims,
            Dimension.PAYER,
            measures={
                "billed": lambda c: c.total_charged,
                "paid": lambda c: c.total_paid,
                "denied": lambda c: 1 if c.status == ClaimStatus.DENIED else 0,
                "days": lambda c: c.days_to_payment or 0,
                "paid_claims": lambda c: 1 if c.days_to_payment is not None else 0,
            },
        )
        total_claims = sum(stats.count for stats in by_payer.values())

        entries = []
        for payer_id, stats in by_payer.items():
            rate = percent(stats.sum("paid"), stats.sum("billed"))
            denial_rate = percent(stats.sum("denied"), stats.count)
            avg_days = safe_div(stats.sum("days"), stats.sum("paid_claims"))
            share = percent(stats.count, total_claims)
            name = snapshot.payer_name(payer_id)

            signals = []
            if rate < PAYER_LOW_REIMBURSEMENT:
                signals.append(Signal(
                    Priority.CRITICAL if share >= PAYER_SIGNIFICANT_SHARE else Priority.HIGH,
                    f"{name} reimburses {money(rate)}% of billed charges.",
                ))
            if denial_rate > PAYER_HIGH_DENIAL:
                signals.append(Signal(
                    Priority.HIGH,
                    f"{name} denies {money(denial_rate)}% of claims; review denial reasons.",
                ))
            if avg_days > PAYER_SLOW_DAYS:
                signals.append(Signal(
                    Priority.MEDIUM,
                    f"{name} takes {money(avg_days)} days to pay on average.",
                ))
            if rate > PAYER_GROW_REIMBURSEMENT and share < PAYER_SIGNIFICANT_SHARE:
                signals.append(Signal(
                    Priority.MEDIUM,
                    f"Grow {name}: strong reimbursement ({money(rate)}%) on a small share of volume.",
                ))

            entries.append(PayerMixEntry(
                payer_id=payer_id,
                payer_name=name,
                claim_count=stats.count,
                billed=money(stats.sum("billed")),
                paid=money(stats.sum("paid")),
                reimbursement_rate=money(rate),
                denial_rate=money(denial_rate),
                avg_days_to_payment=money(avg_days),
                volume_share=money(share),
                signals=signals,
            ))

        entries.sort(key=lambda p: (-p.billed, p.payer_name))
        return entries

    # ------------------------------------------------------------------
    # Provider productivity
    # ------------------------------------------------------------------

    def analyze_providers(self, snapshot: RevenueSnapshot) -> list[ProviderProductivity]:
        """Revenue per hour and utilization per provider."""
        by_provider = aggregate(
            snapshot.billable_charges,
            Dimension.PROVIDER,
            measures={
                "units": lambda c: c.units,
                "revenue": lambda c: c.fee,
                "minutes": lambda c: c.units * self.category_of(c.code).minutes_per_unit,
            },
        )
        encounters_by_provider: dict[str | None, set[str]] = {}
        for charge in snapshot.billable_charges:
            if charge.encounter_id:
                encounters_by_provider.setdefault(charge.provider_id, set()).add(charge.encounter_id)

        window_months = Decimal(snapshot.window_days) / 30
        capacity_minutes = self._assumptions.provider_capacity_hours * 60 * window_months

        results = []
        for provider_id, stats in by_provider.items():
            revenue = stats.sum("revenue")
            minutes = int(stats.sum("minutes"))
            encounter_count = len(encounters_by_provider.get(provider_id, ()))
            revenue_per_hour = safe_div(revenue * 60, minutes)
            utilization = percent(minutes, capacity_minutes)
            name = snapshot.provider_name(provider_id)

            signals = []
            if minutes and revenue_per_hour < LOW_REVENUE_PER_HOUR:
                signals.append(Signal(
                    Priority.HIGH,
                    f"{name} generates ${money(revenue_per_hour)}/hour; review service mix "
                    f"and coding.",
                ))
            if utilization < LOW_UTILIZATION:
                signals.append(Signal(
                    Priority.MEDIUM,
                    f"{name} is {money(utilization)}% utilized; grow the schedule.",
                ))
            elif utilization > HIGH_UTILIZATION:
                signals.append(Signal(
                    Priority.MEDIUM,
                    f"{name} is {money(utilization)}% utilized; add capacity or support staff.",
                ))
            if revenue_per_hour > HIGH_REVENUE_PER_HOUR:
                signals.append(Signal(
                    Priority.LOW,
                    f"{name} earns ${money(revenue_per_hour)}/hour; share scheduling and "
                    f"documentation practices.",
                ))

            results.append(ProviderProductivity(
                provider_id=provider_id,
                provider_name=name,
                encounter_count=encounter_count,
                units=int(stats.sum("units")),
                minutes=minutes,
                revenue=money(revenue),
                revenue_per_hour=money(revenue_per_hour),
                avg_minutes_per_encounter=money(safe_div(Decimal(minutes), encounter_count)),
                avg_revenue_per_encounter=money(safe_div(revenue, encounter_count)),
                utilization=money(utilization),
                signals=signals,
            ))

        results.sort(key=lambda p: (-p.revenue, p.provider_name))
        return results

    # ------------------------------------------------------------------
    # Capacity recommendations
    # ------------------------------------------------------------------

    def recommend_capacity(
        self,
        categories: list[CategoryProfitability],
        payers: list[PayerMixEntry],
        providers: list[ProviderProductivity],
    ) -> list[CapacityRecommendation]:
        """Turn the three views into sized recommendations."""
        recommendations: list[CapacityRecommendation] = []

        high_margin = [c for c in categories if c.classification == HIGH_MARGIN]
        if high_margin:
            top = max(high_margin, key=lambda c: (c.revenue_per_minute, c.reimbursement))
            recommendations.append(self._recommendation(
                "expand_category",
                f"Expand {top.label}",
                f"{top.label} earns ${top.revenue_per_minute}/minute at "
                f"{top.reimbursement_rate}% reimbursement. {top.recommendation}",
                top.reimbursement * EXPAND_SHARE,
                "service_category",
                top.key,
                {"revenue_per_minute": str(top.revenue_per_minute)},
            ))

        for category in categories:
            if category.classification != UNPROFITABLE:
                continue
            unreimbursed = 1 - category.reimbursement_rate / 100
            recommendations.append(self._recommendation(
                "review_category",
                f"Review {category.label}",
                f"{category.label} is unprofitable at ${category.revenue_per_minute}/minute "
                f"and {category.reimbursement_rate}% reimbursement. {category.recommendation}",
                category.revenue * unreimbursed * UNPROFITABLE_RECOVERY_SHARE,
                "service_category",
                category.key,
                {"reimbursement_rate": str(category.reimbursement_rate)},
            ))

        low_payers = [
            p for p in payers
            if p.reimbursement_rate < REBALANCE_REIMBURSEMENT
            and p.volume_share > REBALANCE_MIN_SHARE
        ]
        if low_payers:
            gap = sum((p.billed - p.paid for p in low_payers), ZERO)
            names = ", ".join(p.payer_name for p in low_payers)
            recommendations.append(self._recommendation(
                "rebalance_payers",
                "Rebalance payer mix",
                f"Low-reimbursing payers ({names}) hold a significant share of volume. "
                f"Shift new patient marketing toward better-paying payers and renegotiate.",
                gap * REBALANCE_RECOVERY_SHARE,
                "payer_mix",
                "low_reimbursement",
                {"payers": [p.payer_id for p in low_payers]},
            ))

        for provider in providers:
            if provider.utilization >= UTILIZATION_FLOOR:
                continue
            recommendations.append(self._recommendation(
                "raise_utilization",
                f"Raise utilization for {provider.provider_name}",
                f"{provider.provider_name} is {provider.utilization}% utilized. Fill open "
                f"slots with recall visits and new patient appointments.",
                provider.revenue * (UTILIZATION_TARGET - provider.utilization) / 100,
                "provider",
                provider.provider_id or "unassigned",
                {"utilization": str(provider.utilization)},
            ))

        recommendations.sort(key=lambda r: (-r.estimated_impact, r.kind, r.entity_id))
        return recommendations

    def _recommendation(
        self,
        kind: str,
        title: str,
        description: str,
        impact: Decimal,
        entity_type: str,
        entity_id: str,
        details: dict,
    ) -> CapacityRecommendation:
        impact = money(non_negative(impact))
        return CapacityRecommendation(
            kind=kind,
            title=title,
            description=description,
            estimated_impact=impact,
            priority=priority_for(impact),
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            is_material=impact >= self._assumptions.materiality_floor,
        )

    def _summarize(
        self,
        snapshot: RevenueSnapshot,
        categories: list[CategoryProfitability],
        payers: list[PayerMixEntry],
        providers: list[ProviderProductivity],
        recommendations: list[CapacityRecommendation],
    ) -> ServiceMixSummary:
        charges = snapshot.billable_charges
        total_revenue = sum((c.fee for c in charges), ZERO)
        total_paid = sum((c.paid_amount for c in charges), ZERO)
        total_minutes = sum(c.units * self.category_of(c.code).minutes_per_unit for c in charges)
        return ServiceMixSummary(
            total_revenue=money(total_revenue),
            total_reimbursement=money(total_paid),
            reimbursement_rate=money(percent(total_paid, total_revenue)),
            total_minutes=total_minutes,
            revenue_per_hour=money(safe_div(total_revenue * 60, total_minutes)),
            high_margin_categories=sum(1 for c in categories if c.classification == HIGH_MARGIN),
            unprofitable_categories=sum(1 for c in categories if c.classification == UNPROFITABLE),
            payer_count=len(payers),
            provider_count=len(providers),
            total_opportunity=money(
                sum((r.estimated_impact for r in recommendations if r.is_material), ZERO)
            ),
        )

    def get_stats(self) -> dict:
        """Get analyzer statistics."""
        return {
            "service_categories": len(self._benchmarks.service_categories) + 1,
            "overhead_rate": str(self._assumptions.overhead_rate),
            "provider_capacity_hours": str(self._assumptions.provider_capacity_hours),
        }
