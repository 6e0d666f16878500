"""Revenue Leakage Detector.

Scans a revenue snapshot for six independent leakage patterns:

- Unbilled services (completed encounters with no charges)
- Undercoding (low-level E&M despite documented complexity)
- Missed modifiers (E&M with manipulation but no modifier 25)
- Unbilled supplies (therapy visits without supply charges)
- Write-off patterns (payers with a high adjustment rate)
- Collection issues (aged receivable buckets)

Every finding is annualized and prioritized with the shared scoring
conventions so it can be ranked alongside other analyzers' output.

Note: Findings are estimates. Review each one against the claim and the
clinical documentation before correcting a charge.
"""

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from app.schemas.base import (
    ChargeStatus,
    EffortLevel,
    EncounterStatus,
    Frequency,
    LeakageType,
    Priority,
)
from app.services.aggregation import RevenueSnapshot, aggregate
from app.services.benchmarks import (
    EM_CODES,
    EM_NEXT_TIER,
    LOW_LEVEL_EM_CODES,
    MANIPULATION_CODES,
    SEPARATE_SERVICE_MODIFIER,
    SUPPLY_CODES,
    SUPPLY_CONSUMING_CODES,
    BenchmarkTables,
    EngineAssumptions,
    resolve_tables,
)
from app.services.scoring import (
    ZERO,
    annualize,
    money,
    non_negative,
    percent,
    priority_for,
    rank_findings,
)

logger = logging.getLogger(__name__)


# Pattern thresholds
SUPPLY_PATTERN_THRESHOLD = 10  # Encounters, strictly greater
WRITE_OFF_RATE_THRESHOLD = Decimal("30")  # Percent of charged
WRITE_OFF_MIN_CHARGES = 10  # Strictly greater
COLLECTION_BUCKET_THRESHOLD = Decimal("500")
MIN_DIAGNOSES_FOR_COMPLEXITY = 2

# (label, min age inclusive, max age exclusive)
AGING_BUCKETS: tuple[tuple[str, int, int | None], ...] = (
    ("60-90", 60, 90),
    ("90-120", 90, 120),
    ("120+", 120, None),
)

TOP_FINDINGS_LIMIT = 10
QUICK_WINS_LIMIT = 5


@dataclass
class LeakageFinding:
    """A single revenue leakage finding."""

    leakage_type: LeakageType
    source: str  # Which data scan produced the finding
    description: str
    amount: Decimal
    frequency: Frequency
    annual_impact: Decimal
    priority: Priority
    effort_level: EffortLevel
    recommendation: str
    entity_type: str | None = None
    entity_id: str | None = None
    cpt_code: str | None = None
    payer_name: str | None = None
    provider_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class CategorySummary:
    """Count and totals for one leakage category."""

    count: int = 0
    amount: Decimal = ZERO
    annual_impact: Decimal = ZERO


@dataclass
class LeakageSummary:
    """Rollup computed once over the complete findings list."""

    total_findings: int
    total_amount: Decimal
    total_annual_impact: Decimal
    by_category: dict[LeakageType, CategorySummary]
    top_findings: list[LeakageFinding]
    quick_wins: list[LeakageFinding]


@dataclass
class LeakageDetectionResult:
    """Result from a leakage detection run."""

    findings: list[LeakageFinding]
    summary: LeakageSummary


# ============================================================================
# Leakage Detector
# ============================================================================

_leakage_detector: "LeakageDetector | None" = None
_leakage_lock = threading.Lock()


def get_leakage_detector() -> "LeakageDetector":
    """Get the singleton leakage detector instance."""
    global _leakage_detector
    if _leakage_detector is None:
        with _leakage_lock:
            if _leakage_detector is None:
                _leakage_detector = LeakageDetector()
    return _leakage_detector


def reset_leakage_detector() -> None:
    """Reset the singleton instance (for testing)."""
    global _leakage_detector
    with _leakage_lock:
        _leakage_detector = None


class LeakageDetector:
    """Detects revenue leakage in billing records."""

    def __init__(
        self,
        benchmarks: BenchmarkTables | None = None,
        assumptions: EngineAssumptions | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            benchmarks: Benchmark tables (defaults to the built-in tables).
            assumptions: Tunable estimates (defaults to the shipped values).
        """
        self._assumptions = assumptions or EngineAssumptions()
        self._benchmarks = resolve_tables(benchmarks or BenchmarkTables(), self._assumptions)
        self._rules = {
            LeakageType.UNBILLED_SERVICE: self._detect_unbilled_services,
            LeakageType.UNDERCODING: self._detect_undercoding,
            LeakageType.MISSED_MODIFIER: self._detect_missed_modifiers,
            LeakageType.UNBILLED_SUPPLIES: self._detect_unbilled_supplies,
            LeakageType.WRITE_OFF: self._detect_write_off_patterns,
            LeakageType.COLLECTION_ISSUE: self._detect_collection_issues,
        }

    def detect(
        self,
        snapshot: RevenueSnapshot,
        categories: Iterable[LeakageType] | None = None,
        provider_id: str | None = None,
        payer_id: str | None = None,
        min_amount: Decimal = ZERO,
    ) -> LeakageDetectionResult:
        """Run the leakage rules over a snapshot.

        Args:
            snapshot: Records for the analysis window (with open receivables
                loaded when collection issues are wanted).
            categories: Restrict to these leakage types (all when None).
            provider_id: Only consider this provider's records.
            payer_id: Only consider this payer's records.
            min_amount: Drop findings below this amount.

        Returns:
            LeakageDetectionResult with ranked findings and the summary.
        """
        scoped = snapshot.for_provider(provider_id).for_payer(payer_id)
        wanted = set(categories) if categories else set(self._rules)

        findings: list[LeakageFinding] = []
        for leakage_type, rule in self._rules.items():
            if leakage_type not in wanted:
                continue
            rule_findings = rule(scoped)
            logger.debug("%s rule produced %d findings", leakage_type.value, len(rule_findings))
            findings.extend(rule_findings)

        findings = [f for f in findings if f.amount >= min_amount]
        findings = rank_findings(findings)
        summary = self.summarize(findings)

        logger.info(
            "Leakage detection for %s: %d findings, annual impact %s",
            snapshot.organization_id,
            summary.total_findings,
            summary.total_annual_impact,
        )
        return LeakageDetectionResult(findings=findings, summary=summary)

    def summarize(self, findings: list[LeakageFinding]) -> LeakageSummary:
        """Build the category rollup, top findings and quick wins."""
        by_category = {leakage_type: CategorySummary() for leakage_type in LeakageType}
        for finding in findings:
            bucket = by_category[finding.leakage_type]
            bucket.count += 1
            bucket.amount += finding.amount
            bucket.annual_impact += finding.annual_impact

        return LeakageSummary(
            total_findings=len(findings),
            total_amount=money(sum((f.amount for f in findings), ZERO)),
            total_annual_impact=money(sum((f.annual_impact for f in findings), ZERO)),
            by_category=by_category,
            top_findings=findings[:TOP_FINDINGS_LIMIT],
            quick_wins=[f for f in findings if f.effort_level == EffortLevel.EASY][:QUICK_WINS_LIMIT],
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _detect_unbilled_services(self, snapshot: RevenueSnapshot) -> list[LeakageFinding]:
        """Completed encounters that produced no charges."""
        findings = []
        for encounter in snapshot.encounters:
            if encounter.status != EncounterStatus.COMPLETED:
                continue
            if snapshot.charges_by_encounter.get(encounter.id):
                continue

            amount = self._assumptions.unbilled_estimate(encounter.encounter_type)
            visit = encounter.encounter_type.value.replace("_", " ")
            findings.append(self._finding(
                LeakageType.UNBILLED_SERVICE,
                source="encounter_audit",
                description=(
                    f"Completed {visit} encounter on {encounter.encounter_date.isoformat()} "
                    f"has no charges"
                ),
                amount=amount,
                frequency=Frequency.ONE_TIME,
                effort=EffortLevel.EASY,
                recommendation="Review the encounter documentation and post the missing charges.",
                entity_type="encounter",
                entity_id=encounter.id,
                provider_id=encounter.provider_id,
                details={
                    "encounter_type": encounter.encounter_type.value,
                    "encounter_date": encounter.encounter_date.isoformat(),
                },
            ))
        return findings

    def _detect_undercoding(self, snapshot: RevenueSnapshot) -> list[LeakageFinding]:
        """Low-level E&M codes on well-documented, multi-diagnosis visits."""
        findings = []
        for charge in snapshot.charges:
            if charge.status != ChargeStatus.BILLED or charge.code not in LOW_LEVEL_EM_CODES:
                continue
            encounter = snapshot.encounters_by_id.get(charge.encounter_id or "")
            if encounter is None or not encounter.has_note:
                continue
            if len(encounter.diagnosis_codes) < MIN_DIAGNOSES_FOR_COMPLEXITY:
                continue

            next_code = EM_NEXT_TIER[charge.code]
            next_rate = self._benchmarks.rate(next_code)
            if next_rate is None:
                continue
            benchmark_fee = next_rate * self._assumptions.standard_fee_multiple
            difference = benchmark_fee - charge.fee
            if difference <= ZERO:
                continue

            findings.append(self._finding(
                LeakageType.UNDERCODING,
                source="em_level_review",
                description=(
                    f"{charge.code} billed on {charge.service_date.isoformat()} with "
                    f"{len(encounter.diagnosis_codes)} diagnoses and a completed note; "
                    f"documentation may support {next_code}"
                ),
                amount=difference,
                frequency=Frequency.ONE_TIME,
                effort=EffortLevel.MODERATE,
                recommendation=(
                    f"Audit the note against {next_code} requirements and rebill if supported."
                ),
                entity_type="charge",
                entity_id=charge.id,
                cpt_code=charge.code,
                payer_name=snapshot.payer_name(charge.payer_id) if charge.payer_id else None,
                provider_id=charge.provider_id,
                details={
                    "current_code": charge.code,
                    "suggested_code": next_code,
                    "current_fee": str(charge.fee),
                    "benchmark_fee": str(money(benchmark_fee)),
                    "diagnosis_count": len(encounter.diagnosis_codes),
                },
            ))
        return findings

    def _detect_missed_modifiers(self, snapshot: RevenueSnapshot) -> list[LeakageFinding]:
        """Unmodified E&M billed with unmodified manipulation and no modifier 25."""
        findings = []
        reduction = self._assumptions.missed_modifier_reduction
        for encounter_id, charges in snapshot.charges_by_encounter.items():
            has_bare_manipulation = any(
                c.code in MANIPULATION_CODES and not c.modifiers for c in charges
            )
            if not has_bare_manipulation:
                continue
            em_charges = [c for c in charges if c.code in EM_CODES]
            if any(c.has_modifier(SEPARATE_SERVICE_MODIFIER) for c in em_charges):
                continue

            for em_charge in (c for c in em_charges if not c.modifiers):
                findings.append(self._finding(
                    LeakageType.MISSED_MODIFIER,
                    source="modifier_review",
                    description=(
                        f"{em_charge.code} billed with spinal manipulation on "
                        f"{em_charge.service_date.isoformat()} without modifier 25"
                    ),
                    amount=em_charge.fee * reduction,
                    frequency=Frequency.ONE_TIME,
                    effort=EffortLevel.EASY,
                    recommendation=(
                        "Append modifier 25 when the E&M service is significant and separately "
                        "identifiable from the manipulation."
                    ),
                    entity_type="encounter",
                    entity_id=encounter_id,
                    cpt_code=em_charge.code,
                    payer_name=(
                        snapshot.payer_name(em_charge.payer_id) if em_charge.payer_id else None
                    ),
                    provider_id=em_charge.provider_id,
                    details={"charge_id": em_charge.id, "em_fee": str(em_charge.fee)},
                ))
        return findings

    def _detect_unbilled_supplies(self, snapshot: RevenueSnapshot) -> list[LeakageFinding]:
        """Therapy visits that never bill supplies, reported as one pattern."""
        encounter_ids = []
        for encounter in snapshot.encounters:
            if encounter.status != EncounterStatus.COMPLETED:
                continue
            codes = {c.code for c in snapshot.charges_by_encounter.get(encounter.id, ())}
            if codes & SUPPLY_CONSUMING_CODES and not codes & SUPPLY_CODES:
                encounter_ids.append(encounter.id)

        count = len(encounter_ids)
        if count <= SUPPLY_PATTERN_THRESHOLD:
            return []

        supply_charge = self._assumptions.average_supply_charge
        return [self._finding(
            LeakageType.UNBILLED_SUPPLIES,
            source="supply_pattern",
            description=f"{count} therapy encounters billed no supplies",
            amount=supply_charge * count,
            frequency=Frequency.MONTHLY,
            effort=EffortLevel.EASY,
            recommendation=(
                "Add supply capture (99070, A4550, A4570) to the therapy charge workflow."
            ),
            entity_type="pattern",
            details={
                "encounter_count": count,
                "average_supply_charge": str(supply_charge),
                "sample_encounter_ids": encounter_ids[:10],
            },
        )]

    def _detect_write_off_patterns(self, snapshot: RevenueSnapshot) -> list[LeakageFinding]:
        """Payers whose adjustments exceed the write-off threshold."""
        by_payer = aggregate(
            snapshot.charges,
            by=lambda c: snapshot.payer_name(c.payer_id),
            measures={"adjustments": lambda c: c.adjustments, "charged": lambda c: c.fee},
            where=lambda c: c.adjustments > ZERO,
        )

        findings = []
        for payer_name, stats in by_payer.items():
            rate = percent(stats.sum("adjustments"), stats.sum("charged"))
            if rate <= WRITE_OFF_RATE_THRESHOLD or stats.count <= WRITE_OFF_MIN_CHARGES:
                continue
            findings.append(self._finding(
                LeakageType.WRITE_OFF,
                source="adjustment_analysis",
                description=(
                    f"{payer_name} adjustments are {money(rate)}% of charges "
                    f"across {stats.count} charges"
                ),
                amount=stats.sum("adjustments"),
                frequency=Frequency.MONTHLY,
                effort=EffortLevel.COMPLEX,
                recommendation=(
                    f"Review {payer_name} adjustment reasons and appeal contractual "
                    f"write-offs that exceed the contracted rate."
                ),
                entity_type="payer",
                entity_id=payer_name,
                payer_name=payer_name,
                details={
                    "adjustment_rate": str(money(rate)),
                    "charge_count": stats.count,
                    "total_charged": str(money(stats.sum("charged"))),
                },
            ))
        return findings

    def _detect_collection_issues(self, snapshot: RevenueSnapshot) -> list[LeakageFinding]:
        """Aged receivable buckets with material balances."""
        def bucket_of(charge) -> str | None:
            age = (snapshot.as_of - charge.service_date).days
            for label, low, high in AGING_BUCKETS:
                if age >= low and (high is None or age < high):
                    return label
            return None

        buckets = aggregate(
            snapshot.open_receivables,
            by=bucket_of,
            measures={"balance": lambda c: c.balance},
            where=lambda c: c.status == ChargeStatus.BILLED and c.balance > ZERO,
        )

        findings = []
        for label, _low, _high in AGING_BUCKETS:
            stats = buckets.get(label)
            if stats is None or stats.sum("balance") <= COLLECTION_BUCKET_THRESHOLD:
                continue
            balance = stats.sum("balance")
            collectibility = self._assumptions.collectibility[label]
            findings.append(self._finding(
                LeakageType.COLLECTION_ISSUE,
                source="ar_aging",
                description=(
                    f"{stats.count} charges aged {label} days hold {money(balance)} "
                    f"in open balances"
                ),
                amount=balance * (1 - collectibility),
                frequency=Frequency.MONTHLY,
                effort=EffortLevel.COMPLEX,
                recommendation=(
                    f"Work the {label} day receivables: follow up on unpaid claims and "
                    f"send patient statements before balances become uncollectible."
                ),
                entity_type="aging_bucket",
                entity_id=label,
                details={
                    "bucket": label,
                    "balance": str(money(balance)),
                    "charge_count": stats.count,
                    "collectibility": str(collectibility),
                },
            ))
        return findings

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _finding(
        leakage_type: LeakageType,
        source: str,
        description: str,
        amount: Decimal,
        frequency: Frequency,
        effort: EffortLevel,
        recommendation: str,
        **extra: Any,
    ) -> LeakageFinding:
        """Score and build a finding."""
        amount = money(non_negative(amount))
        annual_impact = money(annualize(amount, frequency))
        return LeakageFinding(
            leakage_type=leakage_type,
            source=source,
            description=description,
            amount=amount,
            frequency=frequency,
            annual_impact=annual_impact,
            priority=priority_for(annual_impact),
            effort_level=effort,
            recommendation=recommendation,
            **extra,
        )

    def get_stats(self) -> dict:
        """Get detector statistics."""
        return {
            "rules": [leakage_type.value for leakage_type in self._rules],
            "benchmark_codes": len(self._benchmarks.rates),
            "standard_fee_multiple": str(self._assumptions.standard_fee_multiple),
        }
