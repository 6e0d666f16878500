"""Coding Optimizer.

Reviews coding patterns across many encounters:

- E&M level distribution vs benchmark (under- and overcoding)
- Modifier usage (modifier 25 with manipulation, payer-required modifiers)
- Bundling pairs billed without a justification modifier
- Timed therapy codes always billed at one unit
- Per-provider compliance scores
- Documentation quality (missing notes, thin diagnoses)

Each finding with positive projected revenue becomes a coding opportunity
with a remediation checklist.

Note: This is a compliance support tool. Coding changes must be supported
by documentation and reviewed by a qualified coder; overcoding findings are
compliance risks, not revenue.
"""

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal

from app.schemas.base import ComplianceRisk, EncounterStatus, Priority
from app.services.aggregation import ChargeRecord, RevenueSnapshot, aggregate
from app.services.benchmarks import (
    BUNDLING_JUSTIFICATION_MODIFIERS,
    EM_CODES,
    ESTABLISHED_EM_CODES,
    HIGH_LEVEL_EM_CODES,
    MANIPULATION_CODES,
    NEW_PATIENT_EM_CODES,
    SEPARATE_SERVICE_MODIFIER,
    TIMED_THERAPY_CODES,
    BenchmarkTables,
    EngineAssumptions,
    em_level,
    resolve_tables,
)
from app.services.scoring import (
    ZERO,
    money,
    non_negative,
    percent,
    priority_for,
    rank_findings,
    safe_div,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_VOLUME = 10

UNDERCODING_VARIANCE = -0.3
OVERCODING_VARIANCE = 0.5
MISSING_25_SHARE = Decimal("0.50")
MIN_DIAGNOSES = 2

# Provider compliance score deductions
MAJOR_VARIANCE = 1.0
MINOR_VARIANCE = 0.5
MAJOR_VARIANCE_PENALTY = 30
MINOR_VARIANCE_PENALTY = 15
LOW_MODIFIER_USAGE = Decimal("50")
LOW_MODIFIER_PENALTY = 10
OVERCODING_PENALTY = 20
ATTENTION_SCORE = 80

CONFIDENCE_BY_RISK = {
    ComplianceRisk.NONE: 85,
    ComplianceRisk.LOW: 75,
}
DEFAULT_CONFIDENCE = 60

EM_FAMILIES: dict[str, tuple[str, ...]] = {
    "new": NEW_PATIENT_EM_CODES,
    "established": ESTABLISHED_EM_CODES,
}


@dataclass
class EMLevelAnalysis:
    """E&M level distribution for one visit family."""

    family: str  # new or established
    visit_count: int
    distribution: dict[str, Decimal]  # code -> percent of visits
    benchmark_distribution: dict[str, Decimal]
    average_level: float
    benchmark_level: float
    variance: float
    finding: str  # undercoding, overcoding, aligned, insufficient_volume
    projected_revenue: Decimal
    compliance_risk: ComplianceRisk
    priority: Priority


@dataclass
class ModifierFinding:
    """Modifier pattern across many charges."""

    kind: str  # missing_25 or required_modifier
    modifier: str
    codes: list[str]
    case_count: int
    description: str
    projected_revenue: Decimal
    compliance_risk: ComplianceRisk
    priority: Priority


@dataclass
class BundlingFinding:
    """Recurring code pair that risks bundling denials."""

    comprehensive_code: str
    component_code: str
    reason: str
    occurrences: int
    denial_risk: Decimal
    priority: Priority


@dataclass
class UnderUnitFinding:
    """Timed code always billed at a single unit."""

    code: str
    charge_count: int
    average_fee: Decimal
    projected_revenue: Decimal
    priority: Priority


@dataclass
class ProviderCodingProfile:
    """Coding compliance profile for one provider."""

    provider_id: str | None
    provider_name: str
    em_visits: int
    average_level: float
    variance: float
    modifier_25_rate: Decimal | None
    compliance_score: int
    needs_attention: bool


@dataclass
class DocumentationFinding:
    """Documentation weakness that puts revenue at risk."""

    kind: str  # missing_note, thin_diagnoses, high_level_thin_documentation
    encounter_count: int
    revenue_at_risk: Decimal
    description: str
    priority: Priority
    encounter_ids: list[str] = field(default_factory=list)


@dataclass
class CodingOpportunity:
    """Recommendation built from a coding finding."""

    category: str
    title: str
    description: str
    projected_revenue: Decimal
    compliance_risk: ComplianceRisk
    confidence: int
    priority: Priority
    checklist: list[str]
    entity_type: str
    entity_id: str

    @property
    def annual_impact(self) -> Decimal:
        return self.projected_revenue


@dataclass
class CodingSummary:
    """Top-line coding figures."""

    em_visits: int
    total_projected_revenue: Decimal
    denial_risk: Decimal
    compliance_issues: int
    average_compliance_score: Decimal
    providers_needing_attention: int


@dataclass
class CodingAnalysisResult:
    """Result from a coding analysis."""

    em_analysis: list[EMLevelAnalysis]
    modifier_findings: list[ModifierFinding]
    bundling_findings: list[BundlingFinding]
    under_unit_findings: list[UnderUnitFinding]
    provider_profiles: list[ProviderCodingProfile]
    documentation_findings: list[DocumentationFinding]
    opportunities: list[CodingOpportunity]
    summary: CodingSummary


# ============================================================================
# Coding Optimizer
# ============================================================================

_coding_optimizer: "CodingOptimizer | None" = None
_coding_lock = threading.Lock()


def get_coding_optimizer() -> "CodingOptimizer":
    """Get the singleton coding optimizer instance."""
    global _coding_optimizer
    if _coding_optimizer is None:
        with _coding_lock:
            if _coding_optimizer is None:
                _coding_optimizer = CodingOptimizer()
    return _coding_optimizer


def reset_coding_optimizer() -> None:
    """Reset the singleton instance (for testing)."""
    global _coding_optimizer
    with _coding_lock:
        _coding_optimizer = None


class CodingOptimizer:
    """Finds coding compliance issues and revenue opportunities."""

    def __init__(
        self,
        benchmarks: BenchmarkTables | None = None,
        assumptions: EngineAssumptions | None = None,
    ) -> None:
        self._assumptions = assumptions or EngineAssumptions()
        self._benchmarks = resolve_tables(benchmarks or BenchmarkTables(), self._assumptions)
        self._benchmark_levels = {
            family: sum((i + 1) * share for i, share in enumerate(dist))
            for family, dist in self._benchmarks.em_distributions.items()
        }

    def analyze(
        self,
        snapshot: RevenueSnapshot,
        provider_id: str | None = None,
        min_volume: int = DEFAULT_MIN_VOLUME,
    ) -> CodingAnalysisResult:
        """Run every coding review over a snapshot.

        Args:
            snapshot: Records for the analysis window.
            provider_id: Only consider this provider's records.
            min_volume: Minimum occurrences before a pattern is flagged.

        Returns:
            CodingAnalysisResult with findings, opportunities and summary.
        """
        scoped = snapshot.for_provider(provider_id)
        annual_factor = safe_div(Decimal("12"), Decimal(scoped.window_days) / 30)
        charges = scoped.billable_charges

        em_analysis = [
            self.analyze_em_family(family, charges, annual_factor, min_volume)
            for family in EM_FAMILIES
        ]
        modifier_findings = self.analyze_modifiers(scoped, annual_factor)
        bundling_findings = self.check_bundling(scoped, min_volume)
        under_unit_findings = self.check_under_units(charges, annual_factor, min_volume)
        provider_profiles = self.compare_providers(scoped)
        documentation_findings = self.review_documentation(scoped)
        opportunities = self.build_opportunities(
            em_analysis, modifier_findings, under_unit_findings, documentation_findings
        )

        summary = CodingSummary(
            em_visits=sum(a.visit_count for a in em_analysis),
            total_projected_revenue=money(
                sum((o.projected_revenue for o in opportunities), ZERO)
            ),
            denial_risk=money(sum((b.denial_risk for b in bundling_findings), ZERO)),
            compliance_issues=(
                sum(1 for a in em_analysis if a.finding == "overcoding") + len(bundling_findings)
            ),
            average_compliance_score=money(safe_div(
                sum(p.compliance_score for p in provider_profiles), len(provider_profiles),
                Decimal("100"),
            )),
            providers_needing_attention=sum(1 for p in provider_profiles if p.needs_attention),
        )

        logger.info(
            "Coding analysis for %s: %d E&M visits, %d opportunities, projected %s",
            snapshot.organization_id,
            summary.em_visits,
            len(opportunities),
            summary.total_projected_revenue,
        )
        return CodingAnalysisResult(
            em_analysis=em_analysis,
            modifier_findings=modifier_findings,
            bundling_findings=bundling_findings,
            under_unit_findings=under_unit_findings,
            provider_profiles=provider_profiles,
            documentation_findings=documentation_findings,
            opportunities=opportunities,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # E&M levels
    # ------------------------------------------------------------------

    def analyze_em_family(
        self,
        family: str,
        charges: tuple[ChargeRecord, ...],
        annual_factor: Decimal,
        min_volume: int = DEFAULT_MIN_VOLUME,
    ) -> EMLevelAnalysis:
        """Compare one visit family's level distribution with the benchmark."""
        codes = EM_FAMILIES[family]
        benchmark = self._benchmarks.em_distributions[family]
        counts = aggregate(charges, by=lambda c: c.code, where=lambda c: c.code in codes)
        visits = sum(stats.count for stats in counts.values())

        distribution = {
            code: money(percent(counts[code].count if code in counts else 0, visits))
            for code in codes
        }
        benchmark_distribution = {
            code: money(Decimal(str(share)) * 100) for code, share in zip(codes, benchmark)
        }
        average_level = (
            sum(em_level(code) * stats.count for code, stats in counts.items()) / visits
            if visits else 0.0
        )
        benchmark_level = self._benchmark_levels[family]
        variance = round(average_level - benchmark_level, 4) if visits else 0.0

        finding, projected, risk, priority = "aligned", ZERO, ComplianceRisk.NONE, Priority.LOW
        if visits < min_volume:
            finding = "insufficient_volume"
        elif variance < UNDERCODING_VARIANCE:
            finding = "undercoding"
            projected = money(
                Decimal(str(abs(variance))) * self._assumptions.em_level_value * visits
                * annual_factor
            )
            risk = ComplianceRisk.LOW
            priority = priority_for(projected)
        elif variance > OVERCODING_VARIANCE:
            finding = "overcoding"
            risk = ComplianceRisk.HIGH
            priority = Priority.CRITICAL

        return EMLevelAnalysis(
            family=family,
            visit_count=visits,
            distribution=distribution,
            benchmark_distribution=benchmark_distribution,
            average_level=round(average_level, 2),
            benchmark_level=round(benchmark_level, 2),
            variance=round(variance, 2),
            finding=finding,
            projected_revenue=projected,
            compliance_risk=risk,
            priority=priority,
        )

    # ------------------------------------------------------------------
    # Modifiers
    # ------------------------------------------------------------------

    def analyze_modifiers(
        self,
        snapshot: RevenueSnapshot,
        annual_factor: Decimal,
    ) -> list[ModifierFinding]:
        """Missing modifier 25 and payer-required modifiers."""
        findings = []

        missing_25 = self._em_with_manipulation(snapshot, with_modifier=False)
        if missing_25:
            impact = sum((c.fee * MISSING_25_SHARE for c in missing_25), ZERO) * annual_factor
            impact = money(impact)
            findings.append(ModifierFinding(
                kind="missing_25",
                modifier=SEPARATE_SERVICE_MODIFIER,
                codes=sorted({c.code for c in missing_25}),
                case_count=len(missing_25),
                description=(
                    f"{len(missing_25)} E&M services were billed with manipulation "
                    f"without modifier 25 and are likely to be bundled."
                ),
                projected_revenue=impact,
                compliance_risk=ComplianceRisk.LOW,
                priority=priority_for(impact),
            ))

        for rule in self._benchmarks.modifier_rules:
            cases = [
                c for c in snapshot.billable_charges
                if c.code in rule.codes
                and snapshot.payer_type(c.payer_id) == rule.payer_type
                and not c.has_modifier(rule.modifier)
            ]
            if not cases:
                continue
            impact = money(
                sum((self._benchmarks.rate(c.code) or ZERO for c in cases), ZERO) * annual_factor
            )
            findings.append(ModifierFinding(
                kind="required_modifier",
                modifier=rule.modifier,
                codes=sorted({c.code for c in cases}),
                case_count=len(cases),
                description=f"{len(cases)} charges lack modifier {rule.modifier}. {rule.description}.",
                projected_revenue=impact,
                compliance_risk=ComplianceRisk.LOW,
                priority=priority_for(impact),
            ))

        return findings

    @staticmethod
    def _em_with_manipulation(
        snapshot: RevenueSnapshot,
        with_modifier: bool | None = None,
    ) -> list[ChargeRecord]:
        """E&M charges billed in the same encounter as manipulation."""
        result = []
        for charges in snapshot.charges_by_encounter.values():
            if not any(c.code in MANIPULATION_CODES for c in charges):
                continue
            for charge in charges:
                if charge.code not in EM_CODES:
                    continue
                has_25 = charge.has_modifier(SEPARATE_SERVICE_MODIFIER)
                if with_modifier is None or has_25 == with_modifier:
                    result.append(charge)
        return result

    # ------------------------------------------------------------------
    # Bundling and units
    # ------------------------------------------------------------------

    def check_bundling(
        self,
        snapshot: RevenueSnapshot,
        min_volume: int = DEFAULT_MIN_VOLUME,
    ) -> list[BundlingFinding]:
        """Recurring bundled pairs without a justification modifier."""
        findings = []
        for rule in self._benchmarks.bundling_rules:
            occurrences = 0
            component_fees = ZERO
            for charges in snapshot.charges_by_encounter.values():
                codes = {c.code for c in charges}
                if rule.comprehensive not in codes:
                    continue
                unjustified = [
                    c for c in charges
                    if c.code == rule.component
                    and not c.modifiers & BUNDLING_JUSTIFICATION_MODIFIERS
                ]
                if unjustified:
                    occurrences += 1
                    component_fees += sum((c.fee for c in unjustified), ZERO)

            if occurrences < min_volume:
                continue
            denial_risk = money(component_fees)
            findings.append(BundlingFinding(
                comprehensive_code=rule.comprehensive,
                component_code=rule.component,
                reason=rule.reason,
                occurrences=occurrences,
                denial_risk=denial_risk,
                priority=priority_for(denial_risk),
            ))

        findings.sort(key=lambda f: f.denial_risk, reverse=True)
        return findings

    def check_under_units(
        self,
        charges: tuple[ChargeRecord, ...],
        annual_factor: Decimal,
        min_volume: int = DEFAULT_MIN_VOLUME,
    ) -> list[UnderUnitFinding]:
        """Timed therapy codes that are never billed above one unit."""
        by_code = aggregate(
            charges,
            by=lambda c: c.code,
            measures={"fee": lambda c: c.fee, "multi_unit": lambda c: 1 if c.units > 1 else 0},
            where=lambda c: c.code in TIMED_THERAPY_CODES,
        )
        findings = []
        for code, stats in by_code.items():
            if stats.count < min_volume or stats.sum("multi_unit") > 0:
                continue
            average_fee = stats.avg("fee")
            projected = money(
                stats.count * average_fee * self._assumptions.under_unit_share * annual_factor
            )
            findings.append(UnderUnitFinding(
                code=code,
                charge_count=stats.count,
                average_fee=money(average_fee),
                projected_revenue=projected,
                priority=priority_for(projected),
            ))
        findings.sort(key=lambda f: (-f.projected_revenue, f.code))
        return findings

    # ------------------------------------------------------------------
    # Providers and documentation
    # ------------------------------------------------------------------

    def compare_providers(self, snapshot: RevenueSnapshot) -> list[ProviderCodingProfile]:
        """Compliance score per provider, lowest first."""
        em_charges = [c for c in snapshot.billable_charges if c.code in EM_CODES]
        by_provider: dict[str | None, list[ChargeRecord]] = {}
        for charge in em_charges:
            by_provider.setdefault(charge.provider_id, []).append(charge)

        with_manipulation = self._em_with_manipulation(snapshot)
        profiles = []
        for provider_id, charges in by_provider.items():
            variances = [
                em_level(c.code) - self._benchmark_levels[self._family_of(c.code)]
                for c in charges
            ]
            average_level = sum(em_level(c.code) for c in charges) / len(charges)
            variance = sum(variances) / len(variances)

            eligible = [c for c in with_manipulation if c.provider_id == provider_id]
            modifier_rate = None
            if eligible:
                with_25 = sum(1 for c in eligible if c.has_modifier(SEPARATE_SERVICE_MODIFIER))
                modifier_rate = money(percent(with_25, len(eligible)))

            score = 100
            if abs(variance) > MAJOR_VARIANCE:
                score -= MAJOR_VARIANCE_PENALTY
            elif abs(variance) > MINOR_VARIANCE:
                score -= MINOR_VARIANCE_PENALTY
            if modifier_rate is not None and modifier_rate < LOW_MODIFIER_USAGE:
                score -= LOW_MODIFIER_PENALTY
            if variance > MINOR_VARIANCE:
                score -= OVERCODING_PENALTY
            score = max(0, min(100, score))

            profiles.append(ProviderCodingProfile(
                provider_id=provider_id,
                provider_name=snapshot.provider_name(provider_id),
                em_visits=len(charges),
                average_level=round(average_level, 2),
                variance=round(variance, 2),
                modifier_25_rate=modifier_rate,
                compliance_score=score,
                needs_attention=score < ATTENTION_SCORE,
            ))

        profiles.sort(key=lambda p: (p.compliance_score, p.provider_name))
        return profiles

    @staticmethod
    def _family_of(code: str) -> str:
        return "new" if code in NEW_PATIENT_EM_CODES else "established"

    def review_documentation(self, snapshot: RevenueSnapshot) -> list[DocumentationFinding]:
        """Missing notes, thin diagnoses and weakly supported high-level visits."""
        missing_note: list[str] = []
        thin_diagnoses: list[str] = []
        thin_high_level: list[str] = []

        for encounter in snapshot.encounters:
            if encounter.status != EncounterStatus.COMPLETED:
                continue
            thin = len(encounter.diagnosis_codes) < MIN_DIAGNOSES
            if not encounter.has_note:
                missing_note.append(encounter.id)
            if thin:
                thin_diagnoses.append(encounter.id)
            codes = {c.code for c in snapshot.charges_by_encounter.get(encounter.id, ())}
            if codes & HIGH_LEVEL_EM_CODES and (thin or not encounter.has_note):
                thin_high_level.append(encounter.id)

        assumptions = self._assumptions
        specs = (
            ("missing_note", missing_note, assumptions.missing_note_risk,
             "completed encounters have no clinical note"),
            ("thin_diagnoses", thin_diagnoses, assumptions.thin_diagnosis_risk,
             f"completed encounters list fewer than {MIN_DIAGNOSES} diagnoses"),
            ("high_level_thin_documentation", thin_high_level,
             assumptions.high_level_thin_documentation_risk,
             "high-level E&M visits lack supporting documentation"),
        )

        findings = []
        for kind, encounter_ids, amount, text in specs:
            if not encounter_ids:
                continue
            at_risk = money(amount * len(encounter_ids))
            findings.append(DocumentationFinding(
                kind=kind,
                encounter_count=len(encounter_ids),
                revenue_at_risk=at_risk,
                description=f"{len(encounter_ids)} {text}.",
                priority=priority_for(at_risk),
                encounter_ids=encounter_ids[:25],
            ))
        return findings

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    def build_opportunities(
        self,
        em_analysis: list[EMLevelAnalysis],
        modifier_findings: list[ModifierFinding],
        under_unit_findings: list[UnderUnitFinding],
        documentation_findings: list[DocumentationFinding],
    ) -> list[CodingOpportunity]:
        """Turn findings with positive projected revenue into recommendations."""
        opportunities = []

        for analysis in em_analysis:
            if analysis.finding != "undercoding":
                continue
            opportunities.append(self._opportunity(
                "em_undercoding",
                f"{analysis.family.title()} patient E&M levels below benchmark",
                f"Average level {analysis.average_level} vs benchmark "
                f"{analysis.benchmark_level} across {analysis.visit_count} visits.",
                analysis.projected_revenue,
                analysis.compliance_risk,
                [
                    "Audit a sample of low-level visits against MDM and time criteria",
                    "Train providers on E&M level selection",
                    "Enable level prompts in the documentation template",
                ],
                "em_family",
                analysis.family,
            ))

        for finding in modifier_findings:
            opportunities.append(self._opportunity(
                f"modifier_{finding.modifier.lower()}",
                f"Apply modifier {finding.modifier}",
                finding.description,
                finding.projected_revenue,
                finding.compliance_risk,
                [
                    f"Add a charge edit that flags {', '.join(finding.codes)} without "
                    f"modifier {finding.modifier}",
                    "Confirm documentation supports the modifier before appending it",
                    "Resubmit affected claims within the timely filing window",
                ],
                "modifier",
                finding.modifier,
            ))

        for finding in under_unit_findings:
            opportunities.append(self._opportunity(
                "under_units",
                f"Bill time-based units for {finding.code}",
                f"{finding.code} was billed {finding.charge_count} times, always at one unit.",
                finding.projected_revenue,
                ComplianceRisk.NONE,
                [
                    "Record start and stop times for timed services",
                    "Apply the 8-minute rule when calculating units",
                    "Review therapy flowsheets for under-reported time",
                ],
                "cpt_code",
                finding.code,
            ))

        for finding in documentation_findings:
            opportunities.append(self._opportunity(
                "documentation",
                f"Close documentation gaps: {finding.kind.replace('_', ' ')}",
                finding.description,
                finding.revenue_at_risk,
                ComplianceRisk.MEDIUM,
                [
                    "Require a signed note before the charge is released",
                    "Capture all treated diagnoses on each visit",
                    "Run a weekly report of encounters with incomplete documentation",
                ],
                "documentation",
                finding.kind,
            ))

        return rank_findings(o for o in opportunities if o.projected_revenue > ZERO)

    @staticmethod
    def _opportunity(
        category: str,
        title: str,
        description: str,
        projected_revenue: Decimal,
        risk: ComplianceRisk,
        checklist: list[str],
        entity_type: str,
        entity_id: str,
    ) -> CodingOpportunity:
        projected_revenue = money(non_negative(projected_revenue))
        return CodingOpportunity(
            category=category,
            title=title,
            description=description,
            projected_revenue=projected_revenue,
            compliance_risk=risk,
            confidence=CONFIDENCE_BY_RISK.get(risk, DEFAULT_CONFIDENCE),
            priority=priority_for(projected_revenue),
            checklist=checklist,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    def get_stats(self) -> dict:
        """Get optimizer statistics."""
        return {
            "bundling_rules": len(self._benchmarks.bundling_rules),
            "modifier_rules": len(self._benchmarks.modifier_rules),
            "em_families": len(EM_FAMILIES),
        }
