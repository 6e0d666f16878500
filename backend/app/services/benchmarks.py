"""Benchmark tables and tunable engine assumptions.

Reference data used by every revenue analyzer:

- Benchmark reimbursement rates and canonical names for common codes
- Regional multiplier and market-rate tiers
- E&M level benchmark distributions
- Service categories with provider minutes per unit
- Bundling and payer modifier rules

Both ``BenchmarkTables`` and ``EngineAssumptions`` are frozen and are
injected into analyzers at construction time, so analyzers can be tested
against synthetic tables and benchmark data can be versioned separately.

Note: benchmark rates are approximate national averages. They must be
refreshed from the payer's published schedule before being relied on.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping

from app.schemas.base import EncounterType, PayerType

if TYPE_CHECKING:
    from app.core.config import Settings


@dataclass(frozen=True)
class BenchmarkRate:
    """Reference reimbursement rate for a procedure code."""

    rate: Decimal
    name: str


@dataclass(frozen=True)
class ServiceCategory:
    """Clinical service category used for service mix analysis."""

    key: str
    label: str
    codes: frozenset[str]
    minutes_per_unit: int
    expand_advice: str  # Shown when the category is high-margin
    review_advice: str  # Shown when the category is unprofitable


@dataclass(frozen=True)
class BundlingRule:
    """Code pair that risks denial when billed together without justification."""

    comprehensive: str
    component: str
    reason: str


@dataclass(frozen=True)
class ModifierRule:
    """Modifier a payer type requires on a set of codes."""

    payer_type: PayerType
    codes: frozenset[str]
    modifier: str
    description: str


# ============================================================================
# Code groups
# ============================================================================

NEW_PATIENT_EM_CODES: tuple[str, ...] = ("99201", "99202", "99203", "99204", "99205")
ESTABLISHED_EM_CODES: tuple[str, ...] = ("99211", "99212", "99213", "99214", "99215")
EM_CODES: frozenset[str] = frozenset(NEW_PATIENT_EM_CODES + ESTABLISHED_EM_CODES)

# Lowest two levels of each visit family
LOW_LEVEL_EM_CODES: frozenset[str] = frozenset({"99201", "99202", "99211", "99212"})
HIGH_LEVEL_EM_CODES: frozenset[str] = frozenset({"99204", "99205", "99214", "99215"})

EM_NEXT_TIER: Mapping[str, str] = MappingProxyType({
    "99201": "99202",
    "99202": "99203",
    "99211": "99212",
    "99212": "99213",
})

MANIPULATION_CODES: frozenset[str] = frozenset({"98940", "98941", "98942", "98943"})

# Procedures that typically consume billable supplies
SUPPLY_CONSUMING_CODES: frozenset[str] = frozenset({"97140", "97530", "97110", "97112"})
SUPPLY_CODES: frozenset[str] = frozenset({"99070", "A4550", "A4570"})

# Timed therapy codes, billable in 15 minute units
TIMED_THERAPY_CODES: frozenset[str] = frozenset({"97110", "97112", "97140", "97530", "97032", "97035"})

SEPARATE_SERVICE_MODIFIER = "25"
BUNDLING_JUSTIFICATION_MODIFIERS: frozenset[str] = frozenset({"59", "XE", "XP", "XS", "XU"})


def normalize_modifier(modifier: str) -> str:
    """Normalize a modifier code ("-25" and " 25" both become "25")."""
    return modifier.strip().lstrip("-").upper()


# ============================================================================
# Default reference data
# ============================================================================

# Approximate national average rates (2024)
DEFAULT_BENCHMARK_RATES: Mapping[str, BenchmarkRate] = MappingProxyType({
    # E&M
    "99201": BenchmarkRate(Decimal("45.00"), "Office Visit, New Patient, Level 1"),
    "99202": BenchmarkRate(Decimal("76.00"), "Office Visit, New Patient, Level 2"),
    "99203": BenchmarkRate(Decimal("110.00"), "Office Visit, New Patient, Level 3"),
    "99204": BenchmarkRate(Decimal("167.00"), "Office Visit, New Patient, Level 4"),
    "99205": BenchmarkRate(Decimal("211.00"), "Office Visit, New Patient, Level 5"),
    "99211": BenchmarkRate(Decimal("23.00"), "Office Visit, Established, Level 1"),
    "99212": BenchmarkRate(Decimal("46.00"), "Office Visit, Established, Level 2"),
    "99213": BenchmarkRate(Decimal("77.00"), "Office Visit, Established, Level 3"),
    "99214": BenchmarkRate(Decimal("113.00"), "Office Visit, Established, Level 4"),
    "99215": BenchmarkRate(Decimal("151.00"), "Office Visit, Established, Level 5"),
    # Manipulation
    "98940": BenchmarkRate(Decimal("28.00"), "CMT 1-2 Regions"),
    "98941": BenchmarkRate(Decimal("40.00"), "CMT 3-4 Regions"),
    "98942": BenchmarkRate(Decimal("52.00"), "CMT 5 Regions"),
    "98943": BenchmarkRate(Decimal("28.00"), "CMT Extraspinal"),
    # Therapy and modalities
    "97110": BenchmarkRate(Decimal("32.00"), "Therapeutic Exercise"),
    "97112": BenchmarkRate(Decimal("35.00"), "Neuromuscular Re-education"),
    "97140": BenchmarkRate(Decimal("33.00"), "Manual Therapy"),
    "97530": BenchmarkRate(Decimal("38.00"), "Therapeutic Activities"),
    "97014": BenchmarkRate(Decimal("14.00"), "Electrical Stimulation (unattended)"),
    "97032": BenchmarkRate(Decimal("19.00"), "Electrical Stimulation (manual)"),
    "97035": BenchmarkRate(Decimal("15.00"), "Ultrasound"),
    # Imaging
    "72040": BenchmarkRate(Decimal("28.00"), "X-ray Cervical Spine, 2-3 views"),
    "72050": BenchmarkRate(Decimal("37.00"), "X-ray Cervical Spine, 4+ views"),
    "72070": BenchmarkRate(Decimal("26.00"), "X-ray Thoracic Spine, 2 views"),
    "72100": BenchmarkRate(Decimal("30.00"), "X-ray Lumbar Spine, 2-3 views"),
    "72110": BenchmarkRate(Decimal("40.00"), "X-ray Lumbar Spine, 4+ views"),
    # Evaluations
    "97161": BenchmarkRate(Decimal("88.00"), "PT Eval, Low Complexity"),
    "97162": BenchmarkRate(Decimal("108.00"), "PT Eval, Moderate Complexity"),
    "97163": BenchmarkRate(Decimal("128.00"), "PT Eval, High Complexity"),
    # Acupuncture
    "97810": BenchmarkRate(Decimal("32.00"), "Acupuncture, initial 15 min"),
    "97811": BenchmarkRate(Decimal("24.00"), "Acupuncture, each additional 15 min"),
    "97813": BenchmarkRate(Decimal("35.00"), "Acupuncture with e-stim, initial 15 min"),
    "97814": BenchmarkRate(Decimal("28.00"), "Acupuncture with e-stim, each additional 15 min"),
})

DEFAULT_SERVICE_CATEGORIES: tuple[ServiceCategory, ...] = (
    ServiceCategory(
        "manipulation", "Chiropractic Manipulation", MANIPULATION_CODES, 15,
        "Protect adjustment capacity; add visit slots on high-demand days.",
        "Check CMT level selection against documented regions treated.",
    ),
    ServiceCategory(
        "new_patient_em", "New Patient E&M", frozenset(NEW_PATIENT_EM_CODES), 45,
        "Invest in new patient acquisition; intake visits are highly profitable.",
        "Review new patient visit levels against documented complexity.",
    ),
    ServiceCategory(
        "established_em", "Established Patient E&M", frozenset(ESTABLISHED_EM_CODES), 20,
        "Schedule periodic re-examinations to capture separately billable E&M.",
        "Confirm E&M visits are separately identifiable from treatment.",
    ),
    ServiceCategory(
        "manual_therapy", "Manual Therapy", frozenset({"97140"}), 15,
        "Offer manual therapy add-ons in treatment plans where indicated.",
        "Document distinct regions to support manual therapy with CMT.",
    ),
    ServiceCategory(
        "therapeutic_exercise", "Therapeutic Exercise", frozenset({"97110", "97530"}), 15,
        "Expand supervised exercise programs and group sessions.",
        "Delegate exercise supervision to support staff to free provider time.",
    ),
    ServiceCategory(
        "neuromuscular_reeducation", "Neuromuscular Re-education", frozenset({"97112"}), 15,
        "Promote balance and stability programs to appropriate patients.",
        "Verify time documentation supports billed units.",
    ),
    ServiceCategory(
        "attended_modalities", "Attended Modalities", frozenset({"97032", "97035"}), 15,
        "Keep attended modalities in care plans where outcomes support them.",
        "Reduce provider time on attended modalities or renegotiate rates.",
    ),
    ServiceCategory(
        "unattended_modalities", "Unattended Modalities", frozenset({"97014", "G0283"}), 5,
        "Unattended modalities are efficient; keep rooms and equipment available.",
        "Review payer coverage; several payers no longer reimburse 97014.",
    ),
    ServiceCategory(
        "evaluation", "Therapy Evaluations", frozenset({"97161", "97162", "97163"}), 45,
        "Ensure every new episode of care starts with a billable evaluation.",
        "Check evaluation complexity level against documentation.",
    ),
    ServiceCategory(
        "imaging", "Imaging", frozenset({"72040", "72050", "72070", "72100", "72110"}), 15,
        "Bring imaging in-house for more referrals where volume supports it.",
        "Compare in-house imaging cost with outside referral.",
    ),
    ServiceCategory(
        "acupuncture", "Acupuncture", frozenset({"97810", "97811", "97813", "97814"}), 15,
        "Market acupuncture to cash-pay patients.",
        "Review acupuncture payer coverage and cash pricing.",
    ),
    ServiceCategory(
        "supplies", "Supplies", SUPPLY_CODES, 0,
        "Keep supply billing consistent with usage.",
        "Reconcile supply cost against billed supply charges.",
    ),
)

OTHER_CATEGORY_KEY = "other"

# Share of visits per level (1-5)
DEFAULT_EM_DISTRIBUTIONS: Mapping[str, tuple[float, ...]] = MappingProxyType({
    "new": (0.02, 0.10, 0.45, 0.35, 0.08),
    "established": (0.03, 0.12, 0.47, 0.33, 0.05),
})

DEFAULT_BUNDLING_RULES: tuple[BundlingRule, ...] = (
    BundlingRule("98940", "97140", "Manual therapy on the same region as CMT is bundled"),
    BundlingRule("98941", "97140", "Manual therapy on the same region as CMT is bundled"),
    BundlingRule("98942", "97140", "Manual therapy on the same region as CMT is bundled"),
    BundlingRule("97530", "97140", "Therapeutic activities and manual therapy in the same interval"),
    BundlingRule("97530", "97112", "Therapeutic activities and neuromuscular re-education overlap"),
    BundlingRule("97161", "99203", "Therapy evaluation includes the E&M service"),
)

DEFAULT_MODIFIER_RULES: tuple[ModifierRule, ...] = (
    ModifierRule(
        PayerType.MEDICARE, MANIPULATION_CODES, "AT",
        "Medicare requires AT on manipulation for active treatment",
    ),
    ModifierRule(
        PayerType.MEDICARE, frozenset({"97110", "97112", "97140", "97530"}), "GP",
        "Medicare requires GP on services under a therapy plan of care",
    ),
)

# Expected paid rate as a multiple of benchmark, by payer type
DEFAULT_PAYER_TYPE_RATIOS: Mapping[PayerType, Decimal] = MappingProxyType({
    PayerType.MEDICARE: Decimal("1.00"),
    PayerType.MEDICAID: Decimal("0.75"),
    PayerType.COMMERCIAL: Decimal("1.25"),
    PayerType.WORKERS_COMP: Decimal("1.50"),
    PayerType.PERSONAL_INJURY: Decimal("2.00"),
    PayerType.SELF_PAY: Decimal("1.00"),
    PayerType.OTHER: Decimal("1.00"),
})

# Regional market tiers as multiples of the regional rate
DEFAULT_MARKET_TIERS: Mapping[str, Decimal] = MappingProxyType({
    "low": Decimal("1.00"),
    "mid": Decimal("1.25"),
    "high": Decimal("1.50"),
})


@dataclass(frozen=True)
class BenchmarkTables:
    """Immutable reference data for the revenue analyzers."""

    rates: Mapping[str, BenchmarkRate] = field(default_factory=lambda: DEFAULT_BENCHMARK_RATES)
    regional_multiplier: Decimal = Decimal("1.05")
    service_categories: tuple[ServiceCategory, ...] = DEFAULT_SERVICE_CATEGORIES
    em_distributions: Mapping[str, tuple[float, ...]] = field(
        default_factory=lambda: DEFAULT_EM_DISTRIBUTIONS
    )
    bundling_rules: tuple[BundlingRule, ...] = DEFAULT_BUNDLING_RULES
    modifier_rules: tuple[ModifierRule, ...] = DEFAULT_MODIFIER_RULES
    payer_type_ratios: Mapping[PayerType, Decimal] = field(
        default_factory=lambda: DEFAULT_PAYER_TYPE_RATIOS
    )
    market_tiers: Mapping[str, Decimal] = field(default_factory=lambda: DEFAULT_MARKET_TIERS)
    version: str = "2024.1"

    def rate(self, code: str) -> Decimal | None:
        """Benchmark rate for a code, or None when the code is not tracked."""
        entry = self.rates.get(code)
        return entry.rate if entry else None

    def name(self, code: str) -> str:
        """Canonical name for a code."""
        entry = self.rates.get(code)
        return entry.name if entry else f"CPT {code}"

    def regional_rate(self, code: str) -> Decimal | None:
        """Benchmark rate adjusted by the regional multiplier."""
        rate = self.rate(code)
        return rate * self.regional_multiplier if rate is not None else None

    def category_for(self, code: str) -> ServiceCategory | None:
        """Service category containing a code."""
        for category in self.service_categories:
            if code in category.codes:
                return category
        return None

    def get_stats(self) -> dict:
        """Get table statistics."""
        return {
            "version": self.version,
            "benchmark_codes": len(self.rates),
            "service_categories": len(self.service_categories),
            "bundling_rules": len(self.bundling_rules),
            "modifier_rules": len(self.modifier_rules),
        }


def em_level(code: str) -> int | None:
    """E&M level (1-5) of a visit code."""
    if code in NEW_PATIENT_EM_CODES:
        return NEW_PATIENT_EM_CODES.index(code) + 1
    if code in ESTABLISHED_EM_CODES:
        return ESTABLISHED_EM_CODES.index(code) + 1
    return None


# ============================================================================
# Tunable assumptions
# ============================================================================


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class EngineAssumptions:
    """Practice-specific monetary estimates and operating assumptions.

    These have no published derivation; they are exposed so each practice
    can tune them. Defaults match the values the engine shipped with.
    """

    # Leakage detection
    unbilled_encounter_estimates: Mapping[EncounterType, Decimal] = field(
        default_factory=lambda: _frozen({EncounterType.INITIAL_EVAL: Decimal("150")})
    )
    default_unbilled_estimate: Decimal = Decimal("85")
    standard_fee_multiple: Decimal = Decimal("2.0")  # Target fee as multiple of benchmark
    missed_modifier_reduction: Decimal = Decimal("0.25")
    average_supply_charge: Decimal = Decimal("15")
    collectibility: Mapping[str, Decimal] = field(
        default_factory=lambda: _frozen({
            "60-90": Decimal("0.7"),
            "90-120": Decimal("0.5"),
            "120+": Decimal("0.3"),
        })
    )

    # Fee optimization
    regional_multiplier: Decimal | None = None  # Overrides the benchmark table when set
    cash_share: Decimal = Decimal("0.3")

    # Service mix
    overhead_rate: Decimal = Decimal("0.40")
    provider_capacity_hours: Decimal = Decimal("160")  # Per provider per month
    materiality_floor: Decimal = Decimal("1000")

    # Coding
    em_level_value: Decimal = Decimal("35")  # Revenue per level point per visit
    under_unit_share: Decimal = Decimal("0.25")
    missing_note_risk: Decimal = Decimal("25")
    thin_diagnosis_risk: Decimal = Decimal("15")
    high_level_thin_documentation_risk: Decimal = Decimal("50")

    # Forecasting
    pipeline_conversion_rate: Decimal = Decimal("0.85")
    pipeline_days: int = 90

    def unbilled_estimate(self, encounter_type: EncounterType) -> Decimal:
        """Estimated value of an unbilled encounter of the given type."""
        return self.unbilled_encounter_estimates.get(encounter_type, self.default_unbilled_estimate)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EngineAssumptions":
        """Build assumptions from application settings."""
        return cls(
            unbilled_encounter_estimates=_frozen({
                EncounterType.INITIAL_EVAL: settings.revenue_initial_eval_estimate,
            }),
            default_unbilled_estimate=settings.revenue_default_encounter_estimate,
            average_supply_charge=settings.revenue_average_supply_charge,
            regional_multiplier=settings.revenue_regional_multiplier,
            cash_share=settings.revenue_cash_share,
            overhead_rate=settings.revenue_overhead_rate,
            provider_capacity_hours=settings.revenue_provider_capacity_hours,
            pipeline_conversion_rate=settings.revenue_pipeline_conversion_rate,
        )


def resolve_tables(
    benchmarks: BenchmarkTables,
    assumptions: EngineAssumptions,
) -> BenchmarkTables:
    """Apply assumption overrides to the benchmark tables."""
    if assumptions.regional_multiplier is None:
        return benchmarks
    return BenchmarkTables(
        rates=benchmarks.rates,
        regional_multiplier=assumptions.regional_multiplier,
        service_categories=benchmarks.service_categories,
        em_distributions=benchmarks.em_distributions,
        bundling_rules=benchmarks.bundling_rules,
        modifier_rules=benchmarks.modifier_rules,
        payer_type_ratios=benchmarks.payer_type_ratios,
        market_tiers=benchmarks.market_tiers,
        version=benchmarks.version,
    )
