"""Request and response schemas for the revenue API.

Response models read analyzer dataclasses and ORM rows by attribute, so
every output model enables ``from_attributes``.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from app.schemas.base import (
    ComplianceRisk,
    EffortLevel,
    FeeAnalysisStatus,
    ForecastScenario,
    Frequency,
    GoalPeriod,
    LeakageStatus,
    LeakageType,
    OpportunityStatus,
    OpportunityType,
    PayerType,
    Priority,
    TrendDirection,
)


class OutputModel(BaseModel):
    """Base for models built from dataclasses and ORM rows."""

    model_config = {"from_attributes": True}


# ============================================================================
# Shared
# ============================================================================


class AnalysisWindowRequest(BaseModel):
    """Date window for an analysis run; omitted bounds use the analyzer default."""

    as_of: date | None = Field(None, description="Reference date (defaults to today)")
    start_date: date | None = Field(None, description="First service date analyzed")
    end_date: date | None = Field(None, description="Last service date analyzed (defaults to as_of)")

    @model_validator(mode="after")
    def check_window(self) -> "AnalysisWindowRequest":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class PersistenceCounts(OutputModel):
    """Ledger write outcome of an analysis run."""

    persisted: int = Field(..., description="Records written")
    failed: int = Field(..., description="Records that could not be written")
    skipped: int = Field(0, description="Open duplicates left untouched")


class AnalysisRunResponse(OutputModel):
    """Fields common to every analyze response."""

    start_date: date
    end_date: date
    as_of: date
    analyzed_at: datetime
    persistence: PersistenceCounts


class PageResponse(OutputModel):
    """Pagination envelope."""

    total: int
    limit: int
    offset: int
    has_more: bool


# ============================================================================
# Leakage
# ============================================================================


class LeakageDetectRequest(AnalysisWindowRequest):
    """Request to run leakage detection."""

    categories: list[LeakageType] | None = Field(None, description="Only run these rules")
    provider_id: str | None = Field(None, description="Only this provider's records")
    payer_id: str | None = Field(None, description="Only this payer's records")
    min_amount: Decimal = Field(Decimal("0"), ge=0, description="Drop findings below this amount")


class LeakageFindingOut(OutputModel):
    leakage_type: LeakageType
    source: str
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
    details: dict[str, Any] = Field(default_factory=dict)


class CategorySummaryOut(OutputModel):
    count: int
    amount: Decimal
    annual_impact: Decimal


class LeakageSummaryOut(OutputModel):
    total_findings: int
    total_amount: Decimal
    total_annual_impact: Decimal
    by_category: dict[LeakageType, CategorySummaryOut]
    top_findings: list[LeakageFindingOut]
    quick_wins: list[LeakageFindingOut]


class LeakageDetectResponse(AnalysisRunResponse):
    """Leakage detection result."""

    summary: LeakageSummaryOut
    findings: list[LeakageFindingOut]


class LeakageOut(OutputModel):
    """Persisted leakage record."""

    id: str
    leakage_type: LeakageType
    source: str
    description: str
    amount: Decimal
    frequency: Frequency
    annual_impact: Decimal
    priority: Priority
    effort_level: EffortLevel
    entity_type: str | None = None
    entity_id: str | None = None
    cpt_code: str | None = None
    payer_name: str | None = None
    provider_id: str | None = None
    recommendation: str
    details: dict[str, Any] = Field(default_factory=dict)
    status: LeakageStatus
    resolution: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime | None = None


class LeakagePage(PageResponse):
    items: list[LeakageOut]


class RollupOut(OutputModel):
    count: int
    amount: Decimal
    annual_impact: Decimal


class LeakageLedgerSummaryOut(OutputModel):
    """Open leakage rollups."""

    open_count: int
    total_amount: Decimal
    total_annual_impact: Decimal
    by_type: dict[str, RollupOut]
    by_priority: dict[str, RollupOut]
    by_status: dict[str, RollupOut]
    resolved_recently: int
    recovered_recently: Decimal


class LeakageTransitionRequest(BaseModel):
    """Body for a leakage lifecycle action."""

    resolution: str | None = Field(None, description="How the leakage was resolved")
    captured_amount: Decimal | None = Field(None, ge=0, description="Revenue recovered")


# ============================================================================
# Fees
# ============================================================================


class FeeAnalyzeRequest(AnalysisWindowRequest):
    """Request to analyze a fee schedule."""

    fee_schedule_id: str | None = Field(None, description="Schedule to analyze (default schedule when omitted)")
    codes: list[str] | None = Field(None, description="Only analyze these codes")
    min_utilization: int = Field(5, ge=0, description="Minimum units billed in the window")


class FeeRecommendationOut(OutputModel):
    cpt_code: str
    code_name: str
    current_fee: Decimal
    recommended_fee: Decimal
    fee_change: Decimal
    change_percent: Decimal
    reasoning: list[str]
    benchmark_rate: Decimal | None = None
    regional_rate: Decimal | None = None
    top_payer_rate: Decimal | None = None
    top_payer_name: str | None = None
    avg_reimbursement: Decimal | None = None
    avg_allowed: Decimal | None = None
    utilization: int
    projected_annual_impact: Decimal
    confidence: int
    priority: Priority


class FeeAnalysisSummaryOut(OutputModel):
    codes_analyzed: int
    increases_recommended: int
    total_projected_impact: Decimal
    average_confidence: Decimal
    by_priority: dict[Priority, int]


class FeeAnalyzeResponse(AnalysisRunResponse):
    """Fee schedule analysis result."""

    fee_schedule_id: str
    fee_schedule_name: str
    window_months: Decimal
    summary: FeeAnalysisSummaryOut
    recommendations: list[FeeRecommendationOut]


class FeeAnalysisOut(OutputModel):
    """Persisted fee analysis."""

    id: str
    fee_schedule_id: str | None = None
    cpt_code: str
    code_name: str
    current_fee: Decimal
    recommended_fee: Decimal
    fee_change: Decimal
    change_percent: Decimal
    reasoning: str
    benchmark_rate: Decimal | None = None
    regional_rate: Decimal | None = None
    top_payer_rate: Decimal | None = None
    avg_reimbursement: Decimal | None = None
    utilization: int
    projected_annual_impact: Decimal
    confidence: int
    priority: Priority
    status: FeeAnalysisStatus
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    effective_date: date | None = None
    implemented_at: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None


class FeeAnalysisPage(PageResponse):
    items: list[FeeAnalysisOut]


class FeeReviewRequest(BaseModel):
    """Approve or reject a pending fee analysis."""

    decision: Literal["approve", "reject"]
    effective_date: date | None = Field(None, description="When an approved fee takes effect")
    notes: str | None = None


class FeeImplementRequest(BaseModel):
    """Implement approved fee analyses into a fee schedule."""

    analysis_ids: list[str] = Field(..., min_length=1)
    fee_schedule_id: str
    effective_date: date | None = Field(
        None, description="Overrides the effective date set at review for every change"
    )


class ImplementedFeeChangeOut(OutputModel):
    analysis_id: str
    cpt_code: str
    previous_fee: Decimal
    new_fee: Decimal
    effective_date: date
    projected_annual_impact: Decimal


class FeeImplementResponse(OutputModel):
    implemented: int
    failed: int
    changes: list[ImplementedFeeChangeOut]
    action_id: str | None = None


class FeeEffectivenessOut(OutputModel):
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


class EffectivenessReportOut(OutputModel):
    changes: list[FeeEffectivenessOut]
    total_projected: Decimal
    total_actual: Decimal
    avg_effectiveness_percent: Decimal
    under_performing: int
    over_performing: int


class FeeSummaryOut(OutputModel):
    pending_count: int
    pending_impact: Decimal
    implemented_count: int
    implemented_impact: Decimal
    fee_actions: int
    top_pending: list[FeeAnalysisOut]


# ============================================================================
# Service mix
# ============================================================================


class ServiceMixRequest(AnalysisWindowRequest):
    provider_id: str | None = None
    min_volume: int = Field(10, ge=1, description="Minimum units for a category to be evaluated")


class SignalOut(OutputModel):
    priority: Priority
    message: str


class CategoryProfitabilityOut(OutputModel):
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


class PayerMixEntryOut(OutputModel):
    payer_id: str
    payer_name: str
    claim_count: int
    billed: Decimal
    paid: Decimal
    reimbursement_rate: Decimal
    denial_rate: Decimal
    avg_days_to_payment: Decimal
    volume_share: Decimal
    priority: Priority
    signals: list[SignalOut]


class ProviderProductivityOut(OutputModel):
    provider_id: str | None = None
    provider_name: str
    encounter_count: int
    units: int
    minutes: int
    revenue: Decimal
    revenue_per_hour: Decimal
    avg_minutes_per_encounter: Decimal
    avg_revenue_per_encounter: Decimal
    utilization: Decimal
    priority: Priority
    signals: list[SignalOut]


class CapacityRecommendationOut(OutputModel):
    kind: str
    title: str
    description: str
    estimated_impact: Decimal
    priority: Priority
    entity_type: str
    entity_id: str
    details: dict[str, Any] = Field(default_factory=dict)
    is_material: bool


class ServiceMixSummaryOut(OutputModel):
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


class ServiceMixResponse(AnalysisRunResponse):
    summary: ServiceMixSummaryOut
    categories: list[CategoryProfitabilityOut]
    payers: list[PayerMixEntryOut]
    providers: list[ProviderProductivityOut]
    recommendations: list[CapacityRecommendationOut]


# ============================================================================
# Coding
# ============================================================================


class CodingRequest(AnalysisWindowRequest):
    provider_id: str | None = None
    min_volume: int = Field(10, ge=1, description="Minimum occurrences before a pattern is flagged")


class EMLevelAnalysisOut(OutputModel):
    family: str
    visit_count: int
    distribution: dict[str, Decimal]
    benchmark_distribution: dict[str, Decimal]
    average_level: float
    benchmark_level: float
    variance: float
    finding: str
    projected_revenue: Decimal
    compliance_risk: ComplianceRisk
    priority: Priority


class ModifierFindingOut(OutputModel):
    kind: str
    modifier: str
    codes: list[str]
    case_count: int
    description: str
    projected_revenue: Decimal
    compliance_risk: ComplianceRisk
    priority: Priority


class BundlingFindingOut(OutputModel):
    comprehensive_code: str
    component_code: str
    reason: str
    occurrences: int
    denial_risk: Decimal
    priority: Priority


class UnderUnitFindingOut(OutputModel):
    code: str
    charge_count: int
    average_fee: Decimal
    projected_revenue: Decimal
    priority: Priority


class ProviderCodingProfileOut(OutputModel):
    provider_id: str | None = None
    provider_name: str
    em_visits: int
    average_level: float
    variance: float
    modifier_25_rate: Decimal | None = None
    compliance_score: int
    needs_attention: bool


class DocumentationFindingOut(OutputModel):
    kind: str
    encounter_count: int
    revenue_at_risk: Decimal
    description: str
    priority: Priority
    encounter_ids: list[str]


class CodingOpportunityOut(OutputModel):
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


class CodingSummaryOut(OutputModel):
    em_visits: int
    total_projected_revenue: Decimal
    denial_risk: Decimal
    compliance_issues: int
    average_compliance_score: Decimal
    providers_needing_attention: int


class CodingResponse(AnalysisRunResponse):
    summary: CodingSummaryOut
    em_analysis: list[EMLevelAnalysisOut]
    modifier_findings: list[ModifierFindingOut]
    bundling_findings: list[BundlingFindingOut]
    under_unit_findings: list[UnderUnitFindingOut]
    provider_profiles: list[ProviderCodingProfileOut]
    documentation_findings: list[DocumentationFindingOut]
    opportunities: list[CodingOpportunityOut]


# ============================================================================
# Contracts
# ============================================================================


class ContractAnalyzeRequest(AnalysisWindowRequest):
    payer_id: str | None = None
    min_claims: int = Field(10, ge=1, description="Minimum claims for a payer to be scored")


class ContractModelRequest(AnalysisWindowRequest):
    """What-if: proposed per-code rates for one payer."""

    payer_id: str
    proposed_rates: dict[str, Decimal] = Field(..., min_length=1)


class CodeRateComparisonOut(OutputModel):
    code: str
    code_name: str
    units: int
    annual_volume: Decimal
    avg_paid_per_unit: Decimal
    benchmark_rate: Decimal | None = None
    percent_of_benchmark: Decimal | None = None
    expected_rate: Decimal | None = None
    market_low: Decimal | None = None
    market_mid: Decimal | None = None
    market_high: Decimal | None = None
    market_position: str
    annual_gap: Decimal


class PayerScorecardOut(OutputModel):
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
    codes: list[CodeRateComparisonOut]
    opportunity: Decimal
    rating: str
    priority: Priority
    talking_points: list[str]
    needs_renegotiation: bool


class ContractSummaryOut(OutputModel):
    payers_analyzed: int
    total_opportunity: Decimal
    renegotiation_candidates: int
    by_rating: dict[str, int]


class ContractResponse(AnalysisRunResponse):
    summary: ContractSummaryOut
    scorecards: list[PayerScorecardOut]


class RateChangeImpactOut(OutputModel):
    code: str
    annual_volume: Decimal
    current_rate: Decimal
    proposed_rate: Decimal
    current_annual_revenue: Decimal
    proposed_annual_revenue: Decimal
    annual_delta: Decimal


class ContractModelResponse(OutputModel):
    payer_id: str
    payer_name: str
    changes: list[RateChangeImpactOut]
    total_current_revenue: Decimal
    total_proposed_revenue: Decimal
    total_annual_delta: Decimal


# ============================================================================
# Forecast and goals
# ============================================================================


class ForecastRequest(BaseModel):
    """Request for a revenue forecast."""

    as_of: date | None = Field(None, description="Forecast starts at this month (defaults to today)")
    horizon_months: int = Field(12, ge=1, le=24)
    lookback_months: int = Field(12, ge=3, le=36)
    include_seasonality: bool = True
    include_pipeline: bool = True
    scenarios: list[ForecastScenario] | None = Field(None, description="All scenarios when omitted")


class HistoricalTrendOut(OutputModel):
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


class ForecastMonthOut(OutputModel):
    month: str
    base_revenue: Decimal
    seasonal_adjustment: Decimal
    pipeline_adjustment: Decimal
    forecast_revenue: Decimal
    cumulative_revenue: Decimal
    forecast_collections: Decimal
    lower_bound: Decimal
    upper_bound: Decimal


class ScenarioForecastOut(OutputModel):
    scenario: ForecastScenario
    growth_multiplier: Decimal
    months: list[ForecastMonthOut]
    total_revenue: Decimal
    total_collections: Decimal


class GoalVarianceOut(OutputModel):
    goal_id: str
    goal_name: str
    target_amount: Decimal
    forecast_amount: Decimal
    variance: Decimal
    variance_percent: Decimal
    on_track: bool
    recommendation: str


class ForecastActionOut(OutputModel):
    title: str
    description: str
    estimated_impact: Decimal
    effort_level: EffortLevel
    timeframe: str
    priority: Priority


class ForecastResponse(OutputModel):
    as_of: date
    horizon_months: int
    lookback_months: int
    analyzed_at: datetime
    trend: HistoricalTrendOut
    seasonality: dict[int, Decimal]
    pipeline_value: Decimal
    monthly_pipeline: Decimal
    scenarios: list[ScenarioForecastOut]
    goal_variances: list[GoalVarianceOut]
    actions: list[ForecastActionOut]


class GoalUpsertRequest(BaseModel):
    """Create a goal, or update one when ``id`` is given."""

    id: str | None = None
    name: str = Field(..., min_length=1, max_length=255)
    period_type: GoalPeriod
    period_start: date
    period_end: date
    target_amount: Decimal = Field(..., gt=0)
    is_active: bool = True

    @model_validator(mode="after")
    def check_period(self) -> "GoalUpsertRequest":
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class GoalProgressOut(OutputModel):
    actual_amount: Decimal
    variance: Decimal
    percent_achieved: Decimal
    elapsed_fraction: Decimal
    on_track: bool


class GoalOut(OutputModel):
    id: str
    name: str
    period_type: GoalPeriod
    period_start: date
    period_end: date
    target_amount: Decimal
    is_active: bool
    progress: GoalProgressOut | None = None


# ============================================================================
# Opportunities
# ============================================================================


class OpportunityOut(OutputModel):
    id: str
    opportunity_type: OpportunityType
    category: str
    title: str
    description: str
    estimated_value: Decimal
    confidence: int
    priority: Priority
    entity_type: str | None = None
    entity_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    status: OpportunityStatus
    captured_value: Decimal | None = None
    notes: str | None = None
    completed_at: datetime | None = None
    completed_by: str | None = None
    created_at: datetime | None = None


class OpportunityPage(PageResponse):
    items: list[OpportunityOut]


class OpportunityTransitionRequest(BaseModel):
    captured_value: Decimal | None = Field(None, ge=0, description="Revenue captured on completion")
    notes: str | None = None


# ============================================================================
# Jobs
# ============================================================================


class RevenueJobRequest(BaseModel):
    as_of: date | None = Field(None, description="Reference date for every analyzer")


class RevenueJobResponse(BaseModel):
    job_id: str
    status: str
    result: dict[str, Any] | None = None
