"""Revenue engine orchestration.

Runs one analyzer per call in fixed phases:

1. Load a RevenueSnapshot for the requested window
2. Score with the analyzer
3. Persist the findings through the OpportunityLedger

Nothing is written before phase 3, so a run abandoned during loading or
scoring leaves the ledger untouched.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy.orm import Session

from app.core.config import settings
from app.schemas.base import ForecastScenario, LeakageType, OpportunityType
from app.services.aggregation import (
    GoalRecord,
    RevenueDataSource,
    SnapshotRequest,
    add_months,
)
from app.services.aggregation_db import DatabaseRevenueDataSource
from app.services.benchmarks import BenchmarkTables, EngineAssumptions
from app.services.coding_optimizer import CodingAnalysisResult, CodingOptimizer
from app.services.contract_analyzer import (
    ContractAnalysisResult,
    ContractAnalyzer,
    ContractModelResult,
)
from app.services.errors import InvalidWindowError
from app.services.fee_optimizer import (
    EffectivenessReport,
    FeeAnalysisResult,
    FeeScheduleOptimizer,
)
from app.services.leakage_detector import LeakageDetectionResult, LeakageDetector
from app.services.opportunity_ledger import BatchWriteResult, OpportunityInput, OpportunityLedger
from app.services.revenue_forecaster import (
    DEFAULT_HORIZON,
    DEFAULT_LOOKBACK,
    ForecastResult,
    GoalProgress,
    RevenueForecaster,
)
from app.services.scoring import ZERO
from app.services.service_mix import ServiceMixAnalyzer, ServiceMixResult

logger = logging.getLogger(__name__)

# Default analysis windows
LEAKAGE_WINDOW_DAYS = 90
FEE_WINDOW_MONTHS = 12
SERVICE_MIX_WINDOW_MONTHS = 12
CODING_WINDOW_MONTHS = 6
CONTRACT_WINDOW_MONTHS = 12
EFFECTIVENESS_BASELINE_DAYS = 90

# Confidence for opportunities whose analyzer does not score one
SERVICE_MIX_CONFIDENCE = 70
CONTRACT_CONFIDENCE = 75


@dataclass
class AnalysisRun:
    """One analyzer run: result, persistence counts and timing."""

    analyzer: str
    start_date: date
    end_date: date
    as_of: date
    result: Any
    persistence: BatchWriteResult = field(default_factory=BatchWriteResult)
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RevenueEngine:
    """Loads snapshots, runs analyzers and writes to the ledger.

    Usage:
        engine = RevenueEngine(session, organization_id="org-1", user_id="u-1")
        run = engine.detect_leakage(as_of=date(2024, 6, 30))
        print(run.persistence.persisted)
    """

    def __init__(
        self,
        session: Session,
        organization_id: str,
        user_id: str | None = None,
        data_source: RevenueDataSource | None = None,
        benchmarks: BenchmarkTables | None = None,
        assumptions: EngineAssumptions | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.organization_id = organization_id
        self.user_id = user_id
        self._clock = clock
        self._source = data_source or DatabaseRevenueDataSource(session)
        self._assumptions = assumptions or EngineAssumptions.from_settings(settings)
        benchmarks = benchmarks or BenchmarkTables()

        self.ledger = OpportunityLedger(session, organization_id, user_id, clock=clock)
        self.leakage_detector = LeakageDetector(benchmarks, self._assumptions)
        self.fee_optimizer = FeeScheduleOptimizer(benchmarks, self._assumptions)
        self.service_mix_analyzer = ServiceMixAnalyzer(benchmarks, self._assumptions)
        self.coding_optimizer = CodingOptimizer(benchmarks, self._assumptions)
        self.contract_analyzer = ContractAnalyzer(benchmarks, self._assumptions)
        self.forecaster = RevenueForecaster(benchmarks, self._assumptions)

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    def _window(
        self,
        as_of: date | None,
        start_date: date | None,
        end_date: date | None,
        days: int,
    ) -> tuple[date, date, date]:
        """Resolve (start, end, as_of); the default window ends at as_of."""
        as_of = as_of or self.today()
        end = end_date or as_of
        start = start_date or end - timedelta(days=days - 1)
        if start > end:
            raise InvalidWindowError(start, end)
        return start, end, as_of

    def _load(self, start: date, end: date, as_of: date, **options: Any):
        return self._source.load_snapshot(SnapshotRequest(
            organization_id=self.organization_id,
            start_date=start,
            end_date=end,
            as_of=as_of,
            **options,
        ))

    # ------------------------------------------------------------------
    # Leakage
    # ------------------------------------------------------------------

    def detect_leakage(
        self,
        as_of: date | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        categories: Iterable[LeakageType] | None = None,
        provider_id: str | None = None,
        payer_id: str | None = None,
        min_amount: Decimal = ZERO,
    ) -> AnalysisRun:
        """Detect leakage and persist every surviving finding."""
        start, end, as_of = self._window(as_of, start_date, end_date, LEAKAGE_WINDOW_DAYS)
        snapshot = self._load(start, end, as_of, include_open_receivables=True)
        result: LeakageDetectionResult = self.leakage_detector.detect(
            snapshot,
            categories=categories,
            provider_id=provider_id,
            payer_id=payer_id,
            min_amount=min_amount,
        )
        persistence = self.ledger.record_leakages(result.findings)
        return self._finish("leakage", start, end, as_of, result, persistence)

    # ------------------------------------------------------------------
    # Fees
    # ------------------------------------------------------------------

    def analyze_fees(
        self,
        as_of: date | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        fee_schedule_id: str | None = None,
        codes: Iterable[str] | None = None,
        min_utilization: int = 5,
    ) -> AnalysisRun:
        """Recommend fees and persist them as pending analyses."""
        start, end, as_of = self._window(as_of, start_date, end_date, FEE_WINDOW_MONTHS * 30)
        snapshot = self._load(start, end, as_of)
        result: FeeAnalysisResult = self.fee_optimizer.analyze(
            snapshot,
            fee_schedule_id=fee_schedule_id,
            codes=codes,
            min_utilization=min_utilization,
        )
        persistence = self.ledger.record_fee_analyses(result.recommendations, result.fee_schedule_id)
        return self._finish("fee_analysis", start, end, as_of, result, persistence)

    def fee_effectiveness(
        self,
        as_of: date | None = None,
        cpt_code: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> EffectivenessReport:
        """Compare implemented fee changes against their projections.

        ``cpt_code``, ``date_from`` and ``date_to`` select which changes are
        tracked by code and effective date.
        """
        as_of = as_of or self.today()
        if date_from and date_to and date_from > date_to:
            raise InvalidWindowError(date_from, date_to)
        changes = [
            c for c in self.ledger.implemented_fee_changes(cpt_code, date_from, date_to)
            if c.effective_date <= as_of
        ]
        if not changes:
            return EffectivenessReport()
        start = min(c.effective_date for c in changes) - timedelta(days=EFFECTIVENESS_BASELINE_DAYS)
        snapshot = self._load(start, as_of, as_of)
        return self.fee_optimizer.track_effectiveness(snapshot, changes)

    # ------------------------------------------------------------------
    # Service mix, coding, contracts
    # ------------------------------------------------------------------

    def analyze_service_mix(
        self,
        as_of: date | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        provider_id: str | None = None,
        min_volume: int = 10,
    ) -> AnalysisRun:
        """Analyze service mix and persist material capacity recommendations."""
        start, end, as_of = self._window(
            as_of, start_date, end_date, SERVICE_MIX_WINDOW_MONTHS * 30
        )
        snapshot = self._load(start, end, as_of)
        result: ServiceMixResult = self.service_mix_analyzer.analyze(
            snapshot, provider_id=provider_id, min_volume=min_volume
        )
        items = [
            OpportunityInput(
                category=rec.kind,
                title=rec.title,
                description=rec.description,
                estimated_value=rec.estimated_impact,
                priority=rec.priority,
                confidence=SERVICE_MIX_CONFIDENCE,
                entity_type=rec.entity_type,
                entity_id=rec.entity_id,
                details=rec.details,
            )
            for rec in result.recommendations
            if rec.is_material
        ]
        persistence = self.ledger.record_opportunities(
            OpportunityType.SERVICE_MIX, items, deduplicate=True
        )
        return self._finish("service_mix", start, end, as_of, result, persistence)

    def analyze_coding(
        self,
        as_of: date | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        provider_id: str | None = None,
        min_volume: int = 10,
    ) -> AnalysisRun:
        """Review coding patterns and persist revenue opportunities."""
        start, end, as_of = self._window(as_of, start_date, end_date, CODING_WINDOW_MONTHS * 30)
        snapshot = self._load(start, end, as_of)
        result: CodingAnalysisResult = self.coding_optimizer.analyze(
            snapshot, provider_id=provider_id, min_volume=min_volume
        )
        items = [
            OpportunityInput(
                category=opp.category,
                title=opp.title,
                description=opp.description,
                estimated_value=opp.projected_revenue,
                priority=opp.priority,
                confidence=opp.confidence,
                entity_type=opp.entity_type,
                entity_id=opp.entity_id,
                details={
                    "compliance_risk": opp.compliance_risk.value,
                    "checklist": list(opp.checklist),
                },
            )
            for opp in result.opportunities
        ]
        persistence = self.ledger.record_opportunities(OpportunityType.CODING, items)
        return self._finish("coding", start, end, as_of, result, persistence)

    def analyze_contracts(
        self,
        as_of: date | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        payer_id: str | None = None,
        min_claims: int = 10,
    ) -> AnalysisRun:
        """Score payer contracts and persist renegotiation candidates."""
        start, end, as_of = self._window(
            as_of, start_date, end_date, CONTRACT_WINDOW_MONTHS * 30
        )
        snapshot = self._load(start, end, as_of)
        result: ContractAnalysisResult = self.contract_analyzer.analyze(
            snapshot, payer_id=payer_id, min_claims=min_claims
        )
        items = [
            OpportunityInput(
                category="renegotiation",
                title=f"Renegotiate {card.payer_name} contract",
                description=" ".join(card.talking_points)
                or f"{card.payer_name} is rated {card.rating}.",
                estimated_value=card.opportunity,
                priority=card.priority,
                confidence=CONTRACT_CONFIDENCE,
                entity_type="payer",
                entity_id=card.payer_id,
                details={
                    "rating": card.rating,
                    "reimbursement_rate": str(card.reimbursement_rate),
                    "denial_rate": str(card.denial_rate),
                    "avg_days_to_payment": str(card.avg_days_to_payment),
                    "talking_points": list(card.talking_points),
                },
            )
            for card in result.scorecards
            if card.needs_renegotiation
        ]
        persistence = self.ledger.record_opportunities(
            OpportunityType.CONTRACT, items, deduplicate=True
        )
        return self._finish("contract", start, end, as_of, result, persistence)

    def model_contract(
        self,
        payer_id: str,
        proposed_rates: Mapping[str, Decimal],
        as_of: date | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> ContractModelResult:
        """What-if revenue effect of new rates. Nothing is persisted."""
        start, end, as_of = self._window(
            as_of, start_date, end_date, CONTRACT_WINDOW_MONTHS * 30
        )
        snapshot = self._load(start, end, as_of)
        return self.contract_analyzer.model_contract_change(snapshot, payer_id, proposed_rates)

    # ------------------------------------------------------------------
    # Forecast and goals
    # ------------------------------------------------------------------

    def forecast(
        self,
        as_of: date | None = None,
        horizon_months: int = DEFAULT_HORIZON,
        lookback_months: int = DEFAULT_LOOKBACK,
        include_seasonality: bool = True,
        include_pipeline: bool = True,
        scenarios: Iterable[ForecastScenario] | None = None,
    ) -> ForecastResult:
        """Forecast revenue from history, pipeline and goals."""
        as_of = as_of or self.today()
        snapshot = self._load(
            add_months(as_of, -lookback_months),
            as_of,
            as_of,
            appointment_days=self._assumptions.pipeline_days if include_pipeline else 0,
            include_goals=True,
        )
        return self.forecaster.forecast(
            snapshot,
            horizon_months=horizon_months,
            lookback_months=lookback_months,
            include_seasonality=include_seasonality,
            include_pipeline=include_pipeline,
            scenarios=scenarios,
        )

    def goal_progress(
        self,
        as_of: date | None = None,
        active_only: bool = False,
    ) -> list[GoalProgress]:
        """Recompute every goal's progress from live charges."""
        as_of = as_of or self.today()
        goals = self.ledger.list_goals(active_only=active_only)
        if not goals:
            return []

        start = min(g.period_start for g in goals)
        end = max(start, min(as_of, max(g.period_end for g in goals)))
        charges = self._load(start, end, as_of).billable_charges
        return [
            self.forecaster.goal_progress(
                GoalRecord(
                    id=g.id,
                    name=g.name,
                    period_type=g.period_type,
                    period_start=g.period_start,
                    period_end=g.period_end,
                    target_amount=g.target_amount,
                    is_active=g.is_active,
                ),
                charges,
                as_of,
            )
            for g in goals
        ]

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def run_all(self, as_of: date | None = None) -> dict[str, dict]:
        """Run every persisting analyzer with default windows."""
        as_of = as_of or self.today()
        runs = [
            self.detect_leakage(as_of=as_of),
            self.analyze_service_mix(as_of=as_of),
            self.analyze_coding(as_of=as_of),
            self.analyze_contracts(as_of=as_of),
        ]
        if any(s.is_default for s in self._load(as_of, as_of, as_of).fee_schedules):
            runs.append(self.analyze_fees(as_of=as_of))
        else:
            logger.info("No default fee schedule for %s; skipping fee analysis", self.organization_id)

        return {
            run.analyzer: {
                "persisted": run.persistence.persisted,
                "failed": run.persistence.failed,
                "skipped": run.persistence.skipped,
            }
            for run in runs
        }

    def _finish(
        self,
        analyzer: str,
        start: date,
        end: date,
        as_of: date,
        result: Any,
        persistence: BatchWriteResult,
    ) -> AnalysisRun:
        logger.info(
            "%s run for %s (%s to %s): %d persisted, %d failed, %d skipped",
            analyzer,
            self.organization_id,
            start,
            end,
            persistence.persisted,
            persistence.failed,
            persistence.skipped,
        )
        return AnalysisRun(
            analyzer=analyzer,
            start_date=start,
            end_date=end,
            as_of=as_of,
            result=result,
            persistence=persistence,
            analyzed_at=self._clock(),
        )
