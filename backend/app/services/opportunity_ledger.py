"""Opportunity Ledger.

Single write path for everything the engine persists:

- Batch writes of leakage findings, fee analyses and opportunities
- Lifecycle transitions as explicit state machines
- OptimizationAction records on every completed transition
- Listing, summaries and revenue goals

Each record in a batch is written inside its own savepoint so one bad row
is counted as failed without losing the rest of the batch.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Generic, Iterable, Mapping, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.audit import AuditAction, log_analysis_run, log_audit, log_transition
from app.models.billing import FeeSchedule, FeeScheduleItem
from app.models.ledger import (
    FeeScheduleAnalysis,
    OptimizationAction,
    RevenueGoal,
    RevenueLeakage,
    RevenueOpportunity,
)
from app.schemas.base import (
    ActionStatus,
    ActionType,
    FeeAnalysisStatus,
    GoalPeriod,
    LeakageStatus,
    LeakageType,
    OpportunityStatus,
    OpportunityType,
    Priority,
)
from app.services.errors import (
    InvalidTransitionError,
    NothingToImplementError,
    RecordNotFoundError,
)
from app.services.fee_optimizer import FeeRecommendation, ImplementedFeeChange
from app.services.leakage_detector import LeakageFinding
from app.services.scoring import ZERO, money, priority_rank

logger = logging.getLogger(__name__)

T = TypeVar("T")

OPEN_LEAKAGE_STATUSES = (
    LeakageStatus.IDENTIFIED,
    LeakageStatus.INVESTIGATING,
    LeakageStatus.FIXING,
)
OPEN_OPPORTUNITY_STATUSES = (OpportunityStatus.IDENTIFIED, OpportunityStatus.IN_PROGRESS)
RECENT_RESOLUTION_DAYS = 30
IMPLEMENTED_LOOKBACK_DAYS = 365
TOP_PENDING = 5


# ============================================================================
# Lifecycles
# ============================================================================


class LedgerKind(str, Enum):
    """Kinds of ledger records with a lifecycle."""

    LEAKAGE = "leakage"
    FEE_ANALYSIS = "fee_analysis"
    OPPORTUNITY = "opportunity"


@dataclass(frozen=True)
class Lifecycle:
    """Finite-state machine: action -> {from_status: to_status}."""

    kind: LedgerKind
    transitions: Mapping[str, Mapping[Enum, Enum]]

    def next_status(self, current: Enum, action: str) -> Enum:
        """Status after applying ``action``.

        Raises:
            InvalidTransitionError: If the action is unknown or not legal
                from ``current``.
        """
        target = self.transitions.get(action, {}).get(current)
        if target is None:
            raise InvalidTransitionError(self.kind.value, current.value, action)
        return target

    def allowed_actions(self, current: Enum) -> list[str]:
        return [action for action, edges in self.transitions.items() if current in edges]

    @property
    def actions(self) -> list[str]:
        return list(self.transitions)


LEAKAGE_LIFECYCLE = Lifecycle(
    kind=LedgerKind.LEAKAGE,
    transitions={
        "investigate": {LeakageStatus.IDENTIFIED: LeakageStatus.INVESTIGATING},
        "start_fix": {
            LeakageStatus.IDENTIFIED: LeakageStatus.FIXING,
            LeakageStatus.INVESTIGATING: LeakageStatus.FIXING,
        },
        "resolve": {status: LeakageStatus.RESOLVED for status in OPEN_LEAKAGE_STATUSES},
        "ignore": {status: LeakageStatus.IGNORED for status in OPEN_LEAKAGE_STATUSES},
    },
)

FEE_LIFECYCLE = Lifecycle(
    kind=LedgerKind.FEE_ANALYSIS,
    transitions={
        "approve": {FeeAnalysisStatus.PENDING: FeeAnalysisStatus.APPROVED},
        "reject": {FeeAnalysisStatus.PENDING: FeeAnalysisStatus.REJECTED},
        "implement": {FeeAnalysisStatus.APPROVED: FeeAnalysisStatus.IMPLEMENTED},
    },
)

OPPORTUNITY_LIFECYCLE = Lifecycle(
    kind=LedgerKind.OPPORTUNITY,
    transitions={
        "start": {OpportunityStatus.IDENTIFIED: OpportunityStatus.IN_PROGRESS},
        "complete": {status: OpportunityStatus.CAPTURED for status in OPEN_OPPORTUNITY_STATUSES},
        "decline": {status: OpportunityStatus.DECLINED for status in OPEN_OPPORTUNITY_STATUSES},
    },
)


# ============================================================================
# Results
# ============================================================================


@dataclass
class BatchWriteResult:
    """Outcome of a batch persistence phase."""

    persisted: int = 0
    failed: int = 0
    skipped: int = 0  # Open duplicates already in the ledger
    ids: list[str] = field(default_factory=list)


@dataclass
class Page(Generic[T]):
    """One page of a ledger listing."""

    items: list[T]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass
class OpportunityInput:
    """Analyzer output normalized for the opportunity table."""

    category: str
    title: str
    description: str
    estimated_value: Decimal
    priority: Priority
    confidence: int = 50
    entity_type: str | None = None
    entity_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class Rollup:
    count: int = 0
    amount: Decimal = ZERO
    annual_impact: Decimal = ZERO

    def add(self, amount: Decimal, annual_impact: Decimal) -> None:
        self.count += 1
        self.amount += amount
        self.annual_impact += annual_impact


@dataclass
class LeakageLedgerSummary:
    """Open leakage totals with recent resolutions."""

    open_count: int
    total_amount: Decimal
    total_annual_impact: Decimal
    by_type: dict[str, Rollup]
    by_priority: dict[str, Rollup]
    by_status: dict[str, Rollup]
    resolved_recently: int
    recovered_recently: Decimal


@dataclass
class FeeImplementationResult:
    """Outcome of implementing approved fee changes."""

    implemented: int
    failed: int
    changes: list[ImplementedFeeChange]
    action_id: str | None = None


@dataclass
class FeeLedgerSummary:
    """Fee workflow rollup."""

    pending_count: int
    pending_impact: Decimal
    implemented_count: int
    implemented_impact: Decimal
    fee_actions: int
    top_pending: list[FeeScheduleAnalysis]


# ============================================================================
# Ledger
# ============================================================================


def _utcnow() -> datetime:
    return datetime.now(UTC)


class OpportunityLedger:
    """Persistence and lifecycle operations for one organization.

    Usage:
        ledger = OpportunityLedger(session, organization_id="org-1", user_id="u-1")
        result = ledger.record_leakages(detection.findings)
        ledger.transition_leakage(result.ids[0], "investigate")

    The ledger flushes but never commits; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        organization_id: str,
        user_id: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session = session
        self.organization_id = organization_id
        self.user_id = user_id
        self._clock = clock

    # ------------------------------------------------------------------
    # Batch writes
    # ------------------------------------------------------------------

    def _write_batch(self, resource_type: str, rows: Iterable[Any]) -> BatchWriteResult:
        result = BatchWriteResult()
        for row in rows:
            try:
                with self._session.begin_nested():
                    self._session.add(row)
                    self._session.flush()
            except SQLAlchemyError as e:
                result.failed += 1
                logger.warning("Failed to persist %s row: %s", resource_type, e)
            else:
                result.persisted += 1
                result.ids.append(row.id)

        log_analysis_run(
            resource_type,
            self.organization_id,
            persisted=result.persisted,
            failed=result.failed,
            user_id=self.user_id,
        )
        return result

    def record_leakages(self, findings: Iterable[LeakageFinding]) -> BatchWriteResult:
        """Persist leakage findings with status ``identified``."""
        rows = (
            RevenueLeakage(
                organization_id=self.organization_id,
                leakage_type=f.leakage_type,
                source=f.source,
                description=f.description,
                amount=money(f.amount),
                frequency=f.frequency,
                annual_impact=money(f.annual_impact),
                priority=f.priority,
                effort_level=f.effort_level,
                entity_type=f.entity_type,
                entity_id=f.entity_id,
                cpt_code=f.cpt_code,
                payer_name=f.payer_name,
                provider_id=f.provider_id,
                recommendation=f.recommendation,
                details=f.details,
                status=LeakageStatus.IDENTIFIED,
            )
            for f in findings
        )
        return self._write_batch("leakage", rows)

    def record_fee_analyses(
        self,
        recommendations: Iterable[FeeRecommendation],
        fee_schedule_id: str | None,
    ) -> BatchWriteResult:
        """Persist fee recommendations with status ``pending``."""
        rows = (
            FeeScheduleAnalysis(
                organization_id=self.organization_id,
                fee_schedule_id=fee_schedule_id,
                cpt_code=r.cpt_code,
                code_name=r.code_name,
                current_fee=r.current_fee,
                recommended_fee=r.recommended_fee,
                fee_change=r.fee_change,
                change_percent=r.change_percent,
                reasoning=" ".join(r.reasoning),
                benchmark_rate=r.benchmark_rate,
                regional_rate=r.regional_rate,
                top_payer_rate=r.top_payer_rate,
                avg_reimbursement=r.avg_reimbursement,
                utilization=r.utilization,
                projected_annual_impact=r.projected_annual_impact,
                confidence=r.confidence,
                priority=r.priority,
                status=FeeAnalysisStatus.PENDING,
            )
            for r in recommendations
        )
        return self._write_batch("fee_analysis", rows)

    def record_opportunities(
        self,
        opportunity_type: OpportunityType,
        items: Iterable[OpportunityInput],
        deduplicate: bool = False,
    ) -> BatchWriteResult:
        """Persist opportunities with status ``identified``.

        Args:
            opportunity_type: Analyzer that produced the items.
            items: Normalized opportunities.
            deduplicate: Skip items whose entity already has an open
                opportunity of the same type.
        """
        items = list(items)
        open_entities: set[str] = set()
        if deduplicate:
            open_entities = set(self._session.scalars(
                select(RevenueOpportunity.entity_id).where(
                    RevenueOpportunity.organization_id == self.organization_id,
                    RevenueOpportunity.opportunity_type == opportunity_type,
                    RevenueOpportunity.status.in_(OPEN_OPPORTUNITY_STATUSES),
                    RevenueOpportunity.entity_id.is_not(None),
                )
            ))

        rows = []
        skipped = 0
        for item in items:
            if deduplicate and item.entity_id is not None:
                if item.entity_id in open_entities:
                    skipped += 1
                    continue
                open_entities.add(item.entity_id)
            rows.append(RevenueOpportunity(
                organization_id=self.organization_id,
                opportunity_type=opportunity_type,
                category=item.category,
                title=item.title,
                description=item.description,
                estimated_value=money(item.estimated_value),
                confidence=item.confidence,
                priority=item.priority,
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                details=item.details,
                status=OpportunityStatus.IDENTIFIED,
            ))

        result = self._write_batch(f"{opportunity_type.value}_opportunity", rows)
        result.skipped = skipped
        if skipped:
            logger.info("Skipped %d open duplicate %s opportunities", skipped, opportunity_type.value)
        return result

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get(self, model: type, record_type: str, record_id: str) -> Any:
        record = self._session.get(model, record_id)
        if record is None or record.organization_id != self.organization_id:
            raise RecordNotFoundError(record_type, record_id)
        return record

    def get_leakage(self, leakage_id: str) -> RevenueLeakage:
        return self._get(RevenueLeakage, "leakage", leakage_id)

    def get_fee_analysis(self, analysis_id: str) -> FeeScheduleAnalysis:
        return self._get(FeeScheduleAnalysis, "fee analysis", analysis_id)

    def get_opportunity(self, opportunity_id: str) -> RevenueOpportunity:
        return self._get(RevenueOpportunity, "opportunity", opportunity_id)

    def _page(self, stmt, order_by: tuple, limit: int, offset: int) -> Page:
        total = self._session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        items = list(self._session.scalars(stmt.order_by(*order_by).limit(limit).offset(offset)))
        return Page(items=items, total=total, limit=limit, offset=offset)

    # ------------------------------------------------------------------
    # Leakage
    # ------------------------------------------------------------------

    def list_leakages(
        self,
        status: LeakageStatus | None = None,
        leakage_type: LeakageType | None = None,
        priority: Priority | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page[RevenueLeakage]:
        """List leakages, largest annual impact first."""
        stmt = select(RevenueLeakage).where(RevenueLeakage.organization_id == self.organization_id)
        if status is not None:
            stmt = stmt.where(RevenueLeakage.status == status)
        if leakage_type is not None:
            stmt = stmt.where(RevenueLeakage.leakage_type == leakage_type)
        if priority is not None:
            stmt = stmt.where(RevenueLeakage.priority == priority)
        return self._page(
            stmt,
            (RevenueLeakage.annual_impact.desc(), RevenueLeakage.created_at.desc(), RevenueLeakage.id),
            limit,
            offset,
        )

    def leakage_summary(self) -> LeakageLedgerSummary:
        """Rollups over open leakages plus resolutions in the last 30 days."""
        open_rows = self._session.scalars(
            select(RevenueLeakage).where(
                RevenueLeakage.organization_id == self.organization_id,
                RevenueLeakage.status.in_(OPEN_LEAKAGE_STATUSES),
            )
        ).all()

        by_type: dict[str, Rollup] = defaultdict(Rollup)
        by_priority: dict[str, Rollup] = defaultdict(Rollup)
        by_status: dict[str, Rollup] = defaultdict(Rollup)
        total_amount = ZERO
        total_annual = ZERO
        for row in open_rows:
            by_type[row.leakage_type.value].add(row.amount, row.annual_impact)
            by_priority[row.priority.value].add(row.amount, row.annual_impact)
            by_status[row.status.value].add(row.amount, row.annual_impact)
            total_amount += row.amount
            total_annual += row.annual_impact

        cutoff = self._clock() - timedelta(days=RECENT_RESOLUTION_DAYS)
        resolved = self._session.scalars(
            select(RevenueLeakage).where(
                RevenueLeakage.organization_id == self.organization_id,
                RevenueLeakage.status == LeakageStatus.RESOLVED,
                RevenueLeakage.resolved_at >= cutoff,
            )
        ).all()
        recovered = self._session.scalar(
            select(func.coalesce(func.sum(OptimizationAction.actual_impact), 0)).where(
                OptimizationAction.organization_id == self.organization_id,
                OptimizationAction.action_type == ActionType.LEAKAGE_RESOLUTION,
                OptimizationAction.completed_at >= cutoff,
            )
        )

        return LeakageLedgerSummary(
            open_count=len(open_rows),
            total_amount=money(total_amount),
            total_annual_impact=money(total_annual),
            by_type=dict(by_type),
            by_priority=dict(sorted(by_priority.items(), key=lambda kv: priority_rank(Priority(kv[0])))),
            by_status=dict(by_status),
            resolved_recently=len(resolved),
            recovered_recently=money(recovered or ZERO),
        )

    def transition_leakage(
        self,
        leakage_id: str,
        action: str,
        resolution: str | None = None,
        captured_amount: Decimal | None = None,
    ) -> RevenueLeakage:
        """Apply a lifecycle action to a leakage.

        Resolving records the resolution, time and user; a positive captured
        amount also records a completed leakage_resolution action.
        """
        leakage = self.get_leakage(leakage_id)
        previous = leakage.status
        leakage.status = LEAKAGE_LIFECYCLE.next_status(previous, action)
        now = self._clock()

        if leakage.status in (LeakageStatus.RESOLVED, LeakageStatus.IGNORED):
            leakage.resolution = resolution
            leakage.resolved_at = now
            leakage.resolved_by = self.user_id

        if leakage.status == LeakageStatus.RESOLVED and captured_amount and captured_amount > 0:
            self._session.add(OptimizationAction(
                organization_id=self.organization_id,
                action_type=ActionType.LEAKAGE_RESOLUTION,
                action=f"Resolved {leakage.leakage_type.value}: {resolution or leakage.description}",
                source_type=LedgerKind.LEAKAGE.value,
                source_id=leakage.id,
                projected_impact=leakage.amount,
                actual_impact=money(captured_amount),
                status=ActionStatus.COMPLETED,
                completed_at=now,
                completed_by=self.user_id,
            ))

        self._session.flush()
        log_transition(
            LedgerKind.LEAKAGE.value,
            leakage.id,
            previous.value,
            leakage.status.value,
            organization_id=self.organization_id,
            user_id=self.user_id,
        )
        return leakage

    # ------------------------------------------------------------------
    # Fee analyses
    # ------------------------------------------------------------------

    def list_fee_analyses(
        self,
        status: FeeAnalysisStatus | None = None,
        min_impact: Decimal | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page[FeeScheduleAnalysis]:
        """List fee analyses, largest projected impact first."""
        stmt = select(FeeScheduleAnalysis).where(
            FeeScheduleAnalysis.organization_id == self.organization_id
        )
        if status is not None:
            stmt = stmt.where(FeeScheduleAnalysis.status == status)
        if min_impact is not None:
            stmt = stmt.where(FeeScheduleAnalysis.projected_annual_impact >= min_impact)
        return self._page(
            stmt,
            (FeeScheduleAnalysis.projected_annual_impact.desc(), FeeScheduleAnalysis.cpt_code),
            limit,
            offset,
        )

    def review_fee_analysis(
        self,
        analysis_id: str,
        decision: str,
        effective_date: date | None = None,
        notes: str | None = None,
    ) -> FeeScheduleAnalysis:
        """Approve or reject a pending fee analysis."""
        if decision not in ("approve", "reject"):
            raise InvalidTransitionError(LedgerKind.FEE_ANALYSIS.value, "pending", decision)

        analysis = self.get_fee_analysis(analysis_id)
        previous = analysis.status
        analysis.status = FEE_LIFECYCLE.next_status(previous, decision)
        analysis.reviewed_by = self.user_id
        analysis.reviewed_at = self._clock()
        if notes:
            analysis.notes = notes
        if analysis.status == FeeAnalysisStatus.APPROVED and effective_date is not None:
            analysis.effective_date = effective_date

        self._session.flush()
        log_transition(
            LedgerKind.FEE_ANALYSIS.value,
            analysis.id,
            previous.value,
            analysis.status.value,
            organization_id=self.organization_id,
            user_id=self.user_id,
        )
        return analysis

    def implement_fee_changes(
        self,
        analysis_ids: Iterable[str],
        fee_schedule_id: str,
        effective_date: date | None = None,
    ) -> FeeImplementationResult:
        """Write approved fee changes into a fee schedule.

        Only approved analyses among ``analysis_ids`` are implemented. Each
        one updates (or creates) its fee schedule item in its own savepoint.
        ``effective_date`` overrides the date chosen at review; without
        either, changes take effect today.

        Raises:
            RecordNotFoundError: If the fee schedule does not exist.
            NothingToImplementError: If none of the analyses are approved.
        """
        schedule = self._get(FeeSchedule, "fee schedule", fee_schedule_id)
        analyses = self._session.scalars(
            select(FeeScheduleAnalysis).where(
                FeeScheduleAnalysis.organization_id == self.organization_id,
                FeeScheduleAnalysis.id.in_(list(analysis_ids)),
                FeeScheduleAnalysis.status == FeeAnalysisStatus.APPROVED,
            ).order_by(FeeScheduleAnalysis.cpt_code)
        ).all()
        if not analyses:
            raise NothingToImplementError()

        items = {item.cpt_code: item for item in schedule.items}
        now = self._clock()
        changes: list[ImplementedFeeChange] = []
        failed = 0

        for analysis in analyses:
            item = items.get(analysis.cpt_code)
            previous_fee = money(item.fee if item is not None else analysis.current_fee)
            effective = effective_date or analysis.effective_date or now.date()
            try:
                with self._session.begin_nested():
                    if item is None:
                        item = FeeScheduleItem(
                            fee_schedule_id=schedule.id,
                            cpt_code=analysis.cpt_code,
                            description=analysis.code_name,
                            fee=analysis.recommended_fee,
                            updated_at=now,
                        )
                        self._session.add(item)
                    else:
                        item.fee = analysis.recommended_fee
                        item.updated_at = now
                    analysis.status = FEE_LIFECYCLE.next_status(analysis.status, "implement")
                    analysis.implemented_at = now
                    analysis.effective_date = effective
                    self._session.flush()
            except SQLAlchemyError as e:
                failed += 1
                logger.warning("Failed to implement fee change for %s: %s", analysis.cpt_code, e)
                continue

            items[analysis.cpt_code] = item
            changes.append(ImplementedFeeChange(
                analysis_id=analysis.id,
                cpt_code=analysis.cpt_code,
                previous_fee=previous_fee,
                new_fee=money(analysis.recommended_fee),
                effective_date=effective,
                projected_annual_impact=analysis.projected_annual_impact,
            ))
            log_transition(
                LedgerKind.FEE_ANALYSIS.value,
                analysis.id,
                FeeAnalysisStatus.APPROVED.value,
                FeeAnalysisStatus.IMPLEMENTED.value,
                organization_id=self.organization_id,
                user_id=self.user_id,
            )

        action_id = None
        if changes:
            action = OptimizationAction(
                organization_id=self.organization_id,
                action_type=ActionType.FEE_UPDATE,
                action=f"Implemented {len(changes)} fee changes on {schedule.name}",
                source_type="fee_schedule",
                source_id=schedule.id,
                projected_impact=sum((c.projected_annual_impact for c in changes), ZERO),
                status=ActionStatus.COMPLETED,
                completed_at=now,
                completed_by=self.user_id,
            )
            self._session.add(action)
            self._session.flush()
            action_id = action.id

        log_audit(
            AuditAction.IMPLEMENT,
            "fee_schedule",
            resource_id=schedule.id,
            organization_id=self.organization_id,
            user_id=self.user_id,
            details={"implemented": len(changes), "failed": failed},
            success=failed == 0,
        )
        return FeeImplementationResult(
            implemented=len(changes),
            failed=failed,
            changes=changes,
            action_id=action_id,
        )

    def implemented_fee_changes(
        self,
        cpt_code: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[ImplementedFeeChange]:
        """Implemented analyses with an effective date, oldest first.

        ``date_from`` and ``date_to`` bound the effective date inclusively.
        """
        query = select(FeeScheduleAnalysis).where(
            FeeScheduleAnalysis.organization_id == self.organization_id,
            FeeScheduleAnalysis.status == FeeAnalysisStatus.IMPLEMENTED,
            FeeScheduleAnalysis.effective_date.is_not(None),
        )
        if cpt_code:
            query = query.where(FeeScheduleAnalysis.cpt_code == cpt_code)
        if date_from:
            query = query.where(FeeScheduleAnalysis.effective_date >= date_from)
        if date_to:
            query = query.where(FeeScheduleAnalysis.effective_date <= date_to)
        analyses = self._session.scalars(
            query.order_by(FeeScheduleAnalysis.effective_date, FeeScheduleAnalysis.cpt_code)
        )
        return [
            ImplementedFeeChange(
                analysis_id=a.id,
                cpt_code=a.cpt_code,
                previous_fee=a.current_fee,
                new_fee=a.recommended_fee,
                effective_date=a.effective_date,
                projected_annual_impact=a.projected_annual_impact,
            )
            for a in analyses
        ]

    def fee_summary(self) -> FeeLedgerSummary:
        """Pending work, recent implementations and fee actions."""
        pending = self._session.scalars(
            select(FeeScheduleAnalysis).where(
                FeeScheduleAnalysis.organization_id == self.organization_id,
                FeeScheduleAnalysis.status == FeeAnalysisStatus.PENDING,
            ).order_by(FeeScheduleAnalysis.projected_annual_impact.desc())
        ).all()

        cutoff = self._clock() - timedelta(days=IMPLEMENTED_LOOKBACK_DAYS)
        implemented = self._session.scalars(
            select(FeeScheduleAnalysis).where(
                FeeScheduleAnalysis.organization_id == self.organization_id,
                FeeScheduleAnalysis.status == FeeAnalysisStatus.IMPLEMENTED,
                FeeScheduleAnalysis.implemented_at >= cutoff,
            )
        ).all()
        fee_actions = self._session.scalar(
            select(func.count(OptimizationAction.id)).where(
                OptimizationAction.organization_id == self.organization_id,
                OptimizationAction.action_type == ActionType.FEE_UPDATE,
            )
        )

        return FeeLedgerSummary(
            pending_count=len(pending),
            pending_impact=money(sum((a.projected_annual_impact for a in pending), ZERO)),
            implemented_count=len(implemented),
            implemented_impact=money(sum((a.projected_annual_impact for a in implemented), ZERO)),
            fee_actions=fee_actions or 0,
            top_pending=list(pending[:TOP_PENDING]),
        )

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    def list_opportunities(
        self,
        opportunity_type: OpportunityType | None = None,
        status: OpportunityStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page[RevenueOpportunity]:
        """List opportunities, largest estimated value first."""
        stmt = select(RevenueOpportunity).where(
            RevenueOpportunity.organization_id == self.organization_id
        )
        if opportunity_type is not None:
            stmt = stmt.where(RevenueOpportunity.opportunity_type == opportunity_type)
        if status is not None:
            stmt = stmt.where(RevenueOpportunity.status == status)
        return self._page(
            stmt,
            (RevenueOpportunity.estimated_value.desc(), RevenueOpportunity.id),
            limit,
            offset,
        )

    def transition_opportunity(
        self,
        opportunity_id: str,
        action: str,
        captured_value: Decimal | None = None,
        notes: str | None = None,
    ) -> RevenueOpportunity:
        """Apply a lifecycle action to an opportunity.

        Completing records the captured value, time and user and a completed
        opportunity_capture action.
        """
        opportunity = self.get_opportunity(opportunity_id)
        previous = opportunity.status
        opportunity.status = OPPORTUNITY_LIFECYCLE.next_status(previous, action)
        now = self._clock()
        if notes:
            opportunity.notes = notes

        if opportunity.status == OpportunityStatus.CAPTURED:
            opportunity.captured_value = money(captured_value) if captured_value is not None else None
            opportunity.completed_at = now
            opportunity.completed_by = self.user_id
            self._session.add(OptimizationAction(
                organization_id=self.organization_id,
                action_type=ActionType.OPPORTUNITY_CAPTURE,
                action=f"Captured: {opportunity.title}",
                source_type=LedgerKind.OPPORTUNITY.value,
                source_id=opportunity.id,
                projected_impact=opportunity.estimated_value,
                actual_impact=opportunity.captured_value,
                status=ActionStatus.COMPLETED,
                completed_at=now,
                completed_by=self.user_id,
            ))

        self._session.flush()
        log_transition(
            LedgerKind.OPPORTUNITY.value,
            opportunity.id,
            previous.value,
            opportunity.status.value,
            organization_id=self.organization_id,
            user_id=self.user_id,
        )
        return opportunity

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def list_goals(self, active_only: bool = False) -> list[RevenueGoal]:
        stmt = select(RevenueGoal).where(RevenueGoal.organization_id == self.organization_id)
        if active_only:
            stmt = stmt.where(RevenueGoal.is_active.is_(True))
        return list(self._session.scalars(stmt.order_by(RevenueGoal.period_start, RevenueGoal.name)))

    def save_goal(
        self,
        name: str,
        period_type: GoalPeriod,
        period_start: date,
        period_end: date,
        target_amount: Decimal,
        is_active: bool = True,
        goal_id: str | None = None,
    ) -> RevenueGoal:
        """Create a goal, or update it when ``goal_id`` is given.

        Raises:
            RecordNotFoundError: If ``goal_id`` does not exist.
            ValueError: If the period ends before it starts.
        """
        if period_end < period_start:
            raise ValueError("period_end must not be before period_start")

        if goal_id is not None:
            goal = self._get(RevenueGoal, "goal", goal_id)
            audit_action = AuditAction.UPDATE
        else:
            goal = RevenueGoal(organization_id=self.organization_id)
            self._session.add(goal)
            audit_action = AuditAction.CREATE

        goal.name = name
        goal.period_type = period_type
        goal.period_start = period_start
        goal.period_end = period_end
        goal.target_amount = money(target_amount)
        goal.is_active = is_active
        self._session.flush()

        log_audit(
            audit_action,
            "goal",
            resource_id=goal.id,
            organization_id=self.organization_id,
            user_id=self.user_id,
        )
        return goal
