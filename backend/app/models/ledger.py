"""SQLAlchemy models for the revenue opportunity ledger.

Every finding the engine persists lives here, together with the actions
recorded when a finding is acted on and the practice's revenue goals.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.columns import JSONType, Money, enum_column
from app.schemas.base import (
    ActionStatus,
    ActionType,
    EffortLevel,
    FeeAnalysisStatus,
    Frequency,
    GoalPeriod,
    LeakageStatus,
    LeakageType,
    OpportunityStatus,
    OpportunityType,
    Priority,
)


class RevenueLeakage(Base):
    """Detected revenue leakage.

    Lifecycle: identified -> investigating -> fixing -> resolved | ignored.
    """

    __tablename__ = "revenue_leakages"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    leakage_type: Mapped[LeakageType] = mapped_column(
        enum_column(LeakageType, "leakage_type"),
        nullable=False,
        index=True,
    )
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    frequency: Mapped[Frequency] = mapped_column(
        enum_column(Frequency, "leakage_frequency"),
        nullable=False,
    )
    annual_impact: Mapped[Decimal] = mapped_column(Money, nullable=False)
    priority: Mapped[Priority] = mapped_column(
        enum_column(Priority, "leakage_priority"),
        nullable=False,
        index=True,
    )
    effort_level: Mapped[EffortLevel] = mapped_column(
        enum_column(EffortLevel, "leakage_effort"),
        nullable=False,
    )
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cpt_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    payer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    recommendation: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[LeakageStatus] = mapped_column(
        enum_column(LeakageStatus, "leakage_status"),
        nullable=False,
        default=LeakageStatus.IDENTIFIED,
        index=True,
    )
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<RevenueLeakage(id={self.id}, type={self.leakage_type}, amount={self.amount}, status={self.status})>"


class FeeScheduleAnalysis(Base):
    """Fee recommendation for one code.

    Lifecycle: pending -> approved | rejected, approved -> implemented.
    """

    __tablename__ = "fee_schedule_analyses"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    fee_schedule_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    cpt_code: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    code_name: Mapped[str] = mapped_column(String(255), nullable=False)
    current_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    recommended_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    fee_change: Mapped[Decimal] = mapped_column(Money, nullable=False)
    change_percent: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    benchmark_rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    regional_rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    top_payer_rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    avg_reimbursement: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    utilization: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    projected_annual_impact: Mapped[Decimal] = mapped_column(Money, nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    priority: Mapped[Priority] = mapped_column(
        enum_column(Priority, "fee_priority"),
        nullable=False,
    )
    status: Mapped[FeeAnalysisStatus] = mapped_column(
        enum_column(FeeAnalysisStatus, "fee_analysis_status"),
        nullable=False,
        default=FeeAnalysisStatus.PENDING,
        index=True,
    )
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    implemented_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<FeeScheduleAnalysis(id={self.id}, cpt_code={self.cpt_code}, recommended={self.recommended_fee}, status={self.status})>"


class RevenueOpportunity(Base):
    """Service mix, coding or contract opportunity.

    Lifecycle: identified -> in_progress -> captured | declined.
    """

    __tablename__ = "revenue_opportunities"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    opportunity_type: Mapped[OpportunityType] = mapped_column(
        enum_column(OpportunityType, "opportunity_type"),
        nullable=False,
        index=True,
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    estimated_value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    priority: Mapped[Priority] = mapped_column(
        enum_column(Priority, "opportunity_priority"),
        nullable=False,
    )
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[OpportunityStatus] = mapped_column(
        enum_column(OpportunityStatus, "opportunity_status"),
        nullable=False,
        default=OpportunityStatus.IDENTIFIED,
        index=True,
    )
    captured_value: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<RevenueOpportunity(id={self.id}, type={self.opportunity_type}, value={self.estimated_value}, status={self.status})>"


class OptimizationAction(Base):
    """Action taken on a finding, with projected and actual impact."""

    __tablename__ = "optimization_actions"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action_type: Mapped[ActionType] = mapped_column(
        enum_column(ActionType, "action_type"),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(Text, nullable=False)
    source_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    projected_impact: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    actual_impact: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    status: Mapped[ActionStatus] = mapped_column(
        enum_column(ActionStatus, "action_status"),
        nullable=False,
        default=ActionStatus.PENDING,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<OptimizationAction(id={self.id}, type={self.action_type}, status={self.status})>"


class RevenueGoal(Base):
    """Revenue target for a period.

    Progress against the target is never stored; it is recomputed from
    charges on every read.
    """

    __tablename__ = "revenue_goals"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    period_type: Mapped[GoalPeriod] = mapped_column(
        enum_column(GoalPeriod, "goal_period"),
        nullable=False,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<RevenueGoal(id={self.id}, name={self.name}, target={self.target_amount})>"
