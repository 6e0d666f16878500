"""SQLAlchemy ORM models for the Revenue Optimization Engine.

All models inherit from Base which provides:
- id: UUID primary key
- created_at: Timestamp

Models:
- Provider, Payer, Encounter, Charge, Claim, ClaimLine (billing records)
- FeeSchedule, FeeScheduleItem, Appointment
- RevenueLeakage, FeeScheduleAnalysis, RevenueOpportunity (ledger)
- OptimizationAction, RevenueGoal
"""

from app.core.database import Base
from app.models.billing import (
    Appointment,
    Charge,
    Claim,
    ClaimLine,
    Encounter,
    FeeSchedule,
    FeeScheduleItem,
    Payer,
    Provider,
)
from app.models.ledger import (
    FeeScheduleAnalysis,
    OptimizationAction,
    RevenueGoal,
    RevenueLeakage,
    RevenueOpportunity,
)

__all__ = [
    "Base",
    "Provider",
    "Payer",
    "Encounter",
    "Charge",
    "Claim",
    "ClaimLine",
    "FeeSchedule",
    "FeeScheduleItem",
    "Appointment",
    "RevenueLeakage",
    "FeeScheduleAnalysis",
    "RevenueOpportunity",
    "OptimizationAction",
    "RevenueGoal",
]
