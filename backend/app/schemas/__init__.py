"""Pydantic schemas for the Revenue Optimization Engine."""

from app.schemas.base import (
    FeeAnalysisStatus,
    ForecastScenario,
    Frequency,
    LeakageStatus,
    LeakageType,
    OpportunityStatus,
    OpportunityType,
    Priority,
)
from app.schemas.revenue import (
    ContractResponse,
    FeeAnalysisOut,
    FeeAnalyzeResponse,
    ForecastResponse,
    GoalOut,
    LeakageDetectResponse,
    LeakageOut,
    OpportunityOut,
    RevenueJobResponse,
    ServiceMixResponse,
)

__all__ = [
    # Enums
    "FeeAnalysisStatus",
    "ForecastScenario",
    "Frequency",
    "LeakageStatus",
    "LeakageType",
    "OpportunityStatus",
    "OpportunityType",
    "Priority",
    # Responses
    "LeakageDetectResponse",
    "LeakageOut",
    "FeeAnalyzeResponse",
    "FeeAnalysisOut",
    "ServiceMixResponse",
    "ContractResponse",
    "ForecastResponse",
    "GoalOut",
    "OpportunityOut",
    "RevenueJobResponse",
]
