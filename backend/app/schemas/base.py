"""Base schemas and enums for the Revenue Optimization Engine."""

from enum import Enum


# ============================================================================
# Source record enums (billing, scheduling, documentation)
# ============================================================================


class ChargeStatus(str, Enum):
    """Billing status of a charge line."""

    PENDING = "pending"
    BILLED = "billed"
    PAID = "paid"
    VOID = "void"


class EncounterStatus(str, Enum):
    """Status of a patient visit."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EncounterType(str, Enum):
    """Type of patient visit."""

    INITIAL_EVAL = "initial_eval"
    RE_EVAL = "re_eval"
    FOLLOW_UP = "follow_up"
    TREATMENT = "treatment"
    OTHER = "other"


class ClaimStatus(str, Enum):
    """Adjudication status of a payer claim."""

    SUBMITTED = "submitted"
    PAID = "paid"
    DENIED = "denied"


class PayerType(str, Enum):
    """Payer category, used by modifier rules and contract benchmarks."""

    MEDICARE = "medicare"
    MEDICAID = "medicaid"
    COMMERCIAL = "commercial"
    WORKERS_COMP = "workers_comp"
    PERSONAL_INJURY = "personal_injury"
    SELF_PAY = "self_pay"
    OTHER = "other"


class AppointmentStatus(str, Enum):
    """Status of a scheduled appointment."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# ============================================================================
# Finding enums
# ============================================================================


class LeakageType(str, Enum):
    """Revenue leakage categories."""

    UNBILLED_SERVICE = "unbilled_service"
    UNDERCODING = "undercoding"
    MISSED_MODIFIER = "missed_modifier"
    UNBILLED_SUPPLIES = "unbilled_supplies"
    WRITE_OFF = "write_off"
    COLLECTION_ISSUE = "collection_issue"


class Frequency(str, Enum):
    """How often a finding's amount recurs."""

    ONE_TIME = "one_time"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class Priority(str, Enum):
    """Priority of a finding or recommendation."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EffortLevel(str, Enum):
    """Effort needed to act on a finding."""

    EASY = "easy"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ComplianceRisk(str, Enum):
    """Compliance exposure of a coding recommendation."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TrendDirection(str, Enum):
    """Direction of the historical revenue trend."""

    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class ForecastScenario(str, Enum):
    """Forecast scenario."""

    CONSERVATIVE = "conservative"
    BASELINE = "baseline"
    OPTIMISTIC = "optimistic"


class GoalPeriod(str, Enum):
    """Period type of a revenue goal."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


# ============================================================================
# Ledger lifecycle enums
# ============================================================================


class LeakageStatus(str, Enum):
    """Lifecycle of a persisted leakage finding."""

    IDENTIFIED = "identified"
    INVESTIGATING = "investigating"
    FIXING = "fixing"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class FeeAnalysisStatus(str, Enum):
    """Lifecycle of a fee recommendation."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"


class OpportunityStatus(str, Enum):
    """Lifecycle of a generic revenue opportunity."""

    IDENTIFIED = "identified"
    IN_PROGRESS = "in_progress"
    CAPTURED = "captured"
    DECLINED = "declined"


class OpportunityType(str, Enum):
    """Analyzer that produced a revenue opportunity."""

    SERVICE_MIX = "service_mix"
    CODING = "coding"
    CONTRACT = "contract"


class ActionType(str, Enum):
    """Kind of completed optimization action."""

    LEAKAGE_RESOLUTION = "leakage_resolution"
    FEE_UPDATE = "fee_update"
    OPPORTUNITY_CAPTURE = "opportunity_capture"


class ActionStatus(str, Enum):
    """Status of an optimization action."""

    PENDING = "pending"
    COMPLETED = "completed"
