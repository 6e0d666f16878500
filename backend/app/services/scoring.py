"""Shared scoring conventions for revenue findings.

Every analyzer scores its findings with the same annualization and
priority tables, so outputs from different analyzers can be merged and
ranked together with ``rank_findings``.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from operator import attrgetter
from typing import Any, Callable, Iterable, Sequence, TypeVar

from app.schemas.base import Frequency, Priority

T = TypeVar("T")

CENT = Decimal("0.01")
ZERO = Decimal("0")

# Multipliers that turn a per-frequency amount into a yearly amount
ANNUALIZATION_FACTORS: dict[Frequency, int] = {
    Frequency.DAILY: 260,  # Business days
    Frequency.WEEKLY: 52,
    Frequency.MONTHLY: 12,
    Frequency.QUARTERLY: 4,
    Frequency.ONE_TIME: 1,
}
DEFAULT_ANNUALIZATION_FACTOR = 12

# (threshold, priority) evaluated top-down with >=
PriorityTable = Sequence[tuple[Decimal, Priority]]

IMPACT_PRIORITIES: PriorityTable = (
    (Decimal("10000"), Priority.CRITICAL),
    (Decimal("5000"), Priority.HIGH),
    (Decimal("1000"), Priority.MEDIUM),
)

FEE_PRIORITIES: PriorityTable = (
    (Decimal("5000"), Priority.CRITICAL),
    (Decimal("2000"), Priority.HIGH),
    (Decimal("500"), Priority.MEDIUM),
)

PRIORITY_ORDER: dict[Priority, int] = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


# ============================================================================
# Decimal arithmetic
# ============================================================================


def to_decimal(value: Any) -> Decimal:
    """Convert a number to Decimal without binary float noise."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return ZERO


def money(value: Any) -> Decimal:
    """Round an amount half-up to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def safe_div(numerator: Any, denominator: Any, default: Any = ZERO) -> Any:
    """Divide, returning ``default`` when the denominator is zero."""
    if not denominator:
        return default
    if isinstance(numerator, float) or isinstance(denominator, float):
        return float(numerator) / float(denominator)
    return to_decimal(numerator) / to_decimal(denominator)


def percent(part: Any, whole: Any) -> Decimal:
    """Percentage of ``part`` in ``whole`` (0 when whole is zero)."""
    return safe_div(to_decimal(part) * 100, to_decimal(whole))


def non_negative(value: Any) -> Decimal:
    """Clamp an amount at zero."""
    amount = to_decimal(value)
    return amount if amount > ZERO else ZERO


# ============================================================================
# Annualization and priority
# ============================================================================


def annualize(amount: Any, frequency: Frequency | str | None) -> Decimal:
    """Convert an amount at a given frequency to a yearly amount.

    Unrecognized frequencies are treated as monthly.
    """
    try:
        factor = ANNUALIZATION_FACTORS[Frequency(frequency)]
    except ValueError:
        factor = DEFAULT_ANNUALIZATION_FACTOR
    return to_decimal(amount) * factor


def priority_for(annual_impact: Any, table: PriorityTable = IMPACT_PRIORITIES) -> Priority:
    """Look up the priority for an annual impact."""
    impact = to_decimal(annual_impact)
    for threshold, priority in table:
        if impact >= threshold:
            return priority
    return Priority.LOW


def priority_rank(priority: Priority | str) -> int:
    """Sort rank of a priority (critical first)."""
    return PRIORITY_ORDER[Priority(priority)]


def escalate(priority: Priority | str) -> Priority:
    """Move a priority one tier up. Critical stays critical."""
    rank = max(priority_rank(priority) - 1, 0)
    for candidate, candidate_rank in PRIORITY_ORDER.items():
        if candidate_rank == rank:
            return candidate
    return Priority.CRITICAL


def rank_findings(
    items: Iterable[T],
    impact: Callable[[T], Any] = attrgetter("annual_impact"),
) -> list[T]:
    """Order findings from any analyzer by priority, then impact descending.

    Items only need a ``priority`` attribute and whatever ``impact`` reads.
    Ties keep their input order.
    """
    return sorted(
        items,
        key=lambda item: (priority_rank(item.priority), -to_decimal(impact(item))),
    )
