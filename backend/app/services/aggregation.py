"""Aggregation layer for revenue analytics.

Analyzers never query storage themselves. They receive a ``RevenueSnapshot``:
an immutable, read-consistent view of one organization's billing, claims,
scheduling and documentation records for a bounded date range. Grouping is
done with one primitive, ``aggregate``, which buckets records by a named
``Dimension`` (or any key function) and accumulates count, sum and average
per named measure.

Keeping this layer free of database access lets every analyzer be tested
with plain in-memory records.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from functools import cached_property
from typing import Any, Callable, Hashable, Iterable, Mapping

from app.schemas.base import (
    AppointmentStatus,
    ChargeStatus,
    ClaimStatus,
    EncounterStatus,
    EncounterType,
    GoalPeriod,
    PayerType,
)
from app.services.benchmarks import normalize_modifier
from app.services.scoring import ZERO, safe_div, to_decimal

UNKNOWN_PAYER = "Unknown"


# ============================================================================
# Input records
# ============================================================================


@dataclass(frozen=True)
class ProviderRecord:
    """A billing clinician."""

    id: str
    name: str


@dataclass(frozen=True)
class PayerRecord:
    """An insurer or other paying party."""

    id: str
    name: str
    payer_type: PayerType = PayerType.OTHER


@dataclass(frozen=True)
class ChargeRecord:
    """A billed procedure line.

    Payer and reimbursement figures come from the claim line that carries the
    charge; they are empty when the charge has not been claimed yet.
    """

    id: str
    code: str
    service_date: date
    fee: Decimal
    units: int = 1
    modifiers: frozenset[str] = frozenset()
    adjustments: Decimal = ZERO
    balance: Decimal = ZERO
    status: ChargeStatus = ChargeStatus.BILLED
    provider_id: str | None = None
    encounter_id: str | None = None
    payer_id: str | None = None
    claim_id: str | None = None
    paid_amount: Decimal = ZERO
    allowed_amount: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "modifiers", frozenset(normalize_modifier(m) for m in self.modifiers if m)
        )

    @property
    def bucket_date(self) -> date:
        return self.service_date

    @property
    def line_total(self) -> Decimal:
        """Charged amount for the line (fee is the line amount)."""
        return self.fee

    def has_modifier(self, modifier: str) -> bool:
        return normalize_modifier(modifier) in self.modifiers


@dataclass(frozen=True)
class EncounterRecord:
    """A patient visit."""

    id: str
    encounter_date: date
    encounter_type: EncounterType = EncounterType.OTHER
    status: EncounterStatus = EncounterStatus.COMPLETED
    provider_id: str | None = None
    payer_id: str | None = None
    diagnosis_codes: tuple[str, ...] = ()
    has_note: bool = False

    @property
    def bucket_date(self) -> date:
        return self.encounter_date


@dataclass(frozen=True)
class ClaimRecord:
    """A payer claim with adjudication totals."""

    id: str
    payer_id: str
    status: ClaimStatus
    submitted_date: date
    total_charged: Decimal = ZERO
    total_allowed: Decimal = ZERO
    total_paid: Decimal = ZERO
    paid_date: date | None = None

    @property
    def bucket_date(self) -> date:
        return self.submitted_date

    @property
    def days_to_payment(self) -> int | None:
        if self.paid_date is None:
            return None
        return (self.paid_date - self.submitted_date).days


@dataclass(frozen=True)
class ClaimLineRecord:
    """One procedure line on a claim, with payer-specific amounts."""

    id: str
    claim_id: str
    payer_id: str
    code: str
    service_date: date
    claim_status: ClaimStatus
    units: int = 1
    modifiers: frozenset[str] = frozenset()
    charged: Decimal = ZERO
    allowed: Decimal = ZERO
    paid: Decimal = ZERO
    charge_id: str | None = None

    @property
    def bucket_date(self) -> date:
        return self.service_date

    @property
    def is_paid(self) -> bool:
        return self.claim_status == ClaimStatus.PAID and self.paid > ZERO


@dataclass(frozen=True)
class AppointmentRecord:
    """A scheduled visit."""

    id: str
    start: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    provider_id: str | None = None

    @property
    def bucket_date(self) -> date:
        return self.start.date()

    @property
    def is_pending(self) -> bool:
        return self.status in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


@dataclass(frozen=True)
class FeeScheduleRecord:
    """A fee schedule with one fee per code."""

    id: str
    name: str
    is_default: bool = False
    items: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class GoalRecord:
    """A revenue target for a period."""

    id: str
    name: str
    period_type: GoalPeriod
    period_start: date
    period_end: date
    target_amount: Decimal
    is_active: bool = True


# ============================================================================
# Snapshot
# ============================================================================


@dataclass(frozen=True)
class SnapshotRequest:
    """What an analyzer needs loaded.

    Attributes:
        organization_id: Organization whose records are read.
        start_date: First service date in the analysis window.
        end_date: Last service date in the analysis window.
        as_of: Reference date for aging, pipelines and goal progress.
        include_open_receivables: Also load billed charges with a balance
            regardless of service date.
        appointment_days: Load pending appointments this many days after as_of.
        include_goals: Load the organization's revenue goals.
    """

    organization_id: str
    start_date: date
    end_date: date
    as_of: date
    include_open_receivables: bool = False
    appointment_days: int = 0
    include_goals: bool = False


@dataclass(frozen=True)
class RevenueSnapshot:
    """Read-consistent view of an organization's revenue records."""

    organization_id: str
    start_date: date
    end_date: date
    as_of: date
    charges: tuple[ChargeRecord, ...] = ()
    encounters: tuple[EncounterRecord, ...] = ()
    claims: tuple[ClaimRecord, ...] = ()
    claim_lines: tuple[ClaimLineRecord, ...] = ()
    appointments: tuple[AppointmentRecord, ...] = ()
    open_receivables: tuple[ChargeRecord, ...] = ()
    providers: Mapping[str, ProviderRecord] = field(default_factory=dict)
    payers: Mapping[str, PayerRecord] = field(default_factory=dict)
    fee_schedules: tuple[FeeScheduleRecord, ...] = ()
    goals: tuple[GoalRecord, ...] = ()

    @cached_property
    def charges_by_encounter(self) -> dict[str, list[ChargeRecord]]:
        """Charges grouped by encounter id (unlinked charges omitted)."""
        grouped: dict[str, list[ChargeRecord]] = defaultdict(list)
        for charge in self.charges:
            if charge.encounter_id:
                grouped[charge.encounter_id].append(charge)
        return dict(grouped)

    @cached_property
    def encounters_by_id(self) -> dict[str, EncounterRecord]:
        return {encounter.id: encounter for encounter in self.encounters}

    @property
    def billable_charges(self) -> tuple[ChargeRecord, ...]:
        """Charges that count toward revenue (void lines excluded)."""
        return tuple(c for c in self.charges if c.status != ChargeStatus.VOID)

    @property
    def window_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def payer_name(self, payer_id: str | None) -> str:
        if payer_id and payer_id in self.payers:
            return self.payers[payer_id].name
        return UNKNOWN_PAYER

    def provider_name(self, provider_id: str | None) -> str:
        if provider_id and provider_id in self.providers:
            return self.providers[provider_id].name
        return "Unassigned"

    def payer_type(self, payer_id: str | None) -> PayerType:
        if payer_id and payer_id in self.payers:
            return self.payers[payer_id].payer_type
        return PayerType.OTHER

    def default_fee_schedule(self) -> FeeScheduleRecord | None:
        for schedule in self.fee_schedules:
            if schedule.is_default:
                return schedule
        return None

    def fee_schedule(self, schedule_id: str | None) -> FeeScheduleRecord | None:
        """Fee schedule by id, or the default schedule when id is None."""
        if schedule_id is None:
            return self.default_fee_schedule()
        for schedule in self.fee_schedules:
            if schedule.id == schedule_id:
                return schedule
        return None

    def for_provider(self, provider_id: str | None) -> "RevenueSnapshot":
        """Restrict charges, encounters and appointments to one provider."""
        if provider_id is None:
            return self
        return replace(
            self,
            charges=tuple(c for c in self.charges if c.provider_id == provider_id),
            encounters=tuple(e for e in self.encounters if e.provider_id == provider_id),
            appointments=tuple(a for a in self.appointments if a.provider_id == provider_id),
            open_receivables=tuple(
                c for c in self.open_receivables if c.provider_id == provider_id
            ),
        )

    def for_payer(self, payer_id: str | None) -> "RevenueSnapshot":
        """Restrict charges, encounters, claims and claim lines to one payer.

        Unclaimed charges are kept when their encounter belongs to the payer.
        """
        if payer_id is None:
            return self
        encounters = tuple(e for e in self.encounters if e.payer_id == payer_id)
        encounter_ids = {e.id for e in encounters}
        return replace(
            self,
            charges=tuple(
                c for c in self.charges
                if c.payer_id == payer_id
                or (c.payer_id is None and c.encounter_id in encounter_ids)
            ),
            encounters=encounters,
            claims=tuple(c for c in self.claims if c.payer_id == payer_id),
            claim_lines=tuple(line for line in self.claim_lines if line.payer_id == payer_id),
            open_receivables=tuple(
                c for c in self.open_receivables if c.payer_id == payer_id
            ),
        )

    def between(self, start_date: date, end_date: date) -> "RevenueSnapshot":
        """Narrow the date-bounded records to a sub-window."""
        def inside(record: Any) -> bool:
            return start_date <= record.bucket_date <= end_date

        return replace(
            self,
            start_date=start_date,
            end_date=end_date,
            charges=tuple(filter(inside, self.charges)),
            encounters=tuple(filter(inside, self.encounters)),
            claims=tuple(filter(inside, self.claims)),
            claim_lines=tuple(filter(inside, self.claim_lines)),
        )


# ============================================================================
# Group-by primitive
# ============================================================================


class Dimension(str, Enum):
    """Named grouping dimensions."""

    CODE = "code"
    PAYER = "payer"
    PROVIDER = "provider"
    ENCOUNTER = "encounter"
    MONTH = "month"


_DIMENSION_ATTRIBUTES = {
    Dimension.CODE: "code",
    Dimension.PAYER: "payer_id",
    Dimension.PROVIDER: "provider_id",
    Dimension.ENCOUNTER: "encounter_id",
}


def dimension_key(dimension: Dimension, record: Any) -> Hashable:
    """Key of a record along a named dimension."""
    if dimension == Dimension.MONTH:
        return month_key(record.bucket_date)
    return getattr(record, _DIMENSION_ATTRIBUTES[dimension])


@dataclass
class GroupStats:
    """Count and per-measure sums for one group."""

    key: Hashable
    count: int = 0
    sums: dict[str, Decimal] = field(default_factory=dict)

    def add(self, values: Mapping[str, Any]) -> None:
        self.count += 1
        for name, value in values.items():
            self.sums[name] = self.sums.get(name, ZERO) + to_decimal(value)

    def sum(self, measure: str) -> Decimal:
        return self.sums.get(measure, ZERO)

    def avg(self, measure: str) -> Decimal:
        return safe_div(self.sum(measure), self.count)


Measure = Callable[[Any], Any]
KeyFunction = Callable[[Any], Hashable]


def aggregate(
    records: Iterable[Any],
    by: Dimension | KeyFunction,
    measures: Mapping[str, Measure] | None = None,
    where: Callable[[Any], bool] | None = None,
) -> dict[Hashable, GroupStats]:
    """Group records and accumulate count and named sums per group.

    Args:
        records: Records to group.
        by: A named dimension or a key function. Records whose key is None
            are grouped under None.
        measures: Measure name to value extractor.
        where: Optional record filter applied before grouping.

    Returns:
        Group key to stats, in first-seen key order.

    Example:
        >>> by_code = aggregate(snapshot.charges, Dimension.CODE,
        ...                     {"revenue": lambda c: c.fee, "units": lambda c: c.units})
        >>> by_code["98941"].sum("revenue")
    """
    key_of: KeyFunction = (
        (lambda record: dimension_key(by, record)) if isinstance(by, Dimension) else by
    )
    measures = measures or {}
    groups: dict[Hashable, GroupStats] = {}

    for record in records:
        if where is not None and not where(record):
            continue
        key = key_of(record)
        stats = groups.get(key)
        if stats is None:
            stats = groups[key] = GroupStats(key=key)
        stats.add({name: measure(record) for name, measure in measures.items()})

    return groups


# ============================================================================
# Calendar helpers
# ============================================================================


def month_key(value: date) -> str:
    """Month bucket key, e.g. ``2024-03``."""
    return f"{value.year:04d}-{value.month:02d}"


def month_start(value: date) -> date:
    return value.replace(day=1)


def add_months(value: date, months: int) -> date:
    """First day of the month ``months`` after the month of ``value``."""
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_end(value: date) -> date:
    return add_months(value, 1) - timedelta(days=1)


def month_keys(start: date, end: date) -> list[str]:
    """Keys of every calendar month touched by the inclusive range."""
    keys = []
    current = month_start(start)
    while current <= end:
        keys.append(month_key(current))
        current = add_months(current, 1)
    return keys


def days_ago(as_of: date, days: int) -> date:
    return as_of - timedelta(days=days)


# ============================================================================
# Data sources
# ============================================================================


class RevenueDataSource(ABC):
    """Loads read-consistent snapshots for analyzers."""

    @abstractmethod
    def load_snapshot(self, request: SnapshotRequest) -> RevenueSnapshot:
        """Load every record an analysis run needs.

        Args:
            request: Organization, window and optional record groups.

        Returns:
            Snapshot scoped to the request.
        """


class InMemoryRevenueDataSource(RevenueDataSource):
    """Data source over records held in memory.

    Applies the same windowing rules as the database source, which makes it
    suitable for tests and for replaying exported data.

    Usage:
        source = InMemoryRevenueDataSource(charges=[...], encounters=[...])
        snapshot = source.load_snapshot(request)
    """

    def __init__(
        self,
        charges: Iterable[ChargeRecord] = (),
        encounters: Iterable[EncounterRecord] = (),
        claims: Iterable[ClaimRecord] = (),
        claim_lines: Iterable[ClaimLineRecord] = (),
        appointments: Iterable[AppointmentRecord] = (),
        providers: Iterable[ProviderRecord] = (),
        payers: Iterable[PayerRecord] = (),
        fee_schedules: Iterable[FeeScheduleRecord] = (),
        goals: Iterable[GoalRecord] = (),
    ) -> None:
        self._charges = tuple(charges)
        self._encounters = tuple(encounters)
        self._claims = tuple(claims)
        self._claim_lines = tuple(claim_lines)
        self._appointments = tuple(appointments)
        self._providers = {p.id: p for p in providers}
        self._payers = {p.id: p for p in payers}
        self._fee_schedules = tuple(fee_schedules)
        self._goals = tuple(goals)

    def load_snapshot(self, request: SnapshotRequest) -> RevenueSnapshot:
        def inside(record: Any) -> bool:
            return request.start_date <= record.bucket_date <= request.end_date

        open_receivables: tuple[ChargeRecord, ...] = ()
        if request.include_open_receivables:
            open_receivables = tuple(
                c for c in self._charges
                if c.status == ChargeStatus.BILLED
                and c.balance > ZERO
                and c.service_date <= request.as_of
            )

        appointments: tuple[AppointmentRecord, ...] = ()
        if request.appointment_days:
            horizon = request.as_of + timedelta(days=request.appointment_days)
            appointments = tuple(
                a for a in self._appointments
                if a.is_pending and request.as_of <= a.bucket_date <= horizon
            )

        return RevenueSnapshot(
            organization_id=request.organization_id,
            start_date=request.start_date,
            end_date=request.end_date,
            as_of=request.as_of,
            charges=tuple(filter(inside, self._charges)),
            encounters=tuple(filter(inside, self._encounters)),
            claims=tuple(filter(inside, self._claims)),
            claim_lines=tuple(filter(inside, self._claim_lines)),
            appointments=appointments,
            open_receivables=open_receivables,
            providers=dict(self._providers),
            payers=dict(self._payers),
            fee_schedules=self._fee_schedules,
            goals=self._goals if request.include_goals else (),
        )
