"""Database-backed revenue data source.

Loads a RevenueSnapshot from the billing tables in one session so every
analyzer in a run sees the same records.
"""

import logging
from datetime import datetime, time, timedelta
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.models.billing import (
    Appointment,
    Charge,
    Claim,
    ClaimLine,
    Encounter,
    FeeSchedule,
    Payer,
    Provider,
)
from app.models.ledger import RevenueGoal
from app.schemas.base import AppointmentStatus, ChargeStatus
from app.services.aggregation import (
    AppointmentRecord,
    ChargeRecord,
    ClaimLineRecord,
    ClaimRecord,
    EncounterRecord,
    FeeScheduleRecord,
    GoalRecord,
    PayerRecord,
    ProviderRecord,
    RevenueDataSource,
    RevenueSnapshot,
    SnapshotRequest,
)
from app.services.scoring import ZERO, to_decimal

logger = logging.getLogger(__name__)

# Keeps IN lists under SQLite's bound parameter limit
_IN_CHUNK_SIZE = 500


class DatabaseRevenueDataSource(RevenueDataSource):
    """Revenue data source backed by the billing tables.

    Usage:
        source = DatabaseRevenueDataSource(session)
        snapshot = source.load_snapshot(SnapshotRequest(...))
    """

    def __init__(self, session: Session) -> None:
        """Initialize the data source.

        Args:
            session: SQLAlchemy database session.
        """
        self._session = session

    def load_snapshot(self, request: SnapshotRequest) -> RevenueSnapshot:
        org_id = request.organization_id

        charges = self._load_charges(
            select(Charge)
            .where(Charge.organization_id == org_id)
            .where(Charge.service_date >= request.start_date)
            .where(Charge.service_date <= request.end_date)
        )

        open_receivables: list[ChargeRecord] = []
        if request.include_open_receivables:
            open_receivables = self._load_charges(
                select(Charge)
                .where(Charge.organization_id == org_id)
                .where(Charge.status == ChargeStatus.BILLED)
                .where(Charge.balance > 0)
                .where(Charge.service_date <= request.as_of)
            )

        snapshot = RevenueSnapshot(
            organization_id=org_id,
            start_date=request.start_date,
            end_date=request.end_date,
            as_of=request.as_of,
            charges=tuple(charges),
            encounters=tuple(self._load_encounters(request)),
            claims=tuple(self._load_claims(request)),
            claim_lines=tuple(self._load_claim_lines(request)),
            appointments=tuple(self._load_appointments(request)),
            open_receivables=tuple(open_receivables),
            providers=self._load_providers(org_id),
            payers=self._load_payers(org_id),
            fee_schedules=tuple(self._load_fee_schedules(org_id)),
            goals=tuple(self._load_goals(org_id)) if request.include_goals else (),
        )

        logger.debug(
            "Loaded snapshot for %s (%s to %s): %d charges, %d encounters, %d claims",
            org_id,
            request.start_date,
            request.end_date,
            len(snapshot.charges),
            len(snapshot.encounters),
            len(snapshot.claims),
        )
        return snapshot

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------

    def _load_charges(self, stmt) -> list[ChargeRecord]:
        rows = list(self._session.execute(stmt).scalars())
        claim_info = self._claim_info_for([row.id for row in rows])
        records = []
        for row in rows:
            payer_id, claim_id, paid, allowed = claim_info.get(row.id, (None, None, ZERO, None))
            records.append(
                ChargeRecord(
                    id=row.id,
                    code=row.cpt_code,
                    service_date=row.service_date,
                    fee=to_decimal(row.fee),
                    units=row.units or 1,
                    modifiers=frozenset(row.modifiers or ()),
                    adjustments=to_decimal(row.adjustments),
                    balance=to_decimal(row.balance),
                    status=row.status,
                    provider_id=row.provider_id,
                    encounter_id=row.encounter_id,
                    payer_id=payer_id,
                    claim_id=claim_id,
                    paid_amount=paid,
                    allowed_amount=allowed,
                )
            )
        return records

    def _claim_info_for(self, charge_ids: list[str]) -> dict[str, tuple]:
        """Payer, claim and reimbursement for each charge's first claim line."""
        info: dict[str, tuple] = {}
        for chunk in _chunks(charge_ids, _IN_CHUNK_SIZE):
            stmt = (
                select(
                    ClaimLine.charge_id,
                    Claim.payer_id,
                    Claim.id,
                    ClaimLine.paid_amount,
                    ClaimLine.allowed_amount,
                )
                .join(Claim, ClaimLine.claim_id == Claim.id)
                .where(ClaimLine.charge_id.in_(chunk))
                .order_by(Claim.submitted_date)
            )
            for charge_id, payer_id, claim_id, paid, allowed in self._session.execute(stmt):
                info.setdefault(
                    charge_id,
                    (payer_id, claim_id, to_decimal(paid), to_decimal(allowed)),
                )
        return info

    def _load_encounters(self, request: SnapshotRequest) -> Iterable[EncounterRecord]:
        stmt = (
            select(Encounter)
            .where(Encounter.organization_id == request.organization_id)
            .where(Encounter.encounter_date >= request.start_date)
            .where(Encounter.encounter_date <= request.end_date)
        )
        for row in self._session.execute(stmt).scalars():
            yield EncounterRecord(
                id=row.id,
                encounter_date=row.encounter_date,
                encounter_type=row.encounter_type,
                status=row.status,
                provider_id=row.provider_id,
                payer_id=row.payer_id,
                diagnosis_codes=tuple(row.diagnosis_codes or ()),
                has_note=bool(row.has_note),
            )

    def _load_claims(self, request: SnapshotRequest) -> Iterable[ClaimRecord]:
        stmt = (
            select(Claim)
            .where(Claim.organization_id == request.organization_id)
            .where(Claim.submitted_date >= request.start_date)
            .where(Claim.submitted_date <= request.end_date)
        )
        for row in self._session.execute(stmt).scalars():
            yield ClaimRecord(
                id=row.id,
                payer_id=row.payer_id,
                status=row.status,
                submitted_date=row.submitted_date,
                total_charged=to_decimal(row.total_charged),
                total_allowed=to_decimal(row.total_allowed),
                total_paid=to_decimal(row.total_paid),
                paid_date=row.paid_date,
            )

    def _load_claim_lines(self, request: SnapshotRequest) -> Iterable[ClaimLineRecord]:
        service_date = func.coalesce(Charge.service_date, Claim.submitted_date)
        stmt = (
            select(ClaimLine, Claim.payer_id, Claim.status, service_date)
            .join(Claim, ClaimLine.claim_id == Claim.id)
            .outerjoin(Charge, ClaimLine.charge_id == Charge.id)
            .where(Claim.organization_id == request.organization_id)
            .where(service_date >= request.start_date)
            .where(service_date <= request.end_date)
        )
        for line, payer_id, claim_status, line_date in self._session.execute(stmt):
            yield ClaimLineRecord(
                id=line.id,
                claim_id=line.claim_id,
                payer_id=payer_id,
                code=line.cpt_code,
                service_date=_as_date(line_date),
                claim_status=claim_status,
                units=line.units or 1,
                modifiers=frozenset(line.modifiers or ()),
                charged=to_decimal(line.charged_amount),
                allowed=to_decimal(line.allowed_amount),
                paid=to_decimal(line.paid_amount),
                charge_id=line.charge_id,
            )

    def _load_appointments(self, request: SnapshotRequest) -> Iterable[AppointmentRecord]:
        if not request.appointment_days:
            return
        window_start = datetime.combine(request.as_of, time.min)
        window_end = datetime.combine(
            request.as_of + timedelta(days=request.appointment_days), time.max
        )
        stmt = (
            select(Appointment)
            .where(Appointment.organization_id == request.organization_id)
            .where(Appointment.start_time >= window_start)
            .where(Appointment.start_time <= window_end)
            .where(
                Appointment.status.in_(
                    [AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED]
                )
            )
        )
        for row in self._session.execute(stmt).scalars():
            yield AppointmentRecord(
                id=row.id,
                start=row.start_time,
                status=row.status,
                provider_id=row.provider_id,
            )

    def _load_providers(self, organization_id: str) -> dict[str, ProviderRecord]:
        stmt = select(Provider).where(Provider.organization_id == organization_id)
        return {
            row.id: ProviderRecord(id=row.id, name=row.name)
            for row in self._session.execute(stmt).scalars()
        }

    def _load_payers(self, organization_id: str) -> dict[str, PayerRecord]:
        stmt = select(Payer).where(Payer.organization_id == organization_id)
        return {
            row.id: PayerRecord(id=row.id, name=row.name, payer_type=row.payer_type)
            for row in self._session.execute(stmt).scalars()
        }

    def _load_fee_schedules(self, organization_id: str) -> Iterable[FeeScheduleRecord]:
        stmt = (
            select(FeeSchedule)
            .where(FeeSchedule.organization_id == organization_id)
            .options(selectinload(FeeSchedule.items))
        )
        for row in self._session.execute(stmt).scalars():
            yield FeeScheduleRecord(
                id=row.id,
                name=row.name,
                is_default=bool(row.is_default),
                items={item.cpt_code: to_decimal(item.fee) for item in row.items},
            )

    def _load_goals(self, organization_id: str) -> Iterable[GoalRecord]:
        stmt = (
            select(RevenueGoal)
            .where(RevenueGoal.organization_id == organization_id)
            .where(RevenueGoal.is_active.is_(True))
        )
        for row in self._session.execute(stmt).scalars():
            yield GoalRecord(
                id=row.id,
                name=row.name,
                period_type=row.period_type,
                period_start=row.period_start,
                period_end=row.period_end,
                target_amount=to_decimal(row.target_amount),
                is_active=row.is_active,
            )


def _chunks(items: list, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _as_date(value):
    """Coalesced dates come back as strings on SQLite."""
    if isinstance(value, str):
        return datetime.strptime(value[:10], "%Y-%m-%d").date()
    if isinstance(value, datetime):
        return value.date()
    return value
