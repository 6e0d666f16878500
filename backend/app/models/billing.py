"""SQLAlchemy models for the practice's billing and scheduling records.

These tables are owned by the billing, scheduling and documentation
systems. The revenue engine only reads them, except for FeeScheduleItem,
which the fee implementation workflow updates.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.columns import JSONType, Money, enum_column
from app.schemas.base import (
    AppointmentStatus,
    ChargeStatus,
    ClaimStatus,
    EncounterStatus,
    EncounterType,
    PayerType,
)


class Provider(Base):
    """Billing clinician."""

    __tablename__ = "providers"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    npi: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, name={self.name})>"


class Payer(Base):
    """Insurance company or other paying party."""

    __tablename__ = "payers"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    payer_type: Mapped[PayerType] = mapped_column(
        enum_column(PayerType, "payer_type"),
        nullable=False,
        default=PayerType.COMMERCIAL,
    )

    def __repr__(self) -> str:
        return f"<Payer(id={self.id}, name={self.name}, payer_type={self.payer_type})>"


class Encounter(Base):
    """Patient visit.

    A completed encounter with no charges is a revenue leakage signal.
    """

    __tablename__ = "encounters"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    patient_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    provider_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("providers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    payer_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("payers.id", ondelete="SET NULL"),
        nullable=True,
    )
    encounter_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    encounter_type: Mapped[EncounterType] = mapped_column(
        enum_column(EncounterType, "encounter_type"),
        nullable=False,
        default=EncounterType.TREATMENT,
    )
    status: Mapped[EncounterStatus] = mapped_column(
        enum_column(EncounterStatus, "encounter_status"),
        nullable=False,
        default=EncounterStatus.SCHEDULED,
        index=True,
    )
    diagnosis_codes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    has_note: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    charges: Mapped[list["Charge"]] = relationship(back_populates="encounter")

    def __repr__(self) -> str:
        return f"<Encounter(id={self.id}, date={self.encounter_date}, status={self.status})>"


class Charge(Base):
    """Billed procedure line. ``fee`` is the line amount."""

    __tablename__ = "charges"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    patient_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    encounter_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("encounters.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    provider_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("providers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    cpt_code: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    service_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    units: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    modifiers: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    adjustments: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    status: Mapped[ChargeStatus] = mapped_column(
        enum_column(ChargeStatus, "charge_status"),
        nullable=False,
        default=ChargeStatus.PENDING,
        index=True,
    )

    encounter: Mapped[Encounter | None] = relationship(back_populates="charges")
    claim_lines: Mapped[list["ClaimLine"]] = relationship(back_populates="charge")

    def __repr__(self) -> str:
        return f"<Charge(id={self.id}, cpt_code={self.cpt_code}, fee={self.fee}, status={self.status})>"


class Claim(Base):
    """Claim submitted to a payer."""

    __tablename__ = "claims"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payer_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("payers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[ClaimStatus] = mapped_column(
        enum_column(ClaimStatus, "claim_status"),
        nullable=False,
        default=ClaimStatus.SUBMITTED,
        index=True,
    )
    submitted_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_charged: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_allowed: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_paid: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    lines: Mapped[list["ClaimLine"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Claim(id={self.id}, payer_id={self.payer_id}, status={self.status})>"


class ClaimLine(Base):
    """Procedure line on a claim with payer-specific amounts."""

    __tablename__ = "claim_lines"

    claim_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    charge_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("charges.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    cpt_code: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    units: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    modifiers: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    charged_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    allowed_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    claim: Mapped[Claim] = relationship(back_populates="lines")
    charge: Mapped[Charge | None] = relationship(back_populates="claim_lines")

    def __repr__(self) -> str:
        return f"<ClaimLine(id={self.id}, cpt_code={self.cpt_code}, paid={self.paid_amount})>"


class FeeSchedule(Base):
    """Practice fee schedule."""

    __tablename__ = "fee_schedules"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    items: Mapped[list["FeeScheduleItem"]] = relationship(
        back_populates="fee_schedule",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<FeeSchedule(id={self.id}, name={self.name}, is_default={self.is_default})>"


class FeeScheduleItem(Base):
    """Fee for one code in a fee schedule."""

    __tablename__ = "fee_schedule_items"

    fee_schedule_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("fee_schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cpt_code: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    fee_schedule: Mapped[FeeSchedule] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<FeeScheduleItem(cpt_code={self.cpt_code}, fee={self.fee})>"


class Appointment(Base):
    """Scheduled patient appointment."""

    __tablename__ = "appointments"

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    patient_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("providers.id", ondelete="SET NULL"),
        nullable=True,
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[AppointmentStatus] = mapped_column(
        enum_column(AppointmentStatus, "appointment_status"),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, start_time={self.start_time}, status={self.status})>"
