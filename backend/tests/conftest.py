"""Pytest configuration and fixtures for backend tests."""

from collections.abc import AsyncGenerator, Generator
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.core.database import Base, get_db
from app.main import app
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
from app.schemas.base import (
    AppointmentStatus,
    ChargeStatus,
    ClaimStatus,
    EncounterStatus,
    EncounterType,
    PayerType,
)
from app.services.coding_optimizer import reset_coding_optimizer
from app.services.contract_analyzer import reset_contract_analyzer
from app.services.fee_optimizer import reset_fee_optimizer
from app.services.leakage_detector import reset_leakage_detector
from app.services.revenue_forecaster import reset_revenue_forecaster
from app.services.service_mix import reset_service_mix_analyzer

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"
USER_ID = "user-1"
ORG_HEADERS = {"X-Organization-ID": ORG_ID, "X-User-ID": USER_ID}


def _enable_savepoints(sync_engine: Engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works under pysqlite."""

    @event.listens_for(sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def _sqlite_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


@pytest.fixture(autouse=True)
def reset_analyzer_singletons() -> Generator[None, None, None]:
    """Reset analyzer singletons between tests."""
    yield
    reset_leakage_detector()
    reset_fee_optimizer()
    reset_service_mix_analyzer()
    reset_coding_optimizer()
    reset_contract_analyzer()
    reset_revenue_forecaster()


@pytest.fixture
def database_file(tmp_path: Path) -> Path:
    """SQLite file shared by the sync test session and the async API engine."""
    return tmp_path / "revenue.db"


@pytest.fixture
def sync_engine(database_file: Path) -> Generator[Engine, None, None]:
    """Sync engine with every revenue table created."""
    engine = create_engine(f"sqlite:///{database_file}", future=True)
    _enable_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(sync_engine: Engine) -> Generator[Session, None, None]:
    """Create a database session with every revenue table."""
    session = Session(sync_engine, expire_on_commit=False, autoflush=False)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
async def async_engine(sync_engine: Engine, database_file: Path) -> AsyncGenerator[AsyncEngine, None]:
    """aiosqlite engine over the same database file, as the API uses it."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{database_file}", future=True)
    _enable_savepoints(engine.sync_engine)
    yield engine
    await engine.dispose()


class BillingSeeder:
    """Writes billing records for database-backed tests.

    Every method adds and flushes one row and returns it.
    """

    def __init__(self, session: Session, organization_id: str = ORG_ID) -> None:
        self.session = session
        self.organization_id = organization_id

    def _add(self, row):
        self.session.add(row)
        self.session.flush()
        return row

    def provider(self, name: str = "Dr. Adams", organization_id: str | None = None) -> Provider:
        return self._add(Provider(
            organization_id=organization_id or self.organization_id,
            name=name,
        ))

    def payer(
        self,
        name: str = "Acme Health",
        payer_type: PayerType = PayerType.COMMERCIAL,
        organization_id: str | None = None,
    ) -> Payer:
        return self._add(Payer(
            organization_id=organization_id or self.organization_id,
            name=name,
            payer_type=payer_type,
        ))

    def encounter(
        self,
        encounter_date: date,
        provider: Provider | None = None,
        payer: Payer | None = None,
        status: EncounterStatus = EncounterStatus.COMPLETED,
        encounter_type: EncounterType = EncounterType.TREATMENT,
        diagnosis_codes: list[str] | None = None,
        has_note: bool = True,
        organization_id: str | None = None,
    ) -> Encounter:
        return self._add(Encounter(
            organization_id=organization_id or self.organization_id,
            patient_id="patient-1",
            provider_id=provider.id if provider else None,
            payer_id=payer.id if payer else None,
            encounter_date=encounter_date,
            encounter_type=encounter_type,
            status=status,
            diagnosis_codes=diagnosis_codes or [],
            has_note=has_note,
        ))

    def charge(
        self,
        cpt_code: str,
        service_date: date,
        fee: str | Decimal,
        encounter: Encounter | None = None,
        provider: Provider | None = None,
        units: int = 1,
        modifiers: list[str] | None = None,
        adjustments: str | Decimal = "0",
        balance: str | Decimal = "0",
        status: ChargeStatus = ChargeStatus.BILLED,
        organization_id: str | None = None,
    ) -> Charge:
        return self._add(Charge(
            organization_id=organization_id or self.organization_id,
            patient_id="patient-1",
            encounter_id=encounter.id if encounter else None,
            provider_id=provider.id if provider else None,
            cpt_code=cpt_code,
            service_date=service_date,
            fee=Decimal(fee),
            units=units,
            modifiers=modifiers or [],
            adjustments=Decimal(adjustments),
            balance=Decimal(balance),
            status=status,
        ))

    def claim(
        self,
        payer: Payer,
        submitted_date: date,
        charges: list[Charge],
        paid_per_line: str | Decimal = "0",
        status: ClaimStatus = ClaimStatus.PAID,
        paid_date: date | None = None,
    ) -> Claim:
        paid = Decimal(paid_per_line)
        claim = Claim(
            organization_id=self.organization_id,
            payer_id=payer.id,
            status=status,
            submitted_date=submitted_date,
            paid_date=paid_date,
            total_charged=sum((c.fee for c in charges), Decimal("0")),
            total_allowed=paid * len(charges),
            total_paid=paid * len(charges),
        )
        for charge in charges:
            claim.lines.append(ClaimLine(
                charge_id=charge.id,
                cpt_code=charge.cpt_code,
                units=charge.units,
                charged_amount=charge.fee,
                allowed_amount=paid,
                paid_amount=paid,
            ))
        return self._add(claim)

    def fee_schedule(
        self,
        items: dict[str, str] | None = None,
        name: str = "Standard",
        is_default: bool = True,
        organization_id: str | None = None,
    ) -> FeeSchedule:
        schedule = FeeSchedule(
            organization_id=organization_id or self.organization_id,
            name=name,
            is_default=is_default,
        )
        for code, fee in (items or {}).items():
            schedule.items.append(FeeScheduleItem(cpt_code=code, fee=Decimal(fee)))
        return self._add(schedule)

    def appointment(
        self,
        start_time: datetime,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        provider: Provider | None = None,
    ) -> Appointment:
        return self._add(Appointment(
            organization_id=self.organization_id,
            patient_id="patient-1",
            provider_id=provider.id if provider else None,
            start_time=start_time,
            status=status,
        ))


@pytest.fixture
def billing(db_session: Session) -> BillingSeeder:
    """Seeder for billing records in the test database."""
    return BillingSeeder(db_session)


@pytest.fixture
def mock_enqueue_job() -> MagicMock:
    """Create a mock enqueue_job function.

    Returns a mock that can be used to verify job enqueueing.
    """
    mock_job = MagicMock()
    mock_job.id = "mock-job-id"
    return MagicMock(return_value=mock_job)


@pytest.fixture
async def client(db_session: Session, async_engine: AsyncEngine) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client backed by the SQLite test database.

    Each request commits ``db_session`` first so seeded rows are visible to
    the API's async session, and expires it afterwards so the test reads
    what the request wrote. Requests carry the organization and user
    headers; pass explicit headers to override them.
    """
    session_maker = async_sessionmaker(async_engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        db_session.commit()
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        db_session.expire_all()

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=ORG_HEADERS,
    ) as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()


@pytest.fixture
async def bare_client() -> AsyncGenerator[AsyncClient, None]:
    """Create async test client without database or organization headers.

    Use this for endpoints that don't require database access.
    """
    with patch("app.main.ping_redis", return_value=False):
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
