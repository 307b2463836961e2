"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import date, datetime, timedelta
from typing import List, Optional

# Set up test environment variables before importing modules
os.environ.setdefault("CRON_SECRET", "test_cron_secret_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ARREARS_PROCESS_RATE_LIMIT", "1000/minute")
os.environ.pop("NOTIFICATION_DISPATCH_URL", None)

from arrears_reconciler.database import (
    Base,
    Profile,
    ProfileRole,
    Property,
    RentSchedule,
    Tenancy,
    TenancyStatus,
    TenancyTenant,
    create_async_engine,
    get_async_session_factory,
    session_scope,
)
from arrears_reconciler.exceptions import NotificationDispatchError
from arrears_reconciler.reconciliation import (
    ArrearsReconciliationService,
    Notification,
    NotifierBase,
)

TODAY = date(2024, 3, 15)
NOW = datetime(2024, 3, 15, 6, 0, 0)


class RecordingNotifier(NotifierBase):
    """Notifier that keeps sent notifications in memory."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Notification] = []

    async def send(self, notification: Notification) -> None:
        if self.fail:
            raise NotificationDispatchError("dispatch endpoint unavailable")
        self.sent.append(notification)


class Seeder:
    """Creates tenancies, tenants and rent schedules for tests."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def tenancy(
        self,
        status: str = TenancyStatus.ACTIVE.value,
        tenant_name: Optional[str] = "Alex Tenant",
        with_tenant: bool = True,
        address: str = "12 Smith St",
    ) -> Tenancy:
        async with session_scope(self.session_factory) as session:
            owner = Profile(full_name="Olive Owner", role=ProfileRole.OWNER.value)
            session.add(owner)
            await session.flush()

            prop = Property(
                owner_id=owner.id,
                address_line_1=address,
                suburb="Fitzroy",
                state="VIC",
                postcode="3065",
            )
            session.add(prop)
            await session.flush()

            tenancy = Tenancy(property_id=prop.id, status=status)
            session.add(tenancy)
            await session.flush()

            if with_tenant:
                tenant = Profile(full_name=tenant_name, role=ProfileRole.TENANT.value)
                session.add(tenant)
                await session.flush()
                session.add(TenancyTenant(tenancy_id=tenancy.id, tenant_id=tenant.id, is_primary=True))
                await session.flush()
        return tenancy

    async def rent(
        self,
        tenancy_id: str,
        days_ago: int,
        amount: int,
        is_paid: bool = False,
    ) -> RentSchedule:
        async with session_scope(self.session_factory) as session:
            schedule = RentSchedule(
                tenancy_id=tenancy_id,
                due_date=TODAY - timedelta(days=days_ago),
                amount=amount,
                is_paid=is_paid,
            )
            session.add(schedule)
        return schedule

    async def pay_all(self, tenancy_id: str) -> None:
        from sqlalchemy import update

        async with session_scope(self.session_factory) as session:
            await session.execute(
                update(RentSchedule)
                .where(RentSchedule.tenancy_id == tenancy_id)
                .values(is_paid=True, paid_at=NOW)
            )

    async def set_status(self, tenancy_id: str, status: str) -> None:
        async with session_scope(self.session_factory) as session:
            tenancy = await session.get(Tenancy, tenancy_id)
            tenancy.status = status

    async def admin(self, token: str) -> Profile:
        from arrears_reconciler.database import ProfileRepository

        async with session_scope(self.session_factory) as session:
            profile = Profile(
                full_name="Ada Admin",
                role=ProfileRole.ADMIN.value,
                api_token_hash=ProfileRepository.compute_token_hash(token),
            )
            session.add(profile)
        return profile


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine."""
    return get_async_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory):
    """Helper for inserting test data."""
    return Seeder(session_factory)


@pytest.fixture
def notifier():
    """Notifier recording what would have been sent."""
    return RecordingNotifier()


@pytest.fixture
def service(session_factory, notifier):
    """Reconciliation service with a fixed clock."""
    return ArrearsReconciliationService(
        session_factory,
        notifier=notifier,
        clock=lambda: NOW,
        run_timeout=30,
        lease_ttl=60,
    )


@pytest.fixture
def failing_notifier():
    """Notifier whose every delivery fails."""
    return RecordingNotifier(fail=True)
