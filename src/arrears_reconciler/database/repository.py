"""Repository layer for tenancy, rent schedule and arrears persistence."""

import hashlib
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List, Iterable, Tuple

from sqlalchemy import select, update, delete, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ArrearsAction,
    ArrearsRecord,
    Profile,
    Property,
    ReconcilerLease,
    RentSchedule,
    Tenancy,
    TenancyStatus,
    TenancyTenant,
)

logger = logging.getLogger(__name__)


class RentScheduleRepository:
    """Read-only queries over rent schedules and their tenancies."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def list_overdue(
        self,
        today: date,
        tenancy_status: str = TenancyStatus.ACTIVE.value,
    ) -> List[Tuple[RentSchedule, str]]:
        """List unpaid rent schedules due before today.

        Args:
            today: Reference date; schedules due strictly before it are overdue.
            tenancy_status: Only schedules of tenancies in this status are returned.

        Returns:
            List of (RentSchedule, tenancy status) pairs ordered by tenancy and due date.
        """
        result = await self.session.execute(
            select(RentSchedule, Tenancy.status)
            .join(Tenancy, Tenancy.id == RentSchedule.tenancy_id)
            .where(
                and_(
                    RentSchedule.is_paid.is_(False),
                    RentSchedule.due_date < today,
                    Tenancy.status == tenancy_status,
                )
            )
            .order_by(RentSchedule.tenancy_id, RentSchedule.due_date)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def get_primary_tenant_ids(self, tenancy_ids: Iterable[str]) -> Dict[str, str]:
        """Map each tenancy to its primary tenant.

        The primary tenant is the row flagged is_primary, falling back to the
        earliest linked tenant. Tenancies without tenants are absent.
        """
        ids = list(set(tenancy_ids))
        if not ids:
            return {}

        result = await self.session.execute(
            select(TenancyTenant)
            .where(TenancyTenant.tenancy_id.in_(ids))
            .order_by(
                TenancyTenant.tenancy_id,
                TenancyTenant.is_primary.desc(),
                TenancyTenant.created_at,
            )
        )
        tenants: Dict[str, str] = {}
        for link in result.scalars().all():
            tenants.setdefault(link.tenancy_id, link.tenant_id)
        return tenants

    async def has_overdue(self, tenancy_id: str, today: date) -> bool:
        """Check whether a tenancy still has unpaid schedules due before today.

        Unlike list_overdue this ignores the tenancy's status.
        """
        result = await self.session.execute(
            select(RentSchedule.id)
            .where(
                and_(
                    RentSchedule.tenancy_id == tenancy_id,
                    RentSchedule.is_paid.is_(False),
                    RentSchedule.due_date < today,
                )
            )
            .limit(1)
        )
        return result.first() is not None


class TenancyRepository:
    """Lookups of tenancies together with their property."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_property(self, tenancy_id: str) -> Optional[Property]:
        """Get the property a tenancy belongs to."""
        result = await self.session.execute(
            select(Property)
            .join(Tenancy, Tenancy.property_id == Property.id)
            .where(Tenancy.id == tenancy_id)
        )
        return result.scalar_one_or_none()


class ProfileRepository:
    """Lookups of user profiles."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def compute_token_hash(token: str) -> str:
        """Compute the stored hash of a bearer token.

        Args:
            token: Raw bearer token.

        Returns:
            SHA256 hex digest of the token.
        """
        return hashlib.sha256(token.encode()).hexdigest()

    async def get_by_id(self, profile_id: str) -> Optional[Profile]:
        """Get a profile by its ID."""
        return await self.session.get(Profile, profile_id)

    async def get_by_token(self, token: str) -> Optional[Profile]:
        """Get the profile authenticated by a bearer token.

        Args:
            token: Raw bearer token from the Authorization header.

        Returns:
            Profile instance if the token is known, None otherwise.
        """
        result = await self.session.execute(
            select(Profile).where(Profile.api_token_hash == self.compute_token_hash(token))
        )
        return result.scalar_one_or_none()


class ArrearsRecordRepository:
    """Repository for ArrearsRecord operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def get_by_id(self, record_id: str) -> Optional[ArrearsRecord]:
        """Get an arrears record by its ID."""
        return await self.session.get(ArrearsRecord, record_id)

    async def get_open_for_tenancy(self, tenancy_id: str) -> Optional[ArrearsRecord]:
        """Get the unresolved arrears record of a tenancy.

        Args:
            tenancy_id: Tenancy ID.

        Returns:
            The open ArrearsRecord if any, None otherwise.

        Raises:
            MultipleResultsFound: If the tenancy has more than one open record.
        """
        result = await self.session.execute(
            select(ArrearsRecord).where(
                and_(
                    ArrearsRecord.tenancy_id == tenancy_id,
                    ArrearsRecord.is_resolved.is_(False),
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_open(self) -> List[ArrearsRecord]:
        """List every unresolved arrears record, oldest first."""
        result = await self.session.execute(
            select(ArrearsRecord)
            .where(ArrearsRecord.is_resolved.is_(False))
            .order_by(ArrearsRecord.created_at)
        )
        return list(result.scalars().all())

    async def list_for_tenancy(self, tenancy_id: str) -> List[ArrearsRecord]:
        """List all arrears records of a tenancy, resolved ones included."""
        result = await self.session.execute(
            select(ArrearsRecord)
            .where(ArrearsRecord.tenancy_id == tenancy_id)
            .order_by(ArrearsRecord.created_at)
        )
        return list(result.scalars().all())

    async def create(
        self,
        tenancy_id: str,
        tenant_id: str,
        first_overdue_date: date,
        total_overdue: Decimal,
        days_overdue: int,
    ) -> ArrearsRecord:
        """Open a new arrears record.

        Args:
            tenancy_id: Tenancy in arrears.
            tenant_id: Primary tenant of the tenancy.
            first_overdue_date: Due date of the oldest unpaid rent.
            total_overdue: Total overdue in currency units.
            days_overdue: Days since first_overdue_date.

        Returns:
            Created ArrearsRecord instance.
        """
        record = ArrearsRecord(
            tenancy_id=tenancy_id,
            tenant_id=tenant_id,
            first_overdue_date=first_overdue_date,
            total_overdue=total_overdue,
            days_overdue=days_overdue,
            is_resolved=False,
        )
        self.session.add(record)
        await self.session.flush()

        logger.info(f"Created arrears record {record.id} for tenancy {tenancy_id}")
        return record

    async def update_totals(
        self,
        record: ArrearsRecord,
        total_overdue: Decimal,
        days_overdue: int,
        now: datetime,
    ) -> ArrearsRecord:
        """Refresh the overdue total and age of an open record.

        first_overdue_date is left untouched.
        """
        record.total_overdue = total_overdue
        record.days_overdue = days_overdue
        record.updated_at = now
        await self.session.flush()
        logger.debug(f"Updated arrears record {record.id}: {total_overdue} over {days_overdue} days")
        return record

    async def resolve(
        self,
        record: ArrearsRecord,
        reason: str,
        now: datetime,
    ) -> ArrearsRecord:
        """Mark an arrears record resolved. Resolution is terminal."""
        if record.is_resolved:
            raise ValueError(f"Arrears record {record.id} is already resolved")
        record.is_resolved = True
        record.resolved_at = now
        record.resolved_reason = reason
        record.updated_at = now
        await self.session.flush()
        logger.info(f"Resolved arrears record {record.id}: {reason}")
        return record


class ArrearsActionRepository:
    """Repository for the append-only arrears audit log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        arrears_record_id: str,
        action_type: str,
        description: str,
        is_automated: bool = False,
        performed_by: Optional[str] = None,
        action_metadata: Optional[Dict[str, Any]] = None,
    ) -> ArrearsAction:
        """Append an audit entry.

        Args:
            arrears_record_id: Record the action relates to.
            action_type: One of ArrearsActionType values.
            description: Human readable description.
            is_automated: True when performed by a system process.
            performed_by: Profile that performed the action, if any.
            action_metadata: Additional metadata for this action.

        Returns:
            Created ArrearsAction instance.
        """
        action = ArrearsAction(
            arrears_record_id=arrears_record_id,
            action_type=action_type,
            description=description,
            is_automated=is_automated,
            performed_by=performed_by,
        )
        if action_metadata:
            action.action_metadata = action_metadata

        self.session.add(action)
        await self.session.flush()

        logger.debug(f"Logged {action_type} action for arrears record {arrears_record_id}")
        return action

    async def list_for_record(self, arrears_record_id: str) -> List[ArrearsAction]:
        """List audit entries for a record, newest first."""
        result = await self.session.execute(
            select(ArrearsAction)
            .where(ArrearsAction.arrears_record_id == arrears_record_id)
            .order_by(ArrearsAction.created_at.desc())
        )
        return list(result.scalars().all())


class RunLeaseRepository:
    """Advisory lease rows guarding against overlapping runs."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def acquire(
        self,
        name: str,
        holder: str,
        ttl: timedelta,
        now: datetime,
    ) -> bool:
        """Try to take the named lease.

        Succeeds when the lease is free, expired, or already held by holder.

        Returns:
            True if holder now owns the lease.
        """
        existing = await self.session.get(ReconcilerLease, name)

        if existing is None:
            self.session.add(ReconcilerLease(
                name=name,
                holder=holder,
                acquired_at=now,
                expires_at=now + ttl,
            ))
            try:
                await self.session.flush()
            except IntegrityError:
                # Another run inserted the row first
                await self.session.rollback()
                logger.warning(f"Lease {name} was taken concurrently")
                return False
            return True

        result = await self.session.execute(
            update(ReconcilerLease)
            .where(
                and_(
                    ReconcilerLease.name == name,
                    or_(
                        ReconcilerLease.expires_at <= now,
                        ReconcilerLease.holder == holder,
                    ),
                )
            )
            .values(holder=holder, acquired_at=now, expires_at=now + ttl)
            .execution_options(synchronize_session=False)
        )
        acquired = result.rowcount == 1
        if not acquired:
            logger.warning(
                f"Lease {name} is held by {existing.holder} until {existing.expires_at}"
            )
        return acquired

    async def release(self, name: str, holder: str) -> bool:
        """Release the lease if holder still owns it.

        Returns:
            True if a lease row was removed.
        """
        result = await self.session.execute(
            delete(ReconcilerLease).where(
                and_(
                    ReconcilerLease.name == name,
                    ReconcilerLease.holder == holder,
                )
            )
        )
        await self.session.flush()
        return result.rowcount == 1
