"""Service layer for arrears reconciliation runs."""

import os
import uuid
import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import (
    ArrearsActionType,
    ArrearsRecord,
    ArrearsRecordRepository,
    ArrearsActionRepository,
    Profile,
    ProfileRepository,
    Property,
    RentScheduleRepository,
    RunLeaseRepository,
    TenancyRepository,
    session_scope,
)
from ..exceptions import (
    LeaseUnavailableError,
    ObligationReadError,
    ReconciliationTimeoutError,
)
from .aggregator import ArrearsAggregator
from .models import (
    ArrearsProcessResult,
    ArrearsRunReport,
    Notification,
    OverdueObligation,
    ProcessAction,
    RunStatus,
    TenancyArrears,
)
from .notifier import NotificationOutbox, NotifierBase, get_notifier

logger = logging.getLogger(__name__)

LEASE_NAME = "process-arrears"
RESOLVED_REASON = "All overdue payments received"
RESOLUTION_DESCRIPTION = "Arrears resolved - all overdue payments received"
NOTIFICATION_TYPE_RESOLVED = "arrears_resolved"
DEFAULT_RUN_TIMEOUT_SECONDS = 300.0
DEFAULT_LEASE_TTL_SECONDS = 900.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_resolution_notifications(
    record: ArrearsRecord,
    prop: Optional[Property],
    tenant: Optional[Profile],
) -> List[Notification]:
    """Build the tenant and owner notifications for a resolved record.

    A notification is omitted when its recipient is unknown.
    """
    address = prop.display_address if prop else ""
    amount = f"${(record.total_overdue or 0):.2f}"
    tenant_name = tenant.full_name if tenant and tenant.full_name else "Your tenant"

    notifications: List[Notification] = []
    if record.tenant_id:
        notifications.append(Notification(
            user_id=record.tenant_id,
            type=NOTIFICATION_TYPE_RESOLVED,
            title="Arrears Resolved",
            body=f"Your arrears for {address} have been cleared. Thank you for your payment.",
            data={
                "tenant_name": "",
                "property_address": address,
                "amount": amount,
            },
            related_type="arrears_record",
            related_id=record.id,
        ))
    if prop is not None and prop.owner_id:
        notifications.append(Notification(
            user_id=prop.owner_id,
            type=NOTIFICATION_TYPE_RESOLVED,
            title="Arrears Resolved",
            body=f"{tenant_name}'s arrears for {address} have been resolved.",
            data={
                "tenant_name": tenant_name,
                "property_address": address,
                "amount": amount,
            },
            related_type="arrears_record",
            related_id=record.id,
        ))
    return notifications


class ArrearsReconciliationService:
    """Keeps arrears records consistent with unpaid, overdue rent.

    Every tenancy is written in its own unit of work, so a run interrupted
    part way leaves each tenancy either fully updated or untouched.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[NotifierBase] = None,
        clock: Optional[Callable[[], datetime]] = None,
        run_timeout: Optional[float] = None,
        lease_ttl: Optional[float] = None,
        aggregator: Optional[ArrearsAggregator] = None,
    ):
        """Initialize the reconciliation service.

        Args:
            session_factory: Factory for the sessions of each unit of work.
            notifier: Optional notifier. Will use get_notifier() if not provided.
            clock: Returns the current naive UTC time; injectable for tests.
            run_timeout: Seconds a whole run may take (ARREARS_RUN_TIMEOUT).
            lease_ttl: Seconds the run lease stays valid (ARREARS_LEASE_TTL).
            aggregator: Optional aggregator instance.

        Raises:
            ValueError: If lease_ttl does not exceed run_timeout.
        """
        self.session_factory = session_factory
        self._notifier = notifier
        self._clock = clock or _utcnow
        self.run_timeout = (
            run_timeout if run_timeout is not None
            else float(os.getenv("ARREARS_RUN_TIMEOUT", DEFAULT_RUN_TIMEOUT_SECONDS))
        )
        self.lease_ttl = timedelta(seconds=(
            lease_ttl if lease_ttl is not None
            else float(os.getenv("ARREARS_LEASE_TTL", DEFAULT_LEASE_TTL_SECONDS))
        ))
        if self.lease_ttl.total_seconds() <= self.run_timeout:
            raise ValueError(
                f"lease_ttl ({self.lease_ttl.total_seconds()}s) must exceed "
                f"run_timeout ({self.run_timeout}s)"
            )
        self.aggregator = aggregator or ArrearsAggregator()

    def now(self) -> datetime:
        return self._clock()

    def _get_notifier(self) -> NotifierBase:
        if self._notifier:
            return self._notifier
        return get_notifier()

    async def fetch_overdue_obligations(self, today: date) -> List[OverdueObligation]:
        """Read unpaid rent due before today on active tenancies.

        Args:
            today: Reference date of the run.

        Returns:
            List of OverdueObligation objects annotated with the primary tenant.

        Raises:
            ObligationReadError: If the query fails.
        """
        try:
            async with session_scope(self.session_factory) as session:
                repo = RentScheduleRepository(session)
                rows = await repo.list_overdue(today)
                tenants = await repo.get_primary_tenant_ids(s.tenancy_id for s, _ in rows)
        except SQLAlchemyError as e:
            logger.error(f"Error fetching overdue schedules: {e}")
            raise ObligationReadError("Failed to fetch overdue schedules", e) from e

        obligations = [
            OverdueObligation(
                id=schedule.id,
                tenancy_id=schedule.tenancy_id,
                tenant_id=tenants.get(schedule.tenancy_id),
                due_date=schedule.due_date,
                amount=schedule.amount,
                tenancy_status=status,
            )
            for schedule, status in rows
        ]
        logger.info(f"Found {len(obligations)} overdue rent schedules")
        return obligations

    async def write_arrears(
        self,
        aggregated: Dict[str, TenancyArrears],
        now: datetime,
    ) -> List[ArrearsProcessResult]:
        """Update or open one arrears record per tenancy in arrears.

        A failure is recorded as a skipped result for that tenancy only.
        """
        logger.info(f"Processing {len(aggregated)} tenancies with arrears")
        results: List[ArrearsProcessResult] = []

        for tenancy_id, arrears in aggregated.items():
            try:
                result = await self._write_tenancy(arrears, now)
            except Exception as e:
                logger.error(f"Error processing tenancy {tenancy_id}: {e}")
                result = ArrearsProcessResult(
                    tenancy_id=tenancy_id,
                    tenant_id=arrears.tenant_id,
                    action=ProcessAction.SKIPPED,
                    error=str(e),
                )
            results.append(result)

        return results

    async def _write_tenancy(
        self,
        arrears: TenancyArrears,
        now: datetime,
    ) -> ArrearsProcessResult:
        async with session_scope(self.session_factory) as session:
            records = ArrearsRecordRepository(session)
            existing = await records.get_open_for_tenancy(arrears.tenancy_id)

            if existing is not None:
                await records.update_totals(
                    existing,
                    total_overdue=arrears.total_overdue,
                    days_overdue=arrears.days_overdue,
                    now=now,
                )
                action = ProcessAction.UPDATED
            else:
                await records.create(
                    tenancy_id=arrears.tenancy_id,
                    tenant_id=arrears.tenant_id,
                    first_overdue_date=arrears.first_overdue_date,
                    total_overdue=arrears.total_overdue,
                    days_overdue=arrears.days_overdue,
                )
                action = ProcessAction.CREATED

        return ArrearsProcessResult(
            tenancy_id=arrears.tenancy_id,
            tenant_id=arrears.tenant_id,
            action=action,
            total_overdue=float(arrears.total_overdue),
            days_overdue=arrears.days_overdue,
        )

    async def resolve_cleared_arrears(
        self,
        aggregated: Dict[str, TenancyArrears],
        today: date,
        now: datetime,
        outbox: Optional[NotificationOutbox] = None,
    ) -> List[ArrearsProcessResult]:
        """Close open records of tenancies that are no longer in arrears.

        Each candidate is re-checked against rent_schedules before closing;
        if overdue rent turned up meanwhile the record stays open.

        Args:
            aggregated: Tenancies still in arrears, from the aggregator.
            today: Reference date of the run.
            now: Timestamp written as resolved_at.
            outbox: Outbox for resolution notifications. When omitted a
                private one is created and drained before returning.

        Returns:
            One result per record examined.
        """
        own_outbox = outbox is None
        if own_outbox:
            outbox = NotificationOutbox(self._get_notifier())

        async with session_scope(self.session_factory) as session:
            open_records = await ArrearsRecordRepository(session).list_open()

        results: List[ArrearsProcessResult] = []
        for record in open_records:
            if record.tenancy_id in aggregated:
                continue
            try:
                result = await self._resolve_record(record, today, now, outbox)
            except Exception as e:
                logger.error(f"Error resolving arrears record {record.id}: {e}")
                result = ArrearsProcessResult(
                    tenancy_id=record.tenancy_id,
                    tenant_id=record.tenant_id,
                    action=ProcessAction.SKIPPED,
                    error=str(e),
                )
            results.append(result)

        if own_outbox:
            await outbox.drain()
        return results

    async def _resolve_record(
        self,
        record: ArrearsRecord,
        today: date,
        now: datetime,
        outbox: NotificationOutbox,
    ) -> ArrearsProcessResult:
        skipped = ArrearsProcessResult(
            tenancy_id=record.tenancy_id,
            tenant_id=record.tenant_id,
            action=ProcessAction.SKIPPED,
        )

        # Never judge against a date earlier than the clock's
        check_date = max(today, self.now().date())
        async with session_scope(self.session_factory) as session:
            if await RentScheduleRepository(session).has_overdue(record.tenancy_id, check_date):
                logger.warning(
                    f"Tenancy {record.tenancy_id} has overdue rent again; "
                    f"leaving arrears record {record.id} open"
                )
                return skipped

            records = ArrearsRecordRepository(session)
            current = await records.get_by_id(record.id)
            if current is None or current.is_resolved:
                logger.info(f"Arrears record {record.id} was already resolved")
                return skipped

            await records.resolve(current, RESOLVED_REASON, now)
            await ArrearsActionRepository(session).create(
                arrears_record_id=current.id,
                action_type=ArrearsActionType.PAYMENT_RECEIVED.value,
                description=RESOLUTION_DESCRIPTION,
                is_automated=True,
                action_metadata={"total_overdue": str(current.total_overdue)},
            )

        await self._notify_resolution(current, outbox)

        return ArrearsProcessResult(
            tenancy_id=record.tenancy_id,
            tenant_id=record.tenant_id,
            action=ProcessAction.RESOLVED,
        )

    async def _notify_resolution(
        self,
        record: ArrearsRecord,
        outbox: NotificationOutbox,
    ) -> None:
        try:
            async with session_scope(self.session_factory) as session:
                prop = await TenancyRepository(session).get_property(record.tenancy_id)
                tenant = await ProfileRepository(session).get_by_id(record.tenant_id)
            for notification in build_resolution_notifications(record, prop, tenant):
                outbox.enqueue(notification)
        except Exception as e:
            logger.error(f"Error dispatching arrears resolution notification: {e}")

    async def _acquire_lease(self, run_id: str) -> None:
        async with session_scope(self.session_factory) as session:
            acquired = await RunLeaseRepository(session).acquire(
                name=LEASE_NAME,
                holder=run_id,
                ttl=self.lease_ttl,
                now=self.now(),
            )
            if not acquired:
                raise LeaseUnavailableError(
                    "Another arrears reconciliation run is in progress"
                )

    async def _release_lease(self, run_id: str) -> None:
        try:
            async with session_scope(self.session_factory) as session:
                await RunLeaseRepository(session).release(LEASE_NAME, run_id)
        except SQLAlchemyError as e:
            # The lease expires on its own after lease_ttl
            logger.error(f"Failed to release lease for run {run_id}: {e}")

    async def run(self) -> ArrearsRunReport:
        """Execute a reconciliation run as of the clock's current date.

        Returns:
            ArrearsRunReport with the per-tenancy results.

        Raises:
            LeaseUnavailableError: If another run holds the lease.
            ObligationReadError: If overdue rent could not be read.
            ReconciliationTimeoutError: If the run exceeded run_timeout.
        """
        started_at = self.now()
        report = ArrearsRunReport(
            run_id=str(uuid.uuid4()),
            as_of=started_at.date(),
            started_at=started_at,
        )
        outbox = NotificationOutbox(self._get_notifier())

        logger.info(f"Starting arrears run {report.run_id} as of {report.as_of}")

        try:
            await asyncio.wait_for(self._execute(report, outbox), timeout=self.run_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Arrears run {report.run_id} timed out after {self.run_timeout}s")
            raise ReconciliationTimeoutError(
                f"Arrears run exceeded {self.run_timeout} seconds", e
            ) from e
        finally:
            # No delivery may outlive the run that queued it
            await outbox.cancel_pending()

        logger.info(
            f"Arrears processing complete: {report.created} created, "
            f"{report.updated} updated, {report.resolved} resolved, "
            f"{report.skipped} skipped"
        )
        return report

    async def _execute(self, report: ArrearsRunReport, outbox: NotificationOutbox) -> None:
        await self._acquire_lease(report.run_id)
        try:
            obligations = await self.fetch_overdue_obligations(report.as_of)
            aggregated = self.aggregator.aggregate(obligations, report.as_of)

            report.results.extend(await self.write_arrears(aggregated, self.now()))
            report.results.extend(
                await self.resolve_cleared_arrears(aggregated, report.as_of, self.now(), outbox)
            )
            await outbox.drain()
        finally:
            await self._release_lease(report.run_id)

        report.status = RunStatus.COMPLETED
        report.completed_at = self.now()
