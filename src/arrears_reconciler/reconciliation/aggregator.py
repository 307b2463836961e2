"""Aggregation of overdue rent obligations into per-tenancy arrears."""

import logging
from datetime import date
from typing import Dict, Iterable

from .models import OverdueObligation, TenancyArrears

logger = logging.getLogger(__name__)


class ArrearsAggregator:
    """Groups overdue obligations by tenancy. Performs no I/O."""

    def aggregate(
        self,
        obligations: Iterable[OverdueObligation],
        today: date,
    ) -> Dict[str, TenancyArrears]:
        """Build the map of tenancies currently in arrears.

        For each tenancy the amounts are summed, the earliest due date becomes
        first_overdue_date and days_overdue is counted from it. Obligations
        whose tenancy has no tenant are dropped.

        Args:
            obligations: Unpaid obligations due before today.
            today: Reference date of the run.

        Returns:
            Mapping of tenancy_id to TenancyArrears.
        """
        arrears: Dict[str, TenancyArrears] = {}

        for obligation in obligations:
            if not obligation.tenant_id:
                logger.warning(f"No tenant found for tenancy {obligation.tenancy_id}")
                continue

            existing = arrears.get(obligation.tenancy_id)
            if existing is None:
                arrears[obligation.tenancy_id] = TenancyArrears(
                    tenancy_id=obligation.tenancy_id,
                    tenant_id=obligation.tenant_id,
                    total_overdue_cents=obligation.amount,
                    first_overdue_date=obligation.due_date,
                    days_overdue=self.days_between(obligation.due_date, today),
                    obligation_ids=[obligation.id],
                )
                continue

            existing.total_overdue_cents += obligation.amount
            existing.obligation_ids.append(obligation.id)
            if obligation.due_date < existing.first_overdue_date:
                existing.first_overdue_date = obligation.due_date
                existing.days_overdue = self.days_between(obligation.due_date, today)

        logger.info(f"Aggregated overdue obligations into {len(arrears)} tenancies in arrears")
        return arrears

    @staticmethod
    def days_between(due_date: date, today: date) -> int:
        """Whole days from due_date to today."""
        return (today - due_date).days
