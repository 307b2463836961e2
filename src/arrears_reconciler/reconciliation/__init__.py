"""Arrears reconciliation.

Keeps arrears records consistent with unpaid, overdue rent:

- Read unpaid rent schedules past their due date on active tenancies
- Aggregate them per tenancy (total, oldest due date, days overdue)
- Create or update one open arrears record per tenancy in arrears
- Resolve open records once all overdue rent is paid, with an audit
  entry and tenant/owner notifications
"""

from .models import (
    ProcessAction,
    RunStatus,
    OverdueObligation,
    TenancyArrears,
    ArrearsProcessResult,
    Notification,
    ArrearsRunReport,
)
from .aggregator import ArrearsAggregator
from .notifier import (
    NotifierBase,
    LoggingNotifier,
    HttpNotifier,
    NotificationOutbox,
    get_notifier,
)
from .service import ArrearsReconciliationService, build_resolution_notifications
from .report import ReportGenerator

__all__ = [
    # Models
    "ProcessAction",
    "RunStatus",
    "OverdueObligation",
    "TenancyArrears",
    "ArrearsProcessResult",
    "Notification",
    "ArrearsRunReport",
    # Notifications
    "NotifierBase",
    "LoggingNotifier",
    "HttpNotifier",
    "NotificationOutbox",
    "get_notifier",
    # Core Components
    "ArrearsAggregator",
    "ArrearsReconciliationService",
    "build_resolution_notifications",
    "ReportGenerator",
]
