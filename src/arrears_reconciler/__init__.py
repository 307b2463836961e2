# arrears_reconciler package
__version__ = "0.1.0"

from .database import (
    ArrearsRecord,
    ArrearsAction,
    RentSchedule,
    Tenancy,
    ArrearsSeverity,
    ArrearsActionType,
    init_db,
    close_db,
    get_db,
)
from .exceptions import (
    ArrearsReconcilerError,
    ObligationReadError,
    LeaseUnavailableError,
    ReconciliationTimeoutError,
    NotificationDispatchError,
)

from .reconciliation import (
    ArrearsReconciliationService,
    ArrearsRunReport,
    ArrearsProcessResult,
    ProcessAction,
    ArrearsAggregator,
    ReportGenerator,
    get_notifier,
)
