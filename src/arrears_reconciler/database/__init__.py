"""Database module for arrears persistence."""

from .models import (
    Base,
    Profile,
    Property,
    Tenancy,
    TenancyTenant,
    RentSchedule,
    ArrearsRecord,
    ArrearsAction,
    ReconcilerLease,
    TenancyStatus,
    ProfileRole,
    ArrearsSeverity,
    ArrearsActionType,
    calculate_severity,
)
from .session import (
    get_db,
    get_session_factory,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    session_scope,
    DatabaseManager,
)
from .repository import (
    RentScheduleRepository,
    TenancyRepository,
    ProfileRepository,
    ArrearsRecordRepository,
    ArrearsActionRepository,
    RunLeaseRepository,
)

__all__ = [
    # Models
    "Base",
    "Profile",
    "Property",
    "Tenancy",
    "TenancyTenant",
    "RentSchedule",
    "ArrearsRecord",
    "ArrearsAction",
    "ReconcilerLease",
    "TenancyStatus",
    "ProfileRole",
    "ArrearsSeverity",
    "ArrearsActionType",
    "calculate_severity",
    # Session management
    "get_db",
    "get_session_factory",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "session_scope",
    "DatabaseManager",
    # Repositories
    "RentScheduleRepository",
    "TenancyRepository",
    "ProfileRepository",
    "ArrearsRecordRepository",
    "ArrearsActionRepository",
    "RunLeaseRepository",
]
