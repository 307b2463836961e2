"""SQLAlchemy models for tenancies, rent schedules and arrears tracking."""

import uuid
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column, validates
import enum


def _utcnow() -> datetime:
    """Naive UTC timestamp, matching how every DateTime column is stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TenancyStatus(str, enum.Enum):
    """Lifecycle statuses of a tenancy."""
    PENDING = "pending"
    ACTIVE = "active"
    ENDING = "ending"
    ENDED = "ended"
    TERMINATED = "terminated"


class ProfileRole(str, enum.Enum):
    """Roles a profile can hold."""
    OWNER = "owner"
    TENANT = "tenant"
    ADMIN = "admin"


class ArrearsSeverity(str, enum.Enum):
    """Severity bands of an arrears record, by days overdue."""
    MINOR = "minor"
    MODERATE = "moderate"
    SERIOUS = "serious"
    CRITICAL = "critical"


class ArrearsActionType(str, enum.Enum):
    """Types of entries in the arrears audit log."""
    REMINDER_EMAIL = "reminder_email"
    REMINDER_SMS = "reminder_sms"
    PHONE_CALL = "phone_call"
    LETTER_SENT = "letter_sent"
    BREACH_NOTICE = "breach_notice"
    PAYMENT_PLAN_CREATED = "payment_plan_created"
    PAYMENT_PLAN_UPDATED = "payment_plan_updated"
    PAYMENT_RECEIVED = "payment_received"
    TRIBUNAL_APPLICATION = "tribunal_application"
    NOTE = "note"


# Upper bound (inclusive) of days overdue for each band; anything above is critical.
SEVERITY_THRESHOLDS = (
    (7, ArrearsSeverity.MINOR),
    (14, ArrearsSeverity.MODERATE),
    (28, ArrearsSeverity.SERIOUS),
)


def calculate_severity(days_overdue: int) -> ArrearsSeverity:
    """Classify arrears by how many days the oldest unpaid rent is overdue."""
    for upper_bound, severity in SEVERITY_THRESHOLDS:
        if days_overdue <= upper_bound:
            return severity
    return ArrearsSeverity.CRITICAL


class Profile(Base):
    """A user of the platform: owner, tenant or administrator."""
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=ProfileRole.TENANT.value)

    # sha256 hex digest of the bearer token the profile authenticates with
    api_token_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Property(Base):
    """A rentable property and its owner."""
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    address_line_1: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    suburb: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    postcode: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    tenancies: Mapped[List["Tenancy"]] = relationship("Tenancy", back_populates="property")

    @property
    def display_address(self) -> str:
        """Comma separated address, skipping blank parts."""
        parts = [self.address_line_1, self.suburb, self.state, self.postcode]
        return ", ".join(p for p in parts if p)


class Tenancy(Base):
    """A lease agreement between an owner and one or more tenants for a property."""
    __tablename__ = "tenancies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    property_id: Mapped[str] = mapped_column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TenancyStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    property: Mapped["Property"] = relationship("Property", back_populates="tenancies")
    tenants: Mapped[List["TenancyTenant"]] = relationship(
        "TenancyTenant",
        back_populates="tenancy",
        cascade="all, delete-orphan",
    )
    rent_schedules: Mapped[List["RentSchedule"]] = relationship(
        "RentSchedule",
        back_populates="tenancy",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_tenancies_status", "status"),
    )


class TenancyTenant(Base):
    """Maps tenants onto a tenancy."""
    __tablename__ = "tenancy_tenants"

    tenancy_id: Mapped[str] = mapped_column(String(36), ForeignKey("tenancies.id"), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), primary_key=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    tenancy: Mapped["Tenancy"] = relationship("Tenancy", back_populates="tenants")


class RentSchedule(Base):
    """A single scheduled rent payment (a rent obligation).

    Rows are created ahead of time by the rent scheduler and marked paid by
    payment processing; the arrears reconciler only reads them.
    """
    __tablename__ = "rent_schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenancy_id: Mapped[str] = mapped_column(String(36), ForeignKey("tenancies.id"), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Amount in minor currency units (cents)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    tenancy: Mapped["Tenancy"] = relationship("Tenancy", back_populates="rent_schedules")

    __table_args__ = (
        Index("ix_rent_schedules_tenancy_unpaid", "tenancy_id", "is_paid", "due_date"),
    )


class ArrearsRecord(Base):
    """Arrears state of a tenancy. At most one unresolved record exists per tenancy."""
    __tablename__ = "arrears_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenancy_id: Mapped[str] = mapped_column(String(36), ForeignKey("tenancies.id"), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)

    first_overdue_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Currency units (dollars), unlike rent_schedules.amount
    total_overdue: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    days_overdue: Mapped[int] = mapped_column(Integer, nullable=False)

    # Derived from days_overdue, see _derive_severity
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=ArrearsSeverity.MINOR.value)

    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    actions: Mapped[List["ArrearsAction"]] = relationship(
        "ArrearsAction",
        back_populates="arrears_record",
        cascade="all, delete-orphan",
        order_by="ArrearsAction.created_at.desc()",
    )

    __table_args__ = (
        Index(
            "uq_arrears_records_open_tenancy",
            "tenancy_id",
            unique=True,
            sqlite_where=text("NOT is_resolved"),
            postgresql_where=text("NOT is_resolved"),
        ),
        Index("ix_arrears_records_severity", "severity", "days_overdue"),
    )

    @validates("days_overdue")
    def _derive_severity(self, key: str, value: int) -> int:
        self.severity = calculate_severity(value).value
        return value

    def to_dict(self) -> Dict[str, Any]:
        """Convert arrears record to dictionary representation."""
        return {
            "id": self.id,
            "tenancy_id": self.tenancy_id,
            "tenant_id": self.tenant_id,
            "first_overdue_date": self.first_overdue_date.isoformat() if self.first_overdue_date else None,
            "total_overdue": float(self.total_overdue) if self.total_overdue is not None else None,
            "days_overdue": self.days_overdue,
            "severity": self.severity,
            "is_resolved": self.is_resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_reason": self.resolved_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ArrearsAction(Base):
    """Append-only audit entry against an arrears record."""
    __tablename__ = "arrears_actions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    arrears_record_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("arrears_records.id"), nullable=False
    )
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # NULL for automated actions
    performed_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True)
    is_automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    arrears_record: Mapped["ArrearsRecord"] = relationship("ArrearsRecord", back_populates="actions")

    __table_args__ = (
        Index("ix_arrears_actions_record", "arrears_record_id", "created_at"),
    )

    @property
    def action_metadata(self) -> Optional[Dict[str, Any]]:
        """Get action metadata as dictionary."""
        if self.metadata_json:
            return json.loads(self.metadata_json)
        return None

    @action_metadata.setter
    def action_metadata(self, value: Optional[Dict[str, Any]]) -> None:
        """Set action metadata from dictionary."""
        if value is not None:
            self.metadata_json = json.dumps(value)
        else:
            self.metadata_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert arrears action to dictionary representation."""
        return {
            "id": self.id,
            "arrears_record_id": self.arrears_record_id,
            "action_type": self.action_type,
            "description": self.description,
            "performed_by": self.performed_by,
            "is_automated": self.is_automated,
            "metadata": self.action_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ReconcilerLease(Base):
    """Advisory lock row held by a running reconciliation.

    A lease whose expires_at has passed may be taken over by another run.
    """
    __tablename__ = "reconciler_leases"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    holder: Mapped[str] = mapped_column(String(36), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the lease has expired."""
        return (now or _utcnow()) >= self.expires_at
