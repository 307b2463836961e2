"""Models for arrears reconciliation runs."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field

CENTS_PER_UNIT = Decimal(100)


class ProcessAction(str, enum.Enum):
    """Outcome of processing one tenancy in a run."""
    CREATED = "created"
    UPDATED = "updated"
    RESOLVED = "resolved"
    SKIPPED = "skipped"


class RunStatus(str, enum.Enum):
    """Status of a reconciliation run."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class OverdueObligation(BaseModel):
    """An unpaid rent schedule past its due date."""
    id: str = Field(..., description="Rent schedule ID")
    tenancy_id: str = Field(..., description="Owning tenancy")
    tenant_id: Optional[str] = Field(None, description="Primary tenant of the tenancy")
    due_date: date = Field(..., description="Date the rent was due")
    amount: int = Field(..., description="Amount in minor currency units")
    tenancy_status: str = Field(default="active", description="Status of the owning tenancy")

    model_config = ConfigDict(from_attributes=True)


class TenancyArrears(BaseModel):
    """Overdue obligations of one tenancy, aggregated."""
    tenancy_id: str
    tenant_id: str
    total_overdue_cents: int = Field(..., description="Sum of overdue amounts in minor units")
    first_overdue_date: date = Field(..., description="Earliest overdue due date")
    days_overdue: int = Field(..., description="Whole days since first_overdue_date")
    obligation_ids: List[str] = Field(default_factory=list)

    @property
    def total_overdue(self) -> Decimal:
        """Total overdue in currency units, two decimal places."""
        return (Decimal(self.total_overdue_cents) / CENTS_PER_UNIT).quantize(Decimal("0.01"))


class ArrearsProcessResult(BaseModel):
    """Per-tenancy entry in a run's results."""
    tenancy_id: str = Field(..., alias="tenancyId")
    tenant_id: str = Field(default="", alias="tenantId")
    action: ProcessAction
    total_overdue: Optional[float] = Field(None, alias="totalOverdue")
    days_overdue: Optional[int] = Field(None, alias="daysOverdue")
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    def to_response_dict(self) -> Dict[str, Any]:
        """camelCase dict with absent optional fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Notification(BaseModel):
    """Payload for the notification-dispatch endpoint."""
    user_id: str
    type: str
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)
    channels: List[str] = Field(default_factory=lambda: ["push", "email"])
    related_type: Optional[str] = None
    related_id: Optional[str] = None


class ArrearsRunReport(BaseModel):
    """Outcome of a reconciliation run."""
    run_id: str = Field(..., description="Run ID, also the lease holder")
    status: RunStatus = Field(default=RunStatus.IN_PROGRESS)
    as_of: date = Field(..., description="Reference date of the run")
    started_at: datetime
    completed_at: Optional[datetime] = None
    results: List[ArrearsProcessResult] = Field(default_factory=list)
    error_message: Optional[str] = None

    def _count(self, action: ProcessAction) -> int:
        return sum(1 for r in self.results if r.action == action)

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def created(self) -> int:
        return self._count(ProcessAction.CREATED)

    @property
    def updated(self) -> int:
        return self._count(ProcessAction.UPDATED)

    @property
    def resolved(self) -> int:
        return self._count(ProcessAction.RESOLVED)

    @property
    def skipped(self) -> int:
        return self._count(ProcessAction.SKIPPED)

    @property
    def failed_results(self) -> List[ArrearsProcessResult]:
        """Results that carry an error."""
        return [r for r in self.results if r.error]

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return the summary returned to the caller of a run."""
        return {
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "resolved": self.resolved,
            "skipped": self.skipped,
            "results": [r.to_response_dict() for r in self.results],
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return the summary plus run metadata."""
        result = self.to_summary_dict()
        result["runId"] = self.run_id
        result["status"] = self.status.value
        result["asOf"] = self.as_of.isoformat()
        result["startedAt"] = self.started_at.isoformat()
        result["completedAt"] = self.completed_at.isoformat() if self.completed_at else None
        result["errorMessage"] = self.error_message
        return result
