"""API endpoints for arrears reconciliation."""

import os
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth import authorize_reconciler_caller, limiter
from ..database import get_session_factory
from ..exceptions import (
    LeaseUnavailableError,
    ObligationReadError,
    ReconciliationTimeoutError,
)
from .models import ArrearsProcessResult
from .service import ArrearsReconciliationService

logger = logging.getLogger(__name__)

PROCESS_RATE_LIMIT = os.getenv("ARREARS_PROCESS_RATE_LIMIT", "10/minute")

router = APIRouter(prefix="/arrears", tags=["arrears"])


class ArrearsRunResponse(BaseModel):
    """Summary returned by an arrears run."""
    processed: int
    created: int
    updated: int
    resolved: int
    skipped: int
    results: List[ArrearsProcessResult]


def get_reconciliation_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ArrearsReconciliationService:
    """Build the service for a request."""
    return ArrearsReconciliationService(session_factory)


@router.post(
    "/process",
    response_model=ArrearsRunResponse,
    response_model_exclude_none=True,
)
@limiter.limit(PROCESS_RATE_LIMIT)
async def process_arrears(
    request: Request,
    caller: str = Depends(authorize_reconciler_caller),
    service: ArrearsReconciliationService = Depends(get_reconciliation_service),
):
    """
    Reconcile arrears records with overdue rent.

    Scans all active tenancies; creates or updates one open arrears record per
    tenancy in arrears and resolves records whose rent has been paid. Returns
    200 with per-tenancy results even when some tenancies failed. The run is
    always as of the current UTC date.
    """
    logger.info(f"Arrears run requested by {caller}")

    try:
        report = await service.run()
    except LeaseUnavailableError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except ObligationReadError as e:
        raise HTTPException(status_code=500, detail=e.message)
    except ReconciliationTimeoutError as e:
        raise HTTPException(status_code=504, detail=e.message)

    summary = report.to_summary_dict()
    return ArrearsRunResponse(
        processed=summary["processed"],
        created=summary["created"],
        updated=summary["updated"],
        resolved=summary["resolved"],
        skipped=summary["skipped"],
        results=report.results,
    )


@router.get("/health")
async def arrears_health():
    """Health check endpoint for the arrears reconciler."""
    return {"status": "healthy", "service": "arrears-reconciler"}
