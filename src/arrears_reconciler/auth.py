"""Authorization and rate limiting helpers for the API."""

import os
import secrets
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from .database import ProfileRepository, ProfileRole, get_db

logger = logging.getLogger(__name__)

# Missing credentials fall through to the 401 below instead of FastAPI's 403
security = HTTPBearer(auto_error=False)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)

SCHEDULER_CALLER = "scheduler"


def verify_cron_secret(provided: Optional[str]) -> bool:
    """Check a scheduler secret against CRON_SECRET.

    Returns False when either side is missing.
    """
    expected = os.getenv("CRON_SECRET")
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided, expected)


async def authorize_reconciler_caller(
    x_cron_secret: Optional[str] = Header(default=None),
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    db: AsyncSession = Depends(get_db),
) -> str:
    """Authorize the scheduler or an administrator.

    Args:
        x_cron_secret: Value of the X-Cron-Secret header.
        credentials: HTTP Bearer credentials from the request.
        db: Session used to resolve the bearer token to a profile.

    Returns:
        "scheduler", or "admin:<profile id>".

    Raises:
        HTTPException: 401 if neither credential is valid.
    """
    if verify_cron_secret(x_cron_secret):
        return SCHEDULER_CALLER

    if credentials is not None and credentials.credentials:
        profile = await ProfileRepository(db).get_by_token(credentials.credentials)
        if profile is not None and profile.role == ProfileRole.ADMIN.value:
            return f"admin:{profile.id}"

    logger.warning("Rejected unauthorized arrears processing request")
    raise HTTPException(status_code=401, detail="Unauthorized")
