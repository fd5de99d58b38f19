from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.apps.api.deps import get_db
from tenantsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantsync.apps.api.response import SuccessEnvelope, success_response
from tenantsync.core.config import DEV_ENCRYPTION_SECRET, get_settings
from tenantsync.persistence.db import database_reachable

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    database: bool
    # True while credentials are encrypted under the built-in development secret.
    dev_secret: bool


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    database = await database_reachable(db)
    data = HealthResponse(
        status="ok" if database else "degraded",
        database=database,
        dev_secret=get_settings().credential_encryption_secret == DEV_ENCRYPTION_SECRET,
    )
    return success_response(request=request, data=data)
