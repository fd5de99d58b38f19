from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.apps.api.deps import get_db, get_webhook_notifier, require_admin
from tenantsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantsync.apps.api.response import SuccessEnvelope, success_response
from tenantsync.persistence.repos import tenants as tenants_repo
from tenantsync.services.webhooks.notifier import WebhookNotifier


router = APIRouter(
    prefix="/admin",
    tags=["webhook-admin"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


class WebhookConfigRequest(BaseModel):
    webhook_url: str | None = None


class WebhookConfigResponse(BaseModel):
    tenant_id: str
    webhook_url: str | None


class WebhookTestRequest(BaseModel):
    url: str = Field(min_length=1)
    tenant_id: str | None = None


class WebhookTestResponse(BaseModel):
    success: bool
    status_code: int | None = None
    response_time_ms: int | None = None
    error: str | None = None


def _normalize_webhook_url(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as exc:
        raise HTTPException(
            status_code=400, detail={"code": "INVALID_WEBHOOK_URL", "message": "Invalid URL format"}
        ) from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise HTTPException(status_code=400, detail={"code": "INVALID_WEBHOOK_URL", "message": "Invalid URL format"})
    return value


@router.put("/tenants/{tenant_id}/webhook", response_model=SuccessEnvelope[WebhookConfigResponse])
async def set_tenant_webhook(
    request: Request,
    tenant_id: str,
    payload: WebhookConfigRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    # An empty URL clears the endpoint and turns notifications off.
    tenant = await tenants_repo.set_webhook_url(db, tenant_id, _normalize_webhook_url(payload.webhook_url))
    await db.commit()
    return success_response(
        request=request,
        data=WebhookConfigResponse(tenant_id=tenant.id, webhook_url=tenant.webhook_url),
    )


@router.post("/webhook/test", response_model=SuccessEnvelope[WebhookTestResponse])
async def test_webhook(
    request: Request,
    payload: WebhookTestRequest,
    notifier: WebhookNotifier = Depends(get_webhook_notifier),
) -> dict:
    result = await notifier.ping(payload.url.strip(), tenant_id=payload.tenant_id)
    data = WebhookTestResponse(
        success=result.success,
        status_code=result.status_code,
        response_time_ms=result.response_time_ms,
        error=result.error,
    )
    return success_response(request=request, data=data)
