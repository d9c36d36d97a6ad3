from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.api.deps import get_app_settings, get_webhook_service
from sched_core.core.config import Settings
from sched_core.db import get_db
from sched_core.schemas.webhook_schemas import WebhookAck
from sched_core.services.webhook_service import WebhookService

router = APIRouter()


@router.post("/{provider}", response_model=WebhookAck)
async def receive_webhook(
        provider: str,
        request: Request,
        db: AsyncSession = Depends(get_db),
        app_settings: Settings = Depends(get_app_settings),
        svc: WebhookService = Depends(get_webhook_service),
):
    """
    Verify, deduplicate and store one provider event. Processing happens
    later in the webhook worker.
    """
    if provider != app_settings.WEBHOOK_PROVIDER:
        raise HTTPException(status_code=404, detail=f"Unknown webhook provider: '{provider}'")

    raw_body = await request.body()
    signature = request.headers.get(app_settings.WEBHOOK_SIGNATURE_HEADER)
    return await svc.receive(db, provider=provider, raw_body=raw_body, signature=signature)
