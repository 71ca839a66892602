from fastapi import APIRouter, Body, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.api.deps import get_webhook_processor
from course_payments.core.auth import Principal, require_admin
from course_payments.db.session import get_db_session
from course_payments.schemas.webhook import WebhookAck, WebhookRetryRequest, WebhookRetryResponse
from course_payments.services.webhook_processor import WebhookProcessor

router = APIRouter(prefix="/webhooks")


@router.post("/paymob", response_model=WebhookAck)
async def paymob_webhook(
        request: Request,
        hmac_signature: str | None = Query(None, alias="hmac"),
        x_paymob_signature: str | None = Header(None, alias="X-Paymob-Signature"),
        db: AsyncSession = Depends(get_db_session),
        processor: WebhookProcessor = Depends(get_webhook_processor)):
    """
    Gateway callback. The signature arrives as the ``hmac`` query parameter
    or the ``X-Paymob-Signature`` header; the body is read raw so it can be
    verified byte for byte.
    """
    payload = await request.body()
    return await processor.handle_inbound(db, payload, hmac_signature or x_paymob_signature)


@router.post("/{event_id}/retry", response_model=WebhookRetryResponse)
async def retry_webhook(
        event_id: str,
        data: WebhookRetryRequest | None = Body(None),
        admin: Principal = Depends(require_admin),
        db: AsyncSession = Depends(get_db_session),
        processor: WebhookProcessor = Depends(get_webhook_processor)):
    force = data.force if data is not None else False
    return await processor.retry_event(db, event_id, admin, force=force)
