from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.api.deps import get_checkout_service, get_reconciliation_engine
from course_payments.core.auth import Principal, require_admin
from course_payments.db.session import get_db_session
from course_payments.schemas.payment import AbandonedCleanupResponse, ManualCompleteRequest, PaymentStatusResponse
from course_payments.services.checkout import CheckoutService
from course_payments.services.reconciliation import ReconciliationEngine

router = APIRouter(prefix="/admin")


@router.post("/payments/{payment_id}/complete", response_model=PaymentStatusResponse)
async def manual_complete_payment(
        payment_id: str,
        data: ManualCompleteRequest | None = Body(None),
        admin: Principal = Depends(require_admin),
        db: AsyncSession = Depends(get_db_session),
        engine: ReconciliationEngine = Depends(get_reconciliation_engine)):
    result = await engine.manual_complete(db, payment_id, admin, note=data.note if data else None)
    response = PaymentStatusResponse.model_validate(result.payment)
    response.is_enrolled = result.enrollment is not None
    return response


@router.post("/payments/cleanup-abandoned", response_model=AbandonedCleanupResponse)
async def cleanup_abandoned_payments(
        admin: Principal = Depends(require_admin),
        db: AsyncSession = Depends(get_db_session),
        checkout: CheckoutService = Depends(get_checkout_service)):
    cancelled = await checkout.cancel_abandoned_payments(db, actor=admin)
    return AbandonedCleanupResponse(cancelled=len(cancelled), payment_ids=cancelled)
