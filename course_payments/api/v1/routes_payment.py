from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.api.deps import get_checkout_service, get_reconciliation_engine
from course_payments.core.auth import Principal, get_current_principal
from course_payments.db.session import get_db_session
from course_payments.schemas.payment import (CancelPaymentResponse, InitiatePaymentRequest, InitiatePaymentResponse,
                                             PaymentStatusResponse, RetryPaymentResponse)
from course_payments.services.checkout import CheckoutService
from course_payments.services.reconciliation import ReconciliationEngine

router = APIRouter(prefix="/payments")


@router.post("/initiate", response_model=InitiatePaymentResponse, status_code=201)
async def initiate_payment(
        data: InitiatePaymentRequest,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db_session),
        checkout: CheckoutService = Depends(get_checkout_service)):
    payment = await checkout.initiate_payment(db, principal, data.course_id, data.payment_method.value)
    return InitiatePaymentResponse(payment_id=payment.id, status=payment.status, amount=payment.amount,
                                   currency=payment.currency, redirect_url=payment.redirect_url)


@router.get("/{payment_id}/status", response_model=PaymentStatusResponse)
async def get_payment_status(
        payment_id: str,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db_session),
        engine: ReconciliationEngine = Depends(get_reconciliation_engine)):
    payment, is_enrolled = await engine.get_payment_for(db, payment_id, principal)
    response = PaymentStatusResponse.model_validate(payment)
    response.is_enrolled = is_enrolled
    return response


@router.post("/{payment_id}/retry", response_model=RetryPaymentResponse)
async def retry_payment(
        payment_id: str,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db_session),
        engine: ReconciliationEngine = Depends(get_reconciliation_engine)):
    payment = await engine.retry_payment(db, payment_id, principal)
    return RetryPaymentResponse(payment_id=payment.id, status=payment.status, redirect_url=payment.redirect_url)


@router.post("/{payment_id}/cancel", response_model=CancelPaymentResponse)
async def cancel_payment(
        payment_id: str,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db_session),
        engine: ReconciliationEngine = Depends(get_reconciliation_engine)):
    payment = await engine.cancel_payment(db, payment_id, principal)
    return CancelPaymentResponse(payment_id=payment.id, status=payment.status, cancelled_at=payment.closed_at)
