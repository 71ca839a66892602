from datetime import datetime
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, ConfigDict
from course_payments.models.payment import PaymentStatus


class PaymentMethod(str, Enum):
    CARD = "CARD"
    MOBILE_WALLET = "MOBILE_WALLET"


class InitiatePaymentRequest(BaseModel):
    course_id: str
    payment_method: PaymentMethod = PaymentMethod.CARD


class InitiatePaymentResponse(BaseModel):
    payment_id: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    redirect_url: str | None


class PaymentStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    course_id: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    payment_method: str | None
    failure_reason: str | None
    gateway_order_id: str | None
    gateway_transaction_id: int | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    closed_at: datetime | None
    is_enrolled: bool = False


class RetryPaymentResponse(BaseModel):
    payment_id: str
    status: PaymentStatus
    redirect_url: str | None


class CancelPaymentResponse(BaseModel):
    payment_id: str
    status: PaymentStatus
    cancelled_at: datetime | None


class ManualCompleteRequest(BaseModel):
    note: str | None = None


class AbandonedCleanupResponse(BaseModel):
    cancelled: int
    payment_ids: list[str]
