from datetime import datetime
from pydantic import BaseModel
from course_payments.models.payment import PaymentStatus
from course_payments.models.webhook_event import WebhookOutcome


class WebhookAck(BaseModel):
    # processed | already_processed | ignored | rejected
    status: str
    event_id: str | None = None
    payment_id: str | None = None
    payment_status: PaymentStatus | None = None
    outcome: WebhookOutcome | None = None
    detail: str | None = None


class WebhookRetryRequest(BaseModel):
    # required to reprocess an event that already has processed_at set
    force: bool = False


class WebhookRetryResponse(BaseModel):
    event_id: str
    processing_attempts: int
    processed_at: datetime | None
    outcome: WebhookOutcome | None
    last_error: str | None
    payment_status: PaymentStatus | None
