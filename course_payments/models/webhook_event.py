import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, Text, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from course_payments.db.base import Base
from .mixins.timestamp import TimestampMixin


class WebhookOutcome(str, Enum):
    APPLIED = "APPLIED"
    NOOP = "NOOP"
    REJECTED = "REJECTED"


class WebhookEvent(Base, TimestampMixin):
    """
    One inbound gateway notification.
    processed_at is null until the notification has been applied (or rejected for good);
    dedup_key is the hash of the canonical payload, so redeliveries land on the same row.
    """
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    dedup_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    gateway_transaction_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    signature: Mapped[str | None] = mapped_column(String(256), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome: Mapped[WebhookOutcome | None] = mapped_column(SAEnum(WebhookOutcome), nullable=True)
