import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Numeric, String, Text, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
from course_payments.db.base import Base
from .mixins.timestamp import TimestampMixin


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Payment(Base, TimestampMixin):
    # id doubles as the gateway's merchant_order_id
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    course_id: Mapped[str] = mapped_column(ForeignKey("course.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EGP", nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    gateway_transaction_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    redirect_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # terminal timestamp for COMPLETED, FAILED, CANCELLED and REFUNDED alike
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
