import uuid
from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from course_payments.db.base import Base
from .mixins.timestamp import TimestampMixin, utcnow


class Enrollment(Base, TimestampMixin):
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    course_id: Mapped[str] = mapped_column(ForeignKey("course.id"), nullable=False, index=True)
    payment_id: Mapped[str | None] = mapped_column(ForeignKey("payment.id"), nullable=True)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    progress_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
