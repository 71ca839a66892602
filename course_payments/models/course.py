import uuid
from decimal import Decimal
from sqlalchemy import Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from course_payments.db.base import Base
from .mixins.timestamp import TimestampMixin


class Course(Base, TimestampMixin):
    """
    Catalog projection the payment subsystem reads.
    enrollment_count is the denormalized counter kept by the enrollment materializer.
    """
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="EGP", nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    professor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    enrollment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @property
    def is_free(self) -> bool:
        return self.price is None or self.price <= 0
