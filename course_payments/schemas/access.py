from datetime import datetime
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, ConfigDict
from course_payments.models.payment import PaymentStatus


class AccessReason(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_FOUND = "not_found"
    ADMIN_ACCESS = "admin_access"
    PROFESSOR_OWNS = "professor_owns"
    NOT_PUBLISHED = "not_published"
    ENROLLED = "enrolled"
    FREE_COURSE = "free_course"
    PAYMENT_REQUIRED = "payment_required"


class EnrollmentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    progress_percent: int
    enrolled_at: datetime


class PaymentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: PaymentStatus
    amount: Decimal


class AccessResult(BaseModel):
    has_access: bool
    reason: AccessReason
    requires_payment: bool = False
    can_enroll: bool = False
    price: Decimal | None = None
    currency: str | None = None
    # set for enrolled users; payment is the latest COMPLETED one, none for free enrollments
    enrollment: EnrollmentSummary | None = None
    payment: PaymentSummary | None = None


class AccessMessage(BaseModel):
    title: str
    description: str
    action_text: str | None = None
    action_type: str | None = None


class AccessResponse(AccessResult):
    course_id: str
    message: AccessMessage


class EnrollmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    course_id: str
    payment_id: str | None
    enrolled_at: datetime
