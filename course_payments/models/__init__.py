from .mixins.timestamp import TimestampMixin
from .course import Course
from .payment import Payment, PaymentStatus
from .enrollment import Enrollment
from .webhook_event import WebhookEvent, WebhookOutcome
from .audit_log import AuditLog

__all__ = ["TimestampMixin", "Course", "Payment", "PaymentStatus", "Enrollment",
           "WebhookEvent", "WebhookOutcome", "AuditLog"]
