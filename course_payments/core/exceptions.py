import traceback


class PaymentError(Exception):
    def __init__(self, message: str, status_code: int = 400, code: str = "payment_error",
                 params: dict | None = None, stack_trace: bool = False):
        self.message = message
        self.status_code = status_code
        # key into core.messages for the localized text
        self.code = code
        self.params = params or {}
        self.stack_trace = traceback.format_exc() if stack_trace else None
        super().__init__(self.message)


class SignatureInvalid(PaymentError):
    def __init__(self):
        super().__init__("Invalid webhook signature",
                         status_code=401, code="signature_invalid")


class WebhookMisconfigured(PaymentError):
    def __init__(self):
        super().__init__("Webhook HMAC secret is not configured",
                         status_code=500, code="webhook_misconfigured")


class PayloadMalformed(PaymentError):
    def __init__(self, detail: str):
        super().__init__(f"Malformed webhook payload: {detail}",
                         status_code=400, code="payload_malformed")


class PaymentNotFound(PaymentError):
    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} not found",
                         status_code=404, code="payment_not_found")


class AmountMismatch(PaymentError):
    def __init__(self, payment_id: str, expected_cents: int, expected_currency: str,
                 received_cents: int, received_currency: str):
        super().__init__(
            f"Payment {payment_id} expects {expected_cents} {expected_currency}, "
            f"notification reports {received_cents} {received_currency}",
            status_code=422, code="amount_mismatch")


class AlreadyProcessed(PaymentError):
    def __init__(self, event_id: str, status_code: int = 200):
        self.event_id = event_id
        super().__init__(f"Webhook event {event_id} already processed",
                         status_code=status_code, code="already_processed")


class GatewayError(PaymentError):
    def __init__(self, message: str = "Payment gateway request failed"):
        super().__init__(message, status_code=502, code="gateway_error")


class InvalidTransition(PaymentError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move payment from {_name(current)} to {_name(target)}",
                         status_code=400, code="invalid_transition",
                         params={"current": _name(current), "target": _name(target)})


class EnrollmentRaceResolved(PaymentError):
    """Raised internally when a concurrent insert already created the enrollment."""

    def __init__(self, user_id: str, course_id: str):
        super().__init__(f"Enrollment for user {user_id} on course {course_id} created concurrently",
                         status_code=200, code="enrollment_race_resolved")


class ConcurrentModification(PaymentError):
    def __init__(self):
        super().__init__("Too much contention, please retry",
                         status_code=409, code="concurrent_modification")


class NotAuthenticated(PaymentError):
    def __init__(self):
        super().__init__("Authentication required",
                         status_code=401, code="not_authenticated")


class AccessDenied(PaymentError):
    def __init__(self):
        super().__init__("Not allowed to access this resource",
                         status_code=403, code="access_denied")


class CourseNotFound(PaymentError):
    def __init__(self, course_id: str):
        super().__init__(f"Course {course_id} not found",
                         status_code=404, code="course_not_found")


class EnrollmentNotAllowed(PaymentError):
    def __init__(self, reason: str, status_code: int = 400):
        self.reason = reason
        super().__init__(f"Enrollment not allowed: {reason}",
                         status_code=status_code, code=f"enrollment_{reason}")


class PendingPaymentExists(PaymentError):
    def __init__(self, payment_id: str, minutes_remaining: int):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} is still pending",
                         status_code=409, code="pending_payment_exists",
                         params={"minutes": minutes_remaining})


class WebhookEventNotFound(PaymentError):
    def __init__(self, event_id: str):
        super().__init__(f"Webhook event {event_id} not found",
                         status_code=404, code="webhook_event_not_found")


def _name(status) -> str:
    return getattr(status, "value", str(status))
