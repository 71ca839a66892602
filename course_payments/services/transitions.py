"""
Payment state machine, free of IO.

Every status change in the service is planned here and then written by the
reconciliation engine as a compare-and-swap on the current status.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from course_payments.core.exceptions import InvalidTransition
from course_payments.models.payment import PaymentStatus
from course_payments.schemas.notification import TransactionNotification

FAILED_AT_GATEWAY = "payment failed at gateway"
GATEWAY_ERROR_DURING_RETRY = "gateway error during retry"
GATEWAY_ERROR_DURING_INITIATION = "gateway error during initiation"
CANCELLED_BY_USER = "cancelled by user"
CANCELLED_BY_ADMIN = "cancelled by admin"

# edges a gateway notification may drive
WEBHOOK_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    # a late success for an attempt the user gave up on is still money received
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED},
    PaymentStatus.CANCELLED: {PaymentStatus.COMPLETED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}

# a "pending" report for a payment that already moved past PROCESSING is a stale redelivery
SETTLED_STATUSES = {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED, PaymentStatus.REFUNDED}

RETRYABLE_STATUSES = {PaymentStatus.FAILED, PaymentStatus.CANCELLED}
CANCELLABLE_STATUSES = {PaymentStatus.PENDING}


@dataclass(frozen=True)
class TransitionPlan:
    current: PaymentStatus
    target: PaymentStatus
    fields: dict = field(default_factory=dict)
    noop: bool = False

    @property
    def enters_completed(self) -> bool:
        return not self.noop and self.target == PaymentStatus.COMPLETED and self.current != PaymentStatus.COMPLETED


def noop(current: PaymentStatus) -> TransitionPlan:
    return TransitionPlan(current=current, target=current, noop=True)


def to_cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def decide_status(notification: TransactionNotification) -> PaymentStatus:
    """First match wins."""
    if notification.refunded:
        return PaymentStatus.REFUNDED
    if notification.success and not notification.pending:
        return PaymentStatus.COMPLETED
    if notification.pending:
        return PaymentStatus.PROCESSING
    return PaymentStatus.FAILED


def plan_webhook_transition(current: PaymentStatus, notification: TransactionNotification,
                            now: datetime) -> TransitionPlan:
    target = decide_status(notification)
    if target == current:
        return noop(current)
    if target == PaymentStatus.PROCESSING and current in SETTLED_STATUSES:
        return noop(current)
    if target not in WEBHOOK_TRANSITIONS[current]:
        raise InvalidTransition(current, target)

    fields = {
        "status": target,
        "gateway_transaction_id": notification.transaction_id,
        "payment_method": notification.payment_method,
    }
    if target == PaymentStatus.COMPLETED:
        fields.update(failure_reason=None, completed_at=now, closed_at=now)
    elif target == PaymentStatus.FAILED:
        fields.update(failure_reason=FAILED_AT_GATEWAY, closed_at=now)
    elif target == PaymentStatus.REFUNDED:
        fields.update(closed_at=now)
    return TransitionPlan(current=current, target=target, fields=fields)


def plan_retry(current: PaymentStatus) -> TransitionPlan:
    if current not in RETRYABLE_STATUSES:
        raise InvalidTransition(current, PaymentStatus.PENDING)
    return TransitionPlan(current=current, target=PaymentStatus.PENDING, fields={
        "status": PaymentStatus.PENDING,
        "failure_reason": None,
        "gateway_transaction_id": None,
        "gateway_order_id": None,
        "redirect_url": None,
        "completed_at": None,
        "closed_at": None,
    })


def plan_cancel(current: PaymentStatus, reason: str, now: datetime,
                stamp_completed_at: bool) -> TransitionPlan:
    if current not in CANCELLABLE_STATUSES:
        raise InvalidTransition(current, PaymentStatus.CANCELLED)
    fields = {"status": PaymentStatus.CANCELLED, "failure_reason": reason, "closed_at": now}
    if stamp_completed_at:
        fields["completed_at"] = now
    return TransitionPlan(current=current, target=PaymentStatus.CANCELLED, fields=fields)


def plan_manual_complete(current: PaymentStatus, now: datetime) -> TransitionPlan:
    if current == PaymentStatus.COMPLETED:
        return noop(current)
    if current == PaymentStatus.REFUNDED:
        raise InvalidTransition(current, PaymentStatus.COMPLETED)
    return TransitionPlan(current=current, target=PaymentStatus.COMPLETED, fields={
        "status": PaymentStatus.COMPLETED,
        "failure_reason": None,
        "completed_at": now,
        "closed_at": now,
    })


def plan_gateway_order(current: PaymentStatus, order_id: str, redirect_url: str,
                       gateway_response: dict) -> TransitionPlan:
    # a notification may already have moved the payment on; the order details are then stale
    if current != PaymentStatus.PENDING:
        return noop(current)
    return TransitionPlan(current=current, target=PaymentStatus.PENDING, fields={
        "gateway_order_id": order_id,
        "redirect_url": redirect_url,
        "gateway_response": gateway_response,
    })


def plan_gateway_failure(current: PaymentStatus, reason: str, now: datetime) -> TransitionPlan:
    if current != PaymentStatus.PENDING:
        return noop(current)
    return TransitionPlan(current=current, target=PaymentStatus.FAILED, fields={
        "status": PaymentStatus.FAILED,
        "failure_reason": reason,
        "closed_at": now,
    })
