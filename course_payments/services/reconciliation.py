import logging
from dataclasses import dataclass
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.core.auth import Principal
from course_payments.core.config import Settings
from course_payments.core.exceptions import (AccessDenied, AmountMismatch, ConcurrentModification,
                                             CourseNotFound, GatewayError, PaymentNotFound)
from course_payments.crud.audit_log import crud_audit_log
from course_payments.crud.course import crud_course
from course_payments.crud.enrollment import crud_enrollment
from course_payments.crud.payment import crud_payment
from course_payments.models.course import Course
from course_payments.models.enrollment import Enrollment
from course_payments.models.mixins.timestamp import utcnow
from course_payments.models.payment import Payment, PaymentStatus
from course_payments.schemas.notification import TransactionNotification
from course_payments.services.enrollment import EnrollmentMaterializer, enrollment_materializer
from course_payments.services.gateway_client import BillingData, PaymobGatewayClient
from course_payments.services.transitions import (CANCELLED_BY_ADMIN, CANCELLED_BY_USER,
                                                  GATEWAY_ERROR_DURING_RETRY, TransitionPlan,
                                                  plan_cancel, plan_gateway_failure, plan_gateway_order,
                                                  plan_manual_complete, plan_retry, plan_webhook_transition,
                                                  to_cents)

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    payment: Payment
    previous_status: PaymentStatus
    applied: bool
    enrollment: Enrollment | None = None

    @property
    def status(self) -> PaymentStatus:
        return self.payment.status


class ReconciliationEngine:
    """
    Single entry point for every payment status change.

    Webhook notifications, user retry/cancel and admin completion all plan
    their transition in services.transitions and write it as a compare-and-swap
    on the status the plan was made against. A lost race re-reads the row and
    plans again, up to RECONCILIATION_MAX_CAS_ATTEMPTS times.
    """

    def __init__(self, gateway_client: PaymobGatewayClient, settings: Settings,
                 materializer: EnrollmentMaterializer | None = None):
        self.gateway = gateway_client
        self.settings = settings
        self.materializer = materializer or enrollment_materializer
        self.max_attempts = settings.RECONCILIATION_MAX_CAS_ATTEMPTS

    async def _compare_and_swap(self, db: AsyncSession, payment_id: str,
                                plan_for) -> tuple[Payment, TransitionPlan]:
        for attempt in range(self.max_attempts):
            payment = await crud_payment.find_payment_by_id(db, payment_id)
            if payment is None:
                raise PaymentNotFound(payment_id)
            plan = plan_for(payment)
            if plan.noop:
                return payment, plan
            swapped = await crud_payment.update_payment_status(db, payment.id, plan.current, plan.fields)
            if swapped:
                await db.refresh(payment)
                if plan.target != plan.current:
                    logger.info(f"payment {payment.id}: {plan.current.value} -> {plan.target.value}")
                return payment, plan
            logger.info(f"payment {payment_id}: status changed concurrently "
                        f"(attempt {attempt + 1}/{self.max_attempts}), re-reading")
        raise ConcurrentModification()

    @staticmethod
    def _authorize(payment: Payment, principal: Principal) -> None:
        if not principal.is_admin and payment.user_id != principal.user_id:
            raise AccessDenied()

    @staticmethod
    def _check_amount(payment: Payment, notification: TransactionNotification) -> None:
        expected_cents = to_cents(payment.amount)
        if expected_cents != notification.amount_cents or payment.currency.upper() != notification.currency.upper():
            logger.warning(f"payment {payment.id}: amount mismatch, stored {expected_cents} {payment.currency}, "
                           f"notification {notification.transaction_id} reports "
                           f"{notification.amount_cents} {notification.currency}")
            raise AmountMismatch(payment.id, expected_cents, payment.currency,
                                 notification.amount_cents, notification.currency)

    async def apply_notification(self, db: AsyncSession,
                                 notification: TransactionNotification) -> ReconciliationResult:
        """
        Apply a verified gateway notification. The caller owns the transaction and commits
        together with its webhook bookkeeping.
        """
        now = utcnow()

        def plan_for(payment: Payment) -> TransitionPlan:
            self._check_amount(payment, notification)
            return plan_webhook_transition(payment.status, notification, now)

        payment, plan = await self._compare_and_swap(db, notification.merchant_order_id, plan_for)
        if plan.noop:
            logger.info(f"payment {payment.id}: transaction {notification.transaction_id} "
                        f"repeats status {payment.status.value}, nothing to do")
            return ReconciliationResult(payment=payment, previous_status=plan.current, applied=False)

        enrollment = None
        if plan.enters_completed:
            enrollment = await self.materializer.ensure_enrollment(db, payment.user_id, payment.course_id,
                                                                   payment.id)
        return ReconciliationResult(payment=payment, previous_status=plan.current, applied=True,
                                    enrollment=enrollment)

    async def open_gateway_order(self, db: AsyncSession, payment: Payment, course: Course,
                                 principal: Principal | None, failure_reason: str) -> Payment:
        """
        Create the gateway order for a PENDING payment and store its redirect URL.
        A gateway failure moves the payment to FAILED so it never sits PENDING without a live order.
        """
        payment_id = payment.id
        billing_owner = principal if principal is not None and principal.user_id == payment.user_id else None
        try:
            checkout = await self.gateway.create_checkout(
                merchant_order_id=payment_id,
                amount_cents=to_cents(payment.amount),
                currency=payment.currency,
                item_name=course.title,
                billing=BillingData.from_principal(billing_owner),
                payment_method=payment.payment_method,
            )
        except GatewayError as e:
            logger.error(f"payment {payment_id}: {failure_reason}: {e.message}")
            await self._compare_and_swap(
                db, payment_id, lambda p: plan_gateway_failure(p.status, failure_reason, utcnow()))
            await db.commit()
            raise

        gateway_response = checkout.model_dump(exclude={"payment_key"})
        payment, _ = await self._compare_and_swap(
            db, payment_id,
            lambda p: plan_gateway_order(p.status, checkout.order_id, checkout.redirect_url, gateway_response))
        await db.commit()
        return payment

    async def retry_payment(self, db: AsyncSession, payment_id: str, principal: Principal) -> Payment:
        def plan_for(payment: Payment) -> TransitionPlan:
            self._authorize(payment, principal)
            return plan_retry(payment.status)

        payment, _ = await self._compare_and_swap(db, payment_id, plan_for)
        await db.commit()

        course = await crud_course.get_course(db, payment.course_id)
        if course is None:
            raise CourseNotFound(payment.course_id)
        return await self.open_gateway_order(db, payment, course, principal, GATEWAY_ERROR_DURING_RETRY)

    async def cancel_payment(self, db: AsyncSession, payment_id: str, principal: Principal | None,
                             reason: str | None = None) -> Payment:
        """Cancel a PENDING payment. principal is None for system sweeps."""
        now = utcnow()

        def by_admin(payment: Payment) -> bool:
            return principal is not None and principal.is_admin and principal.user_id != payment.user_id

        def plan_for(payment: Payment) -> TransitionPlan:
            if principal is not None:
                self._authorize(payment, principal)
            cancel_reason = reason or (CANCELLED_BY_ADMIN if by_admin(payment) else CANCELLED_BY_USER)
            return plan_cancel(payment.status, cancel_reason, now, self.settings.CANCEL_STAMPS_COMPLETED_AT)

        payment, plan = await self._compare_and_swap(db, payment_id, plan_for)
        if by_admin(payment):
            await crud_audit_log.record(db, "payment.cancel.admin", principal.user_id, payment_id=payment.id,
                                        details={"previous_status": plan.current.value})
        await db.commit()
        return payment

    async def manual_complete(self, db: AsyncSession, payment_id: str, actor: Principal,
                              note: str | None = None) -> ReconciliationResult:
        """Support/recovery path: force COMPLETED without any gateway evidence. Admin only."""
        if not actor.is_admin:
            raise AccessDenied()
        now = utcnow()
        payment, plan = await self._compare_and_swap(
            db, payment_id, lambda p: plan_manual_complete(p.status, now))
        # also heals a COMPLETED payment whose enrollment is missing
        enrollment = await self.materializer.ensure_enrollment(db, payment.user_id, payment.course_id, payment.id)
        await crud_audit_log.record(db, "payment.manual_complete", actor.user_id, payment_id=payment.id,
                                    details={"previous_status": plan.current.value, "noop": plan.noop,
                                             "note": note})
        await db.commit()
        return ReconciliationResult(payment=payment, previous_status=plan.current, applied=not plan.noop,
                                    enrollment=enrollment)

    async def get_payment_for(self, db: AsyncSession, payment_id: str,
                              principal: Principal) -> tuple[Payment, bool]:
        """Payment plus whether its owner is enrolled, for the owner or an admin."""
        payment = await crud_payment.find_payment_by_id(db, payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        self._authorize(payment, principal)
        is_enrolled = False
        if payment.status == PaymentStatus.COMPLETED:
            is_enrolled = await crud_enrollment.find_enrollment(db, payment.user_id, payment.course_id) is not None
        return payment, is_enrolled
