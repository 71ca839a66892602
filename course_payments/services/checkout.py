import logging
import math
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.core.auth import Principal, Role
from course_payments.core.config import Settings
from course_payments.core.exceptions import (CourseNotFound, EnrollmentNotAllowed, InvalidTransition,
                                             PendingPaymentExists)
from course_payments.crud.audit_log import crud_audit_log
from course_payments.crud.course import crud_course
from course_payments.crud.enrollment import crud_enrollment
from course_payments.crud.payment import crud_payment
from course_payments.models.course import Course
from course_payments.models.enrollment import Enrollment
from course_payments.models.mixins.timestamp import as_utc, utcnow
from course_payments.models.payment import Payment
from course_payments.services.reconciliation import ReconciliationEngine
from course_payments.services.transitions import GATEWAY_ERROR_DURING_INITIATION

logger = logging.getLogger(__name__)

PURCHASING_ROLES = (Role.STUDENT, Role.ADMIN)


class CheckoutService:
    """Purchase initiation, free-course enrollment and the abandoned-payment sweep."""

    def __init__(self, engine: ReconciliationEngine, settings: Settings):
        self.engine = engine
        self.settings = settings
        self.abandon_after = timedelta(minutes=settings.ABANDONED_PAYMENT_CLEANUP_MINUTES)

    def abandoned_reason(self) -> str:
        return f"payment abandoned, exceeded {self.settings.ABANDONED_PAYMENT_CLEANUP_MINUTES} minute limit"

    async def _load_enrollable_course(self, db: AsyncSession, principal: Principal, course_id: str) -> Course:
        if principal.role not in PURCHASING_ROLES:
            raise EnrollmentNotAllowed("role_not_allowed", status_code=403)
        course = await crud_course.get_course(db, course_id)
        if course is None:
            raise CourseNotFound(course_id)
        if not course.is_published:
            raise EnrollmentNotAllowed("not_published")
        if course.professor_id == principal.user_id:
            raise EnrollmentNotAllowed("own_course")
        return course

    async def initiate_payment(self, db: AsyncSession, principal: Principal, course_id: str,
                               payment_method: str) -> Payment:
        course = await self._load_enrollable_course(db, principal, course_id)
        if course.is_free:
            raise EnrollmentNotAllowed("free_course")
        if await crud_enrollment.find_enrollment(db, principal.user_id, course_id) is not None:
            raise EnrollmentNotAllowed("already_enrolled", status_code=409)

        pending = await crud_payment.find_pending_payment(db, principal.user_id, course_id)
        if pending is not None:
            age = utcnow() - as_utc(pending.created_at)
            if age < self.abandon_after:
                minutes_remaining = math.ceil((self.abandon_after - age).total_seconds() / 60)
                raise PendingPaymentExists(pending.id, minutes_remaining)
            logger.info(f"payment {pending.id} abandoned after {age}, cancelling before a new attempt")
            await self.engine.cancel_payment(db, pending.id, principal=None, reason=self.abandoned_reason())

        payment = await crud_payment.create_payment(db, principal.user_id, course.id, course.price,
                                                    course.currency, payment_method)
        await db.commit()
        logger.info(f"payment {payment.id} created for user {principal.user_id} on course {course.id}")
        return await self.engine.open_gateway_order(db, payment, course, principal,
                                                    GATEWAY_ERROR_DURING_INITIATION)

    async def enroll_free_course(self, db: AsyncSession, principal: Principal, course_id: str) -> Enrollment:
        course = await self._load_enrollable_course(db, principal, course_id)
        if not course.is_free:
            raise EnrollmentNotAllowed("payment_required")
        enrollment = await self.engine.materializer.ensure_enrollment(db, principal.user_id, course.id, None)
        await db.commit()
        return enrollment

    async def cancel_abandoned_payments(self, db: AsyncSession, actor: Principal | None = None,
                                        now: datetime | None = None) -> list[str]:
        cutoff = (now or utcnow()) - self.abandon_after
        abandoned = await crud_payment.find_abandoned_payments(db, cutoff)
        cancelled = []
        for payment in abandoned:
            try:
                await self.engine.cancel_payment(db, payment.id, principal=None, reason=self.abandoned_reason())
            except InvalidTransition as e:
                # a notification moved it on since the sweep read it
                logger.info(f"payment {payment.id} skipped by abandoned sweep: {e.message}")
                continue
            cancelled.append(payment.id)

        await crud_audit_log.record(db, "payment.cleanup_abandoned", actor.user_id if actor else None,
                                    details={"cutoff": cutoff.isoformat(), "cancelled": cancelled})
        await db.commit()
        logger.info(f"abandoned sweep cancelled {len(cancelled)} payment(s) created before {cutoff}")
        return cancelled
