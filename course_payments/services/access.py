import logging
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.core.auth import Role
from course_payments.crud.course import crud_course
from course_payments.crud.enrollment import crud_enrollment
from course_payments.crud.payment import crud_payment
from course_payments.schemas.access import AccessReason, AccessResult, EnrollmentSummary, PaymentSummary

logger = logging.getLogger(__name__)


def parse_role(role: Role | str | None) -> Role | None:
    if role is None or isinstance(role, Role):
        return role
    try:
        return Role(role.upper())
    except ValueError:
        return None


class AccessResolver:
    """
    Decides whether a user may view a course's content.

    Order matters: admin and owner checks run before the published check so
    draft courses stay visible to the people editing them.
    """

    async def resolve_access(self, db: AsyncSession, user_id: str | None, role: Role | str | None,
                             course_id: str) -> AccessResult:
        parsed_role = parse_role(role)
        if not user_id or parsed_role is None:
            if role is not None and parsed_role is None:
                logger.warning(f"user {user_id} has unknown role {role!r}, treating as signed out")
            return AccessResult(has_access=False, reason=AccessReason.NOT_AUTHENTICATED)

        course = await crud_course.get_course(db, course_id)
        if course is None:
            return AccessResult(has_access=False, reason=AccessReason.NOT_FOUND)
        pricing = {"price": course.price, "currency": course.currency}

        if parsed_role == Role.ADMIN:
            return AccessResult(has_access=True, reason=AccessReason.ADMIN_ACCESS, **pricing)
        if parsed_role == Role.PROFESSOR and course.professor_id == user_id:
            return AccessResult(has_access=True, reason=AccessReason.PROFESSOR_OWNS, **pricing)
        if not course.is_published:
            return AccessResult(has_access=False, reason=AccessReason.NOT_PUBLISHED, **pricing)

        enrollment = await crud_enrollment.find_enrollment(db, user_id, course_id)
        if enrollment is not None:
            payment = None
            if not course.is_free:
                payment = await crud_payment.find_latest_completed(db, user_id, course_id)
            return AccessResult(has_access=True, reason=AccessReason.ENROLLED,
                                enrollment=EnrollmentSummary.model_validate(enrollment),
                                payment=PaymentSummary.model_validate(payment) if payment else None,
                                **pricing)
        if course.is_free:
            return AccessResult(has_access=False, reason=AccessReason.FREE_COURSE,
                                requires_payment=False, can_enroll=True, **pricing)
        return AccessResult(has_access=False, reason=AccessReason.PAYMENT_REQUIRED,
                            requires_payment=True, can_enroll=True, **pricing)


access_resolver = AccessResolver()
