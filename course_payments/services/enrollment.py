import logging
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.core.exceptions import EnrollmentRaceResolved
from course_payments.crud.course import crud_course
from course_payments.crud.enrollment import crud_enrollment
from course_payments.models.enrollment import Enrollment

logger = logging.getLogger(__name__)


class EnrollmentMaterializer:
    """
    Creates the (user, course) enrollment exactly once.

    The unique constraint on (user_id, course_id) decides concurrent inserts;
    the existence check in front of it only saves the insert in the common case.
    The course counter moves only for the caller whose insert actually landed.
    """

    async def ensure_enrollment(self, db: AsyncSession, user_id: str, course_id: str,
                                payment_id: str | None) -> Enrollment:
        existing = await crud_enrollment.find_enrollment(db, user_id, course_id)
        if existing is not None:
            logger.info(f"user {user_id} already enrolled in course {course_id}, nothing to do")
            return existing
        try:
            enrollment = await crud_enrollment.create_enrollment_if_absent(db, user_id, course_id, payment_id)
        except EnrollmentRaceResolved as race:
            logger.info(f"{race.message}, using the existing row")
            return await crud_enrollment.find_enrollment(db, user_id, course_id)

        await crud_course.increment_enrollment_count(db, course_id)
        logger.info(f"user {user_id} enrolled in course {course_id} (payment {payment_id})")
        return enrollment


enrollment_materializer = EnrollmentMaterializer()
