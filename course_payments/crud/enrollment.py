import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.core.exceptions import EnrollmentRaceResolved
from course_payments.db.upsert import insert_on_conflict_do_nothing
from course_payments.models.enrollment import Enrollment
from course_payments.models.mixins.timestamp import utcnow


class CRUDEnrollment:
    async def find_enrollment(self, db: AsyncSession, user_id: str, course_id: str) -> Enrollment | None:
        result = await db.execute(select(Enrollment)
                                  .where(Enrollment.user_id == user_id)
                                  .where(Enrollment.course_id == course_id))
        return result.scalar_one_or_none()

    async def create_enrollment_if_absent(self, db: AsyncSession, user_id: str, course_id: str,
                                          payment_id: str | None) -> Enrollment:
        now = utcnow()
        inserted = await insert_on_conflict_do_nothing(db, Enrollment, {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "course_id": course_id,
            "payment_id": payment_id,
            "enrolled_at": now,
            "progress_percent": 0,
            "created_at": now,
            "updated_at": now,
        }, conflict_columns=["user_id", "course_id"])
        if not inserted:
            raise EnrollmentRaceResolved(user_id, course_id)
        return await self.find_enrollment(db, user_id, course_id)


crud_enrollment = CRUDEnrollment()
