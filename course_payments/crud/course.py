from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.models.course import Course


class CRUDCourse:
    async def get_course(self, db: AsyncSession, course_id: str) -> Course | None:
        result = await db.execute(select(Course).where(Course.id == course_id))
        return result.scalar_one_or_none()

    async def increment_enrollment_count(self, db: AsyncSession, course_id: str) -> None:
        # atomic in the database, never read-modify-write in Python
        await db.execute(update(Course)
                         .where(Course.id == course_id)
                         .values(enrollment_count=Course.enrollment_count + 1)
                         .execution_options(synchronize_session=False))


crud_course = CRUDCourse()
