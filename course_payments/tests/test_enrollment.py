import pytest
from sqlalchemy import func, select
from course_payments.core.exceptions import EnrollmentRaceResolved
from course_payments.crud.enrollment import crud_enrollment
from course_payments.models import Course, Enrollment
from course_payments.services.enrollment import EnrollmentMaterializer
from course_payments.tests.helpers import STUDENT_ID, load


async def count_enrollments(session, course_id):
    result = await session.execute(select(func.count()).select_from(Enrollment).where(Enrollment.course_id == course_id))
    return result.scalar_one()


async def test_creates_enrollment_and_bumps_counter(db_session_factory, seeded_courses):
    course_id = seeded_courses["paid"]
    async with db_session_factory() as session:
        enrollment = await EnrollmentMaterializer().ensure_enrollment(session, STUDENT_ID, course_id, None)
        await session.commit()

    assert enrollment.user_id == STUDENT_ID
    assert enrollment.course_id == course_id
    course = await load(db_session_factory, Course, course_id)
    assert course.enrollment_count == 1


async def test_second_call_is_a_noop(db_session_factory, seeded_courses):
    course_id = seeded_courses["paid"]
    materializer = EnrollmentMaterializer()
    async with db_session_factory() as session:
        first = await materializer.ensure_enrollment(session, STUDENT_ID, course_id, None)
        await session.commit()
    async with db_session_factory() as session:
        second = await materializer.ensure_enrollment(session, STUDENT_ID, course_id, None)
        await session.commit()
        assert await count_enrollments(session, course_id) == 1

    assert first.id == second.id
    course = await load(db_session_factory, Course, course_id)
    assert course.enrollment_count == 1


async def test_insert_on_existing_key_reports_race(db_session_factory, seeded_courses):
    course_id = seeded_courses["paid"]
    async with db_session_factory() as session:
        await crud_enrollment.create_enrollment_if_absent(session, STUDENT_ID, course_id, None)
        await session.commit()
    async with db_session_factory() as session:
        with pytest.raises(EnrollmentRaceResolved):
            await crud_enrollment.create_enrollment_if_absent(session, STUDENT_ID, course_id, None)


async def test_lost_race_is_treated_as_success(db_session_factory, seeded_courses, monkeypatch):
    """The existence check misses a row another request inserted right after it."""
    course_id = seeded_courses["paid"]
    async with db_session_factory() as session:
        winner = await crud_enrollment.create_enrollment_if_absent(session, STUDENT_ID, course_id, None)
        await session.commit()

    real_find = crud_enrollment.find_enrollment
    calls = {"n": 0}

    async def stale_first_read(db, user_id, course_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await real_find(db, user_id, course_id)

    monkeypatch.setattr(crud_enrollment, "find_enrollment", stale_first_read)

    async with db_session_factory() as session:
        enrollment = await EnrollmentMaterializer().ensure_enrollment(session, STUDENT_ID, course_id, None)
        await session.commit()

    assert enrollment.id == winner.id
    course = await load(db_session_factory, Course, course_id)
    # the losing insert must not move the counter
    assert course.enrollment_count == 0
