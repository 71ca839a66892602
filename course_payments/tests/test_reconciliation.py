import pytest
from sqlalchemy import func, select
from course_payments.core.exceptions import (AccessDenied, AmountMismatch, ConcurrentModification, GatewayError,
                                             InvalidTransition, PaymentNotFound)
from course_payments.crud.payment import crud_payment
from course_payments.models import AuditLog, Course, Enrollment, Payment, PaymentStatus
from course_payments.schemas.notification import TransactionNotification
from course_payments.services.transitions import (CANCELLED_BY_ADMIN, CANCELLED_BY_USER, FAILED_AT_GATEWAY,
                                                  GATEWAY_ERROR_DURING_RETRY)
from course_payments.tests.helpers import load


def notification(payment_id, amount_cents=50000, currency="EGP", success=True, pending=False, refunded=False,
                 transaction_id=1001) -> TransactionNotification:
    return TransactionNotification(merchant_order_id=payment_id, transaction_id=transaction_id,
                                   amount_cents=amount_cents, currency=currency, success=success,
                                   pending=pending, refunded=refunded, payment_method="CARD")


async def apply(engine, db_session_factory, note):
    async with db_session_factory() as session:
        result = await engine.apply_notification(session, note)
        await session.commit()
        return result


async def enrollment_count(db_session_factory, course_id):
    async with db_session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(Enrollment).where(Enrollment.course_id == course_id))
        return result.scalar_one()


async def test_success_notification_completes_and_enrolls(engine, db_session_factory, make_payment, seeded_courses):
    payment_id = await make_payment()
    result = await apply(engine, db_session_factory, notification(payment_id))

    assert result.applied
    assert result.previous_status == PaymentStatus.PENDING
    assert result.status == PaymentStatus.COMPLETED
    assert result.enrollment is not None
    payment = await load(db_session_factory, Payment, payment_id)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.gateway_transaction_id == 1001
    assert payment.completed_at is not None
    course = await load(db_session_factory, Course, seeded_courses["paid"])
    assert course.enrollment_count == 1


async def test_duplicate_success_enrolls_once(engine, db_session_factory, make_payment, seeded_courses):
    payment_id = await make_payment()
    await apply(engine, db_session_factory, notification(payment_id))
    second = await apply(engine, db_session_factory, notification(payment_id))

    assert not second.applied
    assert second.status == PaymentStatus.COMPLETED
    assert await enrollment_count(db_session_factory, seeded_courses["paid"]) == 1
    course = await load(db_session_factory, Course, seeded_courses["paid"])
    assert course.enrollment_count == 1


async def test_pending_then_success(engine, db_session_factory, make_payment):
    payment_id = await make_payment()
    first = await apply(engine, db_session_factory, notification(payment_id, success=False, pending=True))
    assert first.status == PaymentStatus.PROCESSING
    second = await apply(engine, db_session_factory, notification(payment_id, transaction_id=1002))
    assert second.status == PaymentStatus.COMPLETED
    assert second.enrollment is not None


async def test_failure_notification(engine, db_session_factory, make_payment, seeded_courses):
    payment_id = await make_payment()
    result = await apply(engine, db_session_factory, notification(payment_id, success=False))
    assert result.status == PaymentStatus.FAILED
    payment = await load(db_session_factory, Payment, payment_id)
    assert payment.failure_reason == FAILED_AT_GATEWAY
    assert await enrollment_count(db_session_factory, seeded_courses["paid"]) == 0


async def test_amount_mismatch_leaves_payment_untouched(engine, db_session_factory, make_payment):
    payment_id = await make_payment()
    with pytest.raises(AmountMismatch):
        await apply(engine, db_session_factory, notification(payment_id, amount_cents=10000))
    payment = await load(db_session_factory, Payment, payment_id)
    assert payment.status == PaymentStatus.PENDING


async def test_currency_mismatch_is_rejected(engine, db_session_factory, make_payment):
    payment_id = await make_payment()
    with pytest.raises(AmountMismatch):
        await apply(engine, db_session_factory, notification(payment_id, currency="USD"))


async def test_unknown_payment(engine, db_session_factory, seeded_courses):
    with pytest.raises(PaymentNotFound):
        await apply(engine, db_session_factory, notification("no-such-payment"))


async def test_refund_after_completion_keeps_enrollment(engine, db_session_factory, make_payment, seeded_courses):
    payment_id = await make_payment()
    await apply(engine, db_session_factory, notification(payment_id))
    result = await apply(engine, db_session_factory, notification(payment_id, refunded=True, transaction_id=1003))
    assert result.status == PaymentStatus.REFUNDED
    assert await enrollment_count(db_session_factory, seeded_courses["paid"]) == 1


async def test_nothing_leaves_refunded(engine, db_session_factory, make_payment):
    payment_id = await make_payment(status=PaymentStatus.REFUNDED)
    with pytest.raises(InvalidTransition):
        await apply(engine, db_session_factory, notification(payment_id))
    payment = await load(db_session_factory, Payment, payment_id)
    assert payment.status == PaymentStatus.REFUNDED


async def test_completed_cannot_fail(engine, db_session_factory, make_payment):
    payment_id = await make_payment(status=PaymentStatus.COMPLETED)
    with pytest.raises(InvalidTransition):
        await apply(engine, db_session_factory, notification(payment_id, success=False))
    payment = await load(db_session_factory, Payment, payment_id)
    assert payment.status == PaymentStatus.COMPLETED


async def test_lost_compare_and_swap_replans(engine, db_session_factory, make_payment, monkeypatch):
    """Another writer completes the payment between our read and our write."""
    payment_id = await make_payment()
    real_update = crud_payment.update_payment_status
    calls = {"n": 0}

    async def concurrent_writer_wins_first(db, pid, expected_status, fields):
        calls["n"] += 1
        if calls["n"] == 1:
            await real_update(db, pid, expected_status, {"status": PaymentStatus.COMPLETED})
            return False
        return await real_update(db, pid, expected_status, fields)

    monkeypatch.setattr(crud_payment, "update_payment_status", concurrent_writer_wins_first)
    result = await apply(engine, db_session_factory, notification(payment_id))

    # the re-read sees COMPLETED, so the same notification is now a no-op
    assert not result.applied
    assert result.status == PaymentStatus.COMPLETED


async def test_endless_contention_gives_up(engine, db_session_factory, make_payment, monkeypatch):
    payment_id = await make_payment()

    async def always_lose(db, pid, expected_status, fields):
        return False

    monkeypatch.setattr(crud_payment, "update_payment_status", always_lose)
    with pytest.raises(ConcurrentModification):
        await apply(engine, db_session_factory, notification(payment_id))


async def test_retry_failed_payment_opens_new_order(engine, fake_gateway, db_session_factory, make_payment, student):
    payment_id = await make_payment(status=PaymentStatus.FAILED, failure_reason=FAILED_AT_GATEWAY,
                                    gateway_transaction_id=55)
    async with db_session_factory() as session:
        payment = await engine.retry_payment(session, payment_id, student)

    assert payment.status == PaymentStatus.PENDING
    assert payment.redirect_url.endswith("payment_token=key-9001")
    assert payment.gateway_order_id == "9001"
    assert payment.failure_reason is None
    assert payment.gateway_transaction_id is None
    assert fake_gateway.calls[0]["amount_cents"] == 50000
    assert fake_gateway.calls[0]["billing"].first_name == "Sara"


async def test_retry_cancelled_payment(engine, db_session_factory, make_payment, student):
    payment_id = await make_payment(status=PaymentStatus.CANCELLED)
    async with db_session_factory() as session:
        payment = await engine.retry_payment(session, payment_id, student)
    assert payment.status == PaymentStatus.PENDING


@pytest.mark.parametrize("status", [PaymentStatus.COMPLETED, PaymentStatus.PENDING])
async def test_retry_rejected_for_completed_and_pending(engine, fake_gateway, db_session_factory, make_payment,
                                                        student, status):
    payment_id = await make_payment(status=status)
    async with db_session_factory() as session:
        with pytest.raises(InvalidTransition):
            await engine.retry_payment(session, payment_id, student)
    assert fake_gateway.calls == []
    payment = await load(db_session_factory, Payment, payment_id)
    assert payment.status == status


async def test_retry_gateway_error_marks_failed(engine, fake_gateway, db_session_factory, make_payment, student):
    payment_id = await make_payment(status=PaymentStatus.CANCELLED)
    fake_gateway.fail = True
    async with db_session_factory() as session:
        with pytest.raises(GatewayError):
            await engine.retry_payment(session, payment_id, student)

    payment = await load(db_session_factory, Payment, payment_id)
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == GATEWAY_ERROR_DURING_RETRY


async def test_retry_of_someone_elses_payment_is_denied(engine, db_session_factory, make_payment, other_student):
    payment_id = await make_payment(status=PaymentStatus.FAILED)
    async with db_session_factory() as session:
        with pytest.raises(AccessDenied):
            await engine.retry_payment(session, payment_id, other_student)


async def test_cancel_pending_payment(engine, db_session_factory, make_payment, student):
    payment_id = await make_payment()
    async with db_session_factory() as session:
        payment = await engine.cancel_payment(session, payment_id, student)

    assert payment.status == PaymentStatus.CANCELLED
    assert payment.failure_reason == CANCELLED_BY_USER
    assert payment.closed_at is not None
    assert payment.completed_at is not None


async def test_admin_cancel_is_recorded(engine, db_session_factory, make_payment, admin):
    payment_id = await make_payment()
    async with db_session_factory() as session:
        payment = await engine.cancel_payment(session, payment_id, admin)
    assert payment.failure_reason == CANCELLED_BY_ADMIN

    async with db_session_factory() as session:
        actions = (await session.execute(select(AuditLog.action).where(AuditLog.payment_id == payment_id))).scalars().all()
    assert actions == ["payment.cancel.admin"]


async def test_cancel_without_completed_at_stamp(fake_gateway, test_settings, db_session_factory, make_payment,
                                                 student):
    from course_payments.services.reconciliation import ReconciliationEngine
    engine = ReconciliationEngine(fake_gateway, test_settings.model_copy(update={"CANCEL_STAMPS_COMPLETED_AT": False}))
    payment_id = await make_payment()
    async with db_session_factory() as session:
        payment = await engine.cancel_payment(session, payment_id, student)
    assert payment.closed_at is not None
    assert payment.completed_at is None


@pytest.mark.parametrize("status", [PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED])
async def test_cancel_rejected_outside_pending(engine, db_session_factory, make_payment, student, status):
    payment_id = await make_payment(status=status)
    async with db_session_factory() as session:
        with pytest.raises(InvalidTransition):
            await engine.cancel_payment(session, payment_id, student)
    payment = await load(db_session_factory, Payment, payment_id)
    assert payment.status == status


async def test_manual_complete_from_failed(engine, db_session_factory, make_payment, admin, seeded_courses):
    payment_id = await make_payment(status=PaymentStatus.FAILED)
    async with db_session_factory() as session:
        result = await engine.manual_complete(session, payment_id, admin, note="bank confirmed transfer")

    assert result.applied
    assert result.status == PaymentStatus.COMPLETED
    assert result.enrollment is not None
    course = await load(db_session_factory, Course, seeded_courses["paid"])
    assert course.enrollment_count == 1
    async with db_session_factory() as session:
        entry = (await session.execute(select(AuditLog).where(AuditLog.payment_id == payment_id))).scalar_one()
    assert entry.action == "payment.manual_complete"
    assert entry.actor_id == admin.user_id
    assert entry.details["previous_status"] == "FAILED"


async def test_manual_complete_requires_admin(engine, db_session_factory, make_payment, student):
    payment_id = await make_payment()
    async with db_session_factory() as session:
        with pytest.raises(AccessDenied):
            await engine.manual_complete(session, payment_id, student)


async def test_manual_complete_cannot_undo_refund(engine, db_session_factory, make_payment, admin):
    payment_id = await make_payment(status=PaymentStatus.REFUNDED)
    async with db_session_factory() as session:
        with pytest.raises(InvalidTransition):
            await engine.manual_complete(session, payment_id, admin)
