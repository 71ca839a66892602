from datetime import datetime
from decimal import Decimal
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.models.payment import Payment, PaymentStatus


class CRUDPayment:
    async def find_payment_by_id(self, db: AsyncSession, payment_id: str) -> Payment | None:
        # populate_existing so a re-read after a lost compare-and-swap sees the winner's row
        result = await db.execute(select(Payment)
                                  .where(Payment.id == payment_id)
                                  .execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def create_payment(self, db: AsyncSession, user_id: str, course_id: str,
                             amount: Decimal, currency: str, payment_method: str | None) -> Payment:
        payment = Payment(
            user_id=user_id,
            course_id=course_id,
            amount=amount,
            currency=currency,
            payment_method=payment_method,
            status=PaymentStatus.PENDING,
        )
        db.add(payment)
        await db.flush()
        return payment

    async def update_payment_status(self, db: AsyncSession, payment_id: str,
                                    expected_status: PaymentStatus, fields: dict) -> bool:
        """
        Compare-and-swap on status: the row is only written while it still holds expected_status.
        Returns False when another writer moved the payment first.
        """
        result = await db.execute(update(Payment)
                                  .where(Payment.id == payment_id)
                                  .where(Payment.status == expected_status)
                                  .values(**fields)
                                  .execution_options(synchronize_session=False))
        return result.rowcount == 1

    async def find_pending_payment(self, db: AsyncSession, user_id: str, course_id: str) -> Payment | None:
        result = await db.execute(select(Payment)
                                  .where(Payment.user_id == user_id)
                                  .where(Payment.course_id == course_id)
                                  .where(Payment.status == PaymentStatus.PENDING)
                                  .order_by(Payment.created_at.desc())
                                  .limit(1))
        return result.scalar_one_or_none()

    async def find_latest_completed(self, db: AsyncSession, user_id: str, course_id: str) -> Payment | None:
        result = await db.execute(select(Payment)
                                  .where(Payment.user_id == user_id)
                                  .where(Payment.course_id == course_id)
                                  .where(Payment.status == PaymentStatus.COMPLETED)
                                  .order_by(Payment.created_at.desc())
                                  .limit(1))
        return result.scalar_one_or_none()

    async def find_abandoned_payments(self, db: AsyncSession, created_before: datetime) -> list[Payment]:
        result = await db.execute(select(Payment)
                                  .where(Payment.status == PaymentStatus.PENDING)
                                  .where(Payment.created_at < created_before)
                                  .order_by(Payment.created_at))
        return list(result.scalars().all())


crud_payment = CRUDPayment()
