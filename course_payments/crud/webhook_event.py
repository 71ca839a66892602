import uuid
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.db.upsert import insert_on_conflict_do_nothing
from course_payments.models.mixins.timestamp import utcnow
from course_payments.models.webhook_event import WebhookEvent, WebhookOutcome


class CRUDWebhookEvent:
    async def get_event(self, db: AsyncSession, event_id: str) -> WebhookEvent | None:
        result = await db.execute(select(WebhookEvent)
                                  .where(WebhookEvent.id == event_id)
                                  .execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def get_event_by_dedup_key(self, db: AsyncSession, dedup_key: str) -> WebhookEvent | None:
        result = await db.execute(select(WebhookEvent)
                                  .where(WebhookEvent.dedup_key == dedup_key)
                                  .execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def record_webhook_event(self, db: AsyncSession, dedup_key: str, event_type: str, payload: dict,
                                   signature: str | None, payment_id: str | None = None,
                                   gateway_transaction_id: int | None = None) -> tuple[WebhookEvent, bool]:
        """
        Store the notification once per dedup_key.
        Returns the stored row and whether this call created it.
        """
        now = utcnow()
        created = await insert_on_conflict_do_nothing(db, WebhookEvent, {
            "id": str(uuid.uuid4()),
            "dedup_key": dedup_key,
            "event_type": event_type,
            "payload": payload,
            "signature": signature,
            "payment_id": payment_id,
            "gateway_transaction_id": gateway_transaction_id,
            "processing_attempts": 0,
            "created_at": now,
            "updated_at": now,
        }, conflict_columns=["dedup_key"])
        event = await self.get_event_by_dedup_key(db, dedup_key)
        return event, created

    async def start_attempt(self, db: AsyncSession, event_id: str) -> None:
        await db.execute(update(WebhookEvent)
                         .where(WebhookEvent.id == event_id)
                         .values(processing_attempts=WebhookEvent.processing_attempts + 1)
                         .execution_options(synchronize_session=False))

    async def mark_webhook_processed(self, db: AsyncSession, event_id: str, outcome: WebhookOutcome,
                                     error: str | None = None) -> None:
        await db.execute(update(WebhookEvent)
                         .where(WebhookEvent.id == event_id)
                         .values(processed_at=utcnow(), outcome=outcome, last_error=error)
                         .execution_options(synchronize_session=False))

    async def record_failure(self, db: AsyncSession, event_id: str, error: str) -> None:
        # processed_at stays null so the gateway redelivery (or an operator) can try again
        await db.execute(update(WebhookEvent)
                         .where(WebhookEvent.id == event_id)
                         .values(processing_attempts=WebhookEvent.processing_attempts + 1, last_error=error)
                         .execution_options(synchronize_session=False))


crud_webhook_event = CRUDWebhookEvent()
