"""
Inbound gateway notifications.

Processing order for ``handle_inbound``:

1. refuse everything while the HMAC secret is missing
2. verify the signature before touching the database
3. parse the envelope (and the transaction object for TRANSACTION events)
4. store the event once per payload hash and commit it
5. skip events that already carry processed_at
6. apply through the reconciliation engine and mark the event, in one commit

Rejections that a redelivery cannot fix (unknown payment, amount mismatch,
invalid transition) mark the event processed with an error and answer 200 so
the gateway stops retrying. Anything unexpected leaves processed_at null and
surfaces as a 5xx.
"""
import hashlib
import json
import logging
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.core.auth import Principal
from course_payments.core.exceptions import (AlreadyProcessed, AmountMismatch, InvalidTransition,
                                             PayloadMalformed, PaymentNotFound, WebhookEventNotFound)
from course_payments.crud.audit_log import crud_audit_log
from course_payments.crud.payment import crud_payment
from course_payments.crud.webhook_event import crud_webhook_event
from course_payments.models.webhook_event import WebhookEvent, WebhookOutcome
from course_payments.schemas.notification import (TRANSACTION_TYPE, TransactionNotification, TransactionObject,
                                                  WebhookEnvelope)
from course_payments.schemas.webhook import WebhookAck, WebhookRetryResponse
from course_payments.services.reconciliation import ReconciliationEngine
from course_payments.services.signature import RAW_BODY_SCHEME, SignatureVerifier

logger = logging.getLogger(__name__)

REJECTIONS = (PaymentNotFound, AmountMismatch, InvalidTransition)
BYPASS_SIGNATURE_ACTION = "webhook.retry.bypass_signature"


def compute_payload_hash(payload: dict) -> str:
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode()).hexdigest()


def parse_envelope(data) -> WebhookEnvelope:
    try:
        return WebhookEnvelope.model_validate(data)
    except ValidationError as e:
        raise PayloadMalformed(_first_error(e))


def parse_transaction(obj: dict) -> TransactionNotification:
    try:
        return TransactionNotification.from_transaction(TransactionObject.model_validate(obj))
    except ValidationError as e:
        raise PayloadMalformed(_first_error(e))


def _first_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "body"
    return f"{location}: {first['msg']}"


class WebhookProcessor:
    def __init__(self, engine: ReconciliationEngine, verifier: SignatureVerifier):
        self.engine = engine
        self.verifier = verifier

    async def handle_inbound(self, db: AsyncSession, raw_body: bytes, signature: str | None) -> WebhookAck:
        self.verifier.ensure_configured()
        try:
            data = json.loads(raw_body)
        except ValueError:
            data = None
        if self.verifier.scheme == RAW_BODY_SCHEME or not isinstance(data, dict):
            # raw body is signed as-is; checking it first keeps unsigned garbage a 401
            self.verifier.check(raw_body, None, signature)
            if data is None:
                raise PayloadMalformed("body is not valid JSON")
            envelope = parse_envelope(data)
        else:
            envelope = parse_envelope(data)
            self.verifier.check(raw_body, envelope.obj, signature)

        dedup_key = compute_payload_hash(data)
        if envelope.type != TRANSACTION_TYPE:
            event, created = await crud_webhook_event.record_webhook_event(
                db, dedup_key, envelope.type, data, signature)
            if created:
                await crud_webhook_event.mark_webhook_processed(db, event.id, WebhookOutcome.NOOP)
            await db.commit()
            logger.info(f"ignoring {envelope.type} notification (event {event.id})")
            return WebhookAck(status="ignored", event_id=event.id, outcome=WebhookOutcome.NOOP,
                              detail=f"unhandled type {envelope.type}")

        notification = parse_transaction(envelope.obj)
        event, created = await crud_webhook_event.record_webhook_event(
            db, dedup_key, envelope.type, data, signature,
            payment_id=notification.merchant_order_id,
            gateway_transaction_id=notification.transaction_id)
        await db.commit()
        logger.info(f"received transaction {notification.transaction_id} for payment "
                    f"{notification.merchant_order_id} (event {event.id}, new={created})")

        try:
            self._claim(event)
        except AlreadyProcessed as e:
            logger.info(f"{e.message}, skipping")
            return WebhookAck(status="already_processed", event_id=event.id, payment_id=event.payment_id,
                              outcome=event.outcome)
        return await self._apply_event(db, event.id, notification)

    @staticmethod
    def _claim(event: WebhookEvent, force: bool = False, status_code: int = 200) -> None:
        if event.processed_at is not None and not force:
            raise AlreadyProcessed(event.id, status_code=status_code)

    async def _apply_event(self, db: AsyncSession, event_id: str,
                           notification: TransactionNotification) -> WebhookAck:
        await crud_webhook_event.start_attempt(db, event_id)
        try:
            result = await self.engine.apply_notification(db, notification)
        except REJECTIONS as e:
            logger.warning(f"event {event_id} rejected: {e.message}")
            await crud_webhook_event.mark_webhook_processed(db, event_id, WebhookOutcome.REJECTED, error=e.message)
            await db.commit()
            return WebhookAck(status="rejected", event_id=event_id, payment_id=notification.merchant_order_id,
                              outcome=WebhookOutcome.REJECTED, detail=e.code)
        except Exception as e:
            await db.rollback()
            logger.error(f"event {event_id} failed, gateway will redeliver: {e}", exc_info=True)
            await crud_webhook_event.record_failure(db, event_id, error=str(e) or e.__class__.__name__)
            await db.commit()
            raise

        outcome = WebhookOutcome.APPLIED if result.applied else WebhookOutcome.NOOP
        await crud_webhook_event.mark_webhook_processed(db, event_id, outcome)
        await db.commit()
        return WebhookAck(status="processed", event_id=event_id, payment_id=result.payment.id,
                          payment_status=result.status, outcome=outcome)

    async def retry_event(self, db: AsyncSession, event_id: str, actor: Principal,
                          force: bool = False) -> WebhookRetryResponse:
        """
        Operator retry of a stored event. Skips signature verification, so it is
        admin only and always audit-logged.
        """
        event = await crud_webhook_event.get_event(db, event_id)
        if event is None:
            raise WebhookEventNotFound(event_id)
        self._claim(event, force=force, status_code=409)

        await crud_audit_log.record(db, BYPASS_SIGNATURE_ACTION, actor.user_id,
                                    payment_id=event.payment_id, webhook_event_id=event.id,
                                    details={"force": force, "previous_attempts": event.processing_attempts,
                                             "previously_processed": event.processed_at is not None})
        await db.commit()

        envelope = parse_envelope(event.payload)
        if envelope.type != TRANSACTION_TYPE:
            await crud_webhook_event.start_attempt(db, event.id)
            await crud_webhook_event.mark_webhook_processed(db, event.id, WebhookOutcome.NOOP)
            await db.commit()
        else:
            await self._apply_event(db, event.id, parse_transaction(envelope.obj))

        event = await crud_webhook_event.get_event(db, event_id)
        payment_status = None
        if event.payment_id:
            payment = await crud_payment.find_payment_by_id(db, event.payment_id)
            payment_status = payment.status if payment is not None else None
        return WebhookRetryResponse(
            event_id=event.id,
            processing_attempts=event.processing_attempts,
            processed_at=event.processed_at,
            outcome=event.outcome,
            last_error=event.last_error,
            payment_status=payment_status,
        )
