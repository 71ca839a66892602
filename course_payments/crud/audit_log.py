import logging
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.models.audit_log import AuditLog

audit_logger = logging.getLogger("course_payments.audit")


class CRUDAuditLog:
    async def record(self, db: AsyncSession, action: str, actor_id: str | None,
                     payment_id: str | None = None, webhook_event_id: str | None = None,
                     details: dict | None = None) -> AuditLog:
        entry = AuditLog(
            action=action,
            actor_id=actor_id,
            payment_id=payment_id,
            webhook_event_id=webhook_event_id,
            details=details,
        )
        db.add(entry)
        await db.flush()
        audit_logger.info(f"{action} by {actor_id or 'system'} payment={payment_id} "
                          f"webhook_event={webhook_event_id} details={details}")
        return entry


crud_audit_log = CRUDAuditLog()
