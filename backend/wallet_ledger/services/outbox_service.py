"""
Outbox Service — best-effort delivery of notifications and emails.

Messages are enqueued after the primary operation has committed, so a
delivery problem can never undo a withdrawal or a payment. The dispatcher
claims due messages, delivers them, and retries failures with exponential
backoff until OUTBOX_MAX_ATTEMPTS, after which the message is ``failed``.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wallet_ledger.config import get_settings
from wallet_ledger.models.notification import (
    OutboxMessage, CHANNEL_EMAIL, CHANNEL_NOTIFICATION,
    OUTBOX_PENDING, OUTBOX_SENT, OUTBOX_FAILED,
)
from wallet_ledger.services.notification_service import NotificationService
from wallet_ledger.utils.timeutils import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()

# How long a claimed message is hidden from other dispatchers
CLAIM_LEASE = timedelta(minutes=5)


def _deliver(db: Session, message: OutboxMessage) -> None:
    payload = message.payload or {}
    if message.channel == CHANNEL_NOTIFICATION:
        NotificationService.create_notification(
            db,
            partner_id=payload["partner_id"],
            type=payload.get("type", "info"),
            title=payload["title"],
            message=payload["message"],
        )
    elif message.channel == CHANNEL_EMAIL:
        result = NotificationService.send_email(payload.get("to"), payload["subject"], payload["body"])
        if not result.get("success"):
            raise RuntimeError(f"Email provider refused message: {result}")
    else:
        raise ValueError(f"Unknown outbox channel: {message.channel}")


def backoff_delay(attempts: int) -> timedelta:
    """Delay before retry number ``attempts`` (1-based): base, 2x, 4x, ..."""
    return timedelta(seconds=settings.OUTBOX_BACKOFF_SECONDS * (2 ** max(attempts - 1, 0)))


class OutboxService:

    @staticmethod
    def enqueue(
        db: Session,
        channel: str,
        payload: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Optional[OutboxMessage]:
        """Queue a message and commit it on its own.

        Never raises: a failure here is logged and reported as ``None``.
        """
        try:
            if idempotency_key:
                existing = (
                    db.query(OutboxMessage)
                    .filter(OutboxMessage.idempotency_key == idempotency_key)
                    .first()
                )
                if existing:
                    logger.info(f"Duplicate outbox message prevented: {idempotency_key} ({existing.status})")
                    return existing

            message = OutboxMessage(
                channel=channel,
                payload=payload,
                idempotency_key=idempotency_key,
                status=OUTBOX_PENDING,
                attempts=0,
                next_attempt_at=utcnow(),
                created_at=utcnow(),
            )
            db.add(message)
            db.commit()
            return message
        except Exception as e:
            logger.error(f"Failed to enqueue {channel} message {idempotency_key}: {e}", exc_info=True)
            try:
                db.rollback()
            except SQLAlchemyError:
                logger.exception("Rollback after failed enqueue also failed")
            return None

    @staticmethod
    def _claim(db: Session, message: OutboxMessage, now: datetime) -> bool:
        result = db.execute(
            update(OutboxMessage)
            .where(
                OutboxMessage.id == message.id,
                OutboxMessage.status == OUTBOX_PENDING,
                OutboxMessage.next_attempt_at <= now,
            )
            .values(next_attempt_at=now + CLAIM_LEASE)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def dispatch_pending(db: Session, now: Optional[datetime] = None, batch_size: Optional[int] = None) -> Dict[str, int]:
        """Deliver due messages.

        Returns:
            dict with 'processed', 'sent', 'retrying', 'failed' and 'skipped' counts.
        """
        now = now or utcnow()
        stats = {"processed": 0, "sent": 0, "retrying": 0, "failed": 0, "skipped": 0}

        due = (
            db.query(OutboxMessage)
            .filter(OutboxMessage.status == OUTBOX_PENDING, OutboxMessage.next_attempt_at <= now)
            .order_by(OutboxMessage.next_attempt_at.asc(), OutboxMessage.id.asc())
            .limit(batch_size or settings.OUTBOX_BATCH_SIZE)
            .all()
        )
        if not due:
            return stats

        logger.info(f"Dispatching {len(due)} outbox messages")
        for message in due:
            if not OutboxService._claim(db, message, now):
                stats["skipped"] += 1
                continue
            stats["processed"] += 1
            try:
                _deliver(db, message)
                message.status = OUTBOX_SENT
                message.sent_at = utcnow()
                message.last_error = None
                db.commit()
                stats["sent"] += 1
            except Exception as e:
                db.rollback()
                message.attempts = (message.attempts or 0) + 1
                message.last_error = str(e)[:500]
                if message.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
                    message.status = OUTBOX_FAILED
                    stats["failed"] += 1
                    logger.error(
                        f"Outbox message {message.id} ({message.channel}) failed permanently "
                        f"after {message.attempts} attempts: {e}"
                    )
                else:
                    message.next_attempt_at = now + backoff_delay(message.attempts)
                    stats["retrying"] += 1
                    logger.warning(
                        f"Outbox message {message.id} attempt {message.attempts}/"
                        f"{settings.OUTBOX_MAX_ATTEMPTS} failed: {e}"
                    )
                db.commit()

        logger.info(
            f"Outbox batch complete: {stats['sent']} sent, {stats['retrying']} retrying, {stats['failed']} failed"
        )
        return stats

    @staticmethod
    def get_queue_stats(db: Session) -> Dict[str, int]:
        return {
            "pending": db.query(OutboxMessage).filter(OutboxMessage.status == OUTBOX_PENDING).count(),
            "sent": db.query(OutboxMessage).filter(OutboxMessage.status == OUTBOX_SENT).count(),
            "failed": db.query(OutboxMessage).filter(OutboxMessage.status == OUTBOX_FAILED).count(),
            "total": db.query(OutboxMessage).count(),
        }
