"""
Notification Service — partner in-app notifications and email simulation.
"""
import logging
import time
import uuid
from typing import Dict, Any, Optional

from sqlalchemy.orm import Session

from wallet_ledger.errors import NotFound
from wallet_ledger.models.notification import Notification
from wallet_ledger.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class NotificationService:

    @staticmethod
    def create_notification(db: Session, partner_id: int, type: str, title: str, message: str) -> Notification:
        """Flushes; the caller commits."""
        notification = Notification(
            partner_id=partner_id,
            type=type,
            title=title,
            message=message,
            is_read=False,
            created_at=utcnow(),
        )
        db.add(notification)
        db.flush()
        return notification

    @staticmethod
    def get_notifications(
        db: Session, partner_id: int, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        query = db.query(Notification).filter(Notification.partner_id == partner_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return query.order_by(Notification.id.desc()).limit(limit).all()

    @staticmethod
    def get_unread_count(db: Session, partner_id: int) -> int:
        return (
            db.query(Notification)
            .filter(Notification.partner_id == partner_id, Notification.is_read.is_(False))
            .count()
        )

    @staticmethod
    def mark_as_read(db: Session, notification_id: int) -> Notification:
        notification = db.get(Notification, notification_id)
        if not notification:
            raise NotFound("Notification not found")
        notification.is_read = True
        db.commit()
        return notification

    @staticmethod
    def mark_all_as_read(db: Session, partner_id: int) -> int:
        count = (
            db.query(Notification)
            .filter(Notification.partner_id == partner_id, Notification.is_read.is_(False))
            .update({Notification.is_read: True}, synchronize_session=False)
        )
        db.commit()
        return count

    @staticmethod
    def send_email(to: str, subject: str, body: str, reply_to: Optional[str] = None) -> Dict[str, Any]:
        """
        Simulates sending a transactional email via a provider like Resend or SendGrid.
        """
        if not to or "@" not in to:
            raise ValueError(f"Invalid email recipient: {to!r}")
        message_id = f"EM{int(time.time())}{uuid.uuid4().hex[:6].upper()}"
        logger.info(f"[EMAIL] Sending to {to}: {subject} ({message_id})")
        return {
            "success": True,
            "provider": "MockEmailGateway",
            "message_id": message_id,
            "status": "sent",
        }
