"""
Notification Models — partner in-app notifications and the best-effort outbox
that delivers them (and emails) outside the primary request.
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey, Boolean, Text

from wallet_ledger.database import Base
from wallet_ledger.utils.timeutils import utcnow

CHANNEL_NOTIFICATION = "notification"
CHANNEL_EMAIL = "email"

OUTBOX_PENDING = "pending"
OUTBOX_SENT = "sent"
OUTBOX_FAILED = "failed"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)

    type = Column(String(16), default="info")  # info | success | warning | error
    title = Column(String(128), nullable=False)
    message = Column(String(1024), nullable=False)
    is_read = Column(Boolean, default=False, index=True)

    created_at = Column(DateTime, default=utcnow)


class OutboxMessage(Base):
    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    channel = Column(String(16), nullable=False)  # notification | email
    payload = Column(JSON, default=dict)
    idempotency_key = Column(String(128), unique=True, nullable=True)

    status = Column(String(16), default=OUTBOX_PENDING, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    next_attempt_at = Column(DateTime, default=utcnow, index=True)
    created_at = Column(DateTime, default=utcnow)
    sent_at = Column(DateTime, nullable=True)
