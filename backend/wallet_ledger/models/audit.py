"""
Audit Log Model — Immutable, tamper-evident audit trail.
Every action is SHA-256 hashed, chained per partner and timestamped.
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey

from wallet_ledger.database import Base
from wallet_ledger.utils.timeutils import utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)

    action = Column(String(50), nullable=False, index=True)
    # Actions: withdrawal.requested, withdrawal.processing, withdrawal.completed,
    #          withdrawal.rejected, withdrawal.cancelled, wallet.created,
    #          wallet.updated, revenue.compensated, payment.reconciled

    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=True)
    details = Column(JSON, default=dict)

    payload_hash = Column(String(64))       # chain hash of this entry
    previous_hash = Column(String(64))      # chain hash of the partner's previous entry

    ip_address = Column(String(45))
    created_at = Column(DateTime, default=utcnow)
