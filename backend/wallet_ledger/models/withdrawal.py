"""
Withdrawal Models — partner debit requests and the quota configuration they are checked against.
"""
from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, ForeignKey, Boolean, Numeric, Text, CheckConstraint,
)

from wallet_ledger.database import Base
from wallet_ledger.utils.timeutils import utcnow

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

OPEN_STATUSES = (PENDING, PROCESSING)
TERMINAL_STATUSES = (COMPLETED, FAILED, CANCELLED)
# Statuses that consume daily/monthly quota
QUOTA_STATUSES = (PENDING, PROCESSING, COMPLETED)


class Withdrawal(Base):
    __tablename__ = "withdrawals"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_amount_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)

    amount = Column(Numeric(14, 2), nullable=False)
    withdrawal_method = Column(String(16), nullable=False)
    destination_details = Column(JSON, default=dict)  # account_number, account_name, bank_name, branch, paybill_number

    reference_number = Column(String(40), unique=True, nullable=False, index=True)
    status = Column(String(16), default=PENDING, nullable=False, index=True)

    receipt = Column(String(64), nullable=True)
    rejection_reason = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class WithdrawalLimit(Base):
    """Partner-specific (``partner_id`` set) or global (``partner_id`` null) quota."""
    __tablename__ = "withdrawal_limits"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=True, index=True)

    min_withdrawal_amount = Column(Numeric(14, 2), nullable=False)
    max_withdrawal_amount = Column(Numeric(14, 2), nullable=False)
    daily_limit = Column(Numeric(14, 2), nullable=False)
    monthly_limit = Column(Numeric(14, 2), nullable=False)
    processing_days = Column(Integer, default=3)
    is_active = Column(Boolean, default=True, index=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
