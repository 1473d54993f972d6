"""
Wallet Model — one per partner; available vs pending balance split.
"""
from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, ForeignKey, Boolean, Numeric, CheckConstraint,
)

from wallet_ledger.database import Base
from wallet_ledger.utils.timeutils import utcnow

WITHDRAWAL_METHODS = ("mpesa", "bank", "paybill")


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        CheckConstraint("pending_balance >= 0", name="ck_wallet_pending_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), unique=True, nullable=False, index=True)
    user_id = Column(Integer, nullable=True)

    balance = Column(Numeric(14, 2), nullable=False, default=0)
    pending_balance = Column(Numeric(14, 2), nullable=False, default=0)
    lifetime_earnings = Column(Numeric(14, 2), nullable=False, default=0)
    # Bumped on every balance mutation; guards optimistic updates
    version = Column(Integer, nullable=False, default=0)

    account_number = Column(String(64), nullable=False)
    withdrawal_method = Column(String(16), nullable=False)  # mpesa | bank | paybill
    paybill_number = Column(String(32), nullable=True)
    bank_name = Column(String(128), nullable=True)
    branch = Column(String(128), nullable=True)
    beneficiaries = Column(JSON, default=list)  # [{label, account_number, provider}]

    pin_hash = Column(String(160), nullable=False)
    pin_set_at = Column(DateTime, default=utcnow)

    is_setup_complete = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
