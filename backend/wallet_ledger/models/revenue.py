"""
Revenue Entry Model — append-only record of a partner's share per transaction.
Corrections are new rows with a negative amount, never updates.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric

from wallet_ledger.database import Base
from wallet_ledger.utils.timeutils import utcnow


class RevenueEntry(Base):
    __tablename__ = "partner_revenue_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)        # partner share (negative for compensations)
    gross_amount = Column(Numeric(12, 2), nullable=False)  # full transaction amount
    reason = Column(String(255), nullable=True)            # set on compensating entries

    split_timestamp = Column(DateTime, default=utcnow)
