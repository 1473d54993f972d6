"""
Enrollment Model — redemption record linking a paid transaction to a program.
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey

from wallet_ledger.database import Base
from wallet_ledger.utils.timeutils import utcnow


class Enrollment(Base):
    __tablename__ = "program_enrollments"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    program_id = Column(Integer, ForeignKey("programs.id"), nullable=False)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False)

    transaction_id = Column(Integer, ForeignKey("transactions.id"), unique=True, nullable=False)
    redeem_code = Column(String(16), unique=True, nullable=False, index=True)

    status = Column(String(16), default="redeemed")  # pending | redeemed | expired
    meta = Column(JSON, default=dict)                # phone, payment_amount, number_of_lessons

    created_at = Column(DateTime, default=utcnow)
