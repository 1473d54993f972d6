"""
Transaction Model — one mobile-money payment attempt.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric

from wallet_ledger.database import Base
from wallet_ledger.utils.timeutils import utcnow

STATUS_PENDING = "pending"
STATUS_SUCCESS = "Success"
STATUS_FAILED = "Failed"
TERMINAL_STATUSES = (STATUS_SUCCESS, STATUS_FAILED)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    # Gateway correlation id (STK push CheckoutRequestID); absent for inbound-only flows
    checkout_request_id = Column(String(64), unique=True, nullable=True, index=True)
    # M-Pesa receipt; globally unique once present
    receipt_code = Column(String(32), unique=True, nullable=True, index=True)

    student_name = Column(String(128), nullable=False)
    phone_number = Column(String(20), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)

    campaign_code = Column(String(32), nullable=False, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)

    status = Column(String(16), default=STATUS_PENDING, nullable=False)  # pending | Success | Failed

    created_at = Column(DateTime, default=utcnow)
    verified_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
