"""
Catalog Models — Partners, Programs and Campaigns.
Owned by the campaign/program CRUD side; the ledger only reads them.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric

from wallet_ledger.database import Base
from wallet_ledger.utils.timeutils import utcnow


class Partner(Base):
    __tablename__ = "partners"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    name = Column(String(128), nullable=False)
    email = Column(String(254))
    phone = Column(String(20))

    created_at = Column(DateTime, default=utcnow)


class Program(Base):
    __tablename__ = "programs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    name = Column(String(128), nullable=False)
    price_per_lesson = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime, default=utcnow)


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    name = Column(String(128), nullable=False)
    promo_code = Column(String(32), unique=True, nullable=False, index=True)

    program_id = Column(Integer, ForeignKey("programs.id"), nullable=False, index=True)
    partner_id = Column(Integer, ForeignKey("partners.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)  # end-user account that owns enrollments, if any

    status = Column(String(16), default="draft")  # draft | active | expired

    # Used for projections only; actual postings use PARTNER_SHARE_RATE
    partner_percentage = Column(Numeric(5, 2), default=20)
    platform_percentage = Column(Numeric(5, 2), default=80)

    duration_start = Column(DateTime, nullable=True)
    duration_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
