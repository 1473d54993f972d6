"""
Enrollment Issuer — redemption records for successfully paid transactions.
"""
import logging
from typing import Optional, Dict

from sqlalchemy.orm import Session

from wallet_ledger.config import get_settings
from wallet_ledger.errors import Conflict
from wallet_ledger.models.enrollment import Enrollment
from wallet_ledger.utils.codes import generate_redeem_code

logger = logging.getLogger(__name__)
settings = get_settings()


class EnrollmentService:

    @staticmethod
    def get_by_transaction_id(db: Session, transaction_id: int) -> Optional[Enrollment]:
        return db.query(Enrollment).filter(Enrollment.transaction_id == transaction_id).first()

    @staticmethod
    def get_by_redeem_code(db: Session, redeem_code: str) -> Optional[Enrollment]:
        return db.query(Enrollment).filter(Enrollment.redeem_code == redeem_code).first()

    @staticmethod
    def create_enrollment(
        db: Session,
        program_id: int,
        user_id: int,
        campaign_id: int,
        transaction_id: int,
        redeem_code: Optional[str] = None,
        status: str = "redeemed",
        meta: Optional[Dict] = None,
    ) -> Enrollment:
        """Create the single enrollment for a transaction.

        An already-enrolled transaction returns its existing record. A
        redeem-code collision draws a fresh code instead of failing.
        Flushes; the caller commits.
        """
        existing = EnrollmentService.get_by_transaction_id(db, transaction_id)
        if existing:
            logger.info(f"Transaction {transaction_id} already enrolled as {existing.redeem_code}")
            return existing

        code = redeem_code or generate_redeem_code()
        for _ in range(settings.REDEEM_CODE_ATTEMPTS):
            if not EnrollmentService.get_by_redeem_code(db, code):
                break
            logger.warning(f"Redeem code {code} already issued; drawing another")
            code = generate_redeem_code()
        else:
            raise Conflict("Could not allocate a unique redeem code", error_type="redeem_code_exhausted")

        enrollment = Enrollment(
            program_id=program_id,
            user_id=user_id,
            campaign_id=campaign_id,
            transaction_id=transaction_id,
            redeem_code=code,
            status=status,
            meta=meta or {},
        )
        db.add(enrollment)
        db.flush()
        return enrollment
