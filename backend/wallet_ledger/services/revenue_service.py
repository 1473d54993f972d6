"""
Revenue Ledger — append-only partner revenue entries.

There is no update or delete: a correction is a new entry with a negative
amount that references the transaction it corrects.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from wallet_ledger.errors import NotFound, ValidationFailed
from wallet_ledger.models.revenue import RevenueEntry
from wallet_ledger.services.audit_service import AuditService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.utils.money import to_money
from wallet_ledger.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class RevenueService:

    @staticmethod
    def log_revenue(
        db: Session,
        partner_id: int,
        user_id: Optional[int],
        campaign_id: int,
        transaction_id: int,
        amount,
        gross_amount,
        reason: Optional[str] = None,
    ) -> RevenueEntry:
        """Append one entry. Flushes; the caller commits."""
        entry = RevenueEntry(
            partner_id=partner_id,
            user_id=user_id,
            campaign_id=campaign_id,
            transaction_id=transaction_id,
            amount=to_money(amount),
            gross_amount=to_money(gross_amount),
            reason=reason,
            split_timestamp=utcnow(),
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def get_entry(db: Session, entry_id: int) -> Optional[RevenueEntry]:
        return db.get(RevenueEntry, entry_id)

    @staticmethod
    def log_compensation(
        db: Session,
        revenue_entry_id: int,
        reason: str,
        amount=None,
        performed_by: Optional[int] = None,
    ) -> RevenueEntry:
        """Reverse all or part of an earlier share.

        Inserts the negative entry, takes the amount back out of the wallet
        balance and lifetime earnings, and audits it, in one commit.
        """
        original = RevenueService.get_entry(db, revenue_entry_id)
        if not original:
            raise NotFound("Revenue entry not found")
        if original.amount <= 0:
            raise ValidationFailed("Only a positive revenue entry can be compensated")
        if not reason or not reason.strip():
            raise ValidationFailed("A reason is required for a compensating entry")

        value = to_money(amount) if amount is not None else original.amount
        if value <= 0 or value > original.amount:
            raise ValidationFailed(
                f"Compensation must be between 0.01 and {original.amount}",
                error_type="invalid_amount",
            )

        try:
            entry = RevenueService.log_revenue(
                db,
                partner_id=original.partner_id,
                user_id=original.user_id,
                campaign_id=original.campaign_id,
                transaction_id=original.transaction_id,
                amount=-value,
                gross_amount=original.gross_amount,
                reason=reason.strip(),
            )
            WalletService.update_wallet_balance(db, original.partner_id, -value)
            AuditService.log(
                db, original.partner_id, "revenue.compensated", "revenue", entry.id,
                details={
                    "original_entry_id": original.id,
                    "transaction_id": original.transaction_id,
                    "amount": str(value),
                    "reason": reason.strip(),
                },
                user_id=performed_by,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"Compensated {value} of revenue entry {original.id} for partner {original.partner_id}")
        return entry

    @staticmethod
    def list_revenue(db: Session, partner_id: int, limit: int = 100, offset: int = 0) -> list[RevenueEntry]:
        return (
            db.query(RevenueEntry)
            .filter(RevenueEntry.partner_id == partner_id)
            .order_by(RevenueEntry.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @staticmethod
    def total_revenue(db: Session, partner_id: int) -> Decimal:
        total = (
            db.query(func.coalesce(func.sum(RevenueEntry.amount), 0))
            .filter(RevenueEntry.partner_id == partner_id)
            .scalar()
        )
        return to_money(total)

    @staticmethod
    def reconcile(db: Session, partner_id: int) -> dict:
        """Compare the ledger sum with the wallet's lifetime earnings.

        Campaigns without an end-user account credit the wallet without a
        ledger entry, so a positive difference is expected for them.
        """
        wallet = WalletService.get_wallet_by_partner(db, partner_id)
        if not wallet:
            raise NotFound(f"Wallet not found for partner {partner_id}", error_type="wallet_not_found")

        revenue_total = RevenueService.total_revenue(db, partner_id)
        earnings = to_money(wallet.lifetime_earnings)
        difference = earnings - revenue_total
        if difference:
            logger.warning(
                f"Partner {partner_id} earnings {earnings} differ from ledger {revenue_total} by {difference}"
            )
        return {
            "partner_id": partner_id,
            "revenue_total": revenue_total,
            "lifetime_earnings": earnings,
            "difference": difference,
            "balanced": difference == 0,
        }
