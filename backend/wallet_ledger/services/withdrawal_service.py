"""
Withdrawal Engine — partner debit requests and their state machine.

    pending ──► processing ──► completed | failed
       └──────► cancelled            (and pending ──► completed | failed)

Creating a withdrawal moves the amount from ``balance`` to
``pending_balance``; completion removes it from pending, while rejection
and cancellation return it to ``balance``. The check-then-debit sequence
is serialised per wallet with a version-guarded UPDATE: if another writer
touched the wallet between validation and debit, the whole check is rerun
against fresh state, up to WALLET_UPDATE_MAX_RETRIES times.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from wallet_ledger.config import get_settings
from wallet_ledger.errors import (
    ConcurrencyConflict, InvalidStateTransition, NotFound, ValidationFailed, WithdrawalRejected,
)
from wallet_ledger.models.notification import CHANNEL_EMAIL, CHANNEL_NOTIFICATION
from wallet_ledger.models.wallet import Wallet, WITHDRAWAL_METHODS
from wallet_ledger.models.withdrawal import (
    Withdrawal, WithdrawalLimit,
    PENDING, PROCESSING, COMPLETED, FAILED, CANCELLED, OPEN_STATUSES, QUOTA_STATUSES,
)
from wallet_ledger.services.audit_service import AuditService
from wallet_ledger.services.catalog_service import CatalogService
from wallet_ledger.services.limit_service import LimitService
from wallet_ledger.services.outbox_service import OutboxService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.utils.codes import generate_reference
from wallet_ledger.utils.money import to_money, fmt
from wallet_ledger.utils.timeutils import utcnow, start_of_day, start_of_month

logger = logging.getLogger(__name__)
settings = get_settings()


def _rejection(code: str, reason: str, **extra) -> Dict[str, Any]:
    return {"can_withdraw": False, "reason": reason, "error_type": code, **extra}


def _used_since(db: Session, partner_id: int, since: datetime) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Withdrawal.amount), 0))
        .filter(
            Withdrawal.partner_id == partner_id,
            Withdrawal.status.in_(QUOTA_STATUSES),
            Withdrawal.created_at >= since,
        )
        .scalar()
    )
    return to_money(total)


def _evaluate(
    db: Session, wallet: Optional[Wallet], partner_id: int, amount: Decimal, now: datetime
) -> Tuple[Dict[str, Any], Optional[WithdrawalLimit]]:
    """Run every availability rule in order; the first failing one wins."""
    currency = settings.CURRENCY
    if not wallet:
        return _rejection("wallet_not_found", "Wallet not found"), None
    if not wallet.is_setup_complete:
        return _rejection("wallet_incomplete", "Please complete wallet setup first"), None

    limit = LimitService.get_active_limit(db, partner_id)
    if not limit:
        return _rejection("no_limits", "Withdrawal limits not configured. Contact support."), None

    balance = to_money(wallet.balance)
    if amount > balance:
        return _rejection(
            "insufficient_balance",
            f"Insufficient balance. Available: {currency} {fmt(balance)}",
            available_balance=balance,
        ), limit
    if amount < limit.min_withdrawal_amount:
        return _rejection(
            "below_minimum",
            f"Minimum withdrawal is {currency} {fmt(limit.min_withdrawal_amount)}",
            min_amount=to_money(limit.min_withdrawal_amount),
        ), limit
    if amount > limit.max_withdrawal_amount:
        return _rejection(
            "exceeds_maximum",
            f"Maximum withdrawal is {currency} {fmt(limit.max_withdrawal_amount)}",
            max_amount=to_money(limit.max_withdrawal_amount),
        ), limit

    today_total = _used_since(db, partner_id, start_of_day(settings.TIMEZONE, now))
    daily = to_money(limit.daily_limit)
    if today_total + amount > daily:
        remaining = daily - today_total
        return _rejection(
            "daily_limit",
            f"Daily limit exceeded. Remaining today: {currency} {fmt(remaining)}",
            daily_limit=daily,
            used_today=today_total,
            remaining_today=remaining,
        ), limit

    month_total = _used_since(db, partner_id, start_of_month(settings.TIMEZONE, now))
    monthly = to_money(limit.monthly_limit)
    if month_total + amount > monthly:
        remaining = monthly - month_total
        return _rejection(
            "monthly_limit",
            f"Monthly limit exceeded. Remaining this month: {currency} {fmt(remaining)}",
            monthly_limit=monthly,
            used_this_month=month_total,
            remaining_this_month=remaining,
        ), limit

    return {
        "can_withdraw": True,
        "amount": amount,
        "available_balance": balance,
        "remaining_balance": balance - amount,
        "limits": {
            "min": to_money(limit.min_withdrawal_amount),
            "max": to_money(limit.max_withdrawal_amount),
            "daily": daily,
            "monthly": monthly,
        },
        "usage": {
            "today": today_total,
            "remaining_today": daily - today_total - amount,
            "this_month": month_total,
            "remaining_this_month": monthly - month_total - amount,
        },
        "processing_days": limit.processing_days,
    }, limit


def _positive_amount(amount) -> Decimal:
    try:
        value = to_money(amount)
    except ValueError:
        raise ValidationFailed(f"Invalid amount: {amount!r}", error_type="invalid_amount")
    if value <= 0:
        raise ValidationFailed("Amount must be greater than zero", error_type="invalid_amount")
    return value


def _notify(db: Session, withdrawal: Withdrawal, event: str, type: str, title: str, message: str) -> None:
    OutboxService.enqueue(
        db,
        CHANNEL_NOTIFICATION,
        {"partner_id": withdrawal.partner_id, "type": type, "title": title, "message": message},
        idempotency_key=f"withdrawal:{withdrawal.id}:{event}:notification",
    )


def _request_email(db: Session, withdrawal: Withdrawal, processing_days: int) -> None:
    partner = CatalogService.get_partner(db, withdrawal.partner_id)
    if not partner or not partner.email:
        logger.info(f"No email on file for partner {withdrawal.partner_id}; withdrawal email skipped")
        return
    account = (withdrawal.destination_details or {}).get("account_number", "")
    body = (
        f"Hello {partner.name},\n\n"
        f"We received your withdrawal request of {settings.CURRENCY} {fmt(withdrawal.amount)}.\n"
        f"Reference: {withdrawal.reference_number}\n"
        f"Method: {withdrawal.withdrawal_method}\n"
        f"Destination account: {account}\n"
        f"Expected processing time: {processing_days} business days.\n"
    )
    OutboxService.enqueue(
        db,
        CHANNEL_EMAIL,
        {
            "to": partner.email,
            "subject": f"Withdrawal request {withdrawal.reference_number} received",
            "body": body,
        },
        idempotency_key=f"withdrawal:{withdrawal.id}:requested:email",
    )


class WithdrawalService:

    @staticmethod
    def get_withdrawal(db: Session, withdrawal_id: int) -> Optional[Withdrawal]:
        return db.get(Withdrawal, withdrawal_id)

    @staticmethod
    def check_availability(db: Session, partner_id: int, amount, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Pre-flight validation for display. Performs no writes and is
        never trusted by ``create_withdrawal``."""
        value = _positive_amount(amount)
        wallet = WalletService.get_wallet_by_partner(db, partner_id)
        result, _ = _evaluate(db, wallet, partner_id, value, now or utcnow())
        return result

    @staticmethod
    def create_withdrawal(
        db: Session,
        wallet_id: int,
        partner_id: int,
        amount,
        withdrawal_method: str,
        destination_details: Dict[str, Any],
        user_id: Optional[int] = None,
        notes: Optional[str] = None,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Validate against current state and move ``amount`` to pending.

        Raises:
            WithdrawalRejected: A quota, balance or setup rule failed;
                ``error_type`` is the rule's reason code.
            ConcurrencyConflict: The wallet kept changing under us.
        """
        value = _positive_amount(amount)
        if withdrawal_method not in WITHDRAWAL_METHODS:
            raise ValidationFailed(f"Unsupported withdrawal method '{withdrawal_method}'", error_type="invalid_method")
        if not (destination_details or {}).get("account_number"):
            raise ValidationFailed("Destination account number is required")

        attempts = settings.WALLET_UPDATE_MAX_RETRIES
        for attempt in range(1, attempts + 1):
            now_ts = now or utcnow()
            db.expire_all()
            wallet = (
                db.query(Wallet)
                .filter(Wallet.id == wallet_id)
                .with_for_update()
                .first()
            )
            if wallet and wallet.partner_id != partner_id:
                db.rollback()
                raise ValidationFailed("Wallet does not belong to this partner", error_type="wallet_mismatch")

            result, limit = _evaluate(db, wallet, partner_id, value, now_ts)
            if not result["can_withdraw"]:
                db.rollback()
                details = {k: v for k, v in result.items() if k not in ("can_withdraw", "reason", "error_type")}
                logger.info(f"Withdrawal of {value} for partner {partner_id} rejected: {result['error_type']}")
                raise WithdrawalRejected(result["reason"], error_type=result["error_type"], **details)

            reference = generate_reference()
            if not WalletService.move_to_pending(db, wallet, value):
                db.rollback()
                logger.warning(
                    f"Wallet {wallet_id} changed during withdrawal check (attempt {attempt}/{attempts}); retrying"
                )
                continue

            try:
                withdrawal = Withdrawal(
                    wallet_id=wallet.id,
                    user_id=user_id,
                    partner_id=partner_id,
                    amount=value,
                    withdrawal_method=withdrawal_method,
                    destination_details=dict(destination_details),
                    reference_number=reference,
                    status=PENDING,
                    notes=notes,
                    created_at=now_ts,
                )
                db.add(withdrawal)
                db.flush()
                AuditService.log(
                    db, partner_id, "withdrawal.requested", "withdrawal", withdrawal.id,
                    details={"amount": str(value), "reference": reference, "method": withdrawal_method},
                    user_id=user_id, ip_address=ip_address,
                )
                db.commit()
            except Exception:
                db.rollback()
                raise

            logger.info(f"Withdrawal {reference} of {value} created for partner {partner_id}")
            _notify(db, withdrawal, "requested", "success", "Withdrawal Request",
                    "Your withdrawal request has been submitted")
            _request_email(db, withdrawal, limit.processing_days)

            return {
                "success": True,
                "withdrawal_id": withdrawal.id,
                "reference_number": reference,
                "amount": value,
                "status": PENDING,
                "processing_days": limit.processing_days,
            }

        logger.error(f"Withdrawal for wallet {wallet_id} abandoned after {attempts} concurrent updates")
        raise ConcurrencyConflict("Wallet is busy, please try again")

    @staticmethod
    def _transition(db: Session, withdrawal_id: int, allowed: tuple, target: str, **values) -> Withdrawal:
        """Compare-and-set the status; only one caller wins a transition."""
        withdrawal = WithdrawalService.get_withdrawal(db, withdrawal_id)
        if not withdrawal:
            raise NotFound("Withdrawal not found")

        result = db.execute(
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id, Withdrawal.status.in_(allowed))
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        db.refresh(withdrawal)
        if result.rowcount == 0:
            db.rollback()
            raise InvalidStateTransition(
                f"Withdrawal {withdrawal.reference_number} is {withdrawal.status} and cannot become {target}"
            )
        return withdrawal

    @staticmethod
    def mark_processing(db: Session, withdrawal_id: int, performed_by: Optional[int] = None) -> Withdrawal:
        try:
            withdrawal = WithdrawalService._transition(
                db, withdrawal_id, (PENDING,), PROCESSING, processed_at=utcnow()
            )
            AuditService.log(
                db, withdrawal.partner_id, "withdrawal.processing", "withdrawal", withdrawal.id,
                details={"reference": withdrawal.reference_number}, user_id=performed_by,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        _notify(db, withdrawal, "processing", "info", "Withdrawal Processing",
                f"Your withdrawal {withdrawal.reference_number} is being processed")
        return withdrawal

    @staticmethod
    def approve_withdrawal(db: Session, withdrawal_id: int, receipt: str, performed_by: Optional[int] = None) -> Withdrawal:
        """Funds have left the system: clear them from pending."""
        if not receipt or not receipt.strip():
            raise ValidationFailed("A payout receipt is required to complete a withdrawal")
        try:
            now = utcnow()
            withdrawal = WithdrawalService._transition(
                db, withdrawal_id, OPEN_STATUSES, COMPLETED,
                receipt=receipt.strip(), completed_at=now,
                processed_at=func.coalesce(Withdrawal.processed_at, now),
            )
            WalletService.release_pending(db, withdrawal.wallet_id, to_money(withdrawal.amount), restore=False)
            AuditService.log(
                db, withdrawal.partner_id, "withdrawal.completed", "withdrawal", withdrawal.id,
                details={"reference": withdrawal.reference_number, "amount": str(withdrawal.amount),
                         "receipt": withdrawal.receipt},
                user_id=performed_by,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(f"Withdrawal {withdrawal.reference_number} completed ({withdrawal.receipt})")
        _notify(db, withdrawal, "completed", "success", "Withdrawal Completed",
                f"{settings.CURRENCY} {fmt(withdrawal.amount)} has been sent ({withdrawal.reference_number})")
        return withdrawal

    @staticmethod
    def reject_withdrawal(db: Session, withdrawal_id: int, reason: str, performed_by: Optional[int] = None) -> Withdrawal:
        """Funds go back from pending to the available balance."""
        if not reason or not reason.strip():
            raise ValidationFailed("A rejection reason is required")
        try:
            withdrawal = WithdrawalService._transition(
                db, withdrawal_id, OPEN_STATUSES, FAILED,
                rejection_reason=reason.strip(), processed_at=utcnow(),
            )
            WalletService.release_pending(db, withdrawal.wallet_id, to_money(withdrawal.amount), restore=True)
            AuditService.log(
                db, withdrawal.partner_id, "withdrawal.rejected", "withdrawal", withdrawal.id,
                details={"reference": withdrawal.reference_number, "amount": str(withdrawal.amount),
                         "reason": withdrawal.rejection_reason},
                user_id=performed_by,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(f"Withdrawal {withdrawal.reference_number} rejected: {withdrawal.rejection_reason}")
        _notify(db, withdrawal, "rejected", "error", "Withdrawal Rejected",
                f"Your withdrawal {withdrawal.reference_number} was rejected: {withdrawal.rejection_reason}")
        return withdrawal

    @staticmethod
    def cancel_withdrawal(
        db: Session, withdrawal_id: int, partner_id: int, reason: Optional[str] = None
    ) -> Withdrawal:
        """Partner-initiated, only while still pending. Funds return to balance."""
        withdrawal = WithdrawalService.get_withdrawal(db, withdrawal_id)
        if not withdrawal or withdrawal.partner_id != partner_id:
            raise NotFound("Withdrawal not found")
        try:
            withdrawal = WithdrawalService._transition(
                db, withdrawal_id, (PENDING,), CANCELLED,
                rejection_reason=reason, processed_at=utcnow(),
            )
            WalletService.release_pending(db, withdrawal.wallet_id, to_money(withdrawal.amount), restore=True)
            AuditService.log(
                db, partner_id, "withdrawal.cancelled", "withdrawal", withdrawal.id,
                details={"reference": withdrawal.reference_number, "amount": str(withdrawal.amount),
                         "reason": reason},
                user_id=withdrawal.user_id,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        _notify(db, withdrawal, "cancelled", "info", "Withdrawal Cancelled",
                f"Your withdrawal {withdrawal.reference_number} was cancelled")
        return withdrawal

    @staticmethod
    def get_withdrawals(
        db: Session,
        partner_id: Optional[int] = None,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Withdrawal]:
        query = db.query(Withdrawal)
        if partner_id is not None:
            query = query.filter(Withdrawal.partner_id == partner_id)
        if user_id is not None:
            query = query.filter(Withdrawal.user_id == user_id)
        if status:
            query = query.filter(Withdrawal.status == status)
        return (
            query.order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_withdrawal_stats(db: Session, partner_id: int) -> Dict[str, Any]:
        rows = (
            db.query(Withdrawal.status, func.count(Withdrawal.id), func.coalesce(func.sum(Withdrawal.amount), 0))
            .filter(Withdrawal.partner_id == partner_id)
            .group_by(Withdrawal.status)
            .all()
        )
        stats = {
            "total": 0, PENDING: 0, PROCESSING: 0, COMPLETED: 0, FAILED: 0, CANCELLED: 0,
            "total_amount": Decimal("0.00"),
            "pending_amount": Decimal("0.00"),
            "completed_amount": Decimal("0.00"),
        }
        for status, count, amount in rows:
            amount = to_money(amount)
            stats["total"] += count
            stats[status] = count
            stats["total_amount"] += amount
            if status in OPEN_STATUSES:
                stats["pending_amount"] += amount
            elif status == COMPLETED:
                stats["completed_amount"] += amount
        return stats

    @staticmethod
    def get_total_withdrawals(db: Session, partner_id: int) -> Dict[str, Any]:
        stats = WithdrawalService.get_withdrawal_stats(db, partner_id)
        return {
            "total_completed": stats["completed_amount"],
            "total_pending": stats["pending_amount"],
            "count_completed": stats[COMPLETED],
            "count_pending": stats[PENDING] + stats[PROCESSING],
            "recent_withdrawals": WithdrawalService.get_withdrawals(db, partner_id=partner_id, limit=5),
        }
