"""
Payment Service — M-Pesa webhook handling.

Three entry points, one per webhook:

* ``record_payment_initiated`` stores a pending transaction for a promo code.
* ``process_callback`` finalises it. On success the status change, the
  enrollment, the revenue entry and the wallet credit are one database
  transaction, and the status change is a compare-and-set from
  ``pending``: a redelivered callback finds the transaction terminal and
  is answered as a duplicate with no financial side effects.
* ``check_transaction`` answers status polls by receipt code.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from wallet_ledger.config import get_settings
from wallet_ledger.errors import (
    DuplicateReceiptCode, NotFound, StructuralError, ValidationFailed,
)
from wallet_ledger.models.notification import CHANNEL_NOTIFICATION
from wallet_ledger.models.transaction import (
    Transaction, STATUS_PENDING, STATUS_SUCCESS, STATUS_FAILED,
)
from wallet_ledger.schemas.schemas import (
    MpesaPaymentRequest, MpesaCallbackRequest, TransactionUpdate,
)
from wallet_ledger.services.audit_service import AuditService
from wallet_ledger.services.catalog_service import CatalogService
from wallet_ledger.services.enrollment_service import EnrollmentService
from wallet_ledger.services.outbox_service import OutboxService
from wallet_ledger.services.revenue_service import RevenueService
from wallet_ledger.services.transaction_service import TransactionService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.utils.codes import generate_redeem_code
from wallet_ledger.utils.money import to_money, share_of, fmt
from wallet_ledger.utils.timeutils import utcnow, parse_gateway_timestamp
from wallet_ledger.utils.validators import missing_fields, normalize_code, normalize_phone

logger = logging.getLogger(__name__)
settings = get_settings()

PAYMENT_REQUIRED_FIELDS = ["student_name", "phone_number", "mpesa_code", "amount", "campaign_code"]


def _is_success(result_code) -> bool:
    try:
        return int(str(result_code).strip()) == settings.MPESA_SUCCESS_CODE
    except (TypeError, ValueError):
        return False


def _payment_status(txn: Transaction) -> str:
    return {STATUS_SUCCESS: "success", STATUS_FAILED: "failed"}.get(txn.status, txn.status)


def _lessons(amount: Decimal, price) -> int:
    price = to_money(price)
    if price <= 0:
        return 0
    return int(amount // price)


def _duplicate_response(db: Session, txn: Transaction) -> Dict[str, Any]:
    enrollment = EnrollmentService.get_by_transaction_id(db, txn.id)
    logger.info(f"Duplicate callback for transaction {txn.id} ({txn.status}); ignored")
    return {
        "success": True,
        "duplicate": True,
        "message": f"Transaction already processed ({txn.status}).",
        "payment_status": _payment_status(txn),
        "transaction_id": txn.id,
        "redeem_code": enrollment.redeem_code if enrollment else None,
    }


class PaymentService:

    @staticmethod
    def record_payment_initiated(db: Session, payload: MpesaPaymentRequest) -> Dict[str, Any]:
        """Handler for the payment-initiated webhook.

        Raises:
            ValidationFailed: Missing fields, bad amount or inactive campaign.
            NotFound: Unknown promo code.
            DuplicateReceiptCode: The receipt code was already recorded.
        """
        missing = missing_fields(payload.model_dump(), PAYMENT_REQUIRED_FIELDS)
        if missing:
            raise ValidationFailed(
                f"Missing required fields: {', '.join(PAYMENT_REQUIRED_FIELDS)}",
                error_type="missing_fields",
                missing_fields=missing,
            )
        try:
            amount = to_money(payload.amount)
        except ValueError:
            raise ValidationFailed(f"Invalid amount: {payload.amount!r}", error_type="invalid_amount")
        if amount <= 0:
            raise ValidationFailed("Amount must be greater than zero", error_type="invalid_amount")

        code = normalize_code(payload.campaign_code)
        campaign = CatalogService.get_campaign_by_promo_code(db, code)
        if not campaign:
            raise NotFound(f"Campaign with code '{payload.campaign_code}' not found", error_type="campaign_not_found")
        if campaign.status != "active":
            raise ValidationFailed(
                f"Campaign '{payload.campaign_code}' is not active (status: {campaign.status})",
                error_type="campaign_inactive",
                campaign_status=campaign.status,
            )

        txn = TransactionService.create_transaction(
            db,
            student_name=payload.student_name,
            phone_number=payload.phone_number,
            amount=amount,
            campaign_code=code,
            partner_id=campaign.partner_id,
            receipt_code=payload.mpesa_code,
            status=STATUS_PENDING,
            checkout_request_id=(payload.checkout_request_id or "").strip() or None,
        )
        return {
            "success": True,
            "message": "Transaction recorded successfully",
            "transaction_id": txn.id,
            "campaign": {"name": campaign.name, "partner_id": campaign.partner_id},
        }

    @staticmethod
    def process_callback(db: Session, payload: MpesaCallbackRequest, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Handler for the payment-callback webhook.

        Raises:
            NotFound: No transaction matches the correlation id.
            DuplicateReceiptCode: The callback's receipt belongs to another transaction.
            StructuralError: Campaign, program or wallet missing for a paid transaction.
        """
        txn = TransactionService.get_by_correlation_id(db, payload.checkout_request_id or "")
        if not txn:
            raise NotFound("Transaction not found", error_type="transaction_not_found")
        if txn.is_terminal:
            return _duplicate_response(db, txn)

        success = _is_success(payload.result_code)
        receipt = normalize_code(payload.mpesa_receipt_number) or txn.receipt_code
        gross = to_money(txn.amount)
        if payload.amount not in (None, ""):
            try:
                reported = to_money(payload.amount)
            except ValueError:
                reported = None
            if reported is not None and reported > 0:
                gross = reported
            else:
                logger.warning(
                    f"Ignoring callback amount {payload.amount!r} for transaction {txn.id}; "
                    f"keeping recorded {fmt(gross)}"
                )
        verified_at = parse_gateway_timestamp(payload.transaction_date, settings.TIMEZONE) or (now or utcnow())
        phone = normalize_phone(payload.phone_number) or txn.phone_number

        if receipt and receipt != txn.receipt_code:
            other = TransactionService.get_by_receipt_code(db, receipt)
            if other and other.id != txn.id:
                raise DuplicateReceiptCode(
                    f"Transaction with M-Pesa code '{receipt}' already exists",
                    transaction_id=other.id,
                )

        fields = TransactionUpdate(
            status=STATUS_SUCCESS if success else STATUS_FAILED,
            receipt_code=receipt,
            amount=float(gross),
            verified_at=verified_at,
        )

        if not success:
            try:
                if not TransactionService.mark_terminal(db, txn.id, fields):
                    db.rollback()
                    return _duplicate_response(db, TransactionService.get_by_id(db, txn.id))
                db.commit()
            except Exception:
                db.rollback()
                raise
            logger.info(f"Transaction {txn.id} failed at gateway (result {payload.result_code}: {payload.result_desc})")
            return {
                "success": True,
                "message": "Transaction marked as failed.",
                "payment_status": "failed",
                "transaction_id": txn.id,
            }

        campaign = CatalogService.get_campaign_by_promo_code(db, txn.campaign_code)
        if not campaign:
            raise StructuralError(f"Campaign not found for code {txn.campaign_code}")
        program = CatalogService.get_program_by_id(db, campaign.program_id)
        if not program:
            raise StructuralError(f"Program not found for campaign {campaign.id}")

        price = to_money(program.price_per_lesson)
        lessons = _lessons(gross, price)
        partner_share = share_of(gross, settings.PARTNER_SHARE_RATE)
        redeem_code = generate_redeem_code()

        try:
            if not TransactionService.mark_terminal(db, txn.id, fields):
                db.rollback()
                return _duplicate_response(db, TransactionService.get_by_id(db, txn.id))

            if campaign.user_id:
                enrollment = EnrollmentService.create_enrollment(
                    db,
                    program_id=campaign.program_id,
                    user_id=campaign.user_id,
                    campaign_id=campaign.id,
                    transaction_id=txn.id,
                    redeem_code=redeem_code,
                    status="redeemed",
                    meta={"phone": phone, "payment_amount": str(gross), "number_of_lessons": lessons},
                )
                redeem_code = enrollment.redeem_code
                RevenueService.log_revenue(
                    db,
                    partner_id=campaign.partner_id,
                    user_id=campaign.user_id,
                    campaign_id=campaign.id,
                    transaction_id=txn.id,
                    amount=partner_share,
                    gross_amount=gross,
                )

            if not WalletService.get_wallet_by_partner(db, campaign.partner_id):
                raise StructuralError(
                    f"Wallet not found for partner {campaign.partner_id}", error_type="wallet_not_found"
                )
            WalletService.update_wallet_balance(db, campaign.partner_id, partner_share)
            AuditService.log(
                db, campaign.partner_id, "payment.received", "transaction", txn.id,
                details={
                    "receipt_code": receipt,
                    "gross_amount": str(gross),
                    "partner_share": str(partner_share),
                    "enrolled": bool(campaign.user_id),
                },
                user_id=campaign.user_id,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"Transaction {txn.id} settled: gross {gross}, partner {campaign.partner_id} credited {partner_share}"
        )
        OutboxService.enqueue(
            db,
            CHANNEL_NOTIFICATION,
            {
                "partner_id": campaign.partner_id,
                "type": "success",
                "title": "Payment Received",
                "message": f"{settings.CURRENCY} {fmt(partner_share)} earned from {txn.student_name}'s payment",
            },
            idempotency_key=f"transaction:{txn.id}:settled:notification",
        )

        return {
            "success": True,
            "message": "Payment processed successfully",
            "payment_status": "success",
            "transaction_id": txn.id,
            "user_creation_data": {
                "student_name": txn.student_name,
                "phone_number": phone,
                "redeem_code": redeem_code,
                "amount_paid": gross,
                "no_of_lessons": lessons,
                "price_per_lesson": price,
                "campaign_id": campaign.id,
            },
            "payment_summary": {
                "partner_share": partner_share,
                "gross_amount": gross,
                "number_of_lessons": lessons,
                "price_per_lesson": price,
                "redeem_code": redeem_code,
            },
        }

    @staticmethod
    def check_transaction(db: Session, mpesa_code: Optional[str]) -> Dict[str, Any]:
        """Status poll by receipt code, with a next-step hint for the agent."""
        code = normalize_code(mpesa_code)
        if not code:
            raise ValidationFailed("Missing required field: mpesa_code", error_type="missing_fields",
                                   missing_fields=["mpesa_code"])

        txn = TransactionService.get_by_receipt_code(db, code)
        if not txn:
            raise NotFound(
                f"No transaction found for M-Pesa code '{code}'",
                error_type="transaction_not_found",
                next_action="Confirm the M-Pesa code with the student, or record the payment first.",
            )

        base = {
            "success": True,
            "transaction_id": txn.id,
            "mpesa_code": txn.receipt_code,
            "student_name": txn.student_name,
            "phone_number": txn.phone_number,
            "amount": to_money(txn.amount),
        }

        if txn.status == STATUS_SUCCESS:
            campaign = CatalogService.get_campaign_by_promo_code(db, txn.campaign_code)
            program = CatalogService.get_program_by_id(db, campaign.program_id) if campaign else None
            price = to_money(program.price_per_lesson) if program else None
            enrollment = EnrollmentService.get_by_transaction_id(db, txn.id)
            # Without an enrollment the code is only for display and is not stored
            redeem_code = enrollment.redeem_code if enrollment else generate_redeem_code()
            return {
                **base,
                "status": "success",
                "message": "Payment confirmed.",
                "number_of_lessons": _lessons(to_money(txn.amount), price) if price else None,
                "price_per_lesson": price,
                "redeem_code": redeem_code,
                "redeem_code_persisted": enrollment is not None,
                "verified_at": txn.verified_at,
                "next_action": "Share the redeem code with the student so they can start their lessons.",
            }
        if txn.status == STATUS_PENDING:
            return {
                **base,
                "status": "pending",
                "message": "Payment is awaiting confirmation from M-Pesa.",
                "next_action": "Wait a minute and check again.",
            }
        if txn.status == STATUS_FAILED:
            return {
                **base,
                "status": "failed",
                "message": "Payment was not completed.",
                "verified_at": txn.verified_at,
                "next_action": "Ask the student to retry the payment.",
            }
        logger.warning(f"Transaction {txn.id} has unrecognised status {txn.status!r}")
        return {
            **base,
            "status": "unknown",
            "transaction_status": txn.status,
            "message": f"Transaction is in an unrecognised state ({txn.status}).",
            "next_action": "Escalate to support with the M-Pesa code.",
        }
