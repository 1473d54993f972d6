"""
Tests for the M-Pesa payment webhooks.

Tests cover:
1. Payment initiation and duplicate receipt rejection
2. Successful callback: enrollment, revenue split and wallet credit
3. Failed callback
4. Callback idempotence
5. Structural errors leave the transaction retryable
6. Status polling
"""
import re
from decimal import Decimal

import pytest

from wallet_ledger.errors import (
    DuplicateReceiptCode, NotFound, StructuralError, ValidationFailed,
)
from wallet_ledger.models import Enrollment, RevenueEntry, Transaction, Wallet, OutboxMessage
from wallet_ledger.schemas.schemas import MpesaCallbackRequest, MpesaPaymentRequest
from wallet_ledger.services.payment_service import PaymentService
from wallet_ledger.services.revenue_service import RevenueService


def _initiate(db, mpesa_code="QGH12ABC34", amount="1000", campaign_code="july200", checkout="ws_CO_0001"):
    return PaymentService.record_payment_initiated(db, MpesaPaymentRequest(
        student_name="Jane Wanjiku",
        phone_number="0712345678",
        mpesa_code=mpesa_code,
        amount=amount,
        campaign_code=campaign_code,
        checkout_request_id=checkout,
    ))


def _callback(db, checkout="ws_CO_0001", result_code=0, receipt="QGH12ABC34", amount=1000):
    return PaymentService.process_callback(db, MpesaCallbackRequest(
        checkout_request_id=checkout,
        result_code=result_code,
        mpesa_receipt_number=receipt,
        phone_number="254712345678",
        amount=amount,
        transaction_date="20260715103000",
    ))


def _wallet(db, partner):
    db.expire_all()
    return db.query(Wallet).filter(Wallet.partner_id == partner.id).one()


class TestPaymentInitiated:
    """Tests for recording a pending transaction."""

    def test_records_pending_transaction(self, db, seeded):
        result = _initiate(db)

        txn = db.get(Transaction, result["transaction_id"])
        assert result["success"] is True
        assert result["campaign"] == {"name": "July Promo", "partner_id": seeded["partner"].id}
        assert txn.status == "pending"
        assert txn.receipt_code == "QGH12ABC34"
        assert txn.campaign_code == "JULY200"
        assert txn.partner_id == seeded["partner"].id
        assert txn.phone_number == "254712345678"
        assert txn.amount == Decimal("1000.00")

    def test_missing_fields_are_listed(self, db, seeded):
        with pytest.raises(ValidationFailed) as exc:
            PaymentService.record_payment_initiated(db, MpesaPaymentRequest(student_name="Jane", amount=500))
        assert exc.value.status_code == 400
        assert set(exc.value.details["missing_fields"]) == {"phone_number", "mpesa_code", "campaign_code"}

    def test_unknown_campaign_is_not_found(self, db, seeded):
        with pytest.raises(NotFound):
            _initiate(db, campaign_code="NOPE")

    def test_inactive_campaign_echoes_status(self, db, make_partner, make_program, make_campaign, make_wallet):
        partner = make_partner()
        make_campaign(partner, make_program(), promo_code="OLD100", status="expired")
        with pytest.raises(ValidationFailed) as exc:
            _initiate(db, campaign_code="OLD100")
        assert "expired" in exc.value.message
        assert exc.value.details["campaign_status"] == "expired"

    def test_duplicate_receipt_code_rejected(self, db, seeded):
        """Same M-Pesa code twice yields one row and a 409 pointing at it."""
        first = _initiate(db)

        with pytest.raises(DuplicateReceiptCode) as exc:
            _initiate(db, mpesa_code="qgh12abc34", checkout="ws_CO_0002")

        assert exc.value.status_code == 409
        assert exc.value.details["transaction_id"] == first["transaction_id"]
        assert db.query(Transaction).count() == 1

    def test_non_positive_amount_rejected(self, db, seeded):
        with pytest.raises(ValidationFailed) as exc:
            _initiate(db, amount="0")
        assert exc.value.error_type == "invalid_amount"


class TestPaymentCallbackSuccess:
    """Tests for a successful gateway callback."""

    def test_happy_path(self, db, seeded):
        """JULY200 at 200/lesson: 1000 buys 5 lessons and earns the partner 200."""
        _initiate(db)
        result = _callback(db)

        txn = db.query(Transaction).one()
        assert result["payment_status"] == "success"
        assert txn.status == "Success"
        assert txn.verified_at is not None

        data = result["user_creation_data"]
        assert data["no_of_lessons"] == 5
        assert data["price_per_lesson"] == Decimal("200.00")
        assert data["amount_paid"] == Decimal("1000.00")
        assert data["campaign_id"] == seeded["campaign"].id
        assert re.fullmatch(r"R-\d{6}", data["redeem_code"])
        assert result["payment_summary"]["partner_share"] == Decimal("200.00")

        enrollment = db.query(Enrollment).one()
        assert enrollment.redeem_code == data["redeem_code"]
        assert enrollment.status == "redeemed"
        assert enrollment.user_id == 42

        revenue = db.query(RevenueEntry).one()
        assert revenue.amount == Decimal("200.00")
        assert revenue.gross_amount == Decimal("1000.00")

        wallet = _wallet(db, seeded["partner"])
        assert wallet.balance == Decimal("200.00")
        assert wallet.lifetime_earnings == Decimal("200.00")

    def test_gateway_timestamp_is_stored_as_utc(self, db, seeded):
        _initiate(db)
        _callback(db)
        txn = db.query(Transaction).one()
        # 10:30 Nairobi (UTC+3)
        assert (txn.verified_at.hour, txn.verified_at.minute) == (7, 30)

    def test_campaign_without_user_skips_enrollment_but_credits_wallet(
        self, db, make_partner, make_program, make_campaign, make_wallet
    ):
        partner = make_partner()
        make_campaign(partner, make_program(), user_id=None)
        make_wallet(partner)

        _initiate(db)
        result = _callback(db)

        assert result["payment_status"] == "success"
        assert db.query(Enrollment).count() == 0
        assert db.query(RevenueEntry).count() == 0
        assert _wallet(db, partner).balance == Decimal("200.00")

    def test_callback_amount_overrides_recorded_amount(self, db, seeded):
        _initiate(db, amount="1000")
        result = _callback(db, amount="1500")

        assert result["user_creation_data"]["no_of_lessons"] == 7
        assert db.query(Transaction).one().amount == Decimal("1500.00")
        assert _wallet(db, seeded["partner"]).balance == Decimal("300.00")

    @pytest.mark.parametrize("amount", ["0", "-1000"])
    def test_non_positive_callback_amount_keeps_recorded_amount(self, db, seeded, amount):
        _initiate(db, amount="1000")
        result = _callback(db, amount=amount)

        assert result["payment_summary"]["gross_amount"] == Decimal("1000.00")
        assert result["payment_summary"]["partner_share"] == Decimal("200.00")
        assert result["user_creation_data"]["no_of_lessons"] == 5
        assert db.query(Transaction).one().amount == Decimal("1000.00")
        assert [e.amount for e in db.query(RevenueEntry).all()] == [Decimal("200.00")]
        wallet = _wallet(db, seeded["partner"])
        assert wallet.balance == Decimal("200.00")
        assert wallet.lifetime_earnings == Decimal("200.00")

    def test_correlation_falls_back_to_receipt_code(self, db, seeded):
        _initiate(db, checkout=None)
        result = _callback(db, checkout="QGH12ABC34")
        assert result["payment_status"] == "success"

    def test_settlement_queues_partner_notification(self, db, seeded):
        _initiate(db)
        _callback(db)
        message = db.query(OutboxMessage).one()
        assert message.channel == "notification"
        assert message.payload["title"] == "Payment Received"


class TestPaymentCallbackIdempotence:
    """A redelivered callback must never post money twice."""

    def test_second_success_callback_is_a_no_op(self, db, seeded):
        _initiate(db)
        first = _callback(db)
        second = _callback(db)

        assert second["duplicate"] is True
        assert second["payment_status"] == "success"
        assert second["redeem_code"] == first["user_creation_data"]["redeem_code"]
        assert db.query(Enrollment).count() == 1
        assert db.query(RevenueEntry).count() == 1
        assert _wallet(db, seeded["partner"]).balance == Decimal("200.00")

    def test_success_after_failure_does_not_flip_status(self, db, seeded):
        _initiate(db)
        _callback(db, result_code=1)
        again = _callback(db, result_code=0)

        assert again["duplicate"] is True
        assert again["payment_status"] == "failed"
        assert db.query(Transaction).one().status == "Failed"
        assert _wallet(db, seeded["partner"]).balance == Decimal("0.00")


class TestPaymentCallbackFailure:
    """Tests for non-zero gateway result codes."""

    def test_failed_payment_has_no_side_effects(self, db, seeded):
        _initiate(db)
        result = _callback(db, result_code=1)

        assert result["payment_status"] == "failed"
        assert db.query(Transaction).one().status == "Failed"
        assert db.query(Enrollment).count() == 0
        assert db.query(RevenueEntry).count() == 0
        assert _wallet(db, seeded["partner"]).balance == Decimal("0.00")

    def test_unparseable_result_code_counts_as_failure(self, db, seeded):
        _initiate(db)
        result = _callback(db, result_code="cancelled")
        assert result["payment_status"] == "failed"

    def test_unknown_correlation_id_is_not_found(self, db, seeded):
        with pytest.raises(NotFound):
            _callback(db, checkout="ws_CO_missing")


class TestPaymentCallbackStructuralErrors:
    """Missing catalog data is a server error and must leave nothing half-applied."""

    def test_missing_program_keeps_transaction_pending(self, db, seeded):
        _initiate(db)
        seeded["campaign"].program_id = 9999
        db.commit()

        with pytest.raises(StructuralError):
            _callback(db)

        db.expire_all()
        assert db.query(Transaction).one().status == "pending"
        assert _wallet(db, seeded["partner"]).balance == Decimal("0.00")

    def test_missing_wallet_rolls_back_enrollment(self, db, make_partner, make_program, make_campaign):
        partner = make_partner()
        make_campaign(partner, make_program())
        _initiate(db)

        with pytest.raises(StructuralError) as exc:
            _callback(db)

        assert exc.value.error_type == "wallet_not_found"
        db.expire_all()
        assert db.query(Transaction).one().status == "pending"
        assert db.query(Enrollment).count() == 0
        assert db.query(RevenueEntry).count() == 0

    def test_receipt_belonging_to_another_transaction(self, db, seeded):
        _initiate(db, mpesa_code="AAA111", checkout="ws_CO_A")
        _initiate(db, mpesa_code="BBB222", checkout="ws_CO_B")

        with pytest.raises(DuplicateReceiptCode):
            _callback(db, checkout="ws_CO_B", receipt="AAA111")


class TestCheckTransaction:
    """Tests for the status-poll handler."""

    def test_success_reuses_enrollment_code(self, db, seeded):
        _initiate(db)
        settled = _callback(db)

        result = PaymentService.check_transaction(db, "qgh12abc34")
        assert result["status"] == "success"
        assert result["number_of_lessons"] == 5
        assert result["redeem_code"] == settled["user_creation_data"]["redeem_code"]
        assert result["redeem_code_persisted"] is True
        assert result["next_action"]

    def test_success_without_enrollment_returns_display_code(
        self, db, make_partner, make_program, make_campaign, make_wallet
    ):
        partner = make_partner()
        make_campaign(partner, make_program(), user_id=None)
        make_wallet(partner)
        _initiate(db)
        _callback(db)

        result = PaymentService.check_transaction(db, "QGH12ABC34")
        assert re.fullmatch(r"R-\d{6}", result["redeem_code"])
        assert result["redeem_code_persisted"] is False
        assert db.query(Enrollment).count() == 0

    def test_pending_and_failed(self, db, seeded):
        _initiate(db, mpesa_code="PEND001", checkout="ws_CO_P")
        _initiate(db, mpesa_code="FAIL001", checkout="ws_CO_F")
        _callback(db, checkout="ws_CO_F", receipt="FAIL001", result_code=1032)

        assert PaymentService.check_transaction(db, "PEND001")["status"] == "pending"
        assert PaymentService.check_transaction(db, "FAIL001")["status"] == "failed"

    def test_unknown_code_is_not_found(self, db, seeded):
        with pytest.raises(NotFound) as exc:
            PaymentService.check_transaction(db, "ZZZ999")
        assert "next_action" in exc.value.details

    def test_blank_code_is_a_validation_error(self, db):
        with pytest.raises(ValidationFailed):
            PaymentService.check_transaction(db, "  ")


class TestRevenueLedger:
    """Tests for compensation and reconciliation."""

    def test_reconcile_balanced_after_payment(self, db, seeded):
        _initiate(db)
        _callback(db)
        report = RevenueService.reconcile(db, seeded["partner"].id)
        assert report["balanced"] is True
        assert report["revenue_total"] == Decimal("200.00")

    def test_compensation_appends_negative_entry(self, db, seeded):
        _initiate(db)
        _callback(db)
        original = db.query(RevenueEntry).one()

        entry = RevenueService.log_compensation(db, original.id, reason="Refunded to student", amount="50")

        assert entry.amount == Decimal("-50.00")
        assert entry.transaction_id == original.transaction_id
        assert db.query(RevenueEntry).count() == 2
        wallet = _wallet(db, seeded["partner"])
        assert wallet.balance == Decimal("150.00")
        assert wallet.lifetime_earnings == Decimal("150.00")
        assert RevenueService.reconcile(db, seeded["partner"].id)["balanced"] is True

    def test_compensation_cannot_exceed_original(self, db, seeded):
        _initiate(db)
        _callback(db)
        original = db.query(RevenueEntry).one()
        with pytest.raises(ValidationFailed):
            RevenueService.log_compensation(db, original.id, reason="Too much", amount="500")
