"""
Tests for the transaction store, the enrollment issuer and catalog lookups.
"""
from datetime import datetime
from decimal import Decimal

import pytest

from wallet_ledger.errors import InvalidStateTransition, NotFound
from wallet_ledger.schemas.schemas import TransactionUpdate
from wallet_ledger.services.catalog_service import CatalogService
from wallet_ledger.services.enrollment_service import EnrollmentService
from wallet_ledger.services.transaction_service import TransactionService


def _txn(db, partner, receipt="QGH12ABC34", phone="0712345678", checkout="ws_CO_0001"):
    return TransactionService.create_transaction(
        db,
        student_name=" Jane Wanjiku ",
        phone_number=phone,
        receipt_code=receipt,
        amount="1000",
        campaign_code="july200",
        partner_id=partner.id,
        checkout_request_id=checkout,
    )


class TestTransactionStore:

    def test_create_normalises_fields(self, db, seeded):
        txn = _txn(db, seeded["partner"], receipt="qgh12abc34")

        assert txn.receipt_code == "QGH12ABC34"
        assert txn.campaign_code == "JULY200"
        assert txn.phone_number == "254712345678"
        assert txn.student_name == "Jane Wanjiku"
        assert txn.amount == Decimal("1000.00")
        assert txn.status == "pending"
        assert txn.verified_at is None

    def test_correlation_lookup(self, db, seeded):
        txn = _txn(db, seeded["partner"])

        assert TransactionService.get_by_correlation_id(db, "ws_CO_0001").id == txn.id
        assert TransactionService.get_by_correlation_id(db, "qgh12abc34").id == txn.id
        assert TransactionService.get_by_correlation_id(db, "  ") is None

    def test_recent_by_phone(self, db, seeded):
        _txn(db, seeded["partner"], receipt="AAA111", checkout="ws_CO_A")
        latest = _txn(db, seeded["partner"], receipt="BBB222", checkout="ws_CO_B")

        assert TransactionService.get_recent_by_phone(db, "+254 712 345 678").id == latest.id
        assert TransactionService.get_recent_by_phone(db, "0799999999") is None

    def test_list_filters(self, db, seeded, make_partner):
        other = make_partner(name="Beta Academy")
        _txn(db, seeded["partner"], receipt="AAA111", checkout="ws_CO_A")
        _txn(db, other, receipt="BBB222", checkout="ws_CO_B")

        listed = TransactionService.list_transactions(db, partner_id=seeded["partner"].id)
        assert [t.receipt_code for t in listed] == ["AAA111"]
        assert len(TransactionService.list_transactions(db, status="pending")) == 2

    def test_update_patches_supplied_fields_only(self, db, seeded):
        txn = _txn(db, seeded["partner"])
        TransactionService.update_transaction(db, txn.id, TransactionUpdate(amount=950.5))
        db.commit()

        assert txn.amount == Decimal("950.50")
        assert txn.receipt_code == "QGH12ABC34"

    def test_terminal_status_is_sticky(self, db, seeded):
        txn = _txn(db, seeded["partner"])
        verified = datetime(2026, 3, 15, 9, 0)
        assert TransactionService.mark_terminal(db, txn.id, TransactionUpdate(status="Success", verified_at=verified))
        db.commit()

        assert TransactionService.mark_terminal(db, txn.id, TransactionUpdate(status="Failed")) is False
        assert TransactionService.update_transaction(db, txn.id, TransactionUpdate(status="Success")).status == "Success"
        with pytest.raises(InvalidStateTransition):
            TransactionService.update_transaction(db, txn.id, TransactionUpdate(status="Failed"))

    def test_mark_terminal_requires_terminal_status(self, db, seeded):
        txn = _txn(db, seeded["partner"])
        with pytest.raises(InvalidStateTransition):
            TransactionService.mark_terminal(db, txn.id, TransactionUpdate(status="pending"))

    def test_update_unknown_transaction(self, db):
        with pytest.raises(NotFound):
            TransactionService.update_transaction(db, 999, TransactionUpdate(amount=10))


class TestEnrollmentIssuer:

    def test_one_enrollment_per_transaction(self, db, seeded):
        txn = _txn(db, seeded["partner"])
        args = dict(
            program_id=seeded["program"].id,
            user_id=42,
            campaign_id=seeded["campaign"].id,
            transaction_id=txn.id,
        )
        first = EnrollmentService.create_enrollment(db, **args)
        second = EnrollmentService.create_enrollment(db, **args)
        db.commit()

        assert first.id == second.id
        assert first.status == "redeemed"
        assert EnrollmentService.get_by_redeem_code(db, first.redeem_code).id == first.id

    def test_colliding_redeem_code_is_redrawn(self, db, seeded):
        a = _txn(db, seeded["partner"], receipt="AAA111", checkout="ws_CO_A")
        b = _txn(db, seeded["partner"], receipt="BBB222", checkout="ws_CO_B")
        common = dict(program_id=seeded["program"].id, user_id=42, campaign_id=seeded["campaign"].id)

        first = EnrollmentService.create_enrollment(db, transaction_id=a.id, redeem_code="R-123456", **common)
        second = EnrollmentService.create_enrollment(db, transaction_id=b.id, redeem_code="R-123456", **common)

        assert first.redeem_code == "R-123456"
        assert second.redeem_code != "R-123456"


class TestCatalog:

    def test_lookups(self, db, seeded):
        assert CatalogService.get_campaign_by_promo_code(db, " july200 ").id == seeded["campaign"].id
        assert CatalogService.get_program_by_id(db, seeded["program"].id).price_per_lesson == Decimal("200.00")
        assert CatalogService.get_partner(db, seeded["partner"].id).email == "payouts@acme.test"
        assert CatalogService.get_partner(db, 999) is None
