"""
Tests for wallet setup, PIN handling and balance postings.
"""
import threading
from decimal import Decimal

import pytest

from wallet_ledger.errors import InvalidPin, NotFound, ValidationFailed, WalletAlreadyExists
from wallet_ledger.models import AuditLog, Wallet
from wallet_ledger.schemas.schemas import Beneficiary, WalletUpdate
from wallet_ledger.services.wallet_service import WalletService

from conftest import TEST_PIN


class TestCreateWallet:

    def test_creates_empty_complete_wallet(self, db, make_partner):
        partner = make_partner()
        wallet = WalletService.create_wallet(
            db, partner_id=partner.id, account_number=" 254711111111 ", withdrawal_method="mpesa", pin="1234",
            beneficiaries=[{"label": "Main", "account_number": "254711111111", "provider": "mpesa"}],
        )

        assert wallet.balance == Decimal("0.00")
        assert wallet.pending_balance == Decimal("0.00")
        assert wallet.lifetime_earnings == Decimal("0.00")
        assert wallet.account_number == "254711111111"
        assert wallet.is_setup_complete is True
        assert wallet.pin_hash != "1234"
        assert wallet.pin_hash.startswith("pbkdf2_sha256$")
        assert db.query(AuditLog).filter(AuditLog.action == "wallet.created").count() == 1

    def test_one_wallet_per_partner(self, db, make_partner, make_wallet):
        partner = make_partner()
        existing = make_wallet(partner)
        with pytest.raises(WalletAlreadyExists) as exc:
            make_wallet(partner)
        assert exc.value.status_code == 409
        assert exc.value.details["wallet_id"] == existing.id

    @pytest.mark.parametrize("pin", ["123", "12345", "12a4", ""])
    def test_pin_must_be_four_digits(self, db, make_partner, pin):
        partner = make_partner()
        with pytest.raises(ValidationFailed):
            WalletService.create_wallet(
                db, partner_id=partner.id, account_number="254711111111", withdrawal_method="mpesa", pin=pin
            )

    def test_paybill_requires_number(self, db, make_partner):
        partner = make_partner()
        with pytest.raises(ValidationFailed):
            WalletService.create_wallet(
                db, partner_id=partner.id, account_number="ACC-1", withdrawal_method="paybill", pin="1234"
            )

    def test_paybill_number_only_kept_for_paybill(self, db, make_partner):
        partner = make_partner()
        wallet = WalletService.create_wallet(
            db, partner_id=partner.id, account_number="0011223344", withdrawal_method="bank", pin="1234",
            paybill_number="400200", bank_name="KCB", branch="Moi Avenue",
        )
        assert wallet.paybill_number is None
        assert wallet.bank_name == "KCB"


class TestPin:

    def test_verify_pin(self, db, make_partner, make_wallet):
        wallet = make_wallet(make_partner())
        assert WalletService.verify_pin(db, wallet.id, TEST_PIN) is True

    def test_wrong_pin(self, db, make_partner, make_wallet):
        wallet = make_wallet(make_partner())
        with pytest.raises(InvalidPin) as exc:
            WalletService.verify_pin(db, wallet.id, "0000")
        assert exc.value.status_code == 403

    def test_unknown_wallet(self, db):
        with pytest.raises(NotFound):
            WalletService.verify_pin(db, 999, TEST_PIN)


class TestUpdateWallet:

    def test_changes_pin_and_destination_but_not_balances(self, db, make_partner, make_wallet):
        partner = make_partner()
        wallet = make_wallet(partner, balance="500")
        old_version = wallet.version

        updated = WalletService.update_wallet(db, wallet.id, WalletUpdate(
            withdrawal_method="paybill",
            paybill_number="247247",
            account_number="ACC-77",
            pin="9876",
            beneficiaries=[Beneficiary(label="Office", account_number="ACC-77", provider="paybill")],
        ))

        assert updated.withdrawal_method == "paybill"
        assert updated.paybill_number == "247247"
        assert updated.beneficiaries[0]["label"] == "Office"
        assert updated.balance == Decimal("500.00")
        assert updated.version == old_version
        assert WalletService.verify_pin(db, wallet.id, "9876") is True
        with pytest.raises(InvalidPin):
            WalletService.verify_pin(db, wallet.id, TEST_PIN)

        audit = db.query(AuditLog).filter(AuditLog.action == "wallet.updated").one()
        assert audit.details["pin_changed"] is True
        assert "pin" not in audit.details["fields"]

    def test_switching_away_from_paybill_clears_number(self, db, make_partner, make_wallet):
        wallet = make_wallet(make_partner(), method="paybill")
        updated = WalletService.update_wallet(db, wallet.id, WalletUpdate(withdrawal_method="mpesa"))
        assert updated.paybill_number is None

    def test_unknown_method_rejected(self, db, make_partner, make_wallet):
        wallet = make_wallet(make_partner())
        with pytest.raises(ValidationFailed):
            WalletService.update_wallet(db, wallet.id, WalletUpdate(withdrawal_method="cheque"))


class TestBalancePosting:

    def test_credit_increments_balance_and_earnings(self, db, make_partner, make_wallet):
        partner = make_partner()
        make_wallet(partner)

        WalletService.update_wallet_balance(db, partner.id, "200")
        new_balance = WalletService.update_wallet_balance(db, partner.id, Decimal("50.50"))
        db.commit()

        assert new_balance == Decimal("250.50")
        wallet = db.query(Wallet).filter(Wallet.partner_id == partner.id).one()
        assert wallet.lifetime_earnings == Decimal("250.50")

    def test_debit_cannot_go_negative(self, db, make_partner, make_wallet):
        partner = make_partner()
        make_wallet(partner, balance="100")
        with pytest.raises(ValidationFailed) as exc:
            WalletService.update_wallet_balance(db, partner.id, "-150")
        assert exc.value.error_type == "insufficient_balance"

    def test_missing_wallet(self, db, make_partner):
        partner = make_partner()
        with pytest.raises(NotFound):
            WalletService.update_wallet_balance(db, partner.id, "10")

    def test_concurrent_credits_are_not_lost(self, session_factory, make_partner, make_wallet):
        partner = make_partner()
        wallet = make_wallet(partner)
        barrier = threading.Barrier(4)

        def worker():
            session = session_factory()
            try:
                barrier.wait()
                for _ in range(5):
                    WalletService.update_wallet_balance(session, partner.id, "10")
                    session.commit()
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        check = session_factory()
        try:
            final = check.get(Wallet, wallet.id)
            assert final.balance == Decimal("200.00")
            assert final.lifetime_earnings == Decimal("200.00")
        finally:
            check.close()
