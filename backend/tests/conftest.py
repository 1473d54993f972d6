"""
Shared fixtures: a fresh file-backed SQLite database per test, seed
factories for the catalog, wallets and limits, and an API client whose
database dependency points at the test database.
"""
import os
import tempfile

# Settings are read at import time, so the environment must be ready first
_TMP = tempfile.mkdtemp(prefix="wallet-ledger-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'default.db')}")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("OUTBOX_SCHEDULER_ENABLED", "false")
os.environ.setdefault("PIN_HASH_ITERATIONS", "1000")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from wallet_ledger.database import build_engine, get_db, init_db
from wallet_ledger.main import app
from wallet_ledger.models import Campaign, Partner, Program
from wallet_ledger.services.limit_service import LimitService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.utils.rate_limiter import reset_rate_limits

TEST_PIN = "4321"


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    reset_rate_limits()
    yield TestClient(app)
    app.dependency_overrides.clear()


# ─── Factories ──────────────────────────────────────────────────────

@pytest.fixture
def make_partner(db):
    def _make(name="Acme Tutors", email="payouts@acme.test", phone="254700000001"):
        partner = Partner(name=name, email=email, phone=phone)
        db.add(partner)
        db.commit()
        return partner
    return _make


@pytest.fixture
def make_program(db):
    def _make(name="Mathematics Grade 6", price_per_lesson="200.00"):
        program = Program(name=name, price_per_lesson=Decimal(price_per_lesson))
        db.add(program)
        db.commit()
        return program
    return _make


@pytest.fixture
def make_campaign(db):
    def _make(partner, program, promo_code="JULY200", status="active", user_id=42, name="July Promo"):
        campaign = Campaign(
            name=name,
            promo_code=promo_code,
            program_id=program.id,
            partner_id=partner.id,
            user_id=user_id,
            status=status,
        )
        db.add(campaign)
        db.commit()
        return campaign
    return _make


@pytest.fixture
def make_wallet(db):
    def _make(partner, balance=None, method="mpesa", account_number="254700000001"):
        wallet = WalletService.create_wallet(
            db,
            partner_id=partner.id,
            account_number=account_number,
            withdrawal_method=method,
            pin=TEST_PIN,
            paybill_number="400200" if method == "paybill" else None,
        )
        if balance:
            WalletService.update_wallet_balance(db, partner.id, balance)
            db.commit()
        return wallet
    return _make


@pytest.fixture
def make_limit(db):
    def _make(partner=None, min_amount="100", max_amount="50000", daily="50000",
              monthly="500000", processing_days=3, is_active=True):
        return LimitService.create_limit(
            db,
            partner_id=partner.id if partner else None,
            min_withdrawal_amount=min_amount,
            max_withdrawal_amount=max_amount,
            daily_limit=daily,
            monthly_limit=monthly,
            processing_days=processing_days,
            is_active=is_active,
        )
    return _make


@pytest.fixture
def seeded(make_partner, make_program, make_campaign, make_wallet):
    """Partner with an empty wallet and the active JULY200 campaign (200 per lesson)."""
    partner = make_partner()
    program = make_program()
    campaign = make_campaign(partner, program)
    wallet = make_wallet(partner)
    return {"partner": partner, "program": program, "campaign": campaign, "wallet": wallet}
