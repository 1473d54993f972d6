"""
Wallet Service — per-partner balance state.

Balance changes are single conditional UPDATE statements so two writers
on the same wallet are linearised by the database:

* revenue posting is an in-place increment (no read-modify-write to lose);
* moving funds to pending is guarded by the wallet ``version`` the caller
  validated against, so a concurrent debit forces the caller to re-check;
* clearing pending funds is guarded by ``pending_balance >= amount``.
"""
import logging
from decimal import Decimal
from typing import Optional, List, Dict

from sqlalchemy import update
from sqlalchemy.orm import Session

from wallet_ledger.config import get_settings
from wallet_ledger.errors import (
    ConcurrencyConflict, InvalidPin, NotFound, ValidationFailed, WalletAlreadyExists,
)
from wallet_ledger.models.wallet import Wallet, WITHDRAWAL_METHODS
from wallet_ledger.schemas.schemas import WalletUpdate
from wallet_ledger.services.audit_service import AuditService
from wallet_ledger.utils.hashing import hash_pin, verify_pin_hash
from wallet_ledger.utils.money import to_money
from wallet_ledger.utils.timeutils import utcnow
from wallet_ledger.utils.validators import validate_pin

logger = logging.getLogger(__name__)
settings = get_settings()


def _check_method(method: str, paybill_number: Optional[str]) -> None:
    if method not in WITHDRAWAL_METHODS:
        raise ValidationFailed(
            f"Unsupported withdrawal method '{method}'. Use one of: {', '.join(WITHDRAWAL_METHODS)}",
            error_type="invalid_method",
        )
    if method == "paybill" and not paybill_number:
        raise ValidationFailed("Paybill number is required for paybill withdrawals", error_type="invalid_method")


def _check_pin(pin: str) -> None:
    if not validate_pin(pin):
        raise ValidationFailed("PIN must be exactly 4 digits", error_type="invalid_pin_format")


class WalletService:

    @staticmethod
    def get_wallet(db: Session, wallet_id: int) -> Optional[Wallet]:
        return db.get(Wallet, wallet_id)

    @staticmethod
    def get_wallet_by_partner(db: Session, partner_id: int, for_update: bool = False) -> Optional[Wallet]:
        query = db.query(Wallet).filter(Wallet.partner_id == partner_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def create_wallet(
        db: Session,
        partner_id: int,
        account_number: str,
        withdrawal_method: str,
        pin: str,
        beneficiaries: Optional[List[Dict]] = None,
        user_id: Optional[int] = None,
        paybill_number: Optional[str] = None,
        bank_name: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> Wallet:
        """Set up the partner's single wallet with zero balances.

        Raises:
            WalletAlreadyExists: The partner already has a wallet.
        """
        existing = WalletService.get_wallet_by_partner(db, partner_id)
        if existing:
            raise WalletAlreadyExists(
                f"Wallet already set up for partner {partner_id}", wallet_id=existing.id
            )
        _check_method(withdrawal_method, paybill_number)
        _check_pin(pin)
        if not account_number or not account_number.strip():
            raise ValidationFailed("Account number is required")

        now = utcnow()
        wallet = Wallet(
            partner_id=partner_id,
            user_id=user_id,
            balance=Decimal("0.00"),
            pending_balance=Decimal("0.00"),
            lifetime_earnings=Decimal("0.00"),
            version=0,
            account_number=account_number.strip(),
            withdrawal_method=withdrawal_method,
            paybill_number=paybill_number if withdrawal_method == "paybill" else None,
            bank_name=bank_name,
            branch=branch,
            beneficiaries=beneficiaries or [],
            pin_hash=hash_pin(pin, settings.PIN_HASH_ITERATIONS),
            pin_set_at=now,
            is_setup_complete=True,
            created_at=now,
            updated_at=now,
        )
        db.add(wallet)
        db.flush()
        AuditService.log(
            db, partner_id, "wallet.created", "wallet", wallet.id,
            details={"withdrawal_method": withdrawal_method}, user_id=user_id,
        )
        db.commit()
        logger.info(f"Wallet {wallet.id} created for partner {partner_id}")
        return wallet

    @staticmethod
    def update_wallet(db: Session, wallet_id: int, fields: WalletUpdate, user_id: Optional[int] = None) -> Wallet:
        """Administrative edit of method, destination and PIN. Balances are never touched."""
        wallet = WalletService.get_wallet(db, wallet_id)
        if not wallet:
            raise NotFound("Wallet not found")

        method = fields.withdrawal_method or wallet.withdrawal_method
        paybill = fields.paybill_number if fields.paybill_number is not None else wallet.paybill_number
        _check_method(method, paybill)

        if fields.account_number is not None:
            if not fields.account_number.strip():
                raise ValidationFailed("Account number is required")
            wallet.account_number = fields.account_number.strip()
        wallet.withdrawal_method = method
        wallet.paybill_number = paybill if method == "paybill" else None
        if fields.bank_name is not None:
            wallet.bank_name = fields.bank_name
        if fields.branch is not None:
            wallet.branch = fields.branch
        if fields.beneficiaries is not None:
            wallet.beneficiaries = [b.model_dump() for b in fields.beneficiaries]
        if fields.pin is not None:
            _check_pin(fields.pin)
            wallet.pin_hash = hash_pin(fields.pin, settings.PIN_HASH_ITERATIONS)
            wallet.pin_set_at = utcnow()
        wallet.updated_at = utcnow()

        changed = sorted(k for k in fields.model_dump(exclude_none=True) if k != "pin")
        AuditService.log(
            db, wallet.partner_id, "wallet.updated", "wallet", wallet.id,
            details={"fields": changed, "pin_changed": fields.pin is not None},
            user_id=user_id,
        )
        db.commit()
        return wallet

    @staticmethod
    def verify_pin(db: Session, wallet_id: int, pin: str) -> bool:
        """Raises InvalidPin on mismatch, NotFound for an unknown wallet."""
        wallet = WalletService.get_wallet(db, wallet_id)
        if not wallet:
            raise NotFound("Wallet not found")
        if not verify_pin_hash(pin or "", wallet.pin_hash):
            raise InvalidPin("Invalid PIN")
        return True

    # ─── Balance mutations (flush only; caller owns the transaction) ───

    @staticmethod
    def update_wallet_balance(db: Session, partner_id: int, amount_to_add, count_as_earnings: bool = True) -> Decimal:
        """Atomically add ``amount_to_add`` to balance (and lifetime earnings).

        Negative amounts are compensations and only apply while the
        available balance covers them.

        Returns:
            The new available balance.
        """
        amount = to_money(amount_to_add)
        values = {
            "balance": Wallet.balance + amount,
            "version": Wallet.version + 1,
            "updated_at": utcnow(),
        }
        if count_as_earnings:
            values["lifetime_earnings"] = Wallet.lifetime_earnings + amount

        stmt = update(Wallet).where(Wallet.partner_id == partner_id)
        if amount < 0:
            stmt = stmt.where(Wallet.balance >= -amount)
        result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))

        wallet = WalletService.get_wallet_by_partner(db, partner_id)
        if result.rowcount == 0:
            if wallet is None:
                raise NotFound(f"Wallet not found for partner {partner_id}", error_type="wallet_not_found")
            raise ValidationFailed(
                f"Balance {wallet.balance} cannot absorb an adjustment of {amount}",
                error_type="insufficient_balance",
            )
        db.refresh(wallet)
        logger.info(f"Wallet {wallet.id} credited {amount}; balance now {wallet.balance}")
        return wallet.balance

    @staticmethod
    def move_to_pending(db: Session, wallet: Wallet, amount: Decimal) -> bool:
        """Debit available and credit pending, only if nobody changed the wallet
        since ``wallet`` was read. False means re-read and re-validate."""
        result = db.execute(
            update(Wallet)
            .where(
                Wallet.id == wallet.id,
                Wallet.version == wallet.version,
                Wallet.balance >= amount,
            )
            .values(
                balance=Wallet.balance - amount,
                pending_balance=Wallet.pending_balance + amount,
                version=Wallet.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        db.refresh(wallet)
        return True

    @staticmethod
    def release_pending(db: Session, wallet_id: int, amount: Decimal, restore: bool) -> Wallet:
        """Clear ``amount`` from pending: back to balance when ``restore``,
        out of the system otherwise (payout completed)."""
        values = {
            "pending_balance": Wallet.pending_balance - amount,
            "version": Wallet.version + 1,
            "updated_at": utcnow(),
        }
        if restore:
            values["balance"] = Wallet.balance + amount

        result = db.execute(
            update(Wallet)
            .where(Wallet.id == wallet_id, Wallet.pending_balance >= amount)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConcurrencyConflict(
                f"Wallet {wallet_id} does not hold {amount} in pending balance",
                error_type="pending_balance_mismatch",
            )
        wallet = WalletService.get_wallet(db, wallet_id)
        db.refresh(wallet)
        return wallet
