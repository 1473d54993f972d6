"""
Transaction Store — durable record of every payment attempt.

A transaction is keyed by its M-Pesa receipt code (unique once present)
and by the gateway correlation id. Status moves ``pending`` → ``Success``
or ``Failed`` exactly once; the transition is a compare-and-set so a
duplicate callback can never apply twice.
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wallet_ledger.errors import DuplicateReceiptCode, InvalidStateTransition, NotFound
from wallet_ledger.models.transaction import (
    Transaction, STATUS_PENDING, TERMINAL_STATUSES,
)
from wallet_ledger.schemas.schemas import TransactionUpdate
from wallet_ledger.utils.money import to_money
from wallet_ledger.utils.timeutils import utcnow
from wallet_ledger.utils.validators import normalize_code, normalize_phone

logger = logging.getLogger(__name__)


def _update_values(fields: TransactionUpdate) -> dict:
    values = fields.values()
    if "amount" in values:
        values["amount"] = to_money(values["amount"])
    if "receipt_code" in values:
        values["receipt_code"] = normalize_code(values["receipt_code"]) or None
    return values


class TransactionService:

    @staticmethod
    def create_transaction(
        db: Session,
        student_name: str,
        phone_number: str,
        amount,
        campaign_code: str,
        partner_id: int,
        receipt_code: Optional[str] = None,
        status: str = STATUS_PENDING,
        checkout_request_id: Optional[str] = None,
    ) -> Transaction:
        """Insert and commit a transaction.

        Raises:
            DuplicateReceiptCode: A transaction with this receipt code exists,
                either found up front or raced in by a concurrent insert.
        """
        receipt = normalize_code(receipt_code) or None
        if receipt:
            existing = TransactionService.get_by_receipt_code(db, receipt)
            if existing:
                raise DuplicateReceiptCode(
                    f"Transaction with M-Pesa code '{receipt}' already exists",
                    transaction_id=existing.id,
                )

        txn = Transaction(
            student_name=student_name.strip(),
            phone_number=normalize_phone(phone_number),
            receipt_code=receipt,
            checkout_request_id=checkout_request_id,
            amount=to_money(amount),
            campaign_code=normalize_code(campaign_code),
            partner_id=partner_id,
            status=status,
            created_at=utcnow(),
            verified_at=utcnow() if status in TERMINAL_STATUSES else None,
        )
        db.add(txn)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = TransactionService.get_by_receipt_code(db, receipt) if receipt else None
            if existing:
                logger.info(f"Concurrent duplicate receipt {receipt} resolved to transaction {existing.id}")
                raise DuplicateReceiptCode(
                    f"Transaction with M-Pesa code '{receipt}' already exists",
                    transaction_id=existing.id,
                )
            raise

        logger.info(f"Transaction {txn.id} recorded ({txn.status}) for campaign {txn.campaign_code}")
        return txn

    @staticmethod
    def get_by_id(db: Session, transaction_id: int) -> Optional[Transaction]:
        return db.get(Transaction, transaction_id)

    @staticmethod
    def get_by_receipt_code(db: Session, code: str) -> Optional[Transaction]:
        code = normalize_code(code)
        if not code:
            return None
        return db.query(Transaction).filter(Transaction.receipt_code == code).first()

    @staticmethod
    def get_by_correlation_id(db: Session, correlation_id: str) -> Optional[Transaction]:
        """Match the gateway CheckoutRequestID, falling back to the receipt code.

        The payment automation sometimes places the receipt code in the
        correlation slot, so both are tried before reporting absence.
        """
        if not correlation_id or not correlation_id.strip():
            return None
        txn = (
            db.query(Transaction)
            .filter(Transaction.checkout_request_id == correlation_id.strip())
            .first()
        )
        return txn or TransactionService.get_by_receipt_code(db, correlation_id)

    @staticmethod
    def get_recent_by_phone(db: Session, phone_number: str) -> Optional[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.phone_number == normalize_phone(phone_number))
            .order_by(Transaction.id.desc())
            .first()
        )

    @staticmethod
    def list_transactions(
        db: Session,
        partner_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        query = db.query(Transaction)
        if partner_id is not None:
            query = query.filter(Transaction.partner_id == partner_id)
        if status:
            query = query.filter(Transaction.status == status)
        return query.order_by(Transaction.id.desc()).offset(offset).limit(limit).all()

    @staticmethod
    def update_transaction(db: Session, transaction_id: int, fields: TransactionUpdate) -> Transaction:
        """Patch only the supplied fields.

        A terminal transaction keeps its status: repeating the same terminal
        status is a logged no-op, switching to another one is refused.
        Flushes; the caller commits.
        """
        txn = TransactionService.get_by_id(db, transaction_id)
        if not txn:
            raise NotFound("Transaction not found")

        values = _update_values(fields)
        if txn.is_terminal and "status" in values:
            if values["status"] == txn.status:
                logger.info(f"Transaction {txn.id} already {txn.status}; update ignored")
                return txn
            raise InvalidStateTransition(
                f"Transaction {txn.id} is already {txn.status} and cannot become {values['status']}"
            )

        for key, value in values.items():
            setattr(txn, key, value)
        db.flush()
        return txn

    @staticmethod
    def mark_terminal(db: Session, transaction_id: int, fields: TransactionUpdate) -> bool:
        """Atomically move a ``pending`` transaction to a terminal status.

        Returns:
            False when another writer already finalised it (duplicate delivery).
        """
        values = _update_values(fields)
        if values.get("status") not in TERMINAL_STATUSES:
            raise InvalidStateTransition(f"Not a terminal status: {values.get('status')!r}")

        result = db.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status == STATUS_PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False

        txn = db.get(Transaction, transaction_id)
        if txn is not None:
            db.refresh(txn)
        return True
