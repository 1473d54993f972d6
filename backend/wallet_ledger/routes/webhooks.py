"""
Webhook Routes — M-Pesa payment lifecycle.
Handles: payment initiated, gateway callback, status polling.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from wallet_ledger.database import get_db
from wallet_ledger.errors import LedgerError
from wallet_ledger.jobs.outbox_worker import drain_outbox
from wallet_ledger.schemas.schemas import (
    MpesaPaymentRequest, MpesaCallbackRequest, CheckTransactionRequest,
)
from wallet_ledger.services.payment_service import PaymentService
from wallet_ledger.utils.rate_limiter import rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])


def _internal_error(db: Session, what: str, exc: Exception) -> JSONResponse:
    logger.error(f"Error handling {what}: {exc}", exc_info=True)
    db.rollback()
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": str(exc) or "Internal server error", "error_type": "internal_error"},
    )


@router.post("/mpesa-payment")
def mpesa_payment(payload: MpesaPaymentRequest, db: Session = Depends(get_db)):
    """Record a pending transaction for a promo-code payment."""
    try:
        return PaymentService.record_payment_initiated(db, payload)
    except LedgerError:
        raise
    except Exception as e:
        return _internal_error(db, "M-Pesa payment", e)


@router.patch("/mpesa-callback")
def mpesa_callback(
    payload: MpesaCallbackRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Finalise a transaction from the gateway result.

    Returns 200 (settled, failed or duplicate), 404 for an unknown correlation
    id, 409 when the receipt code already belongs to another transaction, and
    500 on structural or unexpected errors.
    """
    try:
        result = PaymentService.process_callback(db, payload)
    except LedgerError:
        raise
    except Exception as e:
        return _internal_error(db, "M-Pesa callback", e)

    if result.get("payment_status") == "success" and not result.get("duplicate"):
        background_tasks.add_task(drain_outbox, db.get_bind())
    return result


@router.post("/check-transaction")
def check_transaction(
    payload: CheckTransactionRequest,
    db: Session = Depends(get_db),
    _throttle: bool = Depends(rate_limit(requests=30, window=60)),
):
    """Poll a transaction's status by M-Pesa receipt code."""
    try:
        return PaymentService.check_transaction(db, payload.mpesa_code)
    except LedgerError:
        raise
    except Exception as e:
        return _internal_error(db, "transaction check", e)
