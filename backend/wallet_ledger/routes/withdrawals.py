"""
Withdrawal Routes — availability checks, requests and the payout lifecycle.
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from wallet_ledger.database import get_db
from wallet_ledger.errors import NotFound
from wallet_ledger.jobs.outbox_worker import drain_outbox
from wallet_ledger.schemas.schemas import (
    WithdrawalCreateRequest, WithdrawalCreateResponse, WithdrawalResponse, WithdrawalStatsResponse,
    ApproveWithdrawalRequest, RejectWithdrawalRequest, CancelWithdrawalRequest, ProcessWithdrawalRequest,
)
from wallet_ledger.services.withdrawal_service import WithdrawalService

router = APIRouter(prefix="/api/withdrawals", tags=["Withdrawals"])


@router.get("/availability")
def check_availability(
    partner_id: int = Query(...),
    amount: float = Query(..., gt=0),
    db: Session = Depends(get_db),
):
    """Pre-flight check for the withdrawal dialog. Nothing is reserved."""
    return WithdrawalService.check_availability(db, partner_id, amount)


@router.post("", response_model=WithdrawalCreateResponse)
def create_withdrawal(
    payload: WithdrawalCreateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Request a withdrawal; the amount moves from balance to pending."""
    result = WithdrawalService.create_withdrawal(
        db,
        wallet_id=payload.wallet_id,
        partner_id=payload.partner_id,
        user_id=payload.user_id,
        amount=payload.amount,
        withdrawal_method=payload.withdrawal_method,
        destination_details=payload.destination_details.model_dump(exclude_none=True),
        notes=payload.notes,
        ip_address=request.client.host if request.client else None,
    )
    background_tasks.add_task(drain_outbox, db.get_bind())
    return result


@router.get("", response_model=list[WithdrawalResponse])
def list_withdrawals(
    partner_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return WithdrawalService.get_withdrawals(
        db, partner_id=partner_id, user_id=user_id, status=status, limit=limit, offset=offset
    )


@router.get("/stats/{partner_id}", response_model=WithdrawalStatsResponse)
def withdrawal_stats(partner_id: int, db: Session = Depends(get_db)):
    return WithdrawalService.get_withdrawal_stats(db, partner_id)


@router.get("/totals/{partner_id}")
def withdrawal_totals(partner_id: int, db: Session = Depends(get_db)):
    totals = WithdrawalService.get_total_withdrawals(db, partner_id)
    totals["recent_withdrawals"] = [
        WithdrawalResponse.model_validate(w) for w in totals["recent_withdrawals"]
    ]
    return totals


@router.get("/{withdrawal_id}", response_model=WithdrawalResponse)
def get_withdrawal(withdrawal_id: int, db: Session = Depends(get_db)):
    withdrawal = WithdrawalService.get_withdrawal(db, withdrawal_id)
    if not withdrawal:
        raise NotFound("Withdrawal not found")
    return withdrawal


@router.post("/{withdrawal_id}/process", response_model=WithdrawalResponse)
def process_withdrawal(
    withdrawal_id: int,
    payload: ProcessWithdrawalRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    withdrawal = WithdrawalService.mark_processing(db, withdrawal_id, performed_by=payload.performed_by)
    background_tasks.add_task(drain_outbox, db.get_bind())
    return withdrawal


@router.post("/{withdrawal_id}/approve", response_model=WithdrawalResponse)
def approve_withdrawal(
    withdrawal_id: int,
    payload: ApproveWithdrawalRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Mark the payout as sent; pending funds leave the wallet."""
    withdrawal = WithdrawalService.approve_withdrawal(
        db, withdrawal_id, payload.receipt, performed_by=payload.performed_by
    )
    background_tasks.add_task(drain_outbox, db.get_bind())
    return withdrawal


@router.post("/{withdrawal_id}/reject", response_model=WithdrawalResponse)
def reject_withdrawal(
    withdrawal_id: int,
    payload: RejectWithdrawalRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Refuse the payout; pending funds return to the available balance."""
    withdrawal = WithdrawalService.reject_withdrawal(
        db, withdrawal_id, payload.reason, performed_by=payload.performed_by
    )
    background_tasks.add_task(drain_outbox, db.get_bind())
    return withdrawal


@router.post("/{withdrawal_id}/cancel", response_model=WithdrawalResponse)
def cancel_withdrawal(
    withdrawal_id: int,
    payload: CancelWithdrawalRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    withdrawal = WithdrawalService.cancel_withdrawal(
        db, withdrawal_id, partner_id=payload.partner_id, reason=payload.reason
    )
    background_tasks.add_task(drain_outbox, db.get_bind())
    return withdrawal
