"""
Admin Routes — withdrawal limits, audit trail, reconciliation and outbox control.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from wallet_ledger.database import get_db
from wallet_ledger.errors import NotFound
from wallet_ledger.schemas.schemas import (
    AuditLogEntry, CompensationRequest, ReconciliationResponse, RevenueEntryResponse,
    WithdrawalLimitCreateRequest, WithdrawalLimitResponse, WithdrawalLimitUpdate,
)
from wallet_ledger.services.audit_service import AuditService
from wallet_ledger.services.limit_service import LimitService
from wallet_ledger.services.outbox_service import OutboxService
from wallet_ledger.services.revenue_service import RevenueService
from wallet_ledger.services.transaction_service import TransactionService

router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ─── Withdrawal Limits ───────────────────────────────────────────────

@router.get("/limits", response_model=list[WithdrawalLimitResponse])
def list_limits(partner_id: Optional[int] = None, db: Session = Depends(get_db)):
    return LimitService.list_limits(db, partner_id=partner_id)


@router.post("/limits", response_model=WithdrawalLimitResponse)
def create_limit(payload: WithdrawalLimitCreateRequest, db: Session = Depends(get_db)):
    """Create a partner-specific limit, or a global one when partner_id is omitted."""
    return LimitService.create_limit(db, **payload.model_dump())


@router.patch("/limits/{limit_id}", response_model=WithdrawalLimitResponse)
def update_limit(limit_id: int, payload: WithdrawalLimitUpdate, db: Session = Depends(get_db)):
    return LimitService.update_limit(db, limit_id, payload)


@router.get("/limits/active/{partner_id}", response_model=WithdrawalLimitResponse)
def get_active_limit(partner_id: int, db: Session = Depends(get_db)):
    limit = LimitService.get_active_limit(db, partner_id)
    if not limit:
        raise NotFound("Withdrawal limits not configured", error_type="no_limits")
    return limit


# ─── Audit ───────────────────────────────────────────────────────────

@router.get("/audit", response_model=list[AuditLogEntry])
def list_audit_logs(
    partner_id: Optional[int] = None,
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return AuditService.list_logs(
        db, partner_id=partner_id, user_id=user_id, action=action, limit=limit, offset=offset
    )


@router.get("/audit/verify/{partner_id}")
def verify_audit_chain(partner_id: int, db: Session = Depends(get_db)):
    """Recompute the partner's hash chain and report the first broken entry."""
    return AuditService.verify_chain(db, partner_id)


# ─── Revenue & Transactions ──────────────────────────────────────────

@router.get("/reconciliation/{partner_id}", response_model=ReconciliationResponse)
def reconcile_partner(partner_id: int, db: Session = Depends(get_db)):
    return RevenueService.reconcile(db, partner_id)


@router.post("/revenue/compensate", response_model=RevenueEntryResponse)
def compensate_revenue(payload: CompensationRequest, db: Session = Depends(get_db)):
    """Append a negative entry reversing all or part of an earlier share."""
    return RevenueService.log_compensation(
        db,
        revenue_entry_id=payload.revenue_entry_id,
        reason=payload.reason,
        amount=payload.amount,
        performed_by=payload.performed_by,
    )


@router.get("/transactions")
def list_transactions(
    partner_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return [
        {
            "id": t.id,
            "receipt_code": t.receipt_code,
            "checkout_request_id": t.checkout_request_id,
            "student_name": t.student_name,
            "phone_number": t.phone_number,
            "amount": t.amount,
            "campaign_code": t.campaign_code,
            "partner_id": t.partner_id,
            "status": t.status,
            "created_at": t.created_at,
            "verified_at": t.verified_at,
        }
        for t in TransactionService.list_transactions(db, partner_id=partner_id, status=status, limit=limit, offset=offset)
    ]


# ─── Outbox ──────────────────────────────────────────────────────────

@router.get("/outbox/stats")
def outbox_stats(db: Session = Depends(get_db)):
    return OutboxService.get_queue_stats(db)


@router.post("/outbox/drain")
def drain_outbox_now(db: Session = Depends(get_db)):
    """Deliver due notifications and emails immediately."""
    return OutboxService.dispatch_pending(db)
