"""
Wallet Routes — partner wallet setup, PIN checks and earnings history.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from wallet_ledger.database import get_db
from wallet_ledger.errors import NotFound
from wallet_ledger.schemas.schemas import (
    WalletCreateRequest, WalletResponse, WalletUpdate, PinVerifyRequest, RevenueEntryResponse,
)
from wallet_ledger.services.revenue_service import RevenueService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.utils.rate_limiter import rate_limit

router = APIRouter(prefix="/api/wallet", tags=["Wallet"])


@router.post("", response_model=WalletResponse)
def create_wallet(payload: WalletCreateRequest, db: Session = Depends(get_db)):
    """Set up a partner's wallet. One wallet per partner."""
    return WalletService.create_wallet(
        db,
        partner_id=payload.partner_id,
        user_id=payload.user_id,
        account_number=payload.account_number,
        withdrawal_method=payload.withdrawal_method,
        pin=payload.pin,
        paybill_number=payload.paybill_number,
        bank_name=payload.bank_name,
        branch=payload.branch,
        beneficiaries=[b.model_dump() for b in payload.beneficiaries],
    )


@router.get("/partner/{partner_id}", response_model=WalletResponse)
def get_wallet_by_partner(partner_id: int, db: Session = Depends(get_db)):
    wallet = WalletService.get_wallet_by_partner(db, partner_id)
    if not wallet:
        raise NotFound("Wallet not found", error_type="wallet_not_found")
    return wallet


@router.patch("/{wallet_id}", response_model=WalletResponse)
def update_wallet(wallet_id: int, payload: WalletUpdate, db: Session = Depends(get_db)):
    """Change method, destination or PIN. Balances cannot be edited here."""
    return WalletService.update_wallet(db, wallet_id, payload)


@router.post("/{wallet_id}/verify-pin")
def verify_pin(
    wallet_id: int,
    payload: PinVerifyRequest,
    db: Session = Depends(get_db),
    _throttle: bool = Depends(rate_limit(requests=10, window=60)),
):
    WalletService.verify_pin(db, wallet_id, payload.pin)
    return {"success": True, "valid": True}


@router.get("/partner/{partner_id}/revenue", response_model=list[RevenueEntryResponse])
def list_revenue(
    partner_id: int,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return RevenueService.list_revenue(db, partner_id, limit=limit, offset=offset)
