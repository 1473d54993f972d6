"""
Pydantic Schemas — Request & Response models for API validation,
plus the typed partial-update structs the services accept.
"""
from datetime import datetime
from typing import Optional, Dict, List, Union
from pydantic import BaseModel, Field, ConfigDict


# ──────────────── Payment Webhooks ────────────────
# Fields are optional on purpose: missing values are reported as a 400
# with the list of absent fields rather than a generic 422.

class MpesaPaymentRequest(BaseModel):
    student_name: Optional[str] = None
    phone_number: Optional[str] = None
    mpesa_code: Optional[str] = None
    amount: Optional[Union[float, str]] = None
    campaign_code: Optional[str] = None
    checkout_request_id: Optional[str] = None


class MpesaCallbackRequest(BaseModel):
    checkout_request_id: Optional[str] = None
    result_code: Optional[Union[int, str]] = None
    result_desc: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    phone_number: Optional[str] = None
    amount: Optional[Union[float, str]] = None
    transaction_date: Optional[Union[int, str]] = None


class CheckTransactionRequest(BaseModel):
    mpesa_code: Optional[str] = None


# ──────────────── Partial Updates ────────────────

class Beneficiary(BaseModel):
    label: str
    account_number: str
    provider: str


class TransactionUpdate(BaseModel):
    """Fields a reconciliation may patch on a transaction; ``None`` means untouched."""
    status: Optional[str] = None
    receipt_code: Optional[str] = None
    amount: Optional[float] = None
    verified_at: Optional[datetime] = None

    def values(self) -> Dict:
        return self.model_dump(exclude_none=True)


class WalletUpdate(BaseModel):
    account_number: Optional[str] = None
    withdrawal_method: Optional[str] = None
    paybill_number: Optional[str] = None
    bank_name: Optional[str] = None
    branch: Optional[str] = None
    beneficiaries: Optional[List[Beneficiary]] = None
    pin: Optional[str] = Field(None, description="New 4-digit PIN")


class WithdrawalLimitUpdate(BaseModel):
    min_withdrawal_amount: Optional[float] = None
    max_withdrawal_amount: Optional[float] = None
    daily_limit: Optional[float] = None
    monthly_limit: Optional[float] = None
    processing_days: Optional[int] = None
    is_active: Optional[bool] = None

    def values(self) -> Dict:
        return self.model_dump(exclude_none=True)


# ──────────────── Wallet ────────────────

class WalletCreateRequest(BaseModel):
    partner_id: int
    user_id: Optional[int] = None
    account_number: str
    withdrawal_method: str = Field(..., description="mpesa | bank | paybill")
    pin: str = Field(..., description="4-digit PIN")
    paybill_number: Optional[str] = None
    bank_name: Optional[str] = None
    branch: Optional[str] = None
    beneficiaries: List[Beneficiary] = []


class WalletResponse(BaseModel):
    id: int
    partner_id: int
    user_id: Optional[int] = None
    balance: float
    pending_balance: float
    lifetime_earnings: float
    account_number: str
    withdrawal_method: str
    paybill_number: Optional[str] = None
    bank_name: Optional[str] = None
    branch: Optional[str] = None
    beneficiaries: List[Dict] = []
    is_setup_complete: bool
    pin_set_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PinVerifyRequest(BaseModel):
    pin: str


class RevenueEntryResponse(BaseModel):
    id: int
    partner_id: int
    user_id: Optional[int] = None
    campaign_id: int
    transaction_id: int
    amount: float
    gross_amount: float
    reason: Optional[str] = None
    split_timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class CompensationRequest(BaseModel):
    revenue_entry_id: int
    reason: str
    amount: Optional[float] = Field(None, gt=0, description="Defaults to the full original share")
    performed_by: Optional[int] = None


# ──────────────── Withdrawals ────────────────

class DestinationDetails(BaseModel):
    account_number: str
    account_name: Optional[str] = None
    bank_name: Optional[str] = None
    branch: Optional[str] = None
    paybill_number: Optional[str] = None


class WithdrawalCreateRequest(BaseModel):
    wallet_id: int
    user_id: Optional[int] = None
    partner_id: int
    amount: float = Field(..., gt=0)
    withdrawal_method: str
    destination_details: DestinationDetails
    notes: Optional[str] = None


class WithdrawalCreateResponse(BaseModel):
    success: bool = True
    withdrawal_id: int
    reference_number: str
    amount: float
    status: str
    processing_days: int


class WithdrawalResponse(BaseModel):
    id: int
    wallet_id: int
    user_id: Optional[int] = None
    partner_id: int
    amount: float
    withdrawal_method: str
    destination_details: Dict = {}
    reference_number: str
    status: str
    receipt: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ApproveWithdrawalRequest(BaseModel):
    receipt: str = Field(..., description="Payout receipt from the disbursement channel")
    performed_by: Optional[int] = None


class RejectWithdrawalRequest(BaseModel):
    reason: str
    performed_by: Optional[int] = None


class CancelWithdrawalRequest(BaseModel):
    partner_id: int
    reason: Optional[str] = None


class ProcessWithdrawalRequest(BaseModel):
    performed_by: Optional[int] = None


class WithdrawalStatsResponse(BaseModel):
    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    cancelled: int
    total_amount: float
    pending_amount: float
    completed_amount: float


# ──────────────── Withdrawal Limits ────────────────

class WithdrawalLimitCreateRequest(BaseModel):
    partner_id: Optional[int] = None
    min_withdrawal_amount: float = Field(..., gt=0)
    max_withdrawal_amount: float = Field(..., gt=0)
    daily_limit: float = Field(..., gt=0)
    monthly_limit: float = Field(..., gt=0)
    processing_days: int = Field(3, ge=0)
    is_active: bool = True


class WithdrawalLimitResponse(BaseModel):
    id: int
    partner_id: Optional[int] = None
    min_withdrawal_amount: float
    max_withdrawal_amount: float
    daily_limit: float
    monthly_limit: float
    processing_days: int
    is_active: bool
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ──────────────── Admin / Audit ────────────────

class AuditLogEntry(BaseModel):
    id: int
    partner_id: int
    user_id: Optional[int] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    details: Optional[Dict] = None
    payload_hash: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReconciliationResponse(BaseModel):
    partner_id: int
    revenue_total: float
    lifetime_earnings: float
    difference: float
    balanced: bool


# ──────────────── Notifications ────────────────

class NotificationResponse(BaseModel):
    id: int
    partner_id: int
    type: str
    title: str
    message: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ──────────────── Generic ────────────────

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    error_type: Optional[str] = None
