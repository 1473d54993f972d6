"""
Domain Errors — every failure the ledger reports to a caller.

Each error carries the HTTP status it maps to, a machine-readable
``error_type`` and optional extra fields that end up in the JSON body.
"""
from typing import Any, Dict, Optional


class LedgerError(Exception):
    status_code = 400
    error_type = "error"

    def __init__(self, message: str, error_type: Optional[str] = None, **details: Any):
        super().__init__(message)
        self.message = message
        if error_type:
            self.error_type = error_type
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.message, "error_type": self.error_type}
        body.update(self.details)
        return body


class ValidationFailed(LedgerError):
    status_code = 400
    error_type = "validation_error"


class NotFound(LedgerError):
    status_code = 404
    error_type = "not_found"


class Conflict(LedgerError):
    status_code = 409
    error_type = "conflict"


class DuplicateReceiptCode(Conflict):
    error_type = "duplicate_receipt_code"


class WalletAlreadyExists(Conflict):
    error_type = "wallet_exists"


class InvalidPin(LedgerError):
    status_code = 403
    error_type = "invalid_pin"


class WithdrawalRejected(LedgerError):
    """Quota / balance validation failure. ``error_type`` is the reason code."""
    status_code = 400


class InvalidStateTransition(LedgerError):
    status_code = 400
    error_type = "invalid_state_transition"


class StructuralError(LedgerError):
    """Data-integrity problem the caller cannot fix (missing campaign/program)."""
    status_code = 500
    error_type = "structural_error"


class ConcurrencyConflict(LedgerError):
    status_code = 500
    error_type = "concurrency_conflict"
