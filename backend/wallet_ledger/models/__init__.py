from wallet_ledger.models.catalog import Partner, Program, Campaign
from wallet_ledger.models.transaction import Transaction
from wallet_ledger.models.enrollment import Enrollment
from wallet_ledger.models.revenue import RevenueEntry
from wallet_ledger.models.wallet import Wallet
from wallet_ledger.models.withdrawal import Withdrawal, WithdrawalLimit
from wallet_ledger.models.audit import AuditLog
from wallet_ledger.models.notification import Notification, OutboxMessage

__all__ = [
    "Partner", "Program", "Campaign", "Transaction", "Enrollment", "RevenueEntry",
    "Wallet", "Withdrawal", "WithdrawalLimit", "AuditLog", "Notification", "OutboxMessage",
]
