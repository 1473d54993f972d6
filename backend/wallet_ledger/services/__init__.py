from wallet_ledger.services.audit_service import AuditService
from wallet_ledger.services.catalog_service import CatalogService
from wallet_ledger.services.transaction_service import TransactionService
from wallet_ledger.services.enrollment_service import EnrollmentService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.services.revenue_service import RevenueService
from wallet_ledger.services.limit_service import LimitService
from wallet_ledger.services.notification_service import NotificationService
from wallet_ledger.services.outbox_service import OutboxService
from wallet_ledger.services.withdrawal_service import WithdrawalService
from wallet_ledger.services.payment_service import PaymentService

__all__ = [
    "AuditService", "CatalogService", "TransactionService", "EnrollmentService", "WalletService",
    "RevenueService", "LimitService", "NotificationService", "OutboxService", "WithdrawalService",
    "PaymentService",
]
