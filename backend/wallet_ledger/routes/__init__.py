from wallet_ledger.routes.webhooks import router as webhooks_router
from wallet_ledger.routes.wallet import router as wallet_router
from wallet_ledger.routes.withdrawals import router as withdrawals_router
from wallet_ledger.routes.admin import router as admin_router
from wallet_ledger.routes.notification import router as notification_router

__all__ = ["webhooks_router", "wallet_router", "withdrawals_router", "admin_router", "notification_router"]
