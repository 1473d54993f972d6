"""
Partner Wallet Ledger — FastAPI Application Entry Point

Aggregates all routers, configures middleware and error handlers,
initializes the database and starts the outbox worker on startup.
"""
import logging
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from wallet_ledger.config import get_settings
from wallet_ledger.database import SessionLocal, init_db
from wallet_ledger.errors import LedgerError
from wallet_ledger.jobs.outbox_worker import OutboxWorker
from wallet_ledger.logging_config import configure_logging
from wallet_ledger.routes import (
    webhooks_router, wallet_router, withdrawals_router, admin_router, notification_router,
)

settings = get_settings()
logger = logging.getLogger(__name__)

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Transaction reconciliation and wallet ledger for partner campaigns. "
        "Covers M-Pesa payment webhooks, enrollments, partner revenue, "
        "wallet balances and the withdrawal lifecycle."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup / Shutdown ──────────────────────────────────────────────
BOOT_TIME = time.time()
outbox_worker = OutboxWorker()


@app.on_event("startup")
def on_startup():
    """Initialize logging, database tables and the outbox worker."""
    configure_logging()
    init_db()

    if settings.OUTBOX_SCHEDULER_ENABLED:
        outbox_worker.start()

    logger.info(
        f"\n{'='*60}\n"
        f"  {settings.APP_NAME} v{settings.APP_VERSION}\n"
        f"  TIME: {datetime.now().isoformat()}\n"
        f"  DATABASE: {settings.DATABASE_URL}\n"
        f"  TIMEZONE: {settings.TIMEZONE}  CURRENCY: {settings.CURRENCY}\n"
        f"  OUTBOX WORKER: {'[OK] every ' + str(settings.OUTBOX_POLL_SECONDS) + 's' if outbox_worker.running else '[!] disabled'}\n"
        f"  DEBUG: {settings.DEBUG}\n"
        f"{'='*60}"
    )


@app.on_event("shutdown")
def on_shutdown():
    outbox_worker.stop()


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path != "/health":
        logger.info(f"-> {request.method} {request.url.path} -> {response.status_code} ({duration}ms)")

    return response


# ─── Error Handlers ──────────────────────────────────────────────────
@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request",
            "error_type": "validation_error",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail, "error_type": "http_error"},
        headers=getattr(exc, "headers", None),
    )


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(webhooks_router)
app.include_router(wallet_router)
app.include_router(withdrawals_router)
app.include_router(admin_router)
app.include_router(notification_router)


@app.get("/health", tags=["Health"])
def deep_health():
    """Detailed health check including dependency statuses."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "outbox_worker": "running" if outbox_worker.running else "stopped",
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
