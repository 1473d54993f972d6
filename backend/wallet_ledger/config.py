"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from decimal import Decimal
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Partner Wallet Ledger API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'wallet_ledger.db'}"

    # --- Security ---
    SECRET_KEY: str = "wallet-ledger-secret-key-change-in-production"
    PIN_HASH_ITERATIONS: int = 120_000
    CORS_ORIGINS: list[str] = ["*"]

    # --- Payments ---
    CURRENCY: str = "KES"
    MPESA_SUCCESS_CODE: int = 0
    # Partner keeps 20%, platform keeps 80% of every successful payment
    PARTNER_SHARE_RATE: Decimal = Decimal("0.20")
    REDEEM_CODE_ATTEMPTS: int = 5

    # --- Wallet / Withdrawals ---
    TIMEZONE: str = "Africa/Nairobi"
    WALLET_UPDATE_MAX_RETRIES: int = 5

    # --- Outbox ---
    OUTBOX_MAX_ATTEMPTS: int = 5
    OUTBOX_BATCH_SIZE: int = 20
    OUTBOX_POLL_SECONDS: int = 60
    OUTBOX_BACKOFF_SECONDS: int = 30
    OUTBOX_SCHEDULER_ENABLED: bool = True

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
