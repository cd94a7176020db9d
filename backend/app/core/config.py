# core/config.py
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ────────────────────────────────
    # 1. APP & ENVIRONMENT
    # ────────────────────────────────
    PROJECT_NAME: str = "PayNow"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    BACKEND_URL: str = Field(
        default="http://127.0.0.1:8000",
        description="Public base URL gateways call back on (no trailing slash)"
    )
    FRONTEND_URL: str = "http://localhost:3000"
    PAYLINK_BASE_URL: str = "https://paylink.co.ke"
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "https://paynow-frontend.onrender.com",
    ]

    # ────────────────────────────────
    # 2. FIREBASE / FIRESTORE
    # ────────────────────────────────
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = Field(
        default=None,
        description="Path to Firebase service account JSON"
    )
    PAYNOW_FIREBASE_KEY: Optional[str] = Field(
        default=None,
        description="Base64-encoded Firebase service account JSON"
    )
    FIREBASE_STORAGE_BUCKET: Optional[str] = None

    # ────────────────────────────────
    # 3. PAYMENTS
    # ────────────────────────────────
    DEFAULT_COUNTRY_CODE: str = "254"
    DEFAULT_CURRENCY: str = "KES"
    GATEWAY_TIMEOUT_SECONDS: float = 30.0
    SIDE_EFFECT_TIMEOUT_SECONDS: float = 20.0

    # ────────────────────────────────
    # 4. SMS (bulk SMS HTTP API)
    # ────────────────────────────────
    SMS_API_URL: str = "https://api.vaspro.co.ke/v3/BulkSMS/api/create"
    SMS_API_KEY: str = ""
    SMS_SHORT_CODE: str = "VasPro"

    # ────────────────────────────────
    # 5. EMAIL (Resend)
    # ────────────────────────────────
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "PayNow <receipts@paynow.co.ke>"

    # ────────────────────────────────
    # 6. TASK QUEUE (Celery)
    # ────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # ────────────────────────────────
    # 7. REMINDERS & INVOICES
    # ────────────────────────────────
    REMINDER_LOOP_ENABLED: bool = True
    REMINDER_CHECK_INTERVAL_SECONDS: int = 60 * 60
    REMINDER_LOCK_TIMEOUT_MINUTES: int = 30
    INVOICE_URL_TTL_DAYS: int = 7

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Create singleton
settings = Settings()
