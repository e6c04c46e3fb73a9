

# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from uuid import UUID
from typing import Literal


DEV_JWT_SECRET = "dev-secret-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: Literal["dev", "staging", "prod"] = "dev"

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(default="")
    PURCHASE_STORE: Literal["postgres", "memory"] = "postgres"
    DB_POOL_MIN: int = Field(default=1, ge=1)
    DB_POOL_MAX: int = Field(default=10, ge=1)
    DB_STATEMENT_TIMEOUT_MS: int = Field(default=5000, ge=100)

    # -----------------------
    # System owner (always admin)
    # -----------------------
    SYSTEM_OWNER_ID: UUID = Field(default=UUID("00000000-0000-0000-0000-000000000001"))

    # -----------------------
    # JWT
    # -----------------------
    JWT_SECRET: str = Field(default=DEV_JWT_SECRET, min_length=16)
    JWT_ALG: str = Field(default="HS256")
    JWT_ACCESS_MINUTES: int = Field(default=60)

    # -----------------------
    # Reconciliation loop
    # -----------------------
    RECONCILE_ENABLED: bool = True
    RECONCILE_INTERVAL_SECONDS: int = Field(default=3600, ge=1)
    RECONCILE_BATCH_SIZE: int = Field(default=500, ge=1)

    # -----------------------
    # Collaborators (Mode Switch)
    # -----------------------
    COLLABORATOR_MODE: Literal["sandbox", "real"] = "sandbox"
    COLLABORATOR_HTTP_TIMEOUT_S: float = 10.0
    EFFECT_WORKERS: int = Field(default=4, ge=1)

    PAYMENTS_BASE_URL: str = ""
    PAYMENTS_API_KEY: str = ""

    STORAGE_BASE_URL: str = ""
    STORAGE_API_KEY: str = ""

    # Upstream gateway -> payment completion signal
    PAYMENT_WEBHOOK_SECRET: str = ""


settings = Settings()


def validate_env_settings() -> None:
    env = (settings.ENV or "dev").strip().lower()
    if env == "dev":
        return

    missing: list[str] = []
    if settings.PURCHASE_STORE == "postgres" and not settings.DATABASE_URL:
        missing.append("DATABASE_URL")
    if settings.JWT_SECRET == DEV_JWT_SECRET or len(settings.JWT_SECRET) < 32:
        missing.append("JWT_SECRET")
    if not settings.PAYMENT_WEBHOOK_SECRET:
        missing.append("PAYMENT_WEBHOOK_SECRET")

    if settings.COLLABORATOR_MODE == "real":
        for name in ("PAYMENTS_BASE_URL", "PAYMENTS_API_KEY", "STORAGE_BASE_URL", "STORAGE_API_KEY"):
            if not getattr(settings, name):
                missing.append(name)

    if missing:
        raise RuntimeError(f"Invalid {env} settings, missing or weak: {', '.join(missing)}")
