# secondact/settings.py
from __future__ import annotations
from decimal import Decimal
from typing import List, Optional
from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict
import json

DEFAULT_CORS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def _parse_cors(v: Optional[str | List[str]]) -> List[str]:
    """
    Accept JSON array (e.g. '["http://localhost:3000"]') or
    comma-separated string ('http://localhost:3000,http://127.0.0.1:3000').
    """
    if v is None:
        return list(DEFAULT_CORS)
    if isinstance(v, list):
        return v
    s = v.strip()
    if not s:
        return list(DEFAULT_CORS)
    # try JSON first
    try:
        parsed = json.loads(s)
        if isinstance(parsed, list) and all(isinstance(x, str) for x in parsed):
            return parsed
    except ValueError:
        pass
    # fallback: comma separated
    return [p.strip() for p in s.split(",") if p.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",   # ignore unknown env keys instead of raising
    )

    # --- API ---
    api_host: str = Field(default="127.0.0.1", validation_alias=AliasChoices("API_HOST",))
    api_port: int = Field(default=8000,        validation_alias=AliasChoices("API_PORT",))
    cors_origins_raw: Optional[str | List[str]] = Field(
        default=None, validation_alias=AliasChoices("CORS_ORIGINS",)
    )
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL",))
    # used for onboarding return links and password reset emails
    app_base_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("APP_BASE_URL", "NEXTAUTH_URL"),
    )

    # --- Postgres ---
    database_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("DATABASE_URL",))
    db_pool_min: int = Field(default=2,  validation_alias=AliasChoices("DB_POOL_MIN",))
    db_pool_max: int = Field(default=10, validation_alias=AliasChoices("DB_POOL_MAX",))

    # --- Stripe ---
    stripe_secret_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("STRIPE_SECRET_KEY",)
    )
    commission_percentage: Decimal = Field(
        default=Decimal("12"),
        ge=0, le=100,
        validation_alias=AliasChoices("STRIPE_COMMISSION_PERCENTAGE",),
    )
    stripe_connect_country: str = Field(
        default="US", validation_alias=AliasChoices("STRIPE_CONNECT_COUNTRY",)
    )

    # --- Auth ---
    jwt_secret: str = Field(
        default="change-me-in-production", validation_alias=AliasChoices("JWT_SECRET",)
    )
    jwt_expires_hours: int = Field(default=24 * 7, validation_alias=AliasChoices("JWT_EXPIRES_HOURS",))
    password_reset_ttl_minutes: int = Field(
        default=60, validation_alias=AliasChoices("PASSWORD_RESET_TTL_MINUTES",)
    )

    # --- Email (Resend) ---
    resend_api_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("RESEND_API_KEY",))
    email_from: str = Field(
        default="no-reply@secondact.app", validation_alias=AliasChoices("EMAIL_FROM",)
    )

    # --- Storage (Firebase, local fallback) ---
    firebase_storage_bucket: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("FIREBASE_STORAGE_BUCKET",)
    )
    google_application_credentials: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_APPLICATION_CREDENTIALS",)
    )
    uploads_dir: str = Field(default="uploads", validation_alias=AliasChoices("UPLOADS_DIR",))
    max_upload_mb: int = Field(default=10, validation_alias=AliasChoices("MAX_UPLOAD_MB",))

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors(self.cors_origins_raw)

    @property
    def payments_enabled(self) -> bool:
        return bool(self.stripe_secret_key)


def get_settings() -> Settings:
    return Settings()
