# storefront/settings.py
from __future__ import annotations
from typing import List, Optional
from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict
import json

_DEFAULT_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def _parse_cors(v: Optional[str | List[str]]) -> List[str]:
    """
    Accept JSON array (e.g. '["http://localhost:3000"]') or
    comma-separated string ('http://localhost:3000,http://127.0.0.1:3000').
    """
    if v is None:
        return list(_DEFAULT_ORIGINS)
    if isinstance(v, list):
        return v
    s = v.strip()
    if not s:
        return list(_DEFAULT_ORIGINS)
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

    # public site the payment page redirects back to
    site_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("SITE_URL", "NEXT_PUBLIC_SITE_URL"),
    )

    # --- Postgres ---
    database_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("DATABASE_URL",)
    )
    db_pool_min_size: int = Field(default=1, validation_alias=AliasChoices("DB_POOL_MIN_SIZE",))
    db_pool_max_size: int = Field(default=10, validation_alias=AliasChoices("DB_POOL_MAX_SIZE",))
    db_command_timeout: float = Field(default=10.0, validation_alias=AliasChoices("DB_COMMAND_TIMEOUT",))

    # --- Stripe ---
    stripe_secret_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("STRIPE_SECRET_KEY",)
    )
    stripe_webhook_secret: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("STRIPE_WEBHOOK_SECRET",)
    )
    currency: str = Field(default="usd", validation_alias=AliasChoices("CURRENCY",))

    # --- Pricing ---
    tax_rate: float = Field(default=0.08, validation_alias=AliasChoices("TAX_RATE",))

    # --- Admin ---
    admin_password: str = Field(
        default="admin123", validation_alias=AliasChoices("ADMIN_PASSWORD",)
    )
    # no default: admin login is disabled until a secret is set
    admin_token_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ADMIN_TOKEN_SECRET",),
    )
    admin_token_ttl_minutes: int = Field(
        default=720, validation_alias=AliasChoices("ADMIN_TOKEN_TTL_MINUTES",)
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors(self.cors_origins_raw)

    @property
    def payments_configured(self) -> bool:
        return bool(self.stripe_secret_key)

# singleton
settings = Settings()
