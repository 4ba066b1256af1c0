from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SQLITE_PATH = BASE_DIR / "gym_lifecycle.db"
DEFAULT_SQLITE_URL = f"sqlite:///{DEFAULT_SQLITE_PATH}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BASE_DIR / ".env", env_prefix="GYM_", case_sensitive=False)

    api_token: str = Field(default="dev-token", description="Bearer token identifying the admin session")
    admin_email: str = Field(default="admin@example.com", description="Identity recorded as verifier/approver")
    database_url: str = Field(default=DEFAULT_SQLITE_URL, description="SQLAlchemy database URL")
    # Comma-separated values or '*' for all
    cors_origins: str = Field(default="*")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Rate limiting (per token+IP per minute)
    rate_limit_enabled: bool = Field(default=False)
    rate_limit_per_minute: int = Field(default=600)

    # Expiry sweep
    expiry_notification_days: int = Field(default=4, description="Warn owners this many days before end dates")

    # Outbound collaborators
    notification_provider: str = Field(default="database", description="database|webhook")
    notification_webhook_url: Optional[str] = Field(default=None)
    invoice_provider: str = Field(default="local", description="local|webhook")
    invoice_webhook_url: Optional[str] = Field(default=None)
    invoice_prefix: str = Field(default="INV")
    webhook_timeout_seconds: float = Field(default=10.0)

    @property
    def cors_origins_list(self) -> List[str]:
        s = (self.cors_origins or "").strip()
        if not s or s == "*":
            return ["*"]
        return [part.strip() for part in s.split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
