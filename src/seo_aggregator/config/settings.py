"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_JWT_SECRET = "change-me"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "seo-aggregator"
    app_env: str = "dev"
    app_debug: bool = False
    log_level: str = "INFO"
    database_url: str = ""
    provider_base_url: str = "https://api.dataforseo.com/v3"
    provider_timeout_s: float = Field(default=60.0, ge=0.5)
    provider_user_agent: str = "seo-aggregator/0.1"
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_issuer: str = "seo-aggregator"
    jwt_audience: str = "seo-aggregator-users"
    jwt_access_ttl_s: int = Field(default=7 * 24 * 3600, ge=60)
    jwt_refresh_ttl_s: int = Field(default=30 * 24 * 3600, ge=60)
    ledger_queue_size: int = Field(default=1000, ge=1)
    ledger_max_retries: int = Field(default=3, ge=0)
    ledger_backoff_s: float = Field(default=0.2, ge=0.0)
    quota_enabled: bool = True
    max_concurrent_requests: int = Field(default=5, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="SEO_AGGREGATOR_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def expose_error_details(self) -> bool:
        return self.app_debug or self.app_env.lower() != "production"

    def insecure_for_production(self) -> bool:
        return self.app_env.lower() == "production" and self.jwt_secret == DEFAULT_JWT_SECRET


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
