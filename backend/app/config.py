import logging
from pydantic_settings import BaseSettings
from pydantic import model_validator, ConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: "development" or "production"
    environment: str = "development"

    database_url: str = "postgresql+asyncpg://localhost/ads_insights"

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Managed Postgres hands out postgresql://; asyncpg needs postgresql+asyncpg://."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values

    # Identity provider (HS256-signed bearer JWTs, `sub` = user id)
    jwt_secret: str = ""
    jwt_audience: str = "authenticated"

    # Google OAuth + Ads API
    google_ads_client_id: str = ""
    google_ads_client_secret: str = ""
    google_ads_developer_token: str = ""
    google_ads_api_version: str = "v20"

    # Secret used to seal stored refresh tokens (AES-256-GCM)
    encryption_key: str = ""

    # Public base URL of this API; the OAuth redirect URI hangs off it
    public_api_url: str = "http://localhost:8000"
    # Where the browser lands after the OAuth callback when no returnUrl was given
    frontend_url: str = "http://localhost:5173"
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Resend (insights emails)
    resend_api_key: str = ""
    from_email: str = "Insights <onboarding@resend.dev>"

    # Shared secret for scheduler-triggered endpoints
    cron_secret: str = ""

    # Explicit per-call timeout for every upstream HTTP request (seconds)
    http_timeout_seconds: float = 10.0
    # Deadline for a whole insights batch run (seconds)
    insights_batch_timeout_seconds: float = 240.0

    cache_ttl_hours: float = 1.0

    # uvicorn (run.py)
    host: str = "0.0.0.0"
    port: int = 8000
    web_concurrency: int = 4

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.is_production:
            if not self.jwt_secret:
                raise ValueError("JWT_SECRET must be set in production.")
            if not self.encryption_key:
                raise ValueError(
                    "ENCRYPTION_KEY must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
                )
            if not self.cron_secret:
                raise ValueError("CRON_SECRET must be set in production.")
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.public_api_url.rstrip('/')}/api/google-ads/callback"

    @property
    def cors_origin_list(self) -> list[str]:
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        return origins or [self.frontend_url]


@lru_cache
def get_settings() -> Settings:
    return Settings()
