"""
Application Configuration
Pydantic Settings for environment-based configuration
Source: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
Verified: 2025-11-02
"""

import json
from functools import lru_cache
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Evidence: Pydantic v2 Settings with automatic .env file loading
    Source: https://docs.pydantic.dev/latest/concepts/pydantic_settings/#dotenv-env-support
    Verified: 2025-11-02
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # ============================================================================
    # Application Settings
    # ============================================================================
    ENVIRONMENT: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment: development, staging, production, testing"
    )
    DEBUG: bool = Field(default=False, description="Debug mode (NEVER enable in production)")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FILE: str | None = Field(default=None, description="Optional log file path")

    # JWT verification (tokens are issued by the clinic auth service)
    JWT_SECRET_KEY: str = Field(
        ..., min_length=32, description="Secret key for JWT tokens (min 32 chars)"
    )
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        default=30, description="Lifetime of access tokens minted by create_access_token"
    )

    # ============================================================================
    # Database Configuration
    # ============================================================================
    POSTGRES_HOST: str = Field(default="db", description="PostgreSQL host")
    POSTGRES_PORT: int = Field(default=5432, description="PostgreSQL port")
    POSTGRES_DB: str = Field(default="clinic_db", description="Database name")
    POSTGRES_USER: str = Field(default="clinic_user", description="Database user")
    POSTGRES_PASSWORD: str = Field(default="", description="Database password")

    DATABASE_URL: str | None = Field(default=None, description="Full database URL")

    DB_POOL_SIZE: int = Field(default=20, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Max overflow connections")
    DB_POOL_TIMEOUT: int = Field(default=30, description="Connection timeout (seconds)")

    @property
    def database_url(self) -> str:
        """Construct DATABASE_URL if not explicitly provided"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # ============================================================================
    # Redis / Celery Configuration
    # ============================================================================
    REDIS_URL: str = Field(default="redis://redis:6379/0", description="Redis URL")
    CELERY_BROKER_URL: str | None = Field(default=None, description="Celery broker URL")
    CELERY_RESULT_BACKEND: str | None = Field(default=None, description="Celery result backend")

    @property
    def celery_broker_url(self) -> str:
        """Construct Celery broker URL"""
        if self.CELERY_BROKER_URL:
            return self.CELERY_BROKER_URL
        return f"{self.REDIS_URL.replace('/0', '/1')}"  # Use Redis DB 1

    @property
    def celery_result_backend(self) -> str:
        """Construct Celery result backend URL"""
        if self.CELERY_RESULT_BACKEND:
            return self.CELERY_RESULT_BACKEND
        return f"{self.REDIS_URL.replace('/0', '/2')}"  # Use Redis DB 2

    # ============================================================================
    # SHA Insurer API
    # ============================================================================
    SHA_API_URL: str = Field(default="https://api.sha.go.ke", description="Insurer API base URL")
    SHA_API_KEY: str = Field(default="", description="Bearer token for the insurer API")
    SHA_PROVIDER_CODE: str = Field(default="CLINIC001", description="Facility provider code")
    SHA_TIMEOUT_SECONDS: float = Field(
        default=30.0, gt=0, description="Timeout for every insurer API call"
    )

    # ============================================================================
    # Claims Workflow
    # ============================================================================
    INVOICE_PREFIX: str = Field(default="SHA", description="Invoice number prefix")
    BATCH_PREFIX: str = Field(default="SHA-BATCH", description="Batch number prefix")
    PAYMENT_TERMS_DAYS: int = Field(default=30, ge=0, description="Invoice payment terms")
    RECONCILIATION_INTERVAL_SECONDS: int = Field(
        default=900, gt=0, description="How often the reconciliation sweep runs"
    )
    PENDING_SUBMISSION_TIMEOUT_MINUTES: int = Field(
        default=15,
        gt=0,
        description="Age after which a pending submission log is considered unconfirmed",
    )
    PAYMENT_CHECK_INTERVAL_HOURS: int = Field(
        default=24, gt=0, description="Interval between automated payment checks"
    )

    # ============================================================================
    # FastAPI Configuration
    # ============================================================================
    API_HOST: str = Field(default="0.0.0.0", description="API host")  # nosec B104
    API_PORT: int = Field(default=8000, description="API port")

    # CORS Configuration
    CORS_ORIGINS: Annotated[list[str], NoDecode] = Field(
        default=["http://localhost:3000"],
        description="CORS allowed origins",
    )
    CORS_CREDENTIALS: bool = Field(default=True, description="Allow credentials")
    CORS_METHODS: Annotated[list[str], NoDecode] = Field(
        default=["*"], description="Allowed methods"
    )
    CORS_HEADERS: Annotated[list[str], NoDecode] = Field(
        default=["*"], description="Allowed headers"
    )

    @staticmethod
    def _parse_list_field(value: Any) -> Any:
        """Allow JSON arrays or comma-separated strings for list settings."""
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return []
            if stripped.startswith("[") and stripped.endswith("]"):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return parsed
                except json.JSONDecodeError:
                    # Fall back to CSV parsing below when JSON parse fails
                    pass
            return [item.strip() for item in stripped.split(",") if item.strip()]
        return value

    @field_validator("CORS_ORIGINS", "CORS_METHODS", "CORS_HEADERS", mode="before")
    @classmethod
    def parse_cors_fields(cls, v: Any) -> Any:
        """Normalize CORS list fields from env strings."""
        return cls._parse_list_field(v)

    @field_validator("SHA_API_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Endpoints are appended with a leading slash."""
        return v.rstrip("/")

    # ============================================================================
    # Helper Properties
    # ============================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode"""
        return self.ENVIRONMENT.lower() == "testing"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    Source: https://fastapi.tiangolo.com/advanced/settings/
    """
    return Settings()
