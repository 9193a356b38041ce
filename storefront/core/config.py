"""
Application configuration using Pydantic Settings.

Configuration values can be set via environment variables or .env file.
Nested values use a double underscore, e.g. ``RATE_LIMIT_GALLERY__MAX_REQUESTS=20``.

The settings object is built once at startup and passed to the services that
need it; nothing below the application factory reads the environment directly.
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storefront.core.security import validate_secret_key

MIB = 1024 * 1024


class RateLimitRule(BaseModel):
    """Fixed-window limit applied to one resource category."""

    max_requests: int = Field(10, ge=1)
    window_ms: int = Field(60_000, ge=1)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = "Storefront Trust Layer"
    version: str = "1.0.0"
    environment: Literal["development", "test", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = True
    cors_origins: List[str] = ["http://localhost:3000"]  # JSON list in the environment
    host: str = "127.0.0.1"
    port: int = 8000

    # Database
    database_url: str = "sqlite:///./data/storefront.db"

    # Tokens and sessions
    secret_key: SecretStr
    jwt_algorithm: str = "HS256"
    session_cookie_name: str = "auth_token"
    session_lifetime_days: int = Field(30, ge=1)

    # Credential lifecycle
    site_url: str = "http://localhost:3000"  # base for emailed links
    password_reset_ttl_minutes: int = Field(60, ge=1)

    # Object storage (Cloudflare R2 or any S3-compatible endpoint)
    r2_account_id: Optional[str] = None
    r2_access_key_id: Optional[SecretStr] = None
    r2_secret_access_key: Optional[SecretStr] = None
    storage_endpoint_url: Optional[str] = None
    storage_region: str = "auto"
    storage_public_base_url: str = "http://localhost:9000"
    multipart_threshold_bytes: int = 5 * MIB
    multipart_part_size_bytes: int = 5 * MIB
    multipart_concurrency: int = Field(4, ge=1, le=32)

    # Buckets per upload category
    gallery_bucket: str = "gallery-images"
    product_bucket: str = "product-images"
    review_bucket: str = "review-images"

    # Rate limiting configuration
    rate_limit_gallery: RateLimitRule = RateLimitRule()
    rate_limit_product: RateLimitRule = RateLimitRule()
    rate_limit_review: RateLimitRule = RateLimitRule()
    rate_limit_auth: RateLimitRule = RateLimitRule()

    # Optional Redis URL for shared rate limiting
    # When set, rate limits will be shared across multiple instances
    redis_url: Optional[str] = None

    @field_validator("secret_key")
    @classmethod
    def check_secret_key(cls, v: SecretStr) -> SecretStr:
        validate_secret_key(v.get_secret_value())
        return v

    @field_validator("multipart_part_size_bytes")
    @classmethod
    def check_part_size(cls, v: int) -> int:
        # S3 rejects non-final parts smaller than 5 MiB
        if v < 5 * MIB:
            raise ValueError("multipart_part_size_bytes must be at least 5 MiB")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def session_lifetime_seconds(self) -> int:
        return self.session_lifetime_days * 24 * 60 * 60

    @property
    def resolved_storage_endpoint(self) -> Optional[str]:
        """Explicit endpoint wins; otherwise derive the R2 account endpoint."""
        if self.storage_endpoint_url:
            return self.storage_endpoint_url
        if self.r2_account_id:
            return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"
        return None

    def rate_limit_for(self, category: str) -> RateLimitRule:
        rule = getattr(self, f"rate_limit_{category}", None)
        if not isinstance(rule, RateLimitRule):
            raise KeyError(f"No rate limit configured for category '{category}'")
        return rule


@lru_cache
def get_settings() -> Settings:
    """Build the process-wide settings from the environment once."""
    return Settings()  # type: ignore[call-arg]
