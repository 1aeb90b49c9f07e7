"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
This is the single source of truth for configuration - nothing is hardcoded
elsewhere.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


_DEFAULT_ADMIN_TOKEN = "dev-admin-token-not-for-production"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_json: bool | None = Field(
        default=None,
        description="Force JSON log output. Defaults to JSON in production only.",
    )
    admin_token: SecretStr = Field(
        default=SecretStr(_DEFAULT_ADMIN_TOKEN),
        description="Shared token expected in X-Admin-Token for cache admin endpoints",
    )

    # ------------------------------------------------------------------ #
    # Cache backend
    # ------------------------------------------------------------------ #
    redis_url: str = Field(
        default="",
        description="Redis connection URL for the shared output cache. Empty = in-memory.",
    )

    # ------------------------------------------------------------------ #
    # Output caching
    # ------------------------------------------------------------------ #
    output_cache_enabled: bool = Field(
        default=True,
        description="Master switch. When False, cached routes always execute their handler.",
    )
    output_cache_namespace: str = Field(
        default="output",
        min_length=1,
        description="Prefix for every backend key written by the output cache",
    )
    output_cache_duration_seconds: int = Field(
        default=60,
        ge=1,
        description="Default lifetime of a cached response",
    )
    output_cache_sliding_expiration: bool = Field(
        default=False,
        description="Renew the default lifetime on every cache hit",
    )
    output_cache_vary_headers: list[str] = Field(
        default=["accept-language"],
        description="Request headers folded into the default cache key",
    )
    output_cache_excluded_paths: list[str] = Field(
        default=["/healthz", "/cache"],
        description="Path prefixes the default policy never caches",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_production_secrets(self) -> Settings:
        """Refuse to start in production with the development admin token."""
        if self.environment != Environment.PROD:
            return self

        if self.admin_token.get_secret_value() == _DEFAULT_ADMIN_TOKEN:
            raise ValueError(
                "PRODUCTION STARTUP BLOCKED -- ADMIN_TOKEN contains an insecure "
                "default value. Set a strong, random token for production."
            )
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD

    @property
    def json_logs(self) -> bool:
        if self.log_json is not None:
            return self.log_json
        return self.is_prod


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Use FastAPI dependency injection via Depends(get_settings) in endpoints,
    or call directly in non-request contexts (startup, scripts).
    """
    return Settings()
