from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from talentconnect.logging import get_logger

logger = get_logger(__name__)


class Environment(str, Enum):
    """Deployment environments; production hides internal error text."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Fixed-window ceiling for one class of routes."""

    scope: str
    limit: int
    window_seconds: int
    message: str = "Too many requests, please try again later"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings read from the environment and an optional .env file."""

    environment: Environment = env_field(Environment.DEVELOPMENT, "ENVIRONMENT")
    port: int = env_field(3000, "PORT")
    database_url: str = env_field(
        "postgresql://localhost:5432/talentconnect", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow in-process store/cache fallbacks for automated tests",
    )
    cors_origin: str = env_field("http://localhost:5173", "CORS_ORIGIN")

    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    access_token_ttl_seconds: int = env_field(
        86400, "JWT_EXPIRY", description="Access token lifetime (24 hours)"
    )
    refresh_token_ttl_seconds: int = env_field(
        2592000, "REFRESH_TOKEN_EXPIRY", description="Refresh token lifetime (30 days)"
    )
    token_leeway_seconds: int = env_field(0, "TOKEN_LEEWAY_SECONDS")

    # Redis client resilience: every command is bounded by the socket timeout
    # and retried at most redis_max_retries times with capped exponential backoff.
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT")
    redis_max_retries: int = env_field(3, "REDIS_MAX_RETRIES")
    redis_backoff_base: float = env_field(0.05, "REDIS_BACKOFF_BASE")
    redis_backoff_cap: float = env_field(2.0, "REDIS_BACKOFF_CAP")

    # Postgres bounds: connection setup, a single statement, and the wait for
    # a free pooled connection.
    database_connect_timeout: int = env_field(5, "DATABASE_CONNECT_TIMEOUT")
    database_statement_timeout_ms: int = env_field(
        10000, "DATABASE_STATEMENT_TIMEOUT_MS"
    )
    database_pool_timeout: float = env_field(10.0, "DATABASE_POOL_TIMEOUT")
    database_pool_max_size: int = env_field(10, "DATABASE_POOL_MAX_SIZE")

    api_rate_limit: int = env_field(100, "API_RATE_LIMIT")
    api_rate_limit_window_seconds: int = env_field(60, "API_RATE_LIMIT_WINDOW_SECONDS")
    auth_rate_limit: int = env_field(5, "AUTH_RATE_LIMIT")
    auth_rate_limit_window_seconds: int = env_field(
        15 * 60, "AUTH_RATE_LIMIT_WINDOW_SECONDS"
    )
    search_rate_limit: int = env_field(20, "SEARCH_RATE_LIMIT")
    search_rate_limit_window_seconds: int = env_field(
        60, "SEARCH_RATE_LIMIT_WINDOW_SECONDS"
    )
    upload_rate_limit: int = env_field(5, "UPLOAD_RATE_LIMIT")
    upload_rate_limit_window_seconds: int = env_field(
        60, "UPLOAD_RATE_LIMIT_WINDOW_SECONDS"
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @field_validator("environment")
    @classmethod
    def _validate_environment(cls, value: Environment) -> Environment:
        return Environment(value)

    @field_validator(
        "access_token_ttl_seconds",
        "refresh_token_ttl_seconds",
        "api_rate_limit_window_seconds",
        "auth_rate_limit_window_seconds",
        "search_rate_limit_window_seconds",
        "upload_rate_limit_window_seconds",
        "database_connect_timeout",
        "database_statement_timeout_ms",
        "database_pool_timeout",
        "database_pool_max_size",
    )
    @classmethod
    def _positive_seconds(cls, value):
        if value <= 0:
            raise ValueError("durations must be positive")
        return value

    @model_validator(mode="after")
    def _ensure_jwt_secret(self) -> "Settings":
        if self.jwt_secret:
            return self
        if self.environment == Environment.PRODUCTION:
            raise ValueError("JWT_SECRET must be set in production")
        # Tokens signed with a generated secret do not survive a restart
        logger.warning(
            "jwt_secret_generated",
            environment=self.environment.value,
            message="JWT_SECRET not set; using an ephemeral secret",
        )
        self.jwt_secret = secrets.token_urlsafe(64)
        return self

    def rate_limit_policies(self) -> dict[str, RateLimitPolicy]:
        return {
            "api": RateLimitPolicy(
                "api", self.api_rate_limit, self.api_rate_limit_window_seconds
            ),
            "auth": RateLimitPolicy(
                "auth",
                self.auth_rate_limit,
                self.auth_rate_limit_window_seconds,
                "Too many login attempts, please try again later",
            ),
            "search": RateLimitPolicy(
                "search",
                self.search_rate_limit,
                self.search_rate_limit_window_seconds,
                "Too many search requests, please try again later",
            ),
            "upload": RateLimitPolicy(
                "upload",
                self.upload_rate_limit,
                self.upload_rate_limit_window_seconds,
                "Too many file uploads, please try again later",
            ),
        }


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
