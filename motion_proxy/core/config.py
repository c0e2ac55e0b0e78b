"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_motion_settings() -> "MotionSettings":
    """Build Motion upstream settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return MotionSettings()  # type: ignore[call-arg]


def _build_app_settings() -> "AppSettings":
    return AppSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class MotionSettings(BaseSettings):
    """Upstream Motion API configuration."""

    api_key: str | None = Field(
        None,
        description="API key injected as X-API-Key on every upstream call",
    )
    base_url: str = Field(
        "https://api.usemotion.com/v1",
        description="Base URL of the Motion REST API",
    )
    timeout_seconds: float = Field(
        30.0,
        description="Upstream request timeout in seconds",
    )
    route_prefix: str = Field(
        "/motion",
        description="Path prefix under which Motion routes are mounted",
    )

    model_config = SettingsConfigDict(
        env_prefix="MOTION_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Run FastAPI in debug mode (tracebacks in 500 responses)",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description='Allowed CORS origins as a JSON list, e.g. ["https://app.example.com"]',
    )
    security_headers: bool = Field(
        True,
        description="Add browser security headers (nosniff, frame options, HSTS...) to every response",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Quota policy for the two limiter instances.

    The proxy limiter guards calls forwarded to Motion and uses one shared
    counter for every caller. The general limiter covers every other path
    and counts per client IP.
    """

    enabled: bool = Field(
        True,
        description="Enable rate limiting middleware",
    )
    include_headers: bool = Field(
        True,
        description="Emit X-RateLimit-* headers (and Retry-After when throttling)",
    )
    trust_proxy_headers: bool = Field(
        False,
        description="Derive the client IP from X-Forwarded-For when present",
    )
    skip_successful_requests: bool = Field(
        False,
        description="Give back quota for responses with status < 400",
    )
    skip_failed_requests: bool = Field(
        False,
        description="Give back quota for responses with status >= 400",
    )

    proxy_window_ms: int = Field(60_000, ge=1)
    proxy_max_requests: int = Field(11, ge=1)
    proxy_key_strategy: str = Field(
        "global",
        description="Key strategy for the proxy limiter: global or per_ip",
    )
    proxy_message: str = Field(
        "API rate limit exceeded for Motion API. Please try again after a minute",
    )

    general_window_ms: int = Field(60_000, ge=1)
    general_max_requests: int = Field(100, ge=1)
    general_key_strategy: str = Field(
        "per_ip",
        description="Key strategy for the general limiter: global or per_ip",
    )
    general_message: str = Field(
        "Too many requests from this IP, please try again after a minute",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    motion: MotionSettings = Field(default_factory=_build_motion_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
