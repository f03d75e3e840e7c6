"""
Gatekeeper: Application Configuration
========================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
       Fails fast on malformed values instead of surprising a request later.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by the middleware chain, the rate limiter tiers and main.py.
When:  Loaded once at module import time.

What is NOT configurable here:
    Roles and permissions are compiled into services/rbac.py. There is no
    runtime path that can grant a role a new permission.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have defaults suitable for development. Attributes are
    grouped by concern for readability.
    """

    app_name: str = Field(default="Gatekeeper")

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated URLs (split by cors_origins_list)
    cors_origins: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Logging ───────────────────────────────────────────────────────────
    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Request Size ──────────────────────────────────────────────────────
    # What: Largest declared Content-Length accepted, as a human string
    # Format: "<number>[b|kb|mb|gb]", parsed by middleware.request_size.parse_size
    # Note: A string that does not parse collapses the limit to 0 bytes,
    #       which rejects every request that declares a body.
    request_size_limit: str = Field(default="10mb")

    # ── Client Origin ─────────────────────────────────────────────────────
    # What: Use the first X-Forwarded-For hop as the client address
    # Only enable behind a proxy that overwrites the header.
    trust_forwarded_for: bool = Field(default=False)

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # Fixed windows, keyed per (client address, identity id).
    # auth:   login/registration style endpoints
    # api:    every request passing through RateLimitMiddleware
    # strict: sensitive single actions (password reset, deletion, ...)
    auth_rate_limit_window: int = Field(default=900, ge=1, le=86400)  # seconds
    auth_rate_limit_max: int = Field(default=5, ge=1, le=100000)
    api_rate_limit_window: int = Field(default=900, ge=1, le=86400)
    api_rate_limit_max: int = Field(default=100, ge=1, le=100000)
    strict_rate_limit_window: int = Field(default=60, ge=1, le=86400)
    strict_rate_limit_max: int = Field(default=10, ge=1, le=100000)

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton instance, imported throughout the application
settings = Settings()
