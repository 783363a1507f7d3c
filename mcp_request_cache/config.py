"""Application configuration using pydantic-settings.

All fields are overridable via environment variables with the same names
(case-insensitive).

Notes:
- The cache and coalescer classes are unbounded unless told otherwise. The
  application defaults below bound both (CACHE_MAX_ENTRIES,
  THROTTLE_MAX_TRACKED_KEYS) so a long-lived server with an open-ended key
  space does not grow without limit.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Top-level application settings.

    Env var precedence follows pydantic-settings rules, e.g.
    `CACHE_TTL_SECONDS=120` or `THROTTLE_SECONDS=1.5`.
    """

    SERVER_NAME: str = "mcp-request-cache"

    # Cache
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: float = Field(default=30.0, ge=0)
    CACHE_MAX_ENTRIES: int = Field(default=2048, ge=1)
    CACHE_SERVE_STALE_ON_ERROR: bool = False

    # Request coalescing / throttling
    THROTTLE_SECONDS: float = Field(default=0.5, ge=0)
    THROTTLE_MAX_TRACKED_KEYS: int = Field(default=4096, ge=1)

    # HTTP behavior
    HTTP_TIMEOUT_SECONDS: int = Field(default=10, ge=1)
    HTTP_MAX_RETRIES: int = Field(default=2, ge=0)
    HTTP_CONCURRENCY: int = Field(default=10, ge=1)

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)


__all__ = ["Settings"]
