"""Pydantic diagnostic and response models.

Small, explicit, validation-focused. They carry no behavior; the cache and
coalescer build the stats snapshots and the service builds the responses.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CacheStats(BaseModel):
    """Snapshot of a TTLCache. Diagnostic only."""

    model_config = ConfigDict(extra="ignore")

    cache_size: int = Field(..., ge=0)
    pending_count: int = Field(..., ge=0)
    cached_keys: list[str] = Field(default_factory=list)


class CoalescerStats(BaseModel):
    """Snapshot of a RequestCoalescer. Diagnostic only."""

    model_config = ConfigDict(extra="ignore")

    tracked_keys: int = Field(..., ge=0)
    pending_count: int = Field(..., ge=0)
    pending_keys: list[str] = Field(default_factory=list)


class ServiceStats(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cache_enabled: bool
    cache: CacheStats
    coalescer: CoalescerStats


# Tool response models (returned by MCP tools).


class FetchJsonResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    data: Any = None


class SubmitJsonResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    data: Any = None


class InvalidateResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    scope: Literal["key", "all"]
    key: Optional[str] = None


__all__ = [
    "CacheStats",
    "CoalescerStats",
    "ServiceStats",
    "FetchJsonResponse",
    "SubmitJsonResponse",
    "InvalidateResponse",
]
