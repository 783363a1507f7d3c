"""Transport-neutral service composing the cache, coalescer and HTTP client.

Reads go through TTLCache (one upstream GET per key while in flight, then
cached for the TTL). Writes go through RequestCoalescer (double submits of the
same payload share one POST, and repeated submits are spaced out).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .cache import TTLCache
from .coalescer import RequestCoalescer
from .config import Settings
from .http_client import HttpJsonClient
from .keys import make_key
from .models import (
    FetchJsonResponse,
    InvalidateResponse,
    ServiceStats,
    SubmitJsonResponse,
)

_logger = logging.getLogger(__name__)


def _status_error_message(verb: str, url: str, exc: httpx.HTTPStatusError) -> str:
    status = exc.response.status_code if exc.response is not None else None
    if status == 404:
        return f"Resource not found: {url}"
    return f"{verb} failed (status={status}) for {url}"


class RequestCacheService:
    """Owns one cache, one coalescer and one HTTP client.

    Every collaborator is injectable; nothing is module-global, so tests and
    applications control lifetimes explicitly.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        client: HttpJsonClient | None = None,
        cache: TTLCache[Any] | None = None,
        coalescer: RequestCoalescer[Any] | None = None,
    ) -> None:
        s = settings or Settings()
        self._settings = s
        self._client = client or HttpJsonClient(settings=s)
        self._cache: TTLCache[Any] = cache or TTLCache(
            max_entries=s.CACHE_MAX_ENTRIES,
            serve_stale_on_error=s.CACHE_SERVE_STALE_ON_ERROR,
        )
        self._coalescer: RequestCoalescer[Any] = coalescer or RequestCoalescer(
            default_throttle_seconds=s.THROTTLE_SECONDS,
            max_tracked_keys=s.THROTTLE_MAX_TRACKED_KEYS,
        )

    async def fetch_json(
        self,
        url: str,
        params: Optional[Dict[str, str]] = None,
        ttl_seconds: Optional[float] = None,
    ) -> FetchJsonResponse:
        """GET ``url`` as JSON, served from cache while fresh."""

        # Same value for the key and the request
        url = url.strip()
        key = make_key("GET", url, params)
        ttl = self._settings.CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds

        async def _fetch() -> Any:
            _logger.info("fetching upstream JSON", extra={"op": "fetch_json", "key": key})
            try:
                return await self._client.get_json(url, params=params)
            except httpx.HTTPStatusError as e:
                raise ValueError(_status_error_message("GET", url, e)) from e

        if self._settings.CACHE_ENABLED:
            data = await self._cache.get_or_fetch(key, _fetch, ttl)
        else:
            data = await _fetch()
        return FetchJsonResponse(url=url, key=key, data=data)

    async def submit_json(
        self,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        dedupe_key: Optional[str] = None,
        throttle_seconds: Optional[float] = None,
    ) -> SubmitJsonResponse:
        """POST ``payload`` once per concurrent burst, spaced by the throttle.

        ``dedupe_key`` groups submits that should be treated as the same
        operation; by default the method, URL and payload form the key.
        """

        url = url.strip()
        key = dedupe_key or make_key("POST", url, payload)

        async def _submit() -> Any:
            _logger.info("submitting upstream JSON", extra={"op": "submit_json", "key": key})
            try:
                return await self._client.post_json(url, payload)
            except httpx.HTTPStatusError as e:
                raise ValueError(_status_error_message("POST", url, e)) from e

        data = await self._coalescer.throttled_request(key, _submit, throttle_seconds)
        return SubmitJsonResponse(url=url, key=key, data=data)

    async def invalidate(
        self,
        url: Optional[str] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> InvalidateResponse:
        """Drop the cached GET for ``url``/``params``, or everything."""
        if url is None:
            await self._cache.invalidate_all()
            await self._coalescer.clear_all()
            return InvalidateResponse(scope="all")
        key = make_key("GET", url, params)
        await self._cache.invalidate(key)
        return InvalidateResponse(scope="key", key=key)

    def stats(self) -> ServiceStats:
        return ServiceStats(
            cache_enabled=self._settings.CACHE_ENABLED,
            cache=self._cache.stats(),
            coalescer=self._coalescer.stats(),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["RequestCacheService"]
