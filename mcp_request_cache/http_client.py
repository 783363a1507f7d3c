"""Async HTTP JSON client used inside cache fetchers and coalesced operations.

- Shared httpx.AsyncClient with connection pooling
- Timeouts, bounded concurrency via semaphore
- GETs retry transient failures with exponential backoff; POSTs are sent once
- HTTPS-only guard on URLs

Notes:
- Logs use the centralized logger and therefore go to stderr only.
- Caching and de-duplication live in cache.py and coalescer.py; this module
  is transport-only.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from .config import Settings

_logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteError,
    httpx.RemoteProtocolError,
    httpx.NetworkError,
)


def _require_https(url: str) -> None:
    if not url.lower().startswith("https://"):
        raise ValueError("URL must be HTTPS")


class HttpJsonClient:
    """Resilient async JSON client.

    Parameters are sourced from Settings by default, but can be overridden
    for testability.
    """

    def __init__(
        self,
        *,
        timeout_seconds: Optional[int] = None,
        max_retries: Optional[int] = None,
        concurrency: Optional[int] = None,
        client: httpx.AsyncClient | None = None,
        sleep_fn: Any | None = None,
        settings: Settings | None = None,
    ) -> None:
        s = settings or Settings()
        self._timeout_seconds = int(timeout_seconds or s.HTTP_TIMEOUT_SECONDS)
        self._max_retries = int(max_retries if max_retries is not None else s.HTTP_MAX_RETRIES)

        conc = int(concurrency if concurrency is not None else s.HTTP_CONCURRENCY)
        if conc < 1:
            raise ValueError("HTTP_CONCURRENCY must be >= 1")
        self._sem = asyncio.Semaphore(conc)

        self._client = client or httpx.AsyncClient(timeout=self._timeout_seconds)
        self._sleep = sleep_fn or asyncio.sleep

    async def aclose(self) -> None:
        await self._client.aclose()

    # --- Retry policy helpers ---
    def _should_retry(self, response: httpx.Response) -> bool:
        status = response.status_code
        return status == 429 or 500 <= status <= 599

    async def _backoff(self, attempt: int) -> None:
        # 0.05, 0.1, 0.2, ... seconds
        delay = 0.05 * (2 ** max(0, attempt - 1))
        await self._sleep(delay)

    async def get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        """GET ``url`` and parse JSON, retrying only transient failures."""
        _require_https(url)
        _logger.debug("HTTP GET JSON", extra={"op": "get_json"})

        last_exc: BaseException | None = None
        last_response: httpx.Response | None = None

        for attempt in range(0, self._max_retries + 1):
            exc: BaseException | None = None
            resp: httpx.Response | None = None
            async with self._sem:
                try:
                    resp = await self._client.get(url, params=params)
                    if not self._should_retry(resp):
                        resp.raise_for_status()
                        return resp.json()
                except _TRANSIENT_ERRORS as e:
                    exc = e

            last_exc = exc
            last_response = resp
            if attempt < self._max_retries:
                _logger.info(
                    "retrying transient HTTP failure",
                    extra={"op": "get_json", "attempt": attempt + 1},
                )
                await self._backoff(attempt + 1)
                continue

        if last_exc is not None:
            raise last_exc
        if last_response is not None:
            last_response.raise_for_status()
        raise RuntimeError("Request failed without response or exception")

    async def post_json(self, url: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """POST ``payload`` as JSON once and parse the JSON reply.

        Writes are not retried; an empty reply body yields None.
        """
        _require_https(url)
        _logger.debug("HTTP POST JSON", extra={"op": "post_json"})
        async with self._sem:
            resp = await self._client.post(url, json=payload)
        resp.raise_for_status()
        if not resp.content:
            return None
        return resp.json()


__all__ = ["HttpJsonClient"]
