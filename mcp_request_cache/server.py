"""MCP STDIO server exposing the request cache service as tools.

Design notes:
- Transport adapter stays thin; behavior lives in RequestCacheService.
- The server is built around an explicit service instance (create_server),
  so tests and embedders can supply their own.
- Logging goes to stderr via the central logging config.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastmcp import FastMCP

from .config import Settings
from .logging_config import configure_logging
from .service import RequestCacheService

_logger = logging.getLogger(__name__)


def create_server(service: RequestCacheService, name: Optional[str] = None) -> FastMCP:
    """Build a FastMCP server whose tools delegate to ``service``."""

    server = FastMCP(name or Settings().SERVER_NAME)

    @server.tool()
    async def fetch_json(
        url: str,
        params: Optional[dict[str, str]] = None,
        ttl_seconds: Optional[float] = None,
    ) -> dict:
        """GET a JSON document, served from cache while fresh.

        Concurrent calls for the same URL and params share one upstream request.
        """

        result = await service.fetch_json(url, params=params, ttl_seconds=ttl_seconds)
        return result.model_dump()

    @server.tool()
    async def submit_json(
        url: str,
        payload: Optional[dict[str, Any]] = None,
        dedupe_key: Optional[str] = None,
        throttle_seconds: Optional[float] = None,
    ) -> dict:
        """POST a JSON payload; duplicate concurrent submits share one request."""

        result = await service.submit_json(
            url,
            payload=payload,
            dedupe_key=dedupe_key,
            throttle_seconds=throttle_seconds,
        )
        return result.model_dump()

    @server.tool()
    async def cache_stats() -> dict:
        """Return cache and coalescer diagnostics."""
        return service.stats().model_dump()

    @server.tool()
    async def invalidate_cache(
        url: Optional[str] = None,
        params: Optional[dict[str, str]] = None,
    ) -> dict:
        """Invalidate one cached URL, or everything when no URL is given."""
        result = await service.invalidate(url, params=params)
        return result.model_dump()

    return server


def run() -> None:  # pragma: no cover
    settings = Settings()
    configure_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
    service = RequestCacheService(settings=settings)
    _logger.info("starting server", extra={"op": "run", "server_name": settings.SERVER_NAME})
    create_server(service, settings.SERVER_NAME).run()


__all__ = ["create_server", "run"]
