"""Top-level package for mcp-request-cache.

Exports the request coalescer, the TTL cache and the centralized logging
configuration.
"""

from .cache import TTLCache
from .coalescer import RequestCoalescer
from .logging_config import configure_logging  # re-export for convenience

__all__ = ["RequestCoalescer", "TTLCache", "configure_logging"]
