"""Deterministic string keys for HTTP requests.

A key identifies one logical resource or operation for the cache and the
coalescer. The key is one JSON array, so no URL can spell out another
request's params, and mapping order never changes the key:

    make_key("GET", "https://api.example.com/users", {"page": 2, "q": "x"})
    -> '["GET","https://api.example.com/users",{"page":2,"q":"x"}]'
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional

_MAX_URL_LEN = 2048


def _validate_non_empty(name: str, value: str, max_len: int) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    s = value.strip()
    if not s:
        raise ValueError(f"{name} must be non-empty")
    if len(s) > max_len:
        raise ValueError(f"{name} exceeds maximum length {max_len}")
    return s


def _canonical_json(value: Any) -> str:
    # default=str keeps keys stable for values json cannot encode (dates, UUIDs)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def make_key(method: str, url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Build the cache/coalescing key for ``method url params``."""
    m = _validate_non_empty("method", method, 16).upper()
    u = _validate_non_empty("url", url, _MAX_URL_LEN)
    return _canonical_json([m, u, dict(params or {})])


__all__ = ["make_key"]
