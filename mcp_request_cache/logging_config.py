"""Centralized logging configuration.

Guarantees:
- All logs go to stderr (stdout belongs to the stdio transport)
- Idempotent configuration (no duplicate handlers)
- Human-readable lines by default, one JSON object per line when requested
- httpx/httpcore stay quiet unless DEBUG is requested
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

_ROOT_LOGGER_NAME = ""
_STDERR_HANDLER_NAME = "request_cache_stderr_handler"

# LogRecord attributes that are not user-supplied extras
_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }
)


class _JsonFormatter(logging.Formatter):
    """One-line JSON formatter.

    Every record carries timestamp (ISO8601 UTC), level, logger and message,
    plus any extras passed via ``extra=`` (e.g. ``op``, ``key``).
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name or "root",
            "message": record.getMessage(),
        }

        # Copy user-defined attributes (extra=) that are not standard
        for k, v in record.__dict__.items():
            if k.startswith("_") or k in _STANDARD_ATTRS:
                continue
            # Avoid non-serializable values
            try:
                json.dumps(v)
            except (TypeError, ValueError):
                v = str(v)
            payload[k] = v

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def _build_formatter(json_logs: bool) -> logging.Formatter:
    if json_logs:
        return _JsonFormatter()
    # 2025-01-01T00:00:00+0000 INFO mcp_request_cache.cache message
    return logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )


def _get_or_create_stderr_handler(json_logs: bool) -> logging.Handler:
    # Reuse existing handler if present
    root = logging.getLogger(_ROOT_LOGGER_NAME)
    for h in root.handlers:
        if getattr(h, "name", None) == _STDERR_HANDLER_NAME:
            # Update formatter if mode changed
            h.setFormatter(_build_formatter(json_logs))
            return h

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.name = _STDERR_HANDLER_NAME
    handler.setFormatter(_build_formatter(json_logs))
    return handler


def _is_stdout_handler(h: logging.Handler) -> bool:
    if isinstance(h, logging.StreamHandler):
        return getattr(h, "stream", None) is sys.stdout
    return False


def _configure_httpx_noise(root_level: int) -> None:
    # Let httpx/httpcore through only when DEBUG is requested
    level = logging.DEBUG if root_level <= logging.DEBUG else logging.WARNING
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(level)


def configure_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure application-wide logging.

    Parameters
    ----------
    log_level: str
        Root log level (e.g., "DEBUG", "INFO", "WARNING"). Unknown names
        fall back to INFO.
    json_logs: bool
        If True, emit one-line JSON per record.
    """

    # Normalize and parse level
    level = logging.getLevelName((log_level or "").upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger(_ROOT_LOGGER_NAME)

    # Idempotency: a single named stderr handler
    handler = _get_or_create_stderr_handler(json_logs)
    if handler not in root.handlers:
        # stdout belongs to the transport; drop any handler writing there
        root.handlers = [h for h in root.handlers if not _is_stdout_handler(h)]
        root.addHandler(handler)

    root.setLevel(level)
    _configure_httpx_noise(level)


__all__ = ["configure_logging"]
