"""
Structured Logging Utilities

This module centralizes logging setup for the whitelist engine. It provides
helpers for masking sensitive fields, emitting JSON log records, and
generating the per-request correlation identifiers attached to every outbound
HTTP call.
"""

from __future__ import annotations

import json
import logging
import secrets
import sys
import time
from datetime import datetime, timezone
from typing import Dict, Optional

from .settings import LoggingSettings

LOGGER_NAME = "EdgeWhitelist"

_STANDARD_RECORD_FIELDS = frozenset(
    logging.makeLogRecord({}).__dict__.keys() | {"message", "asctime"}
)


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "status": "ok"})
        {'token': '***masked***', 'status': 'ok'}
    """
    sensitive_keys = {"authorization", "api_key", "apikey", "token", "secret", "password"}
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        if key.lower() in sensitive_keys:
            masked[key] = "***masked***"
        else:
            masked[key] = value
    return masked


def generate_request_id() -> str:
    """Create the 32 character lowercase hexadecimal correlation token for a request.

    Falls back to the monotonic clock when the operating system random source
    is unavailable, so a request is never refused for lack of entropy.

    Examples:
        >>> len(generate_request_id())
        32
    """
    try:
        return secrets.token_hex(16)
    except (OSError, NotImplementedError):
        return f"{time.monotonic_ns():032x}"[-32:]


class JSONFormatter(logging.Formatter):
    """Formatter emitting JSON structured logs.

    Examples:
        >>> formatter = JSONFormatter()
        >>> isinstance(formatter.format(logging.makeLogRecord({'msg': 'test'})), str)
        True
    """

    def format(self, record: logging.LogRecord) -> str:
        """Serialize a logging record into a JSON line, merging ``extra`` fields."""
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_FIELDS or key.startswith("_"):
                continue
            log_obj[key] = value
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj), default=str)


def setup_logging(settings: Optional[LoggingSettings] = None) -> logging.Logger:
    """Configure the package logger with a single managed console handler.

    Calling this repeatedly replaces the previously installed handler instead
    of stacking duplicates.

    Examples:
        >>> logger = setup_logging(LoggingSettings(level="DEBUG"))
        >>> logger.name
        'EdgeWhitelist'
    """
    settings = settings or LoggingSettings()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.level_int())

    for handler in list(logger.handlers):
        if getattr(handler, "_edge_whitelist_managed", False):
            logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    if settings.emit_json_logs:
        stream_handler.setFormatter(JSONFormatter())
    else:
        stream_handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    stream_handler._edge_whitelist_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)
    logger.propagate = True
    return logger


__all__ = ["setup_logging", "mask_sensitive_data", "generate_request_id", "JSONFormatter"]
# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.logging_config",
#   "purpose": "Structured logging setup and correlation identifier generation",
#   "sections": [
#     {"id": "mask", "name": "mask_sensitive_data", "anchor": "function-mask-sensitive-data", "kind": "function"},
#     {"id": "request-id", "name": "generate_request_id", "anchor": "function-generate-request-id", "kind": "function"},
#     {"id": "formatter", "name": "JSONFormatter", "anchor": "class-jsonformatter", "kind": "class"},
#     {"id": "setup", "name": "setup_logging", "anchor": "function-setup-logging", "kind": "function"}
#   ]
# }
# === /NAVMAP ===
