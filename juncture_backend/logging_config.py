"""
Structured logging setup for the juncture backend.

All loggers live under the 'juncture_backend' namespace (module loggers use __name__),
so a single JSON handler on that logger covers the whole package.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

ROOT_LOGGER_NAME = "juncture_backend"

_SENSITIVE_KEYS = {
    "code",
    "state",
    "token",
    "access_token",
    "refresh_token",
    "client_secret",
    "authorization",
    "connection_code",
    "secret_key",
    "x-juncture-public-key",
}


# PUBLIC_INTERFACE
def mask_secret(value: str, keep: int = 4) -> str:
    """Mask secret preserving last 'keep' chars."""
    if not value:
        return value
    if len(value) <= keep:
        return "*" * len(value)
    return "*" * (len(value) - keep) + value[-keep:]


# PUBLIC_INTERFACE
def redact_mapping(mapping: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of mapping with sensitive values masked."""
    cleaned: Dict[str, Any] = {}
    for key, value in mapping.items():
        if key.lower() in _SENSITIVE_KEYS and isinstance(value, str):
            cleaned[key] = mask_secret(value)
        else:
            cleaned[key] = value
    return cleaned


class SafeJSONFormatter(logging.Formatter):
    """A minimal JSON formatter for structured logs with secret redaction support."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now(timezone.utc).isoformat()
        extra = getattr(record, "extra", None)
        if isinstance(extra, Mapping):
            extra = redact_mapping(extra)
        payload: Dict[str, Any] = {
            "timestamp": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "event": getattr(record, "event", None),
            "request_id": getattr(record, "request_id", None),
            "provider": getattr(record, "provider", None),
            "path": getattr(record, "path", None),
            "method": getattr(record, "method", None),
            "status_code": getattr(record, "status_code", None),
            "extra": extra,
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Clean out None values to minimize noise
        cleaned = {k: v for k, v in payload.items() if v is not None}
        try:
            return json.dumps(cleaned, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return f"{ts} {record.levelname} {record.name} {record.getMessage()}"


# PUBLIC_INTERFACE
def configure_logging(level_name: str = "INFO") -> logging.Logger:
    """Initialize the package logger with the JSON formatter and the given level."""
    level = getattr(logging, str(level_name).upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    # Avoid adding multiple handlers on hot reload
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level)
        handler.setFormatter(SafeJSONFormatter())
        logger.addHandler(handler)
        # Prevent propagation to root to avoid duplicate logs with Uvicorn
        logger.propagate = False

    for noisy in ("httpx", "httpcore", "urllib3"):
        nl = logging.getLogger(noisy)
        if nl.level == logging.NOTSET:
            nl.setLevel(logging.WARNING)

    return logger
