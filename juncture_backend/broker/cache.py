"""
Redis-backed volatile key-value cache.

This module centralizes Redis access for the broker: OAuth state, handoff codes,
connection lookups and access tokens. Values are JSON documents stored with a TTL.

The cache is a discardable projection. Every failure (connection refused, timeout,
undecodable value) is logged and reported as a miss or a failed write, never raised.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis

_logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def create_redis_client(url: str, timeout_seconds: float) -> "redis.Redis":
    """Build a redis client with bounded socket timeouts. No connection is made here."""
    return redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=timeout_seconds,
        socket_connect_timeout=timeout_seconds,
    )


class Cache:
    """JSON get/set/delete over a redis client with logged-and-swallowed failures."""

    def __init__(self, client: "redis.Redis"):
        self._client = client

    # PUBLIC_INTERFACE
    def get(self, key: str) -> Optional[Any]:
        """Return the decoded value for key, or None on miss or any cache failure."""
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            _logger.warning("Cache GET failed for key=%s: %s", _key_prefix(key), e)
            return None
        return _decode(key, raw)

    # PUBLIC_INTERFACE
    def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Store value under key with a TTL. Returns False when the write failed."""
        if ttl_seconds <= 0:
            return False
        try:
            self._client.set(key, json.dumps(value, default=str), ex=int(ttl_seconds))
            return True
        except (redis.RedisError, TypeError, ValueError) as e:
            _logger.warning("Cache SET failed for key=%s: %s", _key_prefix(key), e)
            return False

    # PUBLIC_INTERFACE
    def delete(self, *keys: str) -> bool:
        try:
            self._client.delete(*keys)
            return True
        except redis.RedisError as e:
            _logger.warning("Cache DEL failed for keys=%s: %s", [_key_prefix(k) for k in keys], e)
            return False

    # PUBLIC_INTERFACE
    def pop(self, key: str) -> Optional[Any]:
        """Atomically read and delete key. Returns None when absent or on failure."""
        try:
            # GETDEL needs redis >= 6.2; older servers fall back to a MULTI pipeline.
            try:
                raw = self._client.getdel(key)
            except redis.ResponseError:
                pipe = self._client.pipeline()
                pipe.get(key)
                pipe.delete(key)
                raw, _ = pipe.execute()
        except redis.RedisError as e:
            _logger.warning("Cache GETDEL failed for key=%s: %s", _key_prefix(key), e)
            return None
        return _decode(key, raw)

    # PUBLIC_INTERFACE
    def ttl(self, key: str) -> Optional[int]:
        """Remaining TTL in seconds, or None when the key is absent or has no expiry."""
        try:
            remaining = self._client.ttl(key)
        except redis.RedisError as e:
            _logger.warning("Cache TTL failed for key=%s: %s", _key_prefix(key), e)
            return None
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    # PUBLIC_INTERFACE
    def ping(self) -> bool:
        """Return True if the backing redis answers PING."""
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self._client.close()


def _decode(key: str, raw: Optional[str]) -> Optional[Any]:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        _logger.warning("Discarding undecodable cache value for key=%s", _key_prefix(key))
        return None


def _key_prefix(key: str) -> str:
    """Keys embed secrets (state nonces, codes); log only the namespace."""
    return key.split(":", 1)[0] + ":***" if ":" in key else "***"
