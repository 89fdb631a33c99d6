"""
Provisional handoff codes.

After the OAuth callback the exchanged grant is parked in the cache under a short-lived
random code. The frontend's finalize step resolves it (possibly several times) and the
code is consumed only once the connection commit has succeeded.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..db.models import Provider, as_utc, utcnow
from .cache import Cache
from .errors import NotFound

_logger = logging.getLogger(__name__)

CONNECTION_CODE_TTL_SECONDS = 15 * 60


def connection_code_key(provider: Provider, code: str) -> str:
    return f"connection_code:{provider.value}:{code}"


def connection_code_index_key(provider: Provider, external_id: str, tenant_id: Optional[str] = None) -> str:
    scope = f"{tenant_id}:" if tenant_id else ""
    return f"connection_code_index:{scope}{provider.value}:{external_id}"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class PendingGrant:
    """A token grant that has been exchanged but not yet committed as a connection."""

    connection_id: str
    provider: Provider
    external_id: str
    refresh_token: str
    access_token: str
    access_token_expires_in: int
    connection_expires_at: datetime
    tenant_id: Optional[str] = None
    is_new_connection: bool = True
    access_token_obtained_at: datetime = field(default_factory=utcnow)

    def remaining_access_token_lifetime(self, now: Optional[datetime] = None) -> int:
        """Seconds of access token life left, counted from when the provider issued it."""
        elapsed = ((now or utcnow()) - self.access_token_obtained_at).total_seconds()
        return int(self.access_token_expires_in - max(elapsed, 0))

    def to_cache(self) -> Dict[str, Any]:
        data = asdict(self)
        data["provider"] = self.provider.value
        data["connection_expires_at"] = self.connection_expires_at.isoformat()
        data["access_token_obtained_at"] = self.access_token_obtained_at.isoformat()
        return data

    @classmethod
    def from_cache(cls, data: Dict[str, Any]) -> "PendingGrant":
        return cls(
            connection_id=data["connection_id"],
            provider=Provider(data["provider"]),
            external_id=data["external_id"],
            refresh_token=data["refresh_token"],
            access_token=data["access_token"],
            access_token_expires_in=int(data["access_token_expires_in"]),
            connection_expires_at=as_utc(datetime.fromisoformat(data["connection_expires_at"])),
            tenant_id=data.get("tenant_id"),
            is_new_connection=bool(data.get("is_new_connection", True)),
            access_token_obtained_at=as_utc(datetime.fromisoformat(data["access_token_obtained_at"])),
        )


class HandoffBroker:
    """Issue, resolve and consume connection codes."""

    def __init__(self, cache: Cache, ttl_seconds: int = CONNECTION_CODE_TTL_SECONDS):
        self._cache = cache
        self._ttl = ttl_seconds

    # PUBLIC_INTERFACE
    def issue(self, grant: PendingGrant) -> str:
        """Store grant under a fresh code and return the code.

        Any earlier live code for the same identity is revoked so at most one is usable.
        """
        code = secrets.token_urlsafe(32)
        index_key = connection_code_index_key(grant.provider, grant.external_id, grant.tenant_id)
        previous = self._cache.get(index_key)
        if isinstance(previous, str) and previous != code:
            self._cache.delete(connection_code_key(grant.provider, previous))

        if not self._cache.set(connection_code_key(grant.provider, code), grant.to_cache(), self._ttl):
            _logger.error("Failed to store connection code; finalize will not find it",
                          extra={"event": "connection_code_store_failed", "provider": grant.provider.value})
        self._cache.set(index_key, code, self._ttl)
        return code

    # PUBLIC_INTERFACE
    def resolve(self, provider: Provider, code: str) -> PendingGrant:
        """Return the pending grant for code without deleting it. Raises NotFound."""
        return self._decode(provider, self._cache.get(connection_code_key(provider, code)))

    # PUBLIC_INTERFACE
    def consume(self, provider: Provider, code: str) -> PendingGrant:
        """Atomically remove code and return its grant. A second consume raises NotFound."""
        grant = self._decode(provider, self._cache.pop(connection_code_key(provider, code)))
        index_key = connection_code_index_key(provider, grant.external_id, grant.tenant_id)
        if self._cache.get(index_key) == code:
            self._cache.delete(index_key)
        return grant

    def _decode(self, provider: Provider, raw: Any) -> PendingGrant:
        if not isinstance(raw, dict):
            raise NotFound("Invalid or expired connection code", details={"provider": provider.value})
        try:
            grant = PendingGrant.from_cache(raw)
        except (KeyError, TypeError, ValueError):
            _logger.warning("Discarding malformed connection code payload")
            raise NotFound("Invalid or expired connection code", details={"provider": provider.value}) from None
        if grant.provider != provider:
            raise NotFound("Invalid or expired connection code", details={"provider": provider.value})
        return grant
