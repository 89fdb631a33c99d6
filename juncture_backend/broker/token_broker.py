"""
Access token cache and refresh.

Access tokens live only in the cache (TTL = provider lifetime minus a 5 minute skew).
On a miss the stored refresh token is exchanged at the provider. Only an explicit
invalid_grant answer marks the connection invalid; every other failure is transient.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional

from ..connectors.base.provider import ProviderRegistry
from ..db.models import Provider
from .cache import Cache
from .connection_store import ConnectionStore
from .errors import BrokerError, InvalidGrant, NeedsReauthorization
from .tenancy import TenancyBackend

_logger = logging.getLogger(__name__)

ACCESS_TOKEN_SKEW_SECONDS = 5 * 60


def access_token_key(connection_id: str) -> str:
    return f"access_token:{connection_id}"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class AccessToken:
    access_token: str
    expires_in: int


@dataclass
class _RefreshLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class TokenBroker:
    """Hands out currently-valid access tokens, refreshing at most once per connection at a time."""

    def __init__(self, store: ConnectionStore, tenancy: TenancyBackend, providers: ProviderRegistry, cache: Cache):
        self._store = store
        self._tenancy = tenancy
        self._providers = providers
        self._cache = cache
        self._locks: Dict[str, _RefreshLock] = {}
        self._locks_guard = threading.Lock()

    # PUBLIC_INTERFACE
    def cache_access_token(self, connection_id: str, access_token: str, lifetime_seconds: int) -> Optional[int]:
        """Cache a freshly minted token. Returns the TTL used, or None if it was not cached."""
        ttl = int(lifetime_seconds) - ACCESS_TOKEN_SKEW_SECONDS
        if ttl <= 0:
            return None
        if not self._cache.set(access_token_key(connection_id), access_token, ttl):
            return None
        return ttl

    # PUBLIC_INTERFACE
    def get_access_token(self, connection_id: str, provider: Provider, tenant_id: Optional[str] = None) -> AccessToken:
        """
        Return a usable access token for connection_id.

        Raises ConnectionNotFound, NeedsReauthorization, or RefreshFailed.
        """
        cached = self._cached(connection_id)
        if cached is not None:
            return cached
        with self._single_flight(connection_id):
            # Another request may have refreshed while we waited.
            cached = self._cached(connection_id)
            if cached is not None:
                return cached
            return self._refresh(connection_id, provider, tenant_id)

    def _cached(self, connection_id: str) -> Optional[AccessToken]:
        key = access_token_key(connection_id)
        token = self._cache.get(key)
        if not isinstance(token, str) or not token:
            return None
        remaining = self._cache.ttl(key)
        if not remaining:
            return None
        return AccessToken(access_token=token, expires_in=remaining)

    def _refresh(self, connection_id: str, provider: Provider, tenant_id: Optional[str]) -> AccessToken:
        details = self._store.get_connection_details(connection_id)
        if details.invalid_refresh_token:
            raise NeedsReauthorization(
                "Connection is invalid. Please reauthorize the connection.",
                details={"connection_id": connection_id},
            )
        if details.is_expired():
            _logger.info("Connection %s is past its expiry; attempting refresh", connection_id)

        client = self._providers.get(provider)
        credentials = self._tenancy.resolve_credentials(provider, tenant_id=tenant_id)
        try:
            grant = client.refresh(credentials, details.refresh_token)
        except InvalidGrant:
            _logger.warning("Refresh token rejected by %s for connection %s", provider.value, connection_id,
                            extra={"event": "refresh_invalid_grant", "provider": provider.value})
            self._store.mark_invalid(connection_id)
            raise NeedsReauthorization(
                "Connection is invalid. The refresh token is no longer valid. Please reauthorize the connection.",
                details={"connection_id": connection_id},
            ) from None

        ttl = self.cache_access_token(connection_id, grant.access_token, grant.expires_in)
        new_expiry = datetime.now(timezone.utc) + client.connection_validity
        try:
            self._store.update_refresh_token(connection_id, grant.refresh_token, new_expiry, tenant_id=tenant_id)
        except BrokerError:
            _logger.exception("Failed to persist rotated refresh token for connection %s", connection_id)

        _logger.info("Access token refreshed", extra={"event": "access_token_refreshed", "provider": provider.value})
        return AccessToken(access_token=grant.access_token,
                           expires_in=ttl if ttl is not None else max(grant.expires_in - ACCESS_TOKEN_SKEW_SECONDS, 0))

    @contextmanager
    def _single_flight(self, connection_id: str) -> Iterator[None]:
        """Hold the per-connection refresh lock. The entry is dropped once nobody holds or waits on it."""
        with self._locks_guard:
            entry = self._locks.get(connection_id)
            if entry is None:
                entry = self._locks[connection_id] = _RefreshLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[connection_id]
