"""
Connection store: cache-aside reads and transactional writes over connection rows.

The database is the only authority. Cache entries are refreshed after a successful
commit and may be missing or stale at any time without affecting correctness.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..db import service
from ..db.models import Connection, Provider, as_utc
from .cache import Cache
from .errors import ConnectionNotFound, TransactionFailure
from .tenancy import TenancyBackend

_logger = logging.getLogger(__name__)

CONNECTION_CACHE_TTL_SECONDS = 24 * 60 * 60

# Unit of work run inside the commit transaction: (open session, committed connection id).
TransactionExtension = Callable[[Session, str], None]


def connection_id_cache_key(external_id: str, provider: Provider, tenant_id: Optional[str] = None) -> str:
    if tenant_id:
        return f"connection_id:{tenant_id}:{provider.value}:{external_id}"
    return f"connection_id:{provider.value}:{external_id}"


def connection_details_cache_key(connection_id: str) -> str:
    return f"connection_details:{connection_id}"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ConnectionDetails:
    """Read-only snapshot of a Connection row."""

    connection_id: str
    refresh_token: str
    expires_at: datetime
    invalid_refresh_token: bool
    created_at: datetime
    last_updated: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now

    @classmethod
    def from_row(cls, row: Connection) -> "ConnectionDetails":
        return cls(
            connection_id=row.connection_id,
            refresh_token=row.refresh_token,
            expires_at=as_utc(row.expires_at),
            invalid_refresh_token=bool(row.invalid_refresh_token),
            created_at=as_utc(row.created_at),
            last_updated=as_utc(row.last_updated),
        )

    def to_cache(self) -> Dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "invalid_refresh_token": self.invalid_refresh_token,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_cache(cls, data: Dict[str, Any]) -> "ConnectionDetails":
        """Rebuild from a cache entry; timestamps come back as ISO strings."""
        return cls(
            connection_id=data["connection_id"],
            refresh_token=data["refresh_token"],
            expires_at=as_utc(datetime.fromisoformat(data["expires_at"])),
            invalid_refresh_token=bool(data["invalid_refresh_token"]),
            created_at=as_utc(datetime.fromisoformat(data["created_at"])),
            last_updated=as_utc(datetime.fromisoformat(data["last_updated"])),
        )


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class CommitResult:
    connection_id: str
    created: bool


class ConnectionStore:
    """Lookup, commit, invalidate and read connections for the configured tenancy backend."""

    def __init__(self, session_factory: sessionmaker, tenancy: TenancyBackend, cache: Cache):
        self._session_factory = session_factory
        self._tenancy = tenancy
        self._cache = cache

    # PUBLIC_INTERFACE
    def find_connection_id(self, external_id: str, provider: Provider,
                           tenant_id: Optional[str] = None) -> Optional[str]:
        """Cache-aside lookup of (external_id, provider[, tenant]). Returns None when unmapped."""
        key = connection_id_cache_key(external_id, provider, tenant_id)
        cached = self._cache.get(key)
        if isinstance(cached, str) and cached:
            return cached
        connection_id = self._tenancy.lookup_connection_id(external_id, provider, tenant_id)
        if connection_id:
            self._cache.set(key, connection_id, CONNECTION_CACHE_TTL_SECONDS)
        return connection_id

    # PUBLIC_INTERFACE
    def lookup_connection_id(self, external_id: str, provider: Provider,
                             tenant_id: Optional[str] = None) -> str:
        """Like find_connection_id but raises ConnectionNotFound when unmapped."""
        connection_id = self.find_connection_id(external_id, provider, tenant_id)
        if not connection_id:
            raise ConnectionNotFound(
                "Connection not found", details={"external_id": external_id, "provider": provider.value}
            )
        return connection_id

    # PUBLIC_INTERFACE
    def commit(
        self,
        *,
        connection_id: str,
        external_id: str,
        provider: Provider,
        refresh_token: str,
        expires_at: datetime,
        tenant_id: Optional[str] = None,
        extension: Optional[TransactionExtension] = None,
    ) -> CommitResult:
        """
        Create or update the connection for (external_id, provider[, tenant]) in one transaction.

        connection_id is used only when a new connection is inserted; an existing mapping
        keeps its id. extension runs inside the same transaction with the final id, so a
        failure there rolls back the core rows too.

        Raises TransactionFailure on any constraint violation or database error.
        """
        existing_id = self._lookup_uncached(external_id, provider, tenant_id)
        target_id = existing_id or connection_id
        try:
            with self._session_factory.begin() as session:
                if existing_id:
                    self._tenancy.update_connection(
                        session,
                        connection_id=existing_id,
                        refresh_token=refresh_token,
                        expires_at=expires_at,
                        tenant_id=tenant_id,
                    )
                else:
                    self._tenancy.add_connection(
                        session,
                        connection_id=connection_id,
                        external_id=external_id,
                        provider=provider,
                        refresh_token=refresh_token,
                        expires_at=expires_at,
                        tenant_id=tenant_id,
                    )
                if extension is not None:
                    extension(session, target_id)
        except IntegrityError as e:
            reason = _integrity_reason(e)
            _logger.warning("Connection commit rolled back (%s) for provider=%s", reason, provider.value)
            raise TransactionFailure("Failed to save connection", details={"reason": reason}) from e
        except LookupError as e:
            _logger.warning("Connection %s disappeared during update", target_id)
            raise TransactionFailure("Failed to save connection", details={"reason": "missing_row"}) from e
        except SQLAlchemyError as e:
            _logger.exception("Connection commit failed for provider=%s", provider.value)
            raise TransactionFailure("Failed to save connection", details={"reason": "database_error"}) from e

        _logger.info(
            "Connection committed",
            extra={"event": "connection_committed", "provider": provider.value,
                   "extra": {"connection_id": target_id, "created": not existing_id}},
        )
        self._cache.set(connection_id_cache_key(external_id, provider, tenant_id), target_id,
                        CONNECTION_CACHE_TTL_SECONDS)
        self._refresh_details_cache(target_id)
        return CommitResult(connection_id=target_id, created=not existing_id)

    # PUBLIC_INTERFACE
    def update_refresh_token(self, connection_id: str, refresh_token: str, expires_at: datetime,
                             tenant_id: Optional[str] = None) -> None:
        """Persist a rotated refresh token for an existing connection."""
        try:
            with self._session_factory.begin() as session:
                self._tenancy.update_connection(
                    session,
                    connection_id=connection_id,
                    refresh_token=refresh_token,
                    expires_at=expires_at,
                    tenant_id=tenant_id,
                )
        except LookupError as e:
            raise ConnectionNotFound("Connection not found", details={"connection_id": connection_id}) from e
        except SQLAlchemyError as e:
            raise TransactionFailure("Failed to update connection") from e
        self._refresh_details_cache(connection_id)

    # PUBLIC_INTERFACE
    def mark_invalid(self, connection_id: str) -> None:
        """Flag the refresh token as permanently rejected. The connection needs a new OAuth flow."""
        try:
            with self._session_factory.begin() as session:
                matched = service.set_invalid_refresh_token(session, connection_id)
        except SQLAlchemyError as e:
            raise TransactionFailure("Failed to mark connection invalid") from e
        if not matched:
            raise ConnectionNotFound("Connection not found", details={"connection_id": connection_id})
        _logger.warning("Connection %s marked invalid_refresh_token", connection_id,
                        extra={"event": "connection_marked_invalid"})
        self._cache.delete(connection_details_cache_key(connection_id))
        self._refresh_details_cache(connection_id)

    # PUBLIC_INTERFACE
    def get_connection_details(self, connection_id: str) -> ConnectionDetails:
        """Cache-aside read of the full connection. Raises ConnectionNotFound."""
        cached = self._cache.get(connection_details_cache_key(connection_id))
        if isinstance(cached, dict):
            try:
                return ConnectionDetails.from_cache(cached)
            except (KeyError, TypeError, ValueError):
                _logger.warning("Discarding malformed connection details cache entry")
        details = self._read_details(connection_id)
        if details is None:
            raise ConnectionNotFound("Connection not found", details={"connection_id": connection_id})
        self._cache.set(connection_details_cache_key(connection_id), details.to_cache(),
                        CONNECTION_CACHE_TTL_SECONDS)
        return details

    def _lookup_uncached(self, external_id: str, provider: Provider, tenant_id: Optional[str]) -> Optional[str]:
        try:
            return self._tenancy.lookup_connection_id(external_id, provider, tenant_id)
        except SQLAlchemyError as e:
            raise TransactionFailure("Failed to read connection") from e

    def _read_details(self, connection_id: str) -> Optional[ConnectionDetails]:
        with self._session_factory() as session:
            row = service.get_connection(session, connection_id)
            return ConnectionDetails.from_row(row) if row is not None else None

    def _refresh_details_cache(self, connection_id: str) -> None:
        details = self._read_details(connection_id)
        if details is not None:
            self._cache.set(connection_details_cache_key(connection_id), details.to_cache(),
                            CONNECTION_CACHE_TTL_SECONDS)


def _integrity_reason(err: IntegrityError) -> str:
    text = str(err.orig).lower()
    if "foreign key" in text:
        return "foreign_key"
    if "unique" in text or "duplicate" in text:
        return "duplicate_key"
    return "constraint"
