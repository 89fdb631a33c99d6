"""
Tenancy backends.

The broker talks to one TenancyBackend chosen at startup:
- SingleTenantBackend: OAuth apps from static Settings, secret key from the environment,
  connections in the local database with no tenant parameter.
- MultiTenantBackend: everything tenant-scoped is delegated to a CloudContextManager
  supplied by the hosting application.

Write operations receive the open Session so the connection store can run them inside
its own transaction next to any provider detail rows.
"""

from __future__ import annotations

import hmac
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import Settings
from ..connectors.base.provider import OAuthAppCredentials
from ..db import service
from ..db.models import Provider
from .errors import InvalidInput, Unauthorized

_logger = logging.getLogger(__name__)


class CloudContextManager(ABC):
    """Capabilities the hosting multi-tenant application must provide."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def get_oauth_credentials(self, provider: Provider, public_key: Optional[str] = None,
                              tenant_id: Optional[str] = None) -> Optional[OAuthAppCredentials]:
        """Return the tenant's OAuth app for provider (by public key or tenant id), or None."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def add_connection(self, session: Session, *, connection_id: str, external_id: str, provider: Provider,
                       tenant_id: str, refresh_token: str, expires_at: datetime) -> None:
        """Insert the core connection rows plus the tenant binding in session."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def update_connection(self, session: Session, *, connection_id: str, refresh_token: str,
                          expires_at: datetime) -> None:
        """Replace the grant on an existing connection in session."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def get_connection_id(self, external_id: str, provider: Provider, tenant_id: str) -> Optional[str]:
        """Return the connection id for a tenant's external identity, or None."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def verify_secret_key(self, secret_key: str) -> Optional[str]:
        """Return the tenant id owning secret_key, or None if the key is unknown."""


class TenancyBackend(ABC):
    """One interface over single- and multi-tenant deployments."""

    is_multi_tenant: bool = False

    @abstractmethod
    def resolve_credentials(self, provider: Provider, public_key: Optional[str] = None,
                            tenant_id: Optional[str] = None) -> OAuthAppCredentials:
        """Resolve the OAuth app for provider. Raises InvalidInput when none is configured."""

    @abstractmethod
    def verify_secret_key(self, secret_key: str) -> Optional[str]:
        """Raise Unauthorized for an unknown key; return the tenant id (None in single-tenant)."""

    @abstractmethod
    def lookup_connection_id(self, external_id: str, provider: Provider,
                             tenant_id: Optional[str] = None) -> Optional[str]:
        """Durable-store lookup of an identity's connection id."""

    @abstractmethod
    def add_connection(self, session: Session, *, connection_id: str, external_id: str, provider: Provider,
                       refresh_token: str, expires_at: datetime, tenant_id: Optional[str] = None) -> None:
        """Stage the rows for a new connection in session."""

    @abstractmethod
    def update_connection(self, session: Session, *, connection_id: str, refresh_token: str,
                          expires_at: datetime, tenant_id: Optional[str] = None) -> None:
        """Stage a grant replacement for an existing connection in session."""


class SingleTenantBackend(TenancyBackend):
    """Local configuration and local database, no tenants."""

    def __init__(self, settings: Settings, session_factory: Callable[[], Session]):
        self._settings = settings
        self._session_factory = session_factory

    def resolve_credentials(self, provider: Provider, public_key: Optional[str] = None,
                            tenant_id: Optional[str] = None) -> OAuthAppCredentials:
        app_cfg = self._settings.providers.get(provider.value)
        if app_cfg is None or not app_cfg.is_configured:
            _logger.error("OAuth app for provider '%s' is not configured", provider.value)
            raise InvalidInput(f"OAuth credentials for provider '{provider.value}' are not configured")
        return OAuthAppCredentials(
            client_id=app_cfg.client_id,
            client_secret=app_cfg.client_secret,
            scopes=list(app_cfg.scopes),
            redirect_uri=app_cfg.redirect_uri,
            site_redirect_uri=app_cfg.site_redirect_uri,
        )

    def verify_secret_key(self, secret_key: str) -> Optional[str]:
        expected = self._settings.secret_key
        if not expected or not hmac.compare_digest(secret_key.encode(), expected.encode()):
            raise Unauthorized("Invalid secret key")
        return None

    def lookup_connection_id(self, external_id: str, provider: Provider,
                             tenant_id: Optional[str] = None) -> Optional[str]:
        with self._session_factory() as session:
            return service.find_connection_id(session, external_id=external_id, provider=provider)

    def add_connection(self, session: Session, *, connection_id: str, external_id: str, provider: Provider,
                       refresh_token: str, expires_at: datetime, tenant_id: Optional[str] = None) -> None:
        service.insert_connection_rows(
            session,
            connection_id=connection_id,
            external_id=external_id,
            provider=provider,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    def update_connection(self, session: Session, *, connection_id: str, refresh_token: str,
                          expires_at: datetime, tenant_id: Optional[str] = None) -> None:
        service.update_connection_row(
            session, connection_id=connection_id, refresh_token=refresh_token, expires_at=expires_at
        )


class MultiTenantBackend(TenancyBackend):
    """Delegates tenant-scoped operations to the hosting application's CloudContextManager."""

    is_multi_tenant = True

    def __init__(self, cloud: CloudContextManager):
        self._cloud = cloud

    def resolve_credentials(self, provider: Provider, public_key: Optional[str] = None,
                            tenant_id: Optional[str] = None) -> OAuthAppCredentials:
        if not public_key and not tenant_id:
            raise InvalidInput("Missing public key")
        credentials = self._cloud.get_oauth_credentials(provider, public_key=public_key, tenant_id=tenant_id)
        if credentials is None:
            raise InvalidInput(f"No OAuth credentials found for provider '{provider.value}'")
        return credentials

    def verify_secret_key(self, secret_key: str) -> Optional[str]:
        tenant_id = self._cloud.verify_secret_key(secret_key)
        if not tenant_id:
            raise Unauthorized("Invalid secret key")
        return tenant_id

    def lookup_connection_id(self, external_id: str, provider: Provider,
                             tenant_id: Optional[str] = None) -> Optional[str]:
        return self._cloud.get_connection_id(external_id, provider, _require_tenant(tenant_id))

    def add_connection(self, session: Session, *, connection_id: str, external_id: str, provider: Provider,
                       refresh_token: str, expires_at: datetime, tenant_id: Optional[str] = None) -> None:
        self._cloud.add_connection(
            session,
            connection_id=connection_id,
            external_id=external_id,
            provider=provider,
            tenant_id=_require_tenant(tenant_id),
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    def update_connection(self, session: Session, *, connection_id: str, refresh_token: str,
                          expires_at: datetime, tenant_id: Optional[str] = None) -> None:
        self._cloud.update_connection(
            session, connection_id=connection_id, refresh_token=refresh_token, expires_at=expires_at
        )


def _require_tenant(tenant_id: Optional[str]) -> str:
    if not tenant_id:
        raise InvalidInput("Missing tenant for multi-tenant operation")
    return tenant_id
