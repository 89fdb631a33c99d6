"""
Secret and public key handling for incoming requests.

Backend-facing routes authenticate with `Authorization: Bearer <secret key>`. Frontend
routes in multi-tenant mode identify the tenant by a public key, sent either in the
X-Juncture-Public-Key header or in the request body.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from ..db.models import Provider
from .connection_store import ConnectionStore
from .errors import Unauthorized
from .tenancy import TenancyBackend

_logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
PUBLIC_KEY_HEADER = "X-Juncture-Public-Key"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class CallerIdentity:
    """Result of a successful secret key check. tenant_id is None in single-tenant mode."""

    tenant_id: Optional[str] = None


# PUBLIC_INTERFACE
def parse_bearer(authorization: Optional[str]) -> str:
    """Extract the key from an Authorization header. Raises Unauthorized."""
    if not authorization:
        raise Unauthorized("Missing Authorization header")
    if not authorization.startswith(BEARER_PREFIX):
        raise Unauthorized("Authorization header must use the Bearer scheme")
    key = authorization[len(BEARER_PREFIX):].strip()
    if not key:
        raise Unauthorized("Missing secret key")
    return key


# PUBLIC_INTERFACE
def pick_public_key(header_value: Optional[str], body_value: Optional[str]) -> Optional[str]:
    """Header wins over body; blank values count as absent."""
    for candidate in (header_value, body_value):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


class KeyVerifier:
    """Resolves caller identity from request credentials."""

    def __init__(self, tenancy: TenancyBackend, store: ConnectionStore):
        self._tenancy = tenancy
        self._store = store

    # PUBLIC_INTERFACE
    def verify(self, authorization: Optional[str]) -> CallerIdentity:
        """Validate the bearer secret key and return the caller's identity."""
        key = parse_bearer(authorization)
        try:
            tenant_id = self._tenancy.verify_secret_key(key)
        except Unauthorized:
            _logger.warning("Rejected secret key", extra={"event": "secret_key_rejected"})
            raise
        return CallerIdentity(tenant_id=tenant_id)

    # PUBLIC_INTERFACE
    def resolve_connection_id(self, authorization: Optional[str], external_id: str,
                              provider: Provider) -> Tuple[CallerIdentity, str]:
        """Verify the caller, then map (external_id, provider) to its connection id.

        Raises Unauthorized or ConnectionNotFound.
        """
        identity = self.verify(authorization)
        connection_id = self._store.lookup_connection_id(external_id, provider, identity.tenant_id)
        return identity, connection_id
