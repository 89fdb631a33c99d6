from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from ...broker.errors import InvalidInput
from ...db.models import Provider


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class OAuthAppCredentials:
    """OAuth application credentials resolved for one provider (and tenant, in Cloud mode)."""

    client_id: str
    client_secret: str
    scopes: List[str] = field(default_factory=list)
    redirect_uri: str = ""
    site_redirect_uri: str = ""
    tenant_id: Optional[str] = None


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class TokenGrant:
    """Normalized token endpoint response."""

    access_token: str
    refresh_token: str
    expires_in: int


class OAuthProvider(ABC):
    """Provider OAuth client interface.

    Implementations raise TokenExchangeFailed/RefreshFailed for transient errors and
    InvalidGrant only when the provider explicitly rejects a refresh token.
    """

    provider: Provider
    # Just under the provider's refresh token validity so a connection never outlives its grant.
    connection_validity: timedelta = timedelta(days=364)

    # PUBLIC_INTERFACE
    @abstractmethod
    def authorization_url(self, credentials: OAuthAppCredentials, state: str) -> str:
        """Build the provider authorize URL, always requesting offline access."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def exchange_code(self, credentials: OAuthAppCredentials, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def refresh(self, credentials: OAuthAppCredentials, refresh_token: str) -> TokenGrant:
        """Mint a new access token (and possibly a rotated refresh token)."""
        raise NotImplementedError


class ProviderRegistry:
    """Lookup of OAuth clients by provider name."""

    def __init__(self, providers: Dict[Provider, OAuthProvider]):
        self._providers = dict(providers)

    # PUBLIC_INTERFACE
    def get(self, provider: Provider) -> OAuthProvider:
        try:
            return self._providers[provider]
        except KeyError:
            raise InvalidInput(f"Provider '{provider.value}' is not supported") from None


# PUBLIC_INTERFACE
def parse_provider(value: Optional[str]) -> Provider:
    """Validate a provider name from the wire. Names are case sensitive and lowercase."""
    if not value:
        raise InvalidInput("Missing provider")
    try:
        return Provider(value)
    except ValueError:
        raise InvalidInput(
            "Invalid provider. Ensure that all provider names are lowercase.",
            details={"supported": Provider.values()},
        ) from None
