"""
OAuth authorization-code flow orchestration.

    INITIATED -> CALLBACK_RECEIVED -> TOKENS_EXCHANGED -> CODE_ISSUED
    (any callback step may end in FAILED)

Initiate stores a random state nonce (10 minutes) and returns the provider authorize URL.
Callback validates the state, exchanges the code and parks the grant behind a handoff
code; the connection itself is committed later by the provider's finalize step.
"""

from __future__ import annotations

import enum
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..config import Settings
from ..connectors.base.provider import ProviderRegistry
from ..db.models import Provider
from ..logging_config import mask_secret
from .cache import Cache
from .connection_store import ConnectionStore
from .errors import BrokerError, InvalidInput, InvalidOrExpiredState
from .handoff import HandoffBroker, PendingGrant
from .tenancy import TenancyBackend

_logger = logging.getLogger(__name__)

OAUTH_STATE_TTL_SECONDS = 10 * 60


class FlowState(str, enum.Enum):
    INITIATED = "initiated"
    CALLBACK_RECEIVED = "callback_received"
    TOKENS_EXCHANGED = "tokens_exchanged"
    CODE_ISSUED = "code_issued"
    FAILED = "failed"


def oauth_state_key(nonce: str) -> str:
    return f"oauth_state:{nonce}"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class CallbackOutcome:
    """Where to send the end user after a successful callback.

    redirect_url is None when no finalize frontend is configured; the caller then
    returns the code inline.
    """

    provider: Provider
    connection_code: str
    redirect_url: Optional[str]


class OAuthFlow:
    """Drives initiate and callback for every registered provider."""

    def __init__(
        self,
        settings: Settings,
        tenancy: TenancyBackend,
        providers: ProviderRegistry,
        store: ConnectionStore,
        handoff: HandoffBroker,
        cache: Cache,
    ):
        self._settings = settings
        self._tenancy = tenancy
        self._providers = providers
        self._store = store
        self._handoff = handoff
        self._cache = cache

    # PUBLIC_INTERFACE
    def initiate(self, provider: Provider, external_id: Optional[str], public_key: Optional[str] = None) -> str:
        """Return the provider authorization URL for external_id."""
        if not external_id or not external_id.strip():
            raise InvalidInput("Missing external_id")
        client = self._providers.get(provider)
        credentials = self._tenancy.resolve_credentials(provider, public_key=public_key)

        nonce = secrets.token_urlsafe(32)
        payload = {"external_id": external_id, "provider": provider.value, "public_key": public_key}
        if not self._cache.set(oauth_state_key(nonce), payload, OAUTH_STATE_TTL_SECONDS):
            _logger.error("Failed to store OAuth state; the callback will be rejected",
                          extra={"event": "oauth_state_store_failed", "provider": provider.value})
        self._transition(FlowState.INITIATED, provider, state=nonce)
        return client.authorization_url(credentials, nonce)

    # PUBLIC_INTERFACE
    def callback(self, provider: Provider, code: Optional[str], state: Optional[str],
                 error: Optional[str] = None) -> CallbackOutcome:
        """Validate state, exchange code and issue a handoff code."""
        try:
            return self._callback(provider, code, state, error)
        except BrokerError as e:
            self._transition(FlowState.FAILED, provider, state=state, reason=e.code)
            raise

    def _callback(self, provider: Provider, code: Optional[str], state: Optional[str],
                  error: Optional[str]) -> CallbackOutcome:
        if error:
            raise InvalidInput("Authorization was not granted by the provider", details={"error": error})
        if not code or not state:
            raise InvalidInput("Missing code or state")

        payload = self._load_state(state)
        if not isinstance(payload, dict) or payload.get("provider") != provider.value:
            raise InvalidOrExpiredState("Invalid or expired state")
        external_id = payload.get("external_id")
        if not external_id:
            raise InvalidOrExpiredState("Invalid or expired state")
        self._transition(FlowState.CALLBACK_RECEIVED, provider, state=state)

        client = self._providers.get(provider)
        credentials = self._tenancy.resolve_credentials(provider, public_key=payload.get("public_key"))
        obtained_at = datetime.now(timezone.utc)
        grant = client.exchange_code(credentials, code)
        connection_expires_at = datetime.now(timezone.utc) + client.connection_validity
        self._transition(FlowState.TOKENS_EXCHANGED, provider, state=state)

        tenant_id = credentials.tenant_id
        existing_id = self._store.find_connection_id(external_id, provider, tenant_id)
        pending = PendingGrant(
            connection_id=existing_id or str(uuid.uuid4()),
            provider=provider,
            external_id=external_id,
            refresh_token=grant.refresh_token,
            access_token=grant.access_token,
            access_token_expires_in=grant.expires_in,
            connection_expires_at=connection_expires_at,
            tenant_id=tenant_id,
            is_new_connection=existing_id is None,
            access_token_obtained_at=obtained_at,
        )
        connection_code = self._handoff.issue(pending)
        self._transition(FlowState.CODE_ISSUED, provider, state=state)

        base = (credentials.site_redirect_uri or self._settings.frontend_url).rstrip("/")
        redirect_url = f"{base}/finalize-connection/{provider.value}/{connection_code}" if base else None
        return CallbackOutcome(provider=provider, connection_code=connection_code, redirect_url=redirect_url)

    def _load_state(self, state: str):
        key = oauth_state_key(state)
        if self._settings.oauth_state_single_use:
            return self._cache.pop(key)
        return self._cache.get(key)

    def _transition(self, to: FlowState, provider: Provider, state: Optional[str] = None,
                    reason: Optional[str] = None) -> None:
        level = logging.WARNING if to is FlowState.FAILED else logging.INFO
        _logger.log(
            level,
            "OAuth flow -> %s",
            to.value,
            extra={"event": f"oauth_{to.value}", "provider": provider.value,
                   "extra": {"state": mask_secret(state or ""), "reason": reason}},
        )
