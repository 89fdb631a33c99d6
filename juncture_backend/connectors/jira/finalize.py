from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ...broker.connection_store import ConnectionStore
from ...broker.errors import InvalidInput, NotFound
from ...broker.handoff import HandoffBroker
from ...broker.token_broker import TokenBroker
from ...db.models import Provider
from .client import JiraOAuthClient
from .details import JiraConnectionDetails, JiraDetailsStore, site_extension

LOG = logging.getLogger(__name__)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class FinalizedConnection:
    connection_id: str
    created: bool
    jira: JiraConnectionDetails


class JiraFinalizer:
    """
    Completes a Jira connection from a handoff code.

    - fetch_available_sites: read-only; the code stays valid for the create step.
    - create_connection: commits the connection and its JiraConnection row in one
      transaction, then consumes the code.
    """

    provider = Provider.JIRA

    def __init__(
        self,
        client: JiraOAuthClient,
        handoff: HandoffBroker,
        store: ConnectionStore,
        details: JiraDetailsStore,
        tokens: TokenBroker,
    ):
        self._client = client
        self._handoff = handoff
        self._store = store
        self._details = details
        self._tokens = tokens

    # PUBLIC_INTERFACE
    def fetch_available_sites(self, connection_code: Optional[str]) -> List[Dict[str, Any]]:
        """List the Atlassian sites reachable with the grant parked behind connection_code."""
        if not connection_code:
            raise InvalidInput("Missing connection_code")
        grant = self._handoff.resolve(self.provider, connection_code)
        return self._client.list_accessible_sites(grant.access_token)

    # PUBLIC_INTERFACE
    def create_connection(self, connection_code: Optional[str], site_id: Optional[str],
                          selected_project_id: Optional[str] = None) -> FinalizedConnection:
        """Commit the pending grant with the chosen site. Raises NotFound, TransactionFailure."""
        if not connection_code:
            raise InvalidInput("Missing connection_code")
        if not site_id:
            raise InvalidInput("Missing jira_site_id")

        grant = self._handoff.resolve(self.provider, connection_code)
        result = self._store.commit(
            connection_id=grant.connection_id,
            external_id=grant.external_id,
            provider=self.provider,
            refresh_token=grant.refresh_token,
            expires_at=grant.connection_expires_at,
            tenant_id=grant.tenant_id,
            extension=site_extension(site_id, selected_project_id),
        )
        try:
            self._handoff.consume(self.provider, connection_code)
        except NotFound:
            # Expired between resolve and commit; the connection is saved regardless.
            LOG.warning("Connection code vanished before it could be consumed")

        details = JiraConnectionDetails(
            connection_id=result.connection_id,
            jira_site_id=site_id,
            selected_jira_project_id=selected_project_id,
        )
        self._details.remember(details)
        self._tokens.cache_access_token(
            result.connection_id, grant.access_token, grant.remaining_access_token_lifetime()
        )
        LOG.info("Jira connection finalized", extra={"event": "jira_connection_finalized", "provider": "jira"})
        return FinalizedConnection(connection_id=result.connection_id, created=result.created, jira=details)
