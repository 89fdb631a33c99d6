from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ...broker.cache import Cache
from ...broker.connection_store import TransactionExtension
from ...broker.errors import InvalidInput, NotFound, TransactionFailure
from ...db.models import JiraConnection

LOG = logging.getLogger(__name__)

JIRA_DETAILS_CACHE_TTL_SECONDS = 24 * 60 * 60


def jira_details_cache_key(connection_id: str) -> str:
    return f"jira_connection_details:{connection_id}"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class JiraConnectionDetails:
    connection_id: str
    jira_site_id: str
    selected_jira_project_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: JiraConnection) -> "JiraConnectionDetails":
        return cls(
            connection_id=row.connection_id,
            jira_site_id=row.jira_site_id,
            selected_jira_project_id=row.selected_jira_project_id,
        )


# PUBLIC_INTERFACE
def site_extension(site_id: str, selected_project_id: Optional[str] = None) -> TransactionExtension:
    """Unit of work that upserts the JiraConnection row inside a connection commit.

    Choosing a site resets the project selection to selected_project_id.
    """

    def _apply(session: Session, connection_id: str) -> None:
        row = session.get(JiraConnection, connection_id)
        if row is None:
            session.add(JiraConnection(
                connection_id=connection_id,
                jira_site_id=site_id,
                selected_jira_project_id=selected_project_id,
            ))
        else:
            row.jira_site_id = site_id
            row.selected_jira_project_id = selected_project_id
        session.flush()

    return _apply


class JiraDetailsStore:
    """Cache-aside reads and project selection for JiraConnection rows."""

    def __init__(self, session_factory: sessionmaker, cache: Cache):
        self._session_factory = session_factory
        self._cache = cache

    # PUBLIC_INTERFACE
    def get(self, connection_id: str) -> JiraConnectionDetails:
        """Return the Jira detail for connection_id. Raises NotFound when finalize never ran."""
        cached = self._cache.get(jira_details_cache_key(connection_id))
        if isinstance(cached, dict):
            try:
                return JiraConnectionDetails(**cached)
            except TypeError:
                LOG.warning("Discarding malformed Jira details cache entry")
        with self._session_factory() as session:
            row = session.get(JiraConnection, connection_id)
            if row is None:
                raise NotFound("Jira connection details not found", details={"connection_id": connection_id})
            details = JiraConnectionDetails.from_row(row)
        self.remember(details)
        return details

    # PUBLIC_INTERFACE
    def select_project(self, connection_id: str, project_id: str) -> JiraConnectionDetails:
        """Record the project the caller works in. The site can only change through finalize."""
        if not project_id or not str(project_id).strip():
            raise InvalidInput("Missing jira_project_id")
        try:
            with self._session_factory.begin() as session:
                row = session.get(JiraConnection, connection_id)
                if row is None:
                    raise NotFound("Jira connection details not found", details={"connection_id": connection_id})
                row.selected_jira_project_id = str(project_id)
                session.flush()
                details = JiraConnectionDetails.from_row(row)
        except SQLAlchemyError as e:
            raise TransactionFailure("Failed to update selected Jira project") from e
        self.remember(details)
        return details

    # PUBLIC_INTERFACE
    def remember(self, details: JiraConnectionDetails) -> None:
        self._cache.set(jira_details_cache_key(details.connection_id), asdict(details),
                        JIRA_DETAILS_CACHE_TTL_SECONDS)
