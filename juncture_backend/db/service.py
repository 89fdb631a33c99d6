"""
Service layer functions wrapping DB operations on connection rows.

None of these commit: callers own the transaction (session.begin()) so several
writes, including provider detail rows, land all-or-nothing.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .models import Connection, ConnectionExternalMap, Provider


# PUBLIC_INTERFACE
def find_connection_id(db: Session, *, external_id: str, provider: Provider) -> Optional[str]:
    """Return the connection id mapped to (external_id, provider), if any."""
    stmt = select(ConnectionExternalMap.connection_id).where(
        ConnectionExternalMap.external_id == external_id,
        ConnectionExternalMap.provider == provider,
    )
    return db.execute(stmt).scalar_one_or_none()


# PUBLIC_INTERFACE
def get_connection(db: Session, connection_id: str) -> Optional[Connection]:
    """Get a connection by id."""
    return db.get(Connection, connection_id)


# PUBLIC_INTERFACE
def insert_connection_rows(db: Session, *, connection_id: str, external_id: str, provider: Provider,
                           refresh_token: str, expires_at: datetime) -> Connection:
    """Stage a new Connection and its ExternalMap row. Flushes so constraint errors surface here."""
    connection = Connection(
        connection_id=connection_id,
        refresh_token=refresh_token,
        expires_at=expires_at,
        invalid_refresh_token=False,
    )
    db.add(connection)
    db.flush()
    db.add(ConnectionExternalMap(external_id=external_id, provider=provider, connection_id=connection_id))
    db.flush()
    return connection


# PUBLIC_INTERFACE
def update_connection_row(db: Session, *, connection_id: str, refresh_token: str,
                          expires_at: datetime) -> Connection:
    """Replace the grant on an existing connection. A fresh grant clears the invalid flag."""
    connection = db.get(Connection, connection_id)
    if connection is None:
        raise LookupError(connection_id)
    connection.refresh_token = refresh_token
    connection.expires_at = expires_at
    connection.invalid_refresh_token = False
    db.flush()
    return connection


# PUBLIC_INTERFACE
def set_invalid_refresh_token(db: Session, connection_id: str) -> bool:
    """Flag the connection's refresh token as permanently rejected. Returns False if no row matched."""
    result = db.execute(
        update(Connection)
        .where(Connection.connection_id == connection_id)
        .values(invalid_refresh_token=True)
    )
    return bool(result.rowcount)
