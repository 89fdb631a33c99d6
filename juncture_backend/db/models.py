"""
SQLAlchemy models for the connection broker:
- Connection: one durable OAuth grant
- ConnectionExternalMap: (external_id, provider) -> connection
- JiraConnection: Jira-specific detail row for a connection
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .config import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on read; treat naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# PUBLIC_INTERFACE
class Provider(str, enum.Enum):
    """Supported OAuth providers. Names are lowercase on the wire."""

    JIRA = "jira"

    # PUBLIC_INTERFACE
    @classmethod
    def values(cls) -> List[str]:
        return [p.value for p in cls]


class TimestampMixin:
    """Reusable timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


# PUBLIC_INTERFACE
class Connection(Base, TimestampMixin):
    """One durable OAuth grant (refresh token and its validity window)."""

    __tablename__ = "connection"

    connection_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    invalid_refresh_token: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    external_maps: Mapped[List["ConnectionExternalMap"]] = relationship(
        back_populates="connection", cascade="all, delete-orphan", passive_deletes=True
    )
    jira_connection: Mapped[Optional["JiraConnection"]] = relationship(
        back_populates="connection", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"Connection(connection_id={self.connection_id}, invalid={self.invalid_refresh_token})"


# PUBLIC_INTERFACE
class ConnectionExternalMap(Base):
    """Binds a caller-defined external identity at one provider to exactly one connection."""

    __tablename__ = "connection_external_map"

    external_id: Mapped[str] = mapped_column(Text, primary_key=True)
    provider: Mapped[Provider] = mapped_column(
        Enum(Provider, name="provider", values_callable=lambda e: [m.value for m in e]), primary_key=True
    )
    connection_id: Mapped[str] = mapped_column(
        ForeignKey("connection.connection_id", ondelete="CASCADE"), nullable=False, index=True
    )

    connection: Mapped[Connection] = relationship(back_populates="external_maps")

    def __repr__(self) -> str:
        return f"ConnectionExternalMap(external_id={self.external_id}, provider={self.provider.value})"


# PUBLIC_INTERFACE
class JiraConnection(Base, TimestampMixin):
    """Jira-specific detail for a connection: the chosen site and optionally a selected project."""

    __tablename__ = "jira_connection"

    connection_id: Mapped[str] = mapped_column(
        ForeignKey("connection.connection_id", ondelete="CASCADE"), primary_key=True
    )
    jira_site_id: Mapped[str] = mapped_column(Text, nullable=False)
    selected_jira_project_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    connection: Mapped[Connection] = relationship(back_populates="jira_connection")

    def __repr__(self) -> str:
        return f"JiraConnection(connection_id={self.connection_id}, site={self.jira_site_id})"
