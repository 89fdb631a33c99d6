from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from juncture_backend.broker.cache import Cache
from juncture_backend.broker.connection_store import ConnectionStore
from juncture_backend.broker.errors import ConnectionNotFound, TransactionFailure
from juncture_backend.connectors.jira.details import site_extension
from juncture_backend.db.models import Connection, ConnectionExternalMap, JiraConnection, Provider


def _count(ctx, model):
    with ctx.session_factory() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def test_commit_then_lookup_returns_same_id(ctx, seed_connection, redis_client):
    connection_id = seed_connection()
    assert ctx.store.lookup_connection_id("acct-42", Provider.JIRA) == connection_id

    redis_client.flushall()
    assert ctx.store.lookup_connection_id("acct-42", Provider.JIRA) == connection_id


def test_lookup_unknown_identity_raises(ctx):
    with pytest.raises(ConnectionNotFound):
        ctx.store.lookup_connection_id("nobody", Provider.JIRA)
    assert ctx.store.find_connection_id("nobody", Provider.JIRA) is None


def test_commit_refreshes_cache_entries(ctx, seed_connection, redis_client):
    connection_id = seed_connection()
    assert Cache(redis_client).get("connection_id:jira:acct-42") == connection_id
    cached = Cache(redis_client).get(f"connection_details:{connection_id}")
    assert cached["refresh_token"] == "refresh-1"


def test_extension_failure_rolls_back_core_rows(ctx):
    def broken_extension(session, connection_id):
        session.add(JiraConnection(connection_id=connection_id, jira_site_id=None))
        session.flush()

    with pytest.raises(TransactionFailure):
        ctx.store.commit(
            connection_id="conn-x",
            external_id="acct-1",
            provider=Provider.JIRA,
            refresh_token="r",
            expires_at=datetime.now(timezone.utc) + timedelta(days=1),
            extension=broken_extension,
        )

    assert ctx.store.find_connection_id("acct-1", Provider.JIRA) is None
    assert _count(ctx, Connection) == 0
    assert _count(ctx, ConnectionExternalMap) == 0


def test_extension_runs_in_same_transaction(ctx, seed_connection):
    connection_id = seed_connection(extension=site_extension("site-9"))
    with ctx.session_factory() as session:
        row = session.get(JiraConnection, connection_id)
        assert row.jira_site_id == "site-9"


def test_racing_inserts_for_same_identity_cannot_both_win(ctx, monkeypatch, seed_connection):
    seed_connection(connection_id="conn-a")
    # Second writer read "no connection yet" before the first one committed.
    monkeypatch.setattr(ctx.store, "_lookup_uncached", lambda *a, **k: None)

    with pytest.raises(TransactionFailure) as excinfo:
        seed_connection(connection_id="conn-b")

    assert excinfo.value.details["reason"] in ("duplicate_key", "constraint")
    assert _count(ctx, Connection) == 1
    assert ctx.store.lookup_connection_id("acct-42", Provider.JIRA) == "conn-a"


def test_recommit_updates_existing_connection_and_clears_invalid_flag(ctx, seed_connection):
    first = seed_connection(refresh_token="old")
    ctx.store.mark_invalid(first)
    assert ctx.store.get_connection_details(first).invalid_refresh_token is True

    result = ctx.store.commit(
        connection_id="ignored-new-id",
        external_id="acct-42",
        provider=Provider.JIRA,
        refresh_token="new",
        expires_at=datetime.now(timezone.utc) + timedelta(days=364),
    )

    assert result.connection_id == first
    assert result.created is False
    details = ctx.store.get_connection_details(first)
    assert details.refresh_token == "new"
    assert details.invalid_refresh_token is False
    assert _count(ctx, Connection) == 1


def test_details_from_cache_have_typed_timestamps(ctx, seed_connection):
    connection_id = seed_connection()
    from_db = ctx.store.get_connection_details(connection_id)
    from_cache = ctx.store.get_connection_details(connection_id)
    assert isinstance(from_cache.expires_at, datetime)
    assert from_cache.expires_at.tzinfo is not None
    assert from_cache.expires_at == from_db.expires_at
    assert from_cache.is_expired() is False


def test_mark_invalid_unknown_connection(ctx):
    with pytest.raises(ConnectionNotFound):
        ctx.store.mark_invalid("missing")


def test_store_is_correct_when_cache_is_down(ctx, broken_redis):
    store = ConnectionStore(ctx.session_factory, ctx.tenancy, Cache(broken_redis))
    result = store.commit(
        connection_id="conn-1",
        external_id="acct-7",
        provider=Provider.JIRA,
        refresh_token="r",
        expires_at=datetime.now(timezone.utc) + timedelta(days=1),
    )
    assert store.lookup_connection_id("acct-7", Provider.JIRA) == result.connection_id
    assert store.get_connection_details(result.connection_id).refresh_token == "r"
