import json
import threading
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from juncture_backend.broker.errors import ConnectionNotFound, NeedsReauthorization, RefreshFailed
from juncture_backend.db.models import Provider

TOKEN_URL = "https://auth.atlassian.com/oauth/token"


def _ok(access="access-new", refresh="refresh-new", expires_in=3600):
    return httpx.Response(200, json={"access_token": access, "refresh_token": refresh, "expires_in": expires_in})


def test_cached_token_is_returned_without_provider_call(ctx, seed_connection, atlassian):
    connection_id = seed_connection()
    route = atlassian.post(TOKEN_URL).mock(return_value=_ok())
    ctx.tokens.cache_access_token(connection_id, "cached-token", 3600)

    token = ctx.tokens.get_access_token(connection_id, Provider.JIRA)

    assert token.access_token == "cached-token"
    assert 0 < token.expires_in <= 3300
    assert route.call_count == 0


def test_refresh_caches_token_and_persists_rotated_refresh_token(ctx, seed_connection, atlassian, redis_client):
    connection_id = seed_connection(refresh_token="refresh-1")
    route = atlassian.post(TOKEN_URL).mock(return_value=_ok())

    token = ctx.tokens.get_access_token(connection_id, Provider.JIRA)

    assert token.access_token == "access-new"
    assert token.expires_in == 3300
    sent = json.loads(route.calls.last.request.content)
    assert sent["grant_type"] == "refresh_token"
    assert sent["refresh_token"] == "refresh-1"
    assert sent["client_id"] == "jira-client-id"

    assert 0 < redis_client.ttl(f"access_token:{connection_id}") <= 3300
    details = ctx.store.get_connection_details(connection_id)
    assert details.refresh_token == "refresh-new"
    assert details.expires_at > datetime.now(timezone.utc) + timedelta(days=363)

    # Second call is served from the cache.
    ctx.tokens.get_access_token(connection_id, Provider.JIRA)
    assert route.call_count == 1


def test_invalid_grant_marks_connection_invalid(ctx, seed_connection, atlassian):
    connection_id = seed_connection()
    atlassian.post(TOKEN_URL).mock(
        return_value=httpx.Response(403, json={"error": "invalid_grant", "error_description": "Unknown or invalid refresh token."})
    )

    with pytest.raises(NeedsReauthorization):
        ctx.tokens.get_access_token(connection_id, Provider.JIRA)

    assert ctx.store.get_connection_details(connection_id).invalid_refresh_token is True


def test_invalid_flag_short_circuits_without_provider_call(ctx, seed_connection, atlassian):
    connection_id = seed_connection()
    ctx.store.mark_invalid(connection_id)
    route = atlassian.post(TOKEN_URL).mock(return_value=_ok())

    with pytest.raises(NeedsReauthorization):
        ctx.tokens.get_access_token(connection_id, Provider.JIRA)
    assert route.call_count == 0


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "server_error"}),
        httpx.Response(403, json={"error": "unauthorized_client"}),
        httpx.Response(400, text="not json"),
    ],
)
def test_other_provider_errors_are_transient(ctx, seed_connection, atlassian, response):
    connection_id = seed_connection()
    atlassian.post(TOKEN_URL).mock(return_value=response)

    with pytest.raises(RefreshFailed):
        ctx.tokens.get_access_token(connection_id, Provider.JIRA)

    assert ctx.store.get_connection_details(connection_id).invalid_refresh_token is False


def test_timeout_is_transient(ctx, seed_connection, atlassian):
    connection_id = seed_connection()
    atlassian.post(TOKEN_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

    with pytest.raises(RefreshFailed):
        ctx.tokens.get_access_token(connection_id, Provider.JIRA)

    assert ctx.store.get_connection_details(connection_id).invalid_refresh_token is False


def test_expired_by_clock_connection_still_refreshes(ctx, seed_connection, atlassian):
    connection_id = seed_connection(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
    atlassian.post(TOKEN_URL).mock(return_value=_ok())

    token = ctx.tokens.get_access_token(connection_id, Provider.JIRA)

    assert token.access_token == "access-new"
    assert ctx.store.get_connection_details(connection_id).is_expired() is False


def test_expired_by_clock_and_rejected_needs_reauthorization(ctx, seed_connection, atlassian):
    connection_id = seed_connection(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
    atlassian.post(TOKEN_URL).mock(return_value=httpx.Response(403, json={"error": "invalid_grant"}))

    with pytest.raises(NeedsReauthorization):
        ctx.tokens.get_access_token(connection_id, Provider.JIRA)


def test_unknown_connection(ctx):
    with pytest.raises(ConnectionNotFound):
        ctx.tokens.get_access_token("missing", Provider.JIRA)


def test_failed_persistence_does_not_fail_request(ctx, seed_connection, atlassian, monkeypatch):
    connection_id = seed_connection()
    atlassian.post(TOKEN_URL).mock(return_value=_ok())

    def _fail(*args, **kwargs):
        raise ConnectionNotFound("gone")

    monkeypatch.setattr(ctx.store, "update_refresh_token", _fail)
    assert ctx.tokens.get_access_token(connection_id, Provider.JIRA).access_token == "access-new"


def test_waiter_uses_token_refreshed_by_lock_holder(ctx, seed_connection, atlassian):
    connection_id = seed_connection()
    route = atlassian.post(TOKEN_URL).mock(return_value=_ok())
    results = []

    with ctx.tokens._single_flight(connection_id):
        waiter = threading.Thread(
            target=lambda: results.append(ctx.tokens.get_access_token(connection_id, Provider.JIRA))
        )
        waiter.start()
        # Stands in for the request that holds the lock and refreshes.
        ctx.tokens.cache_access_token(connection_id, "from-holder", 3600)
    waiter.join(timeout=5)

    assert results[0].access_token == "from-holder"
    assert route.call_count == 0
    assert ctx.tokens._locks == {}


def test_refresh_locks_are_released_after_use(ctx, seed_connection, atlassian):
    atlassian.post(TOKEN_URL).mock(return_value=httpx.Response(500))
    for n in range(3):
        connection_id = seed_connection(external_id=f"acct-{n}", connection_id=f"conn-{n}")
        with pytest.raises(RefreshFailed):
            ctx.tokens.get_access_token(connection_id, Provider.JIRA)

    assert ctx.tokens._locks == {}
