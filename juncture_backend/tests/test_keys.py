import dataclasses

import pytest

from juncture_backend.broker.errors import ConnectionNotFound, Unauthorized
from juncture_backend.broker.keys import parse_bearer, pick_public_key
from juncture_backend.db.models import Provider


@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "bearer test-secret-key"])
def test_parse_bearer_rejects_malformed_headers(header):
    with pytest.raises(Unauthorized):
        parse_bearer(header)


def test_parse_bearer_extracts_key():
    assert parse_bearer("Bearer abc123") == "abc123"


def test_public_key_header_wins_over_body():
    assert pick_public_key("pk-header", "pk-body") == "pk-header"
    assert pick_public_key(None, "pk-body") == "pk-body"
    assert pick_public_key("  ", None) is None


def test_single_tenant_verify(ctx):
    assert ctx.keys.verify("Bearer test-secret-key").tenant_id is None
    with pytest.raises(Unauthorized):
        ctx.keys.verify("Bearer wrong-key")


def test_single_tenant_without_configured_secret_rejects_everything(ctx, monkeypatch):
    monkeypatch.setattr(ctx.tenancy, "_settings", dataclasses.replace(ctx.settings, secret_key=""))
    with pytest.raises(Unauthorized):
        ctx.keys.verify("Bearer anything")


def test_resolve_connection_id(ctx, seed_connection):
    connection_id = seed_connection()
    identity, resolved = ctx.keys.resolve_connection_id("Bearer test-secret-key", "acct-42", Provider.JIRA)
    assert identity.tenant_id is None
    assert resolved == connection_id
    with pytest.raises(ConnectionNotFound):
        ctx.keys.resolve_connection_id("Bearer test-secret-key", "someone-else", Provider.JIRA)


def test_multi_tenant_verify_resolves_tenant(cloud_ctx):
    assert cloud_ctx.keys.verify("Bearer sk-tenant-a").tenant_id == "tenant-a"
    with pytest.raises(Unauthorized):
        cloud_ctx.keys.verify("Bearer sk-unknown")
