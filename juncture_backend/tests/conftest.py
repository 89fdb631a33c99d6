from datetime import datetime, timedelta, timezone
from typing import Optional

import fakeredis
import httpx
import pytest
import redis
import respx
from fastapi.testclient import TestClient

from juncture_backend.app import create_app
from juncture_backend.broker.tenancy import CloudContextManager
from juncture_backend.config import ProviderAppConfig, Settings
from juncture_backend.connectors.base.provider import OAuthAppCredentials
from juncture_backend.context import build_context
from juncture_backend.db import service
from juncture_backend.db.config import build_engine
from juncture_backend.db.models import Provider

SECRET_KEY = "test-secret-key"
AUTH_HEADER = {"Authorization": f"Bearer {SECRET_KEY}"}
TOKEN_URL = "https://auth.atlassian.com/oauth/token"
SITES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"


def make_settings(**overrides) -> Settings:
    values = dict(
        cloud_mode=False,
        secret_key=SECRET_KEY,
        providers={
            "jira": ProviderAppConfig(
                client_id="jira-client-id",
                client_secret="jira-client-secret",
                scopes=["read:jira-work", "read:jira-user"],
                redirect_uri="http://localhost:3001/api/frontend/oauth/authorization-callback/jira",
            )
        },
        frontend_url="http://localhost:3000",
        database_url="sqlite://",
    )
    values.update(overrides)
    return Settings(**values)


class FakeCloud(CloudContextManager):
    """In-memory tenant registry over the core tables; tenant scoping lives in the external id."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory
        self.public_keys = {"pk-tenant-a": "tenant-a", "pk-tenant-b": "tenant-b"}
        self.secret_keys = {"sk-tenant-a": "tenant-a", "sk-tenant-b": "tenant-b"}

    def get_oauth_credentials(self, provider: Provider, public_key: Optional[str] = None,
                              tenant_id: Optional[str] = None) -> Optional[OAuthAppCredentials]:
        tenant = tenant_id or self.public_keys.get(public_key or "")
        if not tenant:
            return None
        return OAuthAppCredentials(
            client_id=f"{tenant}-client-id",
            client_secret=f"{tenant}-client-secret",
            scopes=["read:jira-work"],
            redirect_uri="https://broker.example.com/api/frontend/oauth/authorization-callback/jira",
            site_redirect_uri=f"https://{tenant}.example.com",
            tenant_id=tenant,
        )

    def add_connection(self, session, *, connection_id, external_id, provider, tenant_id, refresh_token, expires_at):
        service.insert_connection_rows(
            session,
            connection_id=connection_id,
            external_id=f"{tenant_id}:{external_id}",
            provider=provider,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    def update_connection(self, session, *, connection_id, refresh_token, expires_at):
        service.update_connection_row(
            session, connection_id=connection_id, refresh_token=refresh_token, expires_at=expires_at
        )

    def get_connection_id(self, external_id, provider, tenant_id):
        with self.session_factory() as session:
            return service.find_connection_id(session, external_id=f"{tenant_id}:{external_id}", provider=provider)

    def verify_secret_key(self, secret_key):
        return self.secret_keys.get(secret_key)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


class BrokenRedis:
    """Every command fails the way an unreachable server does."""

    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")

        return _fail


@pytest.fixture
def broken_redis():
    return BrokenRedis()


@pytest.fixture
def ctx(settings, redis_client):
    context = build_context(
        settings,
        redis_client=redis_client,
        engine=build_engine("sqlite://"),
        http_client=httpx.Client(timeout=5.0),
    )
    yield context
    context.close()


@pytest.fixture
def cloud_ctx(redis_client):
    cloud = FakeCloud()
    context = build_context(
        make_settings(cloud_mode=True, secret_key=""),
        cloud=cloud,
        redis_client=redis_client,
        engine=build_engine("sqlite://"),
        http_client=httpx.Client(timeout=5.0),
    )
    cloud.session_factory = context.session_factory
    yield context
    context.close()


@pytest.fixture
def client(ctx):
    with TestClient(create_app(ctx)) as c:
        yield c


@pytest.fixture
def cloud_client(cloud_ctx):
    with TestClient(create_app(cloud_ctx)) as c:
        yield c


@pytest.fixture
def atlassian():
    with respx.mock(assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def seed_connection(ctx):
    """Commit a connection directly through the store."""

    def _seed(external_id="acct-42", refresh_token="refresh-1", expires_at=None, connection_id="conn-1",
              extension=None):
        expires_at = expires_at or datetime.now(timezone.utc) + timedelta(days=364)
        return ctx.store.commit(
            connection_id=connection_id,
            external_id=external_id,
            provider=Provider.JIRA,
            refresh_token=refresh_token,
            expires_at=expires_at,
            extension=extension,
        ).connection_id

    return _seed
