"""
Application context: every long-lived collaborator, built once at startup.

Routes receive the context from app.state; nothing in the package keeps a mutable
module-level backend reference.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
import redis
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .broker.cache import Cache, create_redis_client
from .broker.connection_store import ConnectionStore
from .broker.handoff import HandoffBroker
from .broker.keys import KeyVerifier
from .broker.oauth_flow import OAuthFlow
from .broker.tenancy import CloudContextManager, MultiTenantBackend, SingleTenantBackend, TenancyBackend
from .broker.token_broker import TokenBroker
from .config import Settings
from .connectors.base.provider import ProviderRegistry
from .connectors.jira.client import JiraOAuthClient
from .connectors.jira.details import JiraDetailsStore
from .connectors.jira.finalize import JiraFinalizer
from .db.config import build_engine, build_session_factory, init_db
from .db.models import Provider

_logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
@dataclass
class AppContext:
    """Wiring of settings, stores, caches and provider clients for one process."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    cache: Cache
    http: httpx.Client
    tenancy: TenancyBackend
    providers: ProviderRegistry
    store: ConnectionStore
    handoff: HandoffBroker
    oauth_flow: OAuthFlow
    tokens: TokenBroker
    keys: KeyVerifier
    jira_details: JiraDetailsStore
    jira_finalizer: JiraFinalizer
    owns_redis: bool = False

    def close(self) -> None:
        self.http.close()
        self.engine.dispose()
        if self.owns_redis:
            self.cache.close()


# PUBLIC_INTERFACE
def build_context(
    settings: Settings,
    cloud: Optional[CloudContextManager] = None,
    redis_client: Optional["redis.Redis"] = None,
    engine: Optional[Engine] = None,
    http_client: Optional[httpx.Client] = None,
    create_schema: bool = True,
) -> AppContext:
    """
    Build the AppContext for settings.

    Args:
        settings: resolved configuration.
        cloud: the hosting application's CloudContextManager; required when settings.cloud_mode.
        redis_client / engine / http_client: overrides, mainly for tests.
        create_schema: create missing tables on the engine.
    """
    if settings.cloud_mode and cloud is None:
        raise RuntimeError("CLOUD_MODE is enabled but no CloudContextManager was provided")
    if not settings.cloud_mode and cloud is not None:
        _logger.warning("CloudContextManager supplied in single-tenant mode; ignoring it")

    engine = engine or build_engine(settings.database_url)
    if create_schema:
        init_db(engine)
    session_factory = build_session_factory(engine)

    cache = Cache(redis_client or create_redis_client(settings.redis_url, settings.redis_timeout_seconds))
    http = http_client or httpx.Client(timeout=settings.http_timeout_seconds)

    tenancy: TenancyBackend
    if settings.cloud_mode:
        tenancy = MultiTenantBackend(cloud)
    else:
        tenancy = SingleTenantBackend(settings, session_factory)

    jira_client = JiraOAuthClient(http)
    providers = ProviderRegistry({Provider.JIRA: jira_client})

    store = ConnectionStore(session_factory, tenancy, cache)
    handoff = HandoffBroker(cache)
    tokens = TokenBroker(store, tenancy, providers, cache)
    jira_details = JiraDetailsStore(session_factory, cache)

    _logger.info("Application context built (multi_tenant=%s)", tenancy.is_multi_tenant)
    return AppContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        cache=cache,
        http=http,
        tenancy=tenancy,
        providers=providers,
        store=store,
        handoff=handoff,
        oauth_flow=OAuthFlow(settings, tenancy, providers, store, handoff, cache),
        tokens=tokens,
        keys=KeyVerifier(tenancy, store),
        jira_details=jira_details,
        jira_finalizer=JiraFinalizer(jira_client, handoff, store, jira_details, tokens),
        owns_redis=redis_client is None,
    )
