"""
Environment-driven settings for the juncture backend.

Settings are read once at startup (Settings.from_env()) and passed explicitly to the
components that need them. Nothing else in the package reads os.environ.

Env vars:
- CLOUD_MODE: "true" enables multi-tenant (Cloud) mode; anything else is single-tenant (OSS)
- JUNCTURE_SECRET_KEY: bearer secret accepted by backend-facing routes in OSS mode
- DEFAULT_JIRA_CLIENT_ID / DEFAULT_JIRA_CLIENT_SECRET: OSS Atlassian OAuth app
- DEFAULT_JIRA_SCOPES: comma-separated scopes (offline_access is always appended)
- DEFAULT_JIRA_REDIRECT_URI: callback URI registered with Atlassian
- DEFAULT_JIRA_SITE_REDIRECT_URI: optional frontend base to send users to for finalize
- JUNCTURE_FRONTEND_URL: fallback frontend base for finalize redirects
- DATABASE_URL: SQLAlchemy URL (default sqlite:///./juncture.db)
- REDIS_URL: redis connection string (default redis://localhost:6379/0)
- HTTP_TIMEOUT_SECONDS / REDIS_TIMEOUT_SECONDS: bounded timeouts for outbound calls
- OAUTH_STATE_SINGLE_USE: delete the OAuth state on callback (default true)
- BACKEND_CORS_ORIGINS: comma-separated origins for CORS
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

_logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes")


def _env_first(env: Mapping[str, str], *names: str, default: str = "") -> str:
    """Return the first non-empty environment variable value among names (trimmed)."""
    for name in names:
        val = env.get(name, "")
        if val and val.strip():
            return val.strip()
    return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        _logger.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default


def _normalize_origin(url: str) -> str:
    """
    Reduce a URL to origin-only (scheme://host[:port]) with no trailing slash.
    Logs a warning if a path, query, or fragment was present.
    """
    if not url:
        return ""
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        return url.strip().rstrip("/")
    origin = f"{parsed.scheme}://{parsed.netloc}".rstrip("/")
    if parsed.path and parsed.path not in ("", "/"):
        _logger.warning("Origin '%s' contains a path '%s'; using '%s'.", url, parsed.path, origin)
    return origin


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ProviderAppConfig:
    """Static OAuth application credentials for one provider (single-tenant mode)."""

    client_id: str
    client_secret: str
    scopes: List[str]
    redirect_uri: str
    site_redirect_uri: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Settings:
    """Resolved process configuration."""

    cloud_mode: bool = False
    secret_key: str = ""
    providers: Dict[str, ProviderAppConfig] = field(default_factory=dict)
    frontend_url: str = ""
    database_url: str = "sqlite:///./juncture.db"
    redis_url: str = "redis://localhost:6379/0"
    http_timeout_seconds: float = 20.0
    redis_timeout_seconds: float = 2.0
    oauth_state_single_use: bool = True
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    # PUBLIC_INTERFACE
    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build Settings from the given mapping (defaults to os.environ)."""
        env = os.environ if env is None else env

        jira = ProviderAppConfig(
            client_id=_env_first(env, "DEFAULT_JIRA_CLIENT_ID"),
            client_secret=_env_first(env, "DEFAULT_JIRA_CLIENT_SECRET"),
            scopes=[s.strip() for s in _env_first(env, "DEFAULT_JIRA_SCOPES").split(",") if s.strip()],
            redirect_uri=_env_first(env, "DEFAULT_JIRA_REDIRECT_URI"),
            site_redirect_uri=_env_first(env, "DEFAULT_JIRA_SITE_REDIRECT_URI").rstrip("/"),
        )

        settings = cls(
            cloud_mode=_env_first(env, "CLOUD_MODE").lower() in _TRUTHY,
            secret_key=_env_first(env, "JUNCTURE_SECRET_KEY"),
            providers={"jira": jira},
            frontend_url=_env_first(env, "JUNCTURE_FRONTEND_URL").rstrip("/"),
            database_url=_env_first(env, "DATABASE_URL", default="sqlite:///./juncture.db"),
            redis_url=_env_first(env, "REDIS_URL", default="redis://localhost:6379/0"),
            http_timeout_seconds=_env_float(env, "HTTP_TIMEOUT_SECONDS", 20.0),
            redis_timeout_seconds=_env_float(env, "REDIS_TIMEOUT_SECONDS", 2.0),
            oauth_state_single_use=_env_first(env, "OAUTH_STATE_SINGLE_USE", default="true").lower() in _TRUTHY,
            cors_origins=get_cors_origins(env),
        )
        settings.log_summary()
        return settings

    def log_summary(self) -> None:
        """Log a non-sensitive summary of the effective configuration."""
        _logger.info(
            "Settings loaded: cloud_mode=%s has_secret_key=%s redis_configured=%s frontend_url=%s",
            self.cloud_mode,
            bool(self.secret_key),
            bool(self.redis_url),
            self.frontend_url,
        )
        if self.cloud_mode:
            return
        if not self.secret_key:
            _logger.error("Missing JUNCTURE_SECRET_KEY; backend routes will reject every request.")
        for name, app_cfg in self.providers.items():
            if not app_cfg.is_configured:
                _logger.error(
                    "OAuth app for provider '%s' is incomplete (client_id=%s, client_secret=%s, redirect_uri=%s).",
                    name,
                    bool(app_cfg.client_id),
                    bool(app_cfg.client_secret),
                    bool(app_cfg.redirect_uri),
                )


# PUBLIC_INTERFACE
def get_cors_origins(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Parse BACKEND_CORS_ORIGINS into a list of origins for CORS.

    - Includes JUNCTURE_FRONTEND_URL when set.
    - Defaults to ["http://localhost:3000"] for local development.
    - Never returns "*" because allow_credentials=True cannot be combined with wildcard origins.
    """
    env = os.environ if env is None else env
    raw = env.get("BACKEND_CORS_ORIGINS", "")
    origins = [_normalize_origin(o) for o in raw.split(",") if o.strip()]
    frontend = _normalize_origin(env.get("JUNCTURE_FRONTEND_URL", ""))
    if frontend and frontend not in origins:
        origins.append(frontend)
    if not origins:
        origins = ["http://localhost:3000"]
    return [o for o in origins if o != "*"]
