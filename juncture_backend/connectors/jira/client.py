import logging
import urllib.parse
from typing import Any, Dict, List

import httpx

from ...broker.errors import (
    InvalidGrant,
    RefreshFailed,
    TokenExchangeFailed,
    TransientProviderFailure,
)
from ...db.models import Provider
from ..base.provider import OAuthAppCredentials, OAuthProvider, TokenGrant

LOG = logging.getLogger(__name__)

ATLASSIAN_AUTH = "https://auth.atlassian.com"
ATLASSIAN_API = "https://api.atlassian.com"

OFFLINE_ACCESS_SCOPE = "offline_access"
# Atlassian answers a revoked/rotated-away refresh token with 403 {"error": "invalid_grant"};
# 400/401 carrying the same error code are treated the same way.
INVALID_GRANT_STATUSES = (400, 401, 403)


class JiraOAuthClient(OAuthProvider):
    """
    Atlassian OAuth 2.0 (3LO) client for Jira.

    Handles:
    - Authorize URL construction (audience api.atlassian.com, prompt=consent, offline_access)
    - Authorization code exchange
    - Refresh token grant with invalid_grant detection
    - Accessible resources (sites) discovery for a fresh access token

    Every call goes through the injected httpx.Client, which carries the bounded timeout.
    """

    provider = Provider.JIRA

    def __init__(self, http: httpx.Client):
        self._http = http

    # PUBLIC_INTERFACE
    def authorization_url(self, credentials: OAuthAppCredentials, state: str) -> str:
        scopes = list(credentials.scopes)
        if OFFLINE_ACCESS_SCOPE not in scopes:
            scopes.append(OFFLINE_ACCESS_SCOPE)
        params = {
            "audience": "api.atlassian.com",
            "client_id": credentials.client_id,
            "scope": " ".join(scopes),
            "redirect_uri": credentials.redirect_uri,
            "state": state,
            "response_type": "code",
            "prompt": "consent",
        }
        return f"{ATLASSIAN_AUTH}/authorize?{urllib.parse.urlencode(params, quote_via=urllib.parse.quote)}"

    # PUBLIC_INTERFACE
    def exchange_code(self, credentials: OAuthAppCredentials, code: str) -> TokenGrant:
        data = {
            "grant_type": "authorization_code",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "code": code,
            "redirect_uri": credentials.redirect_uri,
        }
        try:
            resp = self._http.post(f"{ATLASSIAN_AUTH}/oauth/token", json=data)
        except httpx.HTTPError as e:
            LOG.warning("Jira code exchange transport error: %s", e.__class__.__name__)
            raise TokenExchangeFailed("Failed to exchange authorization code for tokens") from e
        if resp.status_code != 200:
            LOG.warning("Jira code exchange failed: %s %s", resp.status_code, _error_name(resp))
            raise TokenExchangeFailed(
                "Failed to exchange authorization code for tokens",
                details={"status": resp.status_code, "error": _error_name(resp)},
            )
        grant = _parse_grant(resp, fallback_refresh_token=None)
        if grant is None:
            raise TokenExchangeFailed("Token endpoint response is missing access_token or refresh_token")
        return grant

    # PUBLIC_INTERFACE
    def refresh(self, credentials: OAuthAppCredentials, refresh_token: str) -> TokenGrant:
        data = {
            "grant_type": "refresh_token",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "refresh_token": refresh_token,
        }
        try:
            resp = self._http.post(f"{ATLASSIAN_AUTH}/oauth/token", json=data)
        except httpx.HTTPError as e:
            LOG.warning("Jira refresh transport error: %s", e.__class__.__name__)
            raise RefreshFailed("Failed to refresh access token") from e
        if resp.status_code in INVALID_GRANT_STATUSES and _error_name(resp) == "invalid_grant":
            raise InvalidGrant("Jira rejected the refresh token")
        if resp.status_code != 200:
            LOG.warning("Jira refresh failed: %s %s", resp.status_code, _error_name(resp))
            raise RefreshFailed(
                "Failed to refresh access token",
                details={"status": resp.status_code, "error": _error_name(resp)},
            )
        grant = _parse_grant(resp, fallback_refresh_token=refresh_token)
        if grant is None:
            raise RefreshFailed("Token endpoint response is missing access_token")
        return grant

    # PUBLIC_INTERFACE
    def list_accessible_sites(self, access_token: str) -> List[Dict[str, Any]]:
        """
        List the Atlassian sites (cloud ids) the access token can reach, as
        [{"site_id": ..., "site_name": ...}].
        """
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        try:
            resp = self._http.get(f"{ATLASSIAN_API}/oauth/token/accessible-resources", headers=headers)
        except httpx.HTTPError as e:
            raise TransientProviderFailure("Failed to fetch Jira sites") from e
        if resp.status_code != 200:
            raise TransientProviderFailure(
                "Failed to fetch Jira sites", details={"status": resp.status_code}
            )
        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, list):
            LOG.warning("Jira accessible-resources returned an unexpected body")
            raise TransientProviderFailure("Unexpected response while fetching Jira sites")
        return [
            {"site_id": site.get("id"), "site_name": site.get("name")}
            for site in body
            if isinstance(site, dict) and site.get("id")
        ]


def _error_name(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return ""
    return str(body.get("error") or "") if isinstance(body, dict) else ""


def _parse_grant(resp: httpx.Response, fallback_refresh_token):
    try:
        tok = resp.json()
    except ValueError:
        return None
    access = tok.get("access_token")
    refresh = tok.get("refresh_token") or fallback_refresh_token
    if not access or not refresh:
        return None
    try:
        expires_in = int(tok.get("expires_in") or 0)
    except (TypeError, ValueError):
        expires_in = 0
    return TokenGrant(access_token=access, refresh_token=refresh, expires_in=expires_in)
