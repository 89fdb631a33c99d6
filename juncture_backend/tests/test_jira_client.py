import httpx
import pytest

from juncture_backend.broker.errors import InvalidGrant, RefreshFailed, TokenExchangeFailed, TransientProviderFailure
from juncture_backend.connectors.base.provider import OAuthAppCredentials
from juncture_backend.connectors.jira.client import JiraOAuthClient

TOKEN_URL = "https://auth.atlassian.com/oauth/token"
CREDS = OAuthAppCredentials(
    client_id="cid",
    client_secret="secret",
    scopes=["read:jira-work", "offline_access"],
    redirect_uri="http://localhost:3001/cb",
)


@pytest.fixture
def jira():
    with httpx.Client(timeout=5.0) as http:
        yield JiraOAuthClient(http)


def test_authorize_url_does_not_duplicate_offline_access(jira):
    url = jira.authorization_url(CREDS, "state-1")
    assert url.count("offline_access") == 1
    assert "scope=read%3Ajira-work%20offline_access" in url
    assert "state=state-1" in url


def test_exchange_code_parses_grant(jira, atlassian):
    atlassian.post(TOKEN_URL).mock(return_value=httpx.Response(
        200, json={"access_token": "a", "refresh_token": "r", "expires_in": 3600, "scope": "x"}
    ))
    grant = jira.exchange_code(CREDS, "code-1")
    assert (grant.access_token, grant.refresh_token, grant.expires_in) == ("a", "r", 3600)


def test_exchange_code_without_refresh_token_fails(jira, atlassian):
    atlassian.post(TOKEN_URL).mock(return_value=httpx.Response(200, json={"access_token": "a", "expires_in": 3600}))
    with pytest.raises(TokenExchangeFailed):
        jira.exchange_code(CREDS, "code-1")


def test_exchange_code_network_error(jira, atlassian):
    atlassian.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("down"))
    with pytest.raises(TokenExchangeFailed):
        jira.exchange_code(CREDS, "code-1")


def test_refresh_keeps_old_refresh_token_when_not_rotated(jira, atlassian):
    atlassian.post(TOKEN_URL).mock(return_value=httpx.Response(200, json={"access_token": "a2", "expires_in": 3600}))
    assert jira.refresh(CREDS, "r-old").refresh_token == "r-old"


@pytest.mark.parametrize("status", [400, 401, 403])
def test_refresh_invalid_grant(jira, atlassian, status):
    atlassian.post(TOKEN_URL).mock(return_value=httpx.Response(status, json={"error": "invalid_grant"}))
    with pytest.raises(InvalidGrant):
        jira.refresh(CREDS, "r")


def test_refresh_invalid_grant_on_server_error_is_transient(jira, atlassian):
    atlassian.post(TOKEN_URL).mock(return_value=httpx.Response(500, json={"error": "invalid_grant"}))
    with pytest.raises(RefreshFailed):
        jira.refresh(CREDS, "r")


def test_list_sites_error(jira, atlassian):
    atlassian.get("https://api.atlassian.com/oauth/token/accessible-resources").mock(
        return_value=httpx.Response(401)
    )
    with pytest.raises(TransientProviderFailure):
        jira.list_accessible_sites("expired")


@pytest.mark.parametrize("response", [
    httpx.Response(200, text="<html>maintenance</html>"),
    httpx.Response(200, json={"id": "site-1", "name": "Acme"}),
])
def test_list_sites_unexpected_body_is_transient(jira, atlassian, response):
    atlassian.get("https://api.atlassian.com/oauth/token/accessible-resources").mock(return_value=response)
    with pytest.raises(TransientProviderFailure):
        jira.list_accessible_sites("token")


def test_list_sites_skips_entries_without_id(jira, atlassian):
    atlassian.get("https://api.atlassian.com/oauth/token/accessible-resources").mock(
        return_value=httpx.Response(200, json=[{"id": "site-1", "name": "Acme"}, {"name": "no id"}, "junk"])
    )
    assert jira.list_accessible_sites("token") == [{"site_id": "site-1", "site_name": "Acme"}]
