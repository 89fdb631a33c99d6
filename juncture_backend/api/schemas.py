from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# PUBLIC_INTERFACE
class AuthorizationUriRequest(BaseModel):
    """Body for starting an OAuth flow."""
    provider: str = Field(..., description="Lowercase provider name, e.g. 'jira'")
    external_id: str = Field(..., description="Caller-defined identity the connection belongs to")
    juncture_public_key: Optional[str] = Field(
        None, description="Tenant public key (multi-tenant mode); the X-Juncture-Public-Key header wins"
    )


# PUBLIC_INTERFACE
class AuthorizationUriResponse(BaseModel):
    authorization_uri: str = Field(..., description="Provider authorize URL to send the end user to")


# PUBLIC_INTERFACE
class ConnectionCodeResponse(BaseModel):
    """Returned inline by the callback when no finalize frontend is configured."""
    connection_code: str
    provider: str


# PUBLIC_INTERFACE
class JiraSite(BaseModel):
    site_id: str
    site_name: Optional[str] = None


# PUBLIC_INTERFACE
class JiraSitesResponse(BaseModel):
    sites: List[JiraSite]


# PUBLIC_INTERFACE
class CreateJiraConnectionRequest(BaseModel):
    connection_code: str = Field(..., description="Handoff code from the callback redirect")
    jira_site_id: str = Field(..., description="Atlassian cloud id chosen by the end user")
    selected_jira_project_id: Optional[str] = Field(None, description="Optional initial project selection")


# PUBLIC_INTERFACE
class CreateJiraConnectionResponse(BaseModel):
    connection_id: str
    created: bool = Field(..., description="False when an existing connection was re-authorized")
    jira_site_id: str


# PUBLIC_INTERFACE
class ConnectionLookupRequest(BaseModel):
    """Identity of a connection for backend-facing routes."""
    external_id: str
    provider: str


# PUBLIC_INTERFACE
class ConnectionStatusResponse(BaseModel):
    exists: bool
    is_expired: bool = False
    expires_at: Optional[datetime] = None
    invalid_refresh_token: Optional[bool] = None


# PUBLIC_INTERFACE
class AccessTokenResponse(BaseModel):
    access_token: str
    expires_in: int = Field(..., description="Seconds the token stays valid in the cache")


# PUBLIC_INTERFACE
class ConnectionCredentialsResponse(AccessTokenResponse):
    """Access token plus the provider detail needed to call the provider API."""
    provider: str
    jira_site_id: Optional[str] = None


# PUBLIC_INTERFACE
class SelectJiraProjectRequest(BaseModel):
    external_id: str
    jira_project_id: str


# PUBLIC_INTERFACE
class SelectedJiraProjectResponse(BaseModel):
    jira_site_id: str
    selected_jira_project_id: Optional[str] = None
