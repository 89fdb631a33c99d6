from typing import Optional

from fastapi import APIRouter, Depends, Header

from ...broker.errors import ConnectionNotFound
from ...connectors.base.provider import parse_provider
from ...context import AppContext
from ...db.models import Provider
from ..deps import get_context
from ..schemas import (
    AccessTokenResponse,
    ConnectionCredentialsResponse,
    ConnectionLookupRequest,
    ConnectionStatusResponse,
)

router = APIRouter(prefix="/api/backend/connection-info", tags=["Connection Info"])


# PUBLIC_INTERFACE
@router.post(
    "/check-connection-status",
    response_model=ConnectionStatusResponse,
    summary="Whether a connection exists and is usable",
)
def check_connection_status(
    payload: ConnectionLookupRequest,
    authorization: Optional[str] = Header(None),
    ctx: AppContext = Depends(get_context),
):
    provider = parse_provider(payload.provider)
    identity = ctx.keys.verify(authorization)
    connection_id = ctx.store.find_connection_id(payload.external_id, provider, identity.tenant_id)
    if not connection_id:
        return ConnectionStatusResponse(exists=False)
    try:
        details = ctx.store.get_connection_details(connection_id)
    except ConnectionNotFound:
        return ConnectionStatusResponse(exists=False)
    return ConnectionStatusResponse(
        exists=True,
        is_expired=details.is_expired(),
        expires_at=details.expires_at,
        invalid_refresh_token=details.invalid_refresh_token,
    )


# PUBLIC_INTERFACE
@router.post(
    "/get-access-token",
    response_model=AccessTokenResponse,
    summary="Currently valid provider access token",
    description="Returns 403 with needs_reauthorization=true when the end user must reconnect.",
)
def get_access_token(
    payload: ConnectionLookupRequest,
    authorization: Optional[str] = Header(None),
    ctx: AppContext = Depends(get_context),
):
    provider = parse_provider(payload.provider)
    identity, connection_id = ctx.keys.resolve_connection_id(authorization, payload.external_id, provider)
    token = ctx.tokens.get_access_token(connection_id, provider, identity.tenant_id)
    return AccessTokenResponse(access_token=token.access_token, expires_in=token.expires_in)


# PUBLIC_INTERFACE
@router.post(
    "/get-connection-credentials",
    response_model=ConnectionCredentialsResponse,
    summary="Access token plus provider detail",
)
def get_connection_credentials(
    payload: ConnectionLookupRequest,
    authorization: Optional[str] = Header(None),
    ctx: AppContext = Depends(get_context),
):
    provider = parse_provider(payload.provider)
    identity, connection_id = ctx.keys.resolve_connection_id(authorization, payload.external_id, provider)
    token = ctx.tokens.get_access_token(connection_id, provider, identity.tenant_id)
    response = ConnectionCredentialsResponse(
        access_token=token.access_token,
        expires_in=token.expires_in,
        provider=provider.value,
    )
    if provider is Provider.JIRA:
        response.jira_site_id = ctx.jira_details.get(connection_id).jira_site_id
    return response
