import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import RedirectResponse

from ...broker.keys import pick_public_key
from ...connectors.base.provider import parse_provider
from ...context import AppContext
from ..deps import get_context
from ..schemas import AuthorizationUriRequest, AuthorizationUriResponse, ConnectionCodeResponse

LOG = logging.getLogger(__name__)

router = APIRouter(prefix="/api/frontend/oauth", tags=["OAuth"])


# PUBLIC_INTERFACE
@router.post(
    "/get-authorization-uri",
    response_model=AuthorizationUriResponse,
    summary="Start an OAuth flow",
    description="Returns the provider authorize URL for (provider, external_id). "
                "In multi-tenant mode the tenant public key is required.",
)
def get_authorization_uri(
    payload: AuthorizationUriRequest,
    x_juncture_public_key: Optional[str] = Header(None, alias="X-Juncture-Public-Key"),
    ctx: AppContext = Depends(get_context),
):
    provider = parse_provider(payload.provider)
    public_key = pick_public_key(x_juncture_public_key, payload.juncture_public_key)
    url = ctx.oauth_flow.initiate(provider, payload.external_id, public_key=public_key)
    return AuthorizationUriResponse(authorization_uri=url)


# PUBLIC_INTERFACE
@router.get(
    "/authorization-callback/{provider}",
    summary="OAuth redirect target",
    description="Validates state, exchanges the code and redirects to the finalize page with a connection code. "
                "Returns the code as JSON when no finalize frontend is configured.",
    responses={302: {"description": "Redirect to the finalize page"}, 200: {"model": ConnectionCodeResponse}},
)
def authorization_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    ctx: AppContext = Depends(get_context),
):
    outcome = ctx.oauth_flow.callback(parse_provider(provider), code, state, error=error)
    if outcome.redirect_url:
        return RedirectResponse(outcome.redirect_url, status_code=302)
    return ConnectionCodeResponse(connection_code=outcome.connection_code, provider=outcome.provider.value)
