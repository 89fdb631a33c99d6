from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...context import AppContext
from ..deps import get_context
from ..schemas import (
    CreateJiraConnectionRequest,
    CreateJiraConnectionResponse,
    JiraSite,
    JiraSitesResponse,
)

router = APIRouter(prefix="/api/frontend/finalize-connection/jira", tags=["Finalize"])


# PUBLIC_INTERFACE
@router.get(
    "/fetch-available-sites",
    response_model=JiraSitesResponse,
    summary="List Jira sites for a connection code",
    description="Does not consume the code.",
)
def fetch_available_sites(
    connection_code: Optional[str] = Query(None),
    ctx: AppContext = Depends(get_context),
):
    sites = ctx.jira_finalizer.fetch_available_sites(connection_code)
    return JiraSitesResponse(sites=[JiraSite(**s) for s in sites])


# PUBLIC_INTERFACE
@router.post(
    "/create-connection",
    response_model=CreateJiraConnectionResponse,
    summary="Commit a Jira connection",
    description="Saves the connection with the chosen site and consumes the connection code.",
)
def create_connection(payload: CreateJiraConnectionRequest, ctx: AppContext = Depends(get_context)):
    finalized = ctx.jira_finalizer.create_connection(
        payload.connection_code, payload.jira_site_id, payload.selected_jira_project_id
    )
    return CreateJiraConnectionResponse(
        connection_id=finalized.connection_id,
        created=finalized.created,
        jira_site_id=finalized.jira.jira_site_id,
    )
