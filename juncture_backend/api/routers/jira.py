from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from ...broker.errors import InvalidInput
from ...context import AppContext
from ...db.models import Provider
from ..deps import get_context
from ..schemas import SelectedJiraProjectResponse, SelectJiraProjectRequest

router = APIRouter(prefix="/api/backend/jira", tags=["Jira"])


# PUBLIC_INTERFACE
@router.post(
    "/select-project",
    response_model=SelectedJiraProjectResponse,
    summary="Select the Jira project for a connection",
)
def select_project(
    payload: SelectJiraProjectRequest,
    authorization: Optional[str] = Header(None),
    ctx: AppContext = Depends(get_context),
):
    _, connection_id = ctx.keys.resolve_connection_id(authorization, payload.external_id, Provider.JIRA)
    details = ctx.jira_details.select_project(connection_id, payload.jira_project_id)
    return SelectedJiraProjectResponse(
        jira_site_id=details.jira_site_id,
        selected_jira_project_id=details.selected_jira_project_id,
    )


# PUBLIC_INTERFACE
@router.get(
    "/get-selected-project-id",
    response_model=SelectedJiraProjectResponse,
    summary="Selected Jira project for a connection",
)
def get_selected_project_id(
    external_id: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    ctx: AppContext = Depends(get_context),
):
    if not external_id:
        raise InvalidInput("Missing external_id")
    _, connection_id = ctx.keys.resolve_connection_id(authorization, external_id, Provider.JIRA)
    details = ctx.jira_details.get(connection_id)
    return SelectedJiraProjectResponse(
        jira_site_id=details.jira_site_id,
        selected_jira_project_id=details.selected_jira_project_id,
    )
