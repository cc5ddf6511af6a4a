"""Project routes: create, list, fetch, and message listing."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger

from docchat.infrastructure.chat_history_service import ChatHistoryService
from docchat.presentation.auth import AuthenticatedUser, get_current_user
from docchat.presentation.schemas import MessageResponse, ProjectCreate, ProjectResponse

router = APIRouter(tags=["projects"])


def require_owned_project(hist: ChatHistoryService, project_id: str, user_id: str) -> None:
    """Raise 403 unless *user_id* owns *project_id*."""
    if not hist.is_project_owner(project_id, user_id):
        raise HTTPException(status_code=403, detail="Project not found or access denied")


@router.post("/projects", response_model=ProjectResponse, status_code=201)
async def create_project(
    request: ProjectCreate,
    raw_request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Create a project owned by the caller."""
    hist: ChatHistoryService = raw_request.app.state.history

    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Project name is required")

    description = request.description.strip() if request.description else None
    project = hist.create_project(current_user.user_id, name, description or None)
    logger.info("POST /projects | user={} project={}", current_user.user_id, project.id)
    return ProjectResponse.from_project(project)


@router.get("/projects", response_model=list[ProjectResponse])
async def list_projects(
    raw_request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """List the caller's projects, most recently active first."""
    hist: ChatHistoryService = raw_request.app.state.history
    return [
        ProjectResponse.from_project(project, count)
        for project, count in hist.list_user_projects(current_user.user_id)
    ]


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    raw_request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    hist: ChatHistoryService = raw_request.app.state.history
    require_owned_project(hist, project_id, current_user.user_id)
    project = hist.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return ProjectResponse.from_project(project)


@router.get("/projects/{project_id}/messages", response_model=list[MessageResponse])
async def list_project_messages(
    project_id: str,
    raw_request: Request,
    include_deleted: bool = False,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Get a project's conversation, ordered chronologically."""
    hist: ChatHistoryService = raw_request.app.state.history
    require_owned_project(hist, project_id, current_user.user_id)
    turns = hist.get_project_turns(project_id, include_deleted=include_deleted)
    return [MessageResponse.from_turn(t) for t in turns]
