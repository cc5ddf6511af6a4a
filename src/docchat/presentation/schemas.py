"""HTTP request/response schemas (Pydantic models) for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docchat.domain.models import ChatTurn, Project, ResponseStyle

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: str
    name: str = Field(default="", description="Display name for self-registered accounts")


class LoginResponse(BaseModel):
    token: str
    user_id: str
    name: str
    expires_at: datetime


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    name: str = ""
    description: str | None = None


class ProjectResponse(BaseModel):
    id: str
    name: str
    description: str | None
    created_at: str
    updated_at: str
    message_count: int = 0

    @classmethod
    def from_project(cls, project: Project, message_count: int = 0) -> ProjectResponse:
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            created_at=project.created_at,
            updated_at=project.updated_at,
            message_count=message_count,
        )


# ---------------------------------------------------------------------------
# Chat stream
# ---------------------------------------------------------------------------


class ChatStreamRequest(BaseModel):
    """Request body for POST /projects/{project_id}/chat/stream.

    Uses the camelCase keys the browser client sends.  ``message`` and
    ``sessionId`` default to empty so a missing value is reported as 400
    by the use case rather than as a schema error.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    session_id: str = Field(default="", alias="sessionId")
    context_style: ResponseStyle = Field(default=ResponseStyle.DETAILED, alias="contextStyle")
    images: list[str] = Field(default_factory=list, description="Image URLs attached to the turn")


# ---------------------------------------------------------------------------
# Direct search
# ---------------------------------------------------------------------------


class QueryRequest(BaseModel):
    query: str = ""


class QueryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    results: list[dict[str, Any]]
    total_results: int = Field(alias="totalResults")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class EditRecordResponse(BaseModel):
    content: str
    edited_at: datetime


class MessageResponse(BaseModel):
    """A single persisted turn."""

    id: str
    project_id: str | None
    role: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    edit_history: list[EditRecordResponse] = Field(default_factory=list)
    is_deleted: bool = False
    deleted_at: datetime | None = None
    last_edited_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_turn(cls, turn: ChatTurn) -> MessageResponse:
        return cls(
            id=turn.id,
            project_id=turn.project_id,
            role=turn.role,
            content=turn.content,
            metadata=turn.metadata,
            edit_history=[
                EditRecordResponse(content=e.content, edited_at=e.edited_at)
                for e in turn.edit_history
            ],
            is_deleted=turn.is_deleted,
            deleted_at=turn.deleted_at,
            last_edited_at=turn.last_edited_at,
            created_at=turn.created_at,
        )


class MessageUpdate(BaseModel):
    """Request body for PATCH /messages/{message_id}."""

    content: str = ""
    role: str | None = None
