"""Domain entities and value objects.

These are the core data structures of the document chat domain,
independent of any infrastructure or framework concerns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(UTC)


class ResponseStyle(StrEnum):
    """Register the caller asks the model to answer in."""

    CONCISE = "concise"
    DETAILED = "detailed"
    TECHNICAL = "technical"


# ---------------------------------------------------------------------------
# Persisted entities
# ---------------------------------------------------------------------------


@dataclass
class User:
    id: str
    name: str
    email: str | None
    created_at: str


@dataclass
class Project:
    id: str
    user_id: str
    name: str
    description: str | None
    created_at: str
    updated_at: str


@dataclass
class EditRecord:
    """A previous version of a turn's content."""

    content: str
    edited_at: datetime


@dataclass
class ChatTurn:
    """One user or assistant utterance within a project conversation.

    A soft-deleted turn keeps its content so it can be restored, but it is
    never fed back to the model as conversation history.
    """

    id: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=utcnow)
    project_id: str | None = None
    edit_history: list[EditRecord] = field(default_factory=list)
    is_deleted: bool = False
    deleted_at: datetime | None = None
    last_edited_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@dataclass
class ScoredNeighbor:
    """Raw hit from a nearest-neighbour lookup (higher score = closer)."""

    id: str
    score: float
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


class RetrievedPassage(BaseModel):
    """A candidate grounding passage, alive for the duration of one request.

    Serialises with the camelCase keys the chat client expects
    (``pageContent``, ``relevanceScore``).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str = "Document"
    page_content: str = Field(alias="pageContent")
    score: float | None = Field(default=None, alias="relevanceScore")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Requests and prompt messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionRequest:
    """One inbound chat turn, already authenticated."""

    project_id: str
    user_id: str
    message: str
    session_id: str
    context_style: ResponseStyle = ResponseStyle.DETAILED
    images: tuple[str, ...] = ()
    received_at: datetime = field(default_factory=utcnow)


class PromptMessage(BaseModel):
    """A single role-tagged message sent to the language model."""

    role: Literal["system", "user", "assistant"] = Field(
        description="Message role: 'system', 'user' or 'assistant'"
    )
    content: str = Field(description="Message content")
    images: list[str] = Field(default_factory=list, description="Image URLs (user turns only)")


# ---------------------------------------------------------------------------
# Stream events (wire protocol)
# ---------------------------------------------------------------------------


class _StreamEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str = ""
    metadata: dict[str, Any] | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class SourcesEvent(_StreamEventBase):
    """JSON-encoded array of passages; always precedes any text."""

    type: Literal["sources"] = "sources"

    @classmethod
    def from_passages(cls, passages: list[RetrievedPassage]) -> SourcesEvent:
        return cls(content=TypeAdapter(list[RetrievedPassage]).dump_json(
            passages, by_alias=True, exclude_none=True
        ).decode())

    def passages(self) -> list[RetrievedPassage]:
        return TypeAdapter(list[RetrievedPassage]).validate_json(self.content)


class TextEvent(_StreamEventBase):
    type: Literal["text"] = "text"


class ImageEvent(_StreamEventBase):
    """Reserved for image output; clients observe and ignore it for now."""

    type: Literal["image"] = "image"


class DoneEvent(_StreamEventBase):
    type: Literal["done"] = "done"


class ErrorEvent(_StreamEventBase):
    type: Literal["error"] = "error"


StreamEvent = Annotated[
    SourcesEvent | TextEvent | ImageEvent | DoneEvent | ErrorEvent,
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def parse_stream_event(raw: str | bytes) -> StreamEvent:
    """Parse one JSON-encoded event. Raises ``pydantic.ValidationError`` on bad input."""
    return stream_event_adapter.validate_json(raw)
