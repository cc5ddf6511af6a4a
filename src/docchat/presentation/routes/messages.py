"""Message routes: fetch, edit, delete, and restore persisted turns."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger

from docchat.domain.models import ChatTurn
from docchat.infrastructure.chat_history_service import ChatHistoryService
from docchat.presentation.auth import AuthenticatedUser, get_current_user
from docchat.presentation.schemas import MessageResponse, MessageUpdate

router = APIRouter(tags=["messages"])


def _owned_turn(hist: ChatHistoryService, message_id: str, user_id: str) -> ChatTurn:
    turn = hist.get_owned_turn(message_id, user_id)
    if not turn:
        raise HTTPException(status_code=404, detail="Message not found")
    return turn


@router.get("/messages/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: str,
    raw_request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    hist: ChatHistoryService = raw_request.app.state.history
    return MessageResponse.from_turn(_owned_turn(hist, message_id, current_user.user_id))


@router.patch("/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: str,
    request: MessageUpdate,
    raw_request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Replace a turn's content; the previous version is kept in its edit history."""
    hist: ChatHistoryService = raw_request.app.state.history
    turn = _owned_turn(hist, message_id, current_user.user_id)

    content = request.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Content is required")
    if request.role is not None and request.role != turn.role:
        raise HTTPException(status_code=400, detail="Cannot change message role")

    updated = hist.update_turn_content(message_id, content)
    logger.info("PATCH /messages/{} | user={} edits={}", message_id, current_user.user_id, len(updated.edit_history))
    return MessageResponse.from_turn(updated)


@router.delete("/messages/{message_id}")
async def delete_message(
    message_id: str,
    raw_request: Request,
    permanent: bool = False,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Soft-delete a turn, or remove it for good with ``?permanent=true``."""
    hist: ChatHistoryService = raw_request.app.state.history
    _owned_turn(hist, message_id, current_user.user_id)

    if permanent:
        hist.delete_turn(message_id)
        logger.info("DELETE /messages/{} permanent | user={}", message_id, current_user.user_id)
        return {"success": True, "message": "Message permanently deleted"}

    turn = hist.soft_delete_turn(message_id)
    logger.info("DELETE /messages/{} | user={}", message_id, current_user.user_id)
    return {
        "success": True,
        "message": "Message deleted",
        "data": MessageResponse.from_turn(turn).model_dump(mode="json"),
    }


@router.post("/messages/{message_id}/restore", response_model=MessageResponse)
async def restore_message(
    message_id: str,
    raw_request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Undo a soft delete. Only deleted turns can be restored."""
    hist: ChatHistoryService = raw_request.app.state.history
    turn = hist.get_owned_turn(message_id, current_user.user_id)
    if not turn or not turn.is_deleted:
        raise HTTPException(status_code=404, detail="Deleted message not found")

    restored = hist.restore_turn(message_id)
    logger.info("POST /messages/{}/restore | user={}", message_id, current_user.user_id)
    return MessageResponse.from_turn(restored)
