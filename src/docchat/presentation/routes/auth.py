"""Login route: exchanges an email for a bearer token."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from loguru import logger

from docchat.config import Settings
from docchat.domain.models import User
from docchat.infrastructure.chat_history_service import ChatHistoryService
from docchat.presentation.auth import issue_token
from docchat.presentation.schemas import LoginRequest, LoginResponse

router = APIRouter(tags=["auth"])


def _resolve_account(hist: ChatHistoryService, settings: Settings, request: LoginRequest) -> User:
    email = request.email.strip().lower()
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    if settings.open_registration:
        return hist.ensure_user_by_email(request.name.strip(), email)

    user = hist.get_user_by_email(email)
    if user is None:
        logger.info("Login refused for unknown account | email={}", email)
        raise HTTPException(
            status_code=401, detail="No account found for this email. Contact an administrator."
        )
    return user


@router.post("/auth/login", response_model=LoginResponse)
async def login(request: LoginRequest, raw_request: Request):
    """Return a token for a known account.

    Unknown emails are registered on the fly only when ``OPEN_REGISTRATION``
    is enabled.
    """
    settings: Settings = raw_request.app.state.settings
    user = _resolve_account(raw_request.app.state.history, settings, request)

    token, expires_at = issue_token(settings, user.id, user.name, user.email or "")
    logger.info("POST /auth/login | user={} expires={}", user.id, expires_at.isoformat())
    return LoginResponse(token=token, user_id=user.id, name=user.name, expires_at=expires_at)
