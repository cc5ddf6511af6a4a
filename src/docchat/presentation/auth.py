"""Bearer-token authentication for the API.

Tokens are HS256 JWTs signed with ``JWT_SECRET``; the ``sub`` claim is the
user id that owns projects.  With ``AUTH_ENABLED=false`` every request is
served as ``DEV_USER``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import HTTPException, Request
from loguru import logger

from docchat.application.exceptions import AuthenticationError
from docchat.config import Settings

ALGORITHM = "HS256"


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    name: str
    email: str

    @classmethod
    def from_claims(cls, claims: dict) -> AuthenticatedUser:
        return cls(user_id=claims["sub"], name=claims.get("name", ""), email=claims.get("email", ""))


DEV_USER = AuthenticatedUser(user_id="dev-user", name="Dev User", email="dev@docchat.local")


def issue_token(settings: Settings, user_id: str, name: str, email: str) -> tuple[str, datetime]:
    """Sign a token for the user; returns it with its expiry time."""
    issued_at = datetime.now(UTC)
    expires_at = issued_at + timedelta(hours=settings.jwt_expiry_hours)
    claims = {"sub": user_id, "name": name, "email": email, "iat": issued_at, "exp": expires_at}
    return jwt.encode(claims, settings.jwt_secret, algorithm=ALGORITHM), expires_at


def verify_token(settings: Settings, token: str) -> AuthenticatedUser:
    """Check signature and expiry.

    Raises:
        AuthenticationError: If the token is expired, tampered with, or has no subject.
    """
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as exc:
        logger.warning("Rejected JWT | reason={}", exc)
        raise AuthenticationError("Invalid token")
    return AuthenticatedUser.from_claims(claims)


def _bearer_token(header: str) -> str:
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Unauthorized")
    return token.strip()


async def get_current_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency resolving the caller; failures become 401."""
    settings: Settings = request.app.state.settings
    if not settings.auth_enabled:
        return DEV_USER

    try:
        return verify_token(settings, _bearer_token(request.headers.get("Authorization", "")))
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=401, detail=str(exc), headers={"WWW-Authenticate": "Bearer"}
        )
