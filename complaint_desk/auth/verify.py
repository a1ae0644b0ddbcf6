"""
verify.py
---------
Purpose:
    Resolve the calling actor from the bearer session token.

Notes:
    - The sign-in front end issues an HS256 JWT carrying the user's e-mail.
    - The e-mail is looked up in the staff directory; role and department
      come from the directory, never from the token.
    - An invalid token or unknown e-mail yields no actor; the workflow then
      reports Unauthenticated.
"""

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from complaint_desk.config import settings
from complaint_desk.dependencies import get_directory
from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.models.domain.directory_domain import Actor
from complaint_desk.services.complaints.errors import UnauthenticatedError

logger = get_logger(__name__)

_security = HTTPBearer(auto_error=False)


def verify_jwt(token: str) -> dict:
    if not settings.AUTH_JWT_SECRET:
        raise jwt.InvalidTokenError("AUTH_JWT_SECRET is not configured")
    return jwt.decode(
        token,
        settings.AUTH_JWT_SECRET,
        algorithms=[settings.AUTH_JWT_ALGORITHM],
        audience=settings.AUTH_JWT_AUDIENCE,
        options={"verify_exp": True, "require": ["exp", "email"]},
    )


async def resolve_actor(token: str | None, directory) -> Actor | None:
    if not token:
        return None
    try:
        claims = verify_jwt(token)
    except jwt.PyJWTError as e:
        logger.info("Rejected session token", error_type=type(e).__name__)
        return None

    snapshot = await directory.snapshot()
    user = snapshot.get_user_by_email(claims.get("email"))
    if user is None:
        logger.info("Token e-mail not in directory")
        return None
    return Actor.from_user(user)


async def current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
    directory=Depends(get_directory),
) -> Actor | None:
    actor = await resolve_actor(credentials.credentials if credentials else None, directory)
    if actor is not None:
        structlog.contextvars.bind_contextvars(actor_id=actor.user_id)
    return actor


async def require_actor(actor: Actor | None = Depends(current_actor)) -> Actor:
    if actor is None:
        raise UnauthenticatedError("Authentication required")
    return actor
