from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, status
from jose import JWTError, jwt
from sqlalchemy.orm import Session
from starlette.requests import Request

from callbook.context import get_correlation_id
from callbook.core.config import get_settings
from callbook.core.database import get_db
from callbook.platform.security.context import AuthContext
from callbook.users.models import User


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "", 1) if auth_header.startswith("Bearer ") else ""


def decode_subject(token: str) -> uuid.UUID | None:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None


def create_access_token(user_id: uuid.UUID, **claims: object) -> str:
    settings = get_settings()
    return jwt.encode({**claims, "sub": str(user_id)}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> AuthContext:
    token = bearer_token(request)
    if not token:
        raise _unauthorized("missing bearer token")

    user_id = decode_subject(token)
    if user_id is None:
        raise _unauthorized("invalid token")

    user = db.get(User, user_id)
    if user is None:
        raise _unauthorized("unknown user")

    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = str(user.id)
    return AuthContext(user_id=user.id, role=user.role, correlation_id=get_correlation_id())
