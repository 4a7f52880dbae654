from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from callbook.core.auth import get_current_user
from callbook.core.database import get_db
from callbook.crm.api import error_response
from callbook.platform.security.context import AuthContext
from callbook.reporting.schemas import UserCallStatsRead
from callbook.users.schemas import (
    ProfileRead,
    ProfileUpdate,
    TelecallerRead,
    UserCreate,
    UserRead,
    UserUpdate,
)
from callbook.users.service import user_service

users_router = APIRouter(prefix="/api/users", tags=["users"])


def _failed(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


@users_router.get("/profile", response_model=ProfileRead)
def get_profile(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ProfileRead | JSONResponse:
    try:
        return user_service.get_profile(db, user)
    except HTTPException as exc:
        return _failed(request, exc, "user_profile_get_failed")


@users_router.put("/profile", response_model=UserRead)
def update_profile(
    request: Request,
    dto: ProfileUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        return user_service.update_profile(db, user, dto)
    except HTTPException as exc:
        return _failed(request, exc, "user_profile_update_failed")


@users_router.get("/telecallers", response_model=list[TelecallerRead])
def list_telecallers(
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[TelecallerRead]:
    return user_service.list_telecallers(db)


@users_router.get("", response_model=list[UserRead])
def list_users(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[UserRead] | JSONResponse:
    try:
        return user_service.list_users(db, user)
    except HTTPException as exc:
        return _failed(request, exc, "user_list_failed")


@users_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        return user_service.create_user(db, user, dto)
    except HTTPException as exc:
        return _failed(request, exc, "user_create_failed")


@users_router.get("/{user_id}/stats", response_model=UserCallStatsRead)
def user_stats(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> UserCallStatsRead | JSONResponse:
    try:
        return user_service.user_stats(db, user, user_id)
    except HTTPException as exc:
        return _failed(request, exc, "user_stats_failed")


@users_router.get("/{user_id}", response_model=UserRead)
def get_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        return user_service.get_user(db, user, user_id)
    except HTTPException as exc:
        return _failed(request, exc, "user_get_failed")


@users_router.put("/{user_id}", response_model=UserRead)
def update_user(
    request: Request,
    user_id: uuid.UUID,
    dto: UserUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        return user_service.update_user(db, user, user_id, dto)
    except HTTPException as exc:
        return _failed(request, exc, "user_update_failed")


@users_router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> Response:
    try:
        user_service.delete_user(db, user, user_id)
    except HTTPException as exc:
        return _failed(request, exc, "user_delete_failed")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
