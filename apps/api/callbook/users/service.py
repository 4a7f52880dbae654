from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from callbook import audit
from callbook.core.config import get_settings
from callbook.crm.models import Call, Lead
from callbook.crm.service import to_call_read
from callbook.platform.security.context import TELECALLER_ROLE, AuthContext
from callbook.platform.security.errors import AuthorizationError
from callbook.platform.security.policy import authorize_self_or_admin, require_admin
from callbook.reporting.schemas import UserCallStatsRead
from callbook.reporting.service import reporting_service
from callbook.users.models import User
from callbook.users.schemas import (
    ProfileRead,
    ProfileUpdate,
    TelecallerRead,
    UserCreate,
    UserRead,
    UserUpdate,
)
from callbook.users.security import hash_password, verify_password


logger = logging.getLogger("callbook.users")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _forbidden(exc: AuthorizationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


def _snapshot(user: User) -> dict[str, Any]:
    return UserRead.model_validate(user).model_dump(mode="json")


@dataclass(slots=True)
class UserService:
    entity_type = "users.user"

    def list_users(self, session: Session, ctx: AuthContext) -> list[UserRead]:
        try:
            require_admin(ctx, resource="user", action="list")
        except AuthorizationError as exc:
            raise _forbidden(exc)
        users = session.scalars(select(User).order_by(User.created_at.desc(), User.username.asc())).all()
        return [UserRead.model_validate(user) for user in users]

    def list_telecallers(self, session: Session) -> list[TelecallerRead]:
        users = session.scalars(
            select(User).where(User.role == TELECALLER_ROLE).order_by(User.name.asc(), User.username.asc())
        ).all()
        return [TelecallerRead.model_validate(user) for user in users]

    def get_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserRead:
        try:
            authorize_self_or_admin(ctx, user_id, action="read")
        except AuthorizationError as exc:
            raise _forbidden(exc)
        return UserRead.model_validate(self._get_or_404(session, user_id))

    def create_user(self, session: Session, ctx: AuthContext, dto: UserCreate) -> UserRead:
        try:
            require_admin(ctx, resource="user", action="create")
        except AuthorizationError as exc:
            raise _forbidden(exc)
        self._ensure_unique(session, username=dto.username, email=str(dto.email))

        user = User(
            name=dto.name,
            username=dto.username,
            email=str(dto.email),
            password_hash=hash_password(dto.password),
            role=dto.role,
            phone=dto.phone,
        )
        session.add(user)
        self._commit_or_conflict(session)
        session.refresh(user)

        audit.record(
            ctx,
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="create",
            before=None,
            after=_snapshot(user),
        )
        logger.info("user.created", extra={"user_id": str(user.id)})
        return UserRead.model_validate(user)

    def update_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID, dto: UserUpdate) -> UserRead:
        """Update a user record.

        Users may edit themselves; admins may edit anyone. Only admins may
        change a role. Changing your own password requires the current one,
        an admin resetting someone else's password does not.
        """
        try:
            authorize_self_or_admin(ctx, user_id, action="update")
        except AuthorizationError as exc:
            raise _forbidden(exc)
        user = self._get_or_404(session, user_id)

        changes = dto.model_dump(exclude_unset=True, exclude={"current_password", "new_password"})
        if "role" in changes and changes["role"] is not None and changes["role"] != user.role:
            try:
                require_admin(ctx, resource="user", action="change_role")
            except AuthorizationError as exc:
                raise _forbidden(exc)
        if changes.get("email") is not None and changes["email"] != user.email:
            self._ensure_unique(session, email=str(changes["email"]), exclude_id=user.id)
        if dto.new_password is not None and ctx.user_id == user.id:
            self._check_current_password(user, dto.current_password)

        before = _snapshot(user)
        for field_name, value in changes.items():
            if value is not None:
                setattr(user, field_name, str(value) if field_name == "email" else value)
        if dto.new_password is not None:
            user.password_hash = hash_password(dto.new_password)
        user.updated_at = utcnow()
        self._commit_or_conflict(session)
        session.refresh(user)

        after = _snapshot(user)
        audit.record(
            ctx,
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="update",
            before=before,
            after={**after, "password_changed": dto.new_password is not None},
        )
        return UserRead.model_validate(user)

    def delete_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> None:
        try:
            require_admin(ctx, resource="user", action="delete")
        except AuthorizationError as exc:
            raise _forbidden(exc)
        if ctx.user_id == user_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cannot delete your own account")
        user = self._get_or_404(session, user_id)

        owned_leads = session.scalar(
            select(func.count(Lead.id)).where(or_(Lead.created_by == user.id, Lead.last_modified_by == user.id))
        ) or 0
        placed_calls = session.scalar(select(func.count(Call.id)).where(Call.user_id == user.id)) or 0
        if owned_leads or placed_calls:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"user is still referenced by {owned_leads} leads and {placed_calls} calls",
            )

        before = _snapshot(user)
        session.delete(user)
        session.commit()
        audit.record(
            ctx,
            entity_type=self.entity_type,
            entity_id=str(user_id),
            action="delete",
            before=before,
            after=None,
        )
        logger.info("user.deleted", extra={"user_id": str(user_id)})

    def user_stats(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserCallStatsRead:
        try:
            authorize_self_or_admin(ctx, user_id, action="read_stats")
        except AuthorizationError as exc:
            raise _forbidden(exc)
        self._get_or_404(session, user_id)
        return reporting_service.user_call_stats(session, user_id)

    def get_profile(self, session: Session, ctx: AuthContext) -> ProfileRead:
        user = self._get_or_404(session, ctx.user_id)
        recent = session.scalars(
            select(Call)
            .where(Call.user_id == user.id)
            .order_by(Call.created_at.desc(), Call.id.asc())
            .limit(get_settings().recent_activity_limit)
        ).all()
        return ProfileRead(
            user=UserRead.model_validate(user),
            stats=reporting_service.user_call_stats(session, user.id),
            recent_activity=[to_call_read(call) for call in recent],
        )

    def update_profile(self, session: Session, ctx: AuthContext, dto: ProfileUpdate) -> UserRead:
        user = self._get_or_404(session, ctx.user_id)
        if dto.new_password is not None:
            self._check_current_password(user, dto.current_password)

        changes = dto.model_dump(exclude_unset=True, exclude={"current_password", "new_password"})
        if changes.get("email") is not None and changes["email"] != user.email:
            self._ensure_unique(session, email=str(changes["email"]), exclude_id=user.id)

        before = _snapshot(user)
        for field_name, value in changes.items():
            if value is not None:
                setattr(user, field_name, str(value) if field_name == "email" else value)
        if dto.new_password is not None:
            user.password_hash = hash_password(dto.new_password)
        user.last_active_at = utcnow()
        user.updated_at = utcnow()
        self._commit_or_conflict(session)
        session.refresh(user)

        audit.record(
            ctx,
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="update_profile",
            before=before,
            after={**_snapshot(user), "password_changed": dto.new_password is not None},
        )
        return UserRead.model_validate(user)

    @staticmethod
    def _check_current_password(user: User, current_password: str | None) -> None:
        if not current_password:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="current_password is required to set a new password",
            )
        if not verify_password(current_password, user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="current password is incorrect")

    @staticmethod
    def _ensure_unique(
        session: Session,
        *,
        username: str | None = None,
        email: str | None = None,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        clauses = []
        if username is not None:
            clauses.append(User.username == username)
        if email is not None:
            clauses.append(User.email == email)
        stmt = select(User.id).where(or_(*clauses))
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if session.scalar(stmt.limit(1)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="username or email already in use")

    @staticmethod
    def _commit_or_conflict(session: Session) -> None:
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="username or email already in use")

    @staticmethod
    def _get_or_404(session: Session, user_id: uuid.UUID) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
        return user


user_service = UserService()
