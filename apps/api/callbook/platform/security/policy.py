"""Role-based visibility and write authorization.

Admins see and may change everything. Telecallers are narrowed to the leads
they created and the calls they placed, and may only write against leads they
own. Every read and write path goes through this module.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.sql import Select

from callbook import audit
from callbook.metrics import observe_access_denied
from callbook.platform.security.context import AuthContext
from callbook.platform.security.errors import AuthorizationError


logger = logging.getLogger("callbook.security")


@dataclass(frozen=True, slots=True)
class ScopeFilter:
    owner_user_id: uuid.UUID | None = None

    @property
    def is_unrestricted(self) -> bool:
        return self.owner_user_id is None


def scope(ctx: AuthContext) -> ScopeFilter:
    if ctx.is_admin:
        return ScopeFilter()
    return ScopeFilter(owner_user_id=ctx.user_id)


def apply_scope(query: Select[Any], owner_column: Any, ctx: AuthContext) -> Select[Any]:
    scope_filter = scope(ctx)
    if scope_filter.is_unrestricted:
        return query
    return query.where(owner_column == scope_filter.owner_user_id)


def is_allowed(ctx: AuthContext, owner_id: uuid.UUID | None) -> bool:
    if ctx.is_admin:
        return True
    return owner_id is not None and owner_id == ctx.user_id


def authorize_write(ctx: AuthContext, resource: str, owner_id: uuid.UUID | None, *, action: str) -> None:
    if is_allowed(ctx, owner_id):
        return
    _emit_denied(ctx, resource=resource, action=action, target_id=owner_id)
    raise AuthorizationError(resource, action)


def authorize_self_or_admin(ctx: AuthContext, target_user_id: uuid.UUID, *, action: str) -> None:
    if ctx.is_admin or ctx.user_id == target_user_id:
        return
    _emit_denied(ctx, resource="user", action=action, target_id=target_user_id)
    raise AuthorizationError("user", action)


def require_admin(ctx: AuthContext, *, resource: str, action: str) -> None:
    if ctx.is_admin:
        return
    _emit_denied(ctx, resource=resource, action=action, target_id=None)
    raise AuthorizationError(resource, action)


def _emit_denied(ctx: AuthContext, *, resource: str, action: str, target_id: uuid.UUID | None) -> None:
    observe_access_denied(resource=resource, action=action)
    logger.warning(
        "access.denied",
        extra={"resource": resource, "action": action, "user_id": str(ctx.user_id)},
    )
    audit.record(
        ctx,
        entity_type="security.access",
        entity_id=str(target_id) if target_id is not None else "-",
        action="access.denied",
        before=None,
        after={"resource": resource, "action": action, "role": ctx.role},
    )
