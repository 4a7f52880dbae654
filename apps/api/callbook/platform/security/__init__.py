from callbook.platform.security.context import ADMIN_ROLE, TELECALLER_ROLE, VALID_ROLES, AuthContext
from callbook.platform.security.errors import AuthorizationError
from callbook.platform.security.policy import (
    ScopeFilter,
    apply_scope,
    authorize_self_or_admin,
    authorize_write,
    is_allowed,
    require_admin,
    scope,
)
from callbook.platform.security.repository import BaseRepository

__all__ = [
    "ADMIN_ROLE",
    "TELECALLER_ROLE",
    "VALID_ROLES",
    "AuthContext",
    "AuthorizationError",
    "BaseRepository",
    "ScopeFilter",
    "apply_scope",
    "authorize_self_or_admin",
    "authorize_write",
    "is_allowed",
    "require_admin",
    "scope",
]
