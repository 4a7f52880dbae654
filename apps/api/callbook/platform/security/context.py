from __future__ import annotations

import uuid
from dataclasses import dataclass

ADMIN_ROLE = "admin"
TELECALLER_ROLE = "telecaller"
VALID_ROLES = (ADMIN_ROLE, TELECALLER_ROLE)


@dataclass(slots=True)
class AuthContext:
    """Resolved caller identity handed to every service call."""

    user_id: uuid.UUID
    role: str
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE
