from __future__ import annotations


class AuthorizationError(Exception):
    """Raised when the access policy denies an operation."""

    def __init__(self, resource: str, action: str, message: str | None = None) -> None:
        self.resource = resource
        self.action = action
        super().__init__(message or f"Not authorized to {action} {resource}")
