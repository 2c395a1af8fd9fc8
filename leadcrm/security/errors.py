from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for permission and hierarchy failures."""


class HierarchyViolationError(AuthorizationError):
    """Raised when a record or user sits outside the actor's team hierarchy."""

    def __init__(self, resource: str, action: str, message: str | None = None) -> None:
        self.resource = resource
        self.action = action
        super().__init__(message or f"'{action}' on '{resource}' is outside your hierarchy")
