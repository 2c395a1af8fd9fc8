from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from leadcrm.security.roles import SUPERADMIN, resolve_primary_role


@dataclass(slots=True)
class AuthContext:
    """Authorization context for the requesting user, resolved once per request."""

    user_id: uuid.UUID
    name: str | None = None
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    manager_id: uuid.UUID | None = None
    spv_id: uuid.UUID | None = None
    correlation_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    _cache: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def primary_role(self) -> str | None:
        return resolve_primary_role(self.roles)

    @property
    def is_super_admin(self) -> bool:
        return self.primary_role == SUPERADMIN

    def has_role(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)
