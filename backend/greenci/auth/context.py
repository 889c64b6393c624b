"""
RequestContext: who is asking and what they may do.

Built per request by `get_request_context()` in api/deps.py from either an
X-API-Key header or a Bearer JWT.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import HTTPException

from greenci.auth.permissions import Permission
from greenci.auth.roles import Role


@dataclass
class RequestContext:
    subject: str = "anonymous"
    role: Role = Role.VIEWER
    permissions: set[Permission] = field(default_factory=set)
    auth_method: str = "none"  # none | api_key | jwt

    def has_permission(self, perm: Permission) -> bool:
        return perm in self.permissions

    def require_permission(self, perm: Permission) -> None:
        """Raise 403 if the caller lacks the given permission."""
        if not self.has_permission(perm):
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions: requires {perm.value}",
            )

    @property
    def actor(self) -> str:
        return f"{self.role.value}:{self.subject}"
