"""
Caller capabilities: resolved once per request, passed into every engine call.

The identity collaborator tells us who the caller is (user id, role,
department). This module turns that into an explicit ``CallerContext``
holding a frozen capability set; engine services never look at roles or
request globals directly.

Usage:
    from app.services.capabilities import Capability, caller_for_role

    caller = caller_for_role("u-1", "leader", department_code="FIN")
    if caller.can(Capability.CAN_EDIT_FULL):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from app.core.exceptions import PermissionDenied


class Capability(str, Enum):
    CAN_EDIT_FULL = "can_edit_full"
    CAN_UPDATE_STATUS = "can_update_status"
    CAN_OVERRIDE_LOCK = "can_override_lock"
    CAN_APPROVE_DROP = "can_approve_drop"
    CAN_GRADE = "can_grade"


ROLE_ADMIN = "admin"
ROLE_LEADER = "leader"
ROLE_DEPT_HEAD = "dept_head"
ROLE_STAFF = "staff"
ROLE_EXECUTIVE = "executive"

ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    ROLE_ADMIN: frozenset(Capability),
    ROLE_LEADER: frozenset({Capability.CAN_EDIT_FULL, Capability.CAN_UPDATE_STATUS}),
    ROLE_DEPT_HEAD: frozenset({Capability.CAN_EDIT_FULL, Capability.CAN_UPDATE_STATUS}),
    ROLE_STAFF: frozenset({Capability.CAN_UPDATE_STATUS}),
    ROLE_EXECUTIVE: frozenset({Capability.CAN_APPROVE_DROP}),
}

# Executives review but never edit plan fields.
READ_ONLY_ROLES = {ROLE_EXECUTIVE}


@dataclass(frozen=True)
class CallerContext:
    """Who is calling and what they may do. Immutable for the request."""

    user_id: str | None
    role: str
    department_code: str | None = None
    capabilities: frozenset[Capability] = field(default_factory=frozenset)
    read_only: bool = False

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def is_admin(self) -> bool:
        """Admin-only affordances (date override) hang off the lock-override capability."""
        return self.can(Capability.CAN_OVERRIDE_LOCK) and not self.read_only

    @property
    def actor(self) -> str:
        return self.user_id or "system"

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "department_code": self.department_code,
            "capabilities": sorted(c.value for c in self.capabilities),
            "read_only": self.read_only,
        }


def caller_for_role(
    user_id: str | None,
    role: str | None,
    *,
    department_code: str | None = None,
    extra: frozenset[Capability] | set[Capability] | None = None,
) -> CallerContext:
    """Build a CallerContext from a role name. Unknown roles get no capability."""
    role = (role or "").strip().lower()
    caps = set(ROLE_CAPABILITIES.get(role, frozenset()))
    if extra:
        caps.update(extra)
    return CallerContext(
        user_id=user_id,
        role=role,
        department_code=department_code,
        capabilities=frozenset(caps),
        read_only=role in READ_ONLY_ROLES,
    )


def require_capability(caller: CallerContext, capability: Capability, action: str) -> None:
    """Assert the caller holds *capability*; raise PermissionDenied if not."""
    if not caller.can(capability):
        raise PermissionDenied(caller.user_id, action, f"missing {capability.value}")


def require_admin(caller: CallerContext, action: str) -> None:
    if not caller.is_admin:
        raise PermissionDenied(caller.user_id, action, "administrators only")


def require_department(caller: CallerContext, department_code: str, action: str) -> None:
    """Non-admin callers bound to a department only act on that department's plans."""
    if caller.is_admin or not caller.department_code:
        return
    if caller.department_code != department_code:
        raise PermissionDenied(
            caller.user_id, action,
            f"plan belongs to department {department_code}, caller to {caller.department_code}",
        )
