"""
reimbursement_services.identity -- Typed role resolution at the boundary.

Responsibility:
    Turn the raw caller identity handed over by the HTTP collaborator
    (role string, department id, user id) into a typed ``Actor``.  Role
    strings are matched case-insensitively here and nowhere else; the core
    only ever sees ``Role`` members.

Failure modes:
    - UnauthenticatedError: no user id or no role supplied.
    - ForbiddenError: a role string that names no known role.
"""

from __future__ import annotations

from reimbursement_kernel.domain.permissions import Actor, Role
from reimbursement_kernel.exceptions import ForbiddenError, UnauthenticatedError

_ROLE_LOOKUP: dict[str, Role] = {role.value.lower(): role for role in Role}


def resolve_role(raw: str | None) -> Role:
    """Resolve a raw role string to a ``Role``, ignoring case and surrounding space."""
    if raw is None or not str(raw).strip():
        raise UnauthenticatedError("role missing")
    role = _ROLE_LOOKUP.get(str(raw).strip().lower())
    if role is None:
        raise ForbiddenError(str(raw), "resolve_role", reason="unknown role")
    return role


def resolve_actor(
    user_id: str | None,
    raw_role: str | None,
    department_id: str | None = None,
) -> Actor:
    """Build the typed actor for one request."""
    if user_id is None or not str(user_id).strip():
        raise UnauthenticatedError("user id missing")
    dept = department_id.strip() if isinstance(department_id, str) else None
    return Actor(
        user_id=str(user_id).strip(),
        role=resolve_role(raw_role),
        department_id=dept or None,
    )
