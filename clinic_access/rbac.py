"""
Role-Based Access Control – resolving permission and clinic checks.

Every function here is pure: it works over data already loaded by the
caller and never performs I/O. Missing or ambiguous input always resolves
to "denied"; none of the checks raise.
"""

from typing import Iterable, Optional, Union

from clinic_access.config import PRIVILEGED_ROLES
from clinic_access.models import (
    AccessContext, Clinic, ConfigurationError, Role, User,
)


def is_privileged(role: Optional[str]) -> bool:
    """True for roles that bypass every permission and clinic check."""
    return role in PRIVILEGED_ROLES


def resolve_effective_permissions(role_name: Optional[str], roles: Iterable[Role]) -> frozenset:
    """Return the permission set granted to *role_name*, or an empty set."""
    if not role_name:
        return frozenset()
    for role in roles:
        if role.name == role_name:
            return frozenset(role.permissions)
    return frozenset()


def build_access_context(user: Optional[User], roles: Iterable[Role],
                         clinic_ids: Iterable[str] = ()) -> AccessContext:
    """Resolve a user's effective permissions and clinic grants."""
    if user is None:
        return AccessContext(user=None)
    return AccessContext(
        user=user,
        permissions=resolve_effective_permissions(user.role, roles),
        clinic_ids=frozenset(str(c) for c in clinic_ids),
    )


def validate_role_references(users: Iterable[User], roles: Iterable[Role]) -> None:
    """Reject users whose role no longer exists (e.g. a deleted role)."""
    names = {r.name for r in roles}
    for user in users:
        if is_privileged(user.role):
            continue
        if user.role not in names:
            raise ConfigurationError(
                f"User '{user.id}' references unknown role '{user.role}'."
            )


def can_access(ctx: Optional[AccessContext], permission: str,
               clinic: Union[Clinic, str, None] = None) -> bool:
    """Single-permission check, optionally scoped to a clinic."""
    if ctx is None or ctx.user is None:
        return False
    if is_privileged(ctx.user.role):
        return True
    if permission not in ctx.permissions:
        return False
    if clinic is not None:
        return can_access_clinic(ctx, clinic)
    return True


def can_access_any(ctx: Optional[AccessContext], permissions: Iterable[str]) -> bool:
    """OR combination. An empty set grants nothing."""
    return any(can_access(ctx, p) for p in permissions)


def can_access_all(ctx: Optional[AccessContext], permissions: Iterable[str]) -> bool:
    """
    AND combination. An empty set is vacuously true, so callers gating on
    a computed set should check for emptiness themselves.
    """
    return all(can_access(ctx, p) for p in permissions)


def can_access_clinic(ctx: Optional[AccessContext], clinic: Union[Clinic, str, None]) -> bool:
    """Clinic grant check; privileged users may access every clinic."""
    if ctx is None or ctx.user is None or clinic is None:
        return False
    if is_privileged(ctx.user.role):
        return True
    clinic_id = clinic.id if isinstance(clinic, Clinic) else str(clinic)
    return clinic_id in ctx.clinic_ids


def has_role(ctx: Optional[AccessContext], roles: Union[str, Iterable[str]]) -> bool:
    """Role guard; privileged users pass every role requirement."""
    if ctx is None or ctx.user is None or not ctx.user.role:
        return False
    if is_privileged(ctx.user.role):
        return True
    wanted = {roles} if isinstance(roles, str) else set(roles)
    return ctx.user.role in wanted
