"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from typing import Any, FrozenSet, NewType, Optional, Tuple

# Validated at the boundary by catalog.parse_permission_id.
PermissionId = NewType("PermissionId", str)

FETCH = "fetch"
MUTATION = "mutation"


class ConfigurationError(ValueError):
    """Access configuration that must be rejected at load time."""


@dataclass(frozen=True)
class Permission:
    """Catalog entry, e.g. ``patients.view``."""
    name: PermissionId
    display_name: str
    category: Optional[str] = None


@dataclass(frozen=True)
class Role:
    """A role and the permission identifiers it currently grants."""
    id: str
    name: str
    display_name: Optional[str] = None
    is_system_role: bool = False
    permissions: FrozenSet[str] = frozenset()

    @property
    def label(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class User:
    id: str
    first_name: str
    last_name: str
    email: str
    role: Optional[str]
    is_active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Clinic:
    id: str
    name: str
    code: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class UserClinicAccess:
    """The clinics one user may operate within, independent of role."""
    user: User
    clinics: Tuple[Clinic, ...] = ()

    @property
    def clinic_ids(self) -> FrozenSet[str]:
        return frozenset(c.id for c in self.clinics)


@dataclass(frozen=True)
class AccessContext:
    """Everything the resolver needs to answer for one user."""
    user: Optional[User]
    permissions: FrozenSet[str] = frozenset()
    clinic_ids: FrozenSet[str] = frozenset()

    @property
    def role(self) -> Optional[str]:
        return self.user.role if self.user else None


@dataclass(frozen=True)
class NavigationItem:
    """
    Sidebar entry. The requirement is exactly one of: nothing, a single
    ``permission``, or ``permissions`` combined with OR (``requires_any``)
    or AND.
    """
    name: str
    href: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    permission: Optional[str] = None
    permissions: Optional[Tuple[str, ...]] = None
    requires_any: bool = False
    children: Tuple["NavigationItem", ...] = ()


@dataclass(frozen=True)
class NavigationSection:
    title: str
    items: Tuple[NavigationItem, ...] = ()


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a backend call made by the administration surface."""
    ok: bool
    kind: str                       # FETCH or MUTATION
    error: Optional[str] = None
    status_code: Optional[int] = None
    failed_ids: Tuple[str, ...] = field(default=())
    value: Any = None

    @classmethod
    def success(cls, kind: str, value: Any = None) -> "OperationResult":
        return cls(ok=True, kind=kind, value=value)

    @classmethod
    def failure(cls, kind: str, error: str, status_code: Optional[int] = None,
                failed_ids: Tuple[str, ...] = ()) -> "OperationResult":
        return cls(ok=False, kind=kind, error=error,
                   status_code=status_code, failed_ids=failed_ids)
