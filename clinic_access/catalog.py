"""
Permission catalog – the known permission identifiers, grouped by category.
"""

import re
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set

from clinic_access.models import Permission, PermissionId

PERMISSION_ID_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)+$")


def parse_permission_id(value) -> PermissionId:
    """Validate a raw identifier such as ``patients.view``."""
    if not isinstance(value, str):
        raise ValueError(f"Permission identifier must be a string, got {type(value).__name__}.")
    name = value.strip()
    if not PERMISSION_ID_RE.match(name):
        raise ValueError(f"Malformed permission identifier '{value}'.")
    return PermissionId(name)


def _perm(name: str, display_name: str, category: str) -> Permission:
    return Permission(parse_permission_id(name), display_name, category)


DEFAULT_PERMISSIONS: List[Permission] = [
    _perm("analytics.dashboard", "View Analytics Dashboard", "analytics"),
    _perm("analytics.reports", "View Reports", "analytics"),
    _perm("xray_analysis.view", "Dental AI X-ray Analysis", "analytics"),
    _perm("patients.view", "View Patients", "patients"),
    _perm("patients.create", "Create Patients", "patients"),
    _perm("leads.view", "View Leads", "patients"),
    _perm("appointments.view", "View Appointments", "patients"),
    _perm("prescriptions.view", "View Prescriptions", "patients"),
    _perm("odontogram.view", "View Odontograms", "patients"),
    _perm("tests.view", "View Lab Tests", "lab"),
    _perm("test_reports.view", "View Test Reports", "lab"),
    _perm("lab_vendors.view", "View Lab Vendors", "lab"),
    _perm("invoices.view", "View Invoices", "financial"),
    _perm("payments.view", "View Payments", "financial"),
    _perm("payroll.view", "View Payroll", "financial"),
    _perm("expenses.view", "View Expenses", "financial"),
    _perm("services.view", "View Services", "operations"),
    _perm("departments.view", "View Departments", "operations"),
    _perm("inventory.view", "View Inventory", "operations"),
    _perm("clinics.view", "View Clinics", "administration"),
    _perm("clinics.update", "Manage Clinic Access", "administration"),
    _perm("users.view", "View Staff", "administration"),
    _perm("permissions.view", "View Permissions", "administration"),
    _perm("permissions.update", "Edit Role Permissions", "administration"),
]


class PermissionCatalog:
    """Ordered, de-duplicated set of known permissions."""

    def __init__(self, permissions: Iterable[Permission] = ()):
        self._items: Dict[str, Permission] = {}
        for p in permissions:
            self._items.setdefault(p.name, p)

    @classmethod
    def from_records(cls, records: Iterable[Mapping]) -> "PermissionCatalog":
        """Build a catalog from backend payloads (``name``, ``display_name``, ``category``)."""
        perms = []
        for rec in records:
            name = parse_permission_id(rec.get("name"))
            perms.append(Permission(
                name=name,
                display_name=str(rec.get("display_name") or name),
                category=rec.get("category") or None,
            ))
        return cls(perms)

    def __contains__(self, name) -> bool:
        return name in self._items

    def __iter__(self) -> Iterator[Permission]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def names(self) -> List[str]:
        return list(self._items)

    def get(self, name: str) -> Optional[Permission]:
        return self._items.get(name)

    def categories(self) -> List[str]:
        seen: List[str] = []
        for p in self:
            cat = p.category or "other"
            if cat not in seen:
                seen.append(cat)
        return seen

    def by_category(self) -> Dict[str, List[Permission]]:
        groups: Dict[str, List[Permission]] = {}
        for p in self:
            groups.setdefault(p.category or "other", []).append(p)
        return groups

    def search(self, query: Optional[str]) -> List[Permission]:
        """Case-insensitive match on name or display name, catalog order kept."""
        q = (query or "").strip().lower()
        if not q:
            return list(self)
        return [p for p in self if q in p.name.lower() or q in p.display_name.lower()]

    def unknown(self, identifiers: Iterable[str]) -> Set[str]:
        """Identifiers not present in the catalog (dangling references)."""
        return {i for i in identifiers if i not in self._items}


def default_catalog() -> PermissionCatalog:
    return PermissionCatalog(DEFAULT_PERMISSIONS)
