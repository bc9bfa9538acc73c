"""
Navigation gate – filtering the sidebar down to what the current user may see.
"""

from dataclasses import replace
from typing import Iterable, List, Mapping, Optional, Set

from clinic_access.catalog import PermissionCatalog, parse_permission_id
from clinic_access.config import DASHBOARD_ROUTE
from clinic_access.models import (
    AccessContext, ConfigurationError, NavigationItem, NavigationSection,
)
from clinic_access.rbac import can_access, can_access_all, can_access_any


def _item(name, href, icon=None, badge=None, permission=None,
          permissions=None, requires_any=False, children=()):
    return NavigationItem(
        name=name, href=href, icon=icon, badge=badge, permission=permission,
        permissions=tuple(permissions) if permissions is not None else None,
        requires_any=requires_any, children=tuple(children),
    )


# ── Default sidebar ──────────────────────────────────────────────────

TEST_MODULES = (
    _item("Tests", "/dashboard/tests", icon="test-tube", permission="tests.view"),
    _item("Test Reports", "/dashboard/test-reports", icon="file-text", permission="test_reports.view"),
    _item("Methodology", "/dashboard/test-modules/methodology", icon="folder", permission="tests.view"),
    _item("Turnaround Time", "/dashboard/test-modules/turnaround-time", icon="clock", permission="tests.view"),
    _item("Sample Type", "/dashboard/test-modules/sample-type", icon="droplets", permission="tests.view"),
    _item("Category", "/dashboard/test-modules/category", icon="folder", permission="tests.view"),
)

DEFAULT_NAVIGATION: List[NavigationSection] = [
    NavigationSection("Overview", (
        _item("Dashboard", DASHBOARD_ROUTE, icon="home"),
        _item("Dental AI X-ray Analysis", "/dashboard/xray-analysis", icon="brain",
              badge="AI", permission="xray_analysis.view"),
        _item("AI Test Report Analysis", "/dashboard/ai-test-analysis", icon="test-tube",
              badge="AI", permission="test_reports.view"),
        _item("Compare Test Reports using AI", "/dashboard/ai-test-comparison", icon="bar-chart",
              badge="AI", permission="test_reports.view"),
    )),
    NavigationSection("Patient Management", (
        _item("Patients", "/dashboard/patients", icon="users", permission="patients.view"),
        _item("Appointments", "/dashboard/appointments", icon="calendar", permission="appointments.view"),
        _item("Leads", "/dashboard/leads", icon="user-plus",
              permissions=["patients.create", "leads.view"], requires_any=True),
        _item("Prescriptions", "/dashboard/prescriptions", icon="stethoscope", permission="prescriptions.view"),
        _item("Odontogram", "/dashboard/odontograms", icon="zap", badge="Dental", permission="odontogram.view"),
        _item("Test Modules", "/dashboard/test-modules", icon="test-tube",
              permissions=["tests.view", "test_reports.view"], requires_any=True,
              children=TEST_MODULES),
    )),
    NavigationSection("Financial Management", (
        _item("Billing", "/dashboard/billing", icon="dollar-sign",
              permissions=["invoices.view", "payments.view"], requires_any=True),
        _item("Invoices", "/dashboard/invoices", icon="receipt", permission="invoices.view"),
        _item("Payments", "/dashboard/payments", icon="credit-card", permission="payments.view"),
        _item("Payroll", "/dashboard/payroll", icon="briefcase", permission="payroll.view"),
        _item("Expenses", "/dashboard/expenses", icon="file-text", permission="expenses.view"),
        _item("Performance", "/dashboard/performance", icon="bar-chart", permission="analytics.reports"),
    )),
    NavigationSection("Operations", (
        _item("Services", "/dashboard/services", icon="activity", permission="services.view"),
        _item("Departments", "/dashboard/departments", icon="building", permission="departments.view"),
        _item("Clinics", "/dashboard/clinics", icon="building", permission="clinics.view"),
        _item("Permissions", "/dashboard/permissions", icon="shield", permission="permissions.view"),
        _item("Inventory", "/dashboard/inventory", icon="package", permission="inventory.view"),
        _item("Staff", "/dashboard/staff", icon="user-check", permission="users.view"),
        _item("Lab Vendors", "/dashboard/lab-vendors", icon="building", permission="lab_vendors.view"),
    )),
    NavigationSection("Analytics & Reports", (
        _item("Calendar", "/dashboard/calendar", icon="calendar-days", permission="appointments.view"),
        _item("Reports", "/dashboard/reports", icon="bar-chart",
              permissions=["analytics.reports", "analytics.dashboard"], requires_any=True),
    )),
]


# ── Load-time validation ─────────────────────────────────────────────

def validate_item(item: NavigationItem) -> NavigationItem:
    """Reject items whose requirement is not exactly one of the three forms."""
    if not item.href:
        raise ConfigurationError(f"Navigation item '{item.name}' has no route.")
    if item.permission is not None and item.permissions is not None:
        raise ConfigurationError(
            f"Navigation item '{item.name}' declares both a single and a multi-permission requirement."
        )
    if item.permissions is not None and len(item.permissions) == 0:
        raise ConfigurationError(f"Navigation item '{item.name}' declares an empty permission set.")
    if item.requires_any and item.permissions is None:
        raise ConfigurationError(
            f"Navigation item '{item.name}' sets requires_any without a permission set."
        )
    try:
        if item.permission is not None:
            parse_permission_id(item.permission)
        for p in item.permissions or ():
            parse_permission_id(p)
    except ValueError as e:
        raise ConfigurationError(f"Navigation item '{item.name}': {e}") from e
    for child in item.children:
        validate_item(child)
    return item


def validate_navigation(sections: Iterable[NavigationSection]) -> List[NavigationSection]:
    sections = list(sections)
    for section in sections:
        for item in section.items:
            validate_item(item)
    return sections


def _item_from_record(rec: Mapping) -> NavigationItem:
    perms = rec.get("permissions")
    return validate_item(_item(
        name=str(rec.get("name", "")),
        href=str(rec.get("href", "")),
        icon=rec.get("icon"),
        badge=rec.get("badge"),
        permission=rec.get("permission"),
        permissions=perms,
        requires_any=bool(rec.get("requires_any", rec.get("requiresAnyPermission", False))),
        children=[_item_from_record(c) for c in rec.get("children") or ()],
    ))


def load_navigation(records: Iterable[Mapping]) -> List[NavigationSection]:
    """Parse ``[{"title": ..., "items": [...]}, ...]`` into validated sections."""
    return [
        NavigationSection(
            title=str(rec.get("title", "")),
            items=tuple(_item_from_record(i) for i in rec.get("items") or ()),
        )
        for rec in records
    ]


def _referenced(items: Iterable[NavigationItem]) -> Set[str]:
    refs: Set[str] = set()
    for item in items:
        if item.permission:
            refs.add(item.permission)
        refs.update(item.permissions or ())
        refs |= _referenced(item.children)
    return refs


def dangling_permissions(sections: Iterable[NavigationSection], catalog: PermissionCatalog) -> Set[str]:
    """Identifiers the navigation requires that the catalog does not know."""
    refs: Set[str] = set()
    for section in sections:
        refs |= _referenced(section.items)
    return catalog.unknown(refs)


# ── Filtering ────────────────────────────────────────────────────────

def can_see_item(ctx: Optional[AccessContext], item: NavigationItem) -> bool:
    if ctx is None or ctx.user is None:
        return False
    # Matched by route, not by absence of a requirement.
    if item.href == DASHBOARD_ROUTE:
        return True
    if item.permission is not None:
        return can_access(ctx, item.permission)
    if item.permissions:
        if item.requires_any:
            return can_access_any(ctx, item.permissions)
        return can_access_all(ctx, item.permissions)
    return True


def filter_navigation(ctx: Optional[AccessContext], items: Iterable[NavigationItem]) -> List[NavigationItem]:
    """Stable filter; submenus are filtered the same way."""
    visible = []
    for item in items:
        if not can_see_item(ctx, item):
            continue
        if item.children:
            children = tuple(filter_navigation(ctx, item.children))
            if children != item.children:
                item = replace(item, children=children)
        visible.append(item)
    return visible


def filter_sections(ctx: Optional[AccessContext],
                    sections: Iterable[NavigationSection]) -> List[NavigationSection]:
    """Filter every section, dropping the ones left empty."""
    out = []
    for section in sections:
        items = filter_navigation(ctx, section.items)
        if items:
            out.append(NavigationSection(section.title, tuple(items)))
    return out


def navigation_to_dict(sections: Iterable[NavigationSection]) -> List[dict]:
    def item_dict(item: NavigationItem) -> dict:
        d = {"name": item.name, "href": item.href, "icon": item.icon, "badge": item.badge}
        if item.children:
            d["children"] = [item_dict(c) for c in item.children]
        return d
    return [{"title": s.title, "items": [item_dict(i) for i in s.items]} for s in sections]
