"""
Access matrices – role × permission and user × clinic tables, plus summaries.
"""

from typing import Iterable, Mapping, Optional, Sequence, Tuple

import pandas as pd

from clinic_access.catalog import PermissionCatalog
from clinic_access.models import Clinic, Role, User
from clinic_access.rbac import is_privileged


# ── Role permissions ─────────────────────────────────────────────────

def role_permission_matrix(roles: Sequence[Role], catalog: PermissionCatalog) -> pd.DataFrame:
    """
    Rows are catalog permissions (with their category), columns are role
    names, cells are booleans. Privileged roles show their stored map only;
    it does not decide access for them.
    """
    index = pd.Index(catalog.names(), name="permission")
    df = pd.DataFrame(index=index)
    df["category"] = [p.category or "other" for p in catalog]
    for role in roles:
        df[role.name] = [name in role.permissions for name in index]
    return df


def coverage_summary(roles: Sequence[Role], catalog: PermissionCatalog) -> pd.DataFrame:
    """Granted-permission counts per role and category, plus a total row."""
    matrix = role_permission_matrix(roles, catalog)
    if matrix.empty or not roles:
        return pd.DataFrame()
    role_cols = [r.name for r in roles]
    summary = matrix.groupby("category", sort=False)[role_cols].sum().astype(int)
    summary.loc["total"] = summary.sum()
    summary.loc["of catalog"] = len(catalog)
    return summary


def privileged_note(roles: Iterable[Role]) -> Optional[str]:
    names = [r.name for r in roles if is_privileged(r.name)]
    if not names:
        return None
    return (
        f"Roles {', '.join(names)} bypass every check; their columns are "
        "informational only."
    )


# ── Clinic access ────────────────────────────────────────────────────

def _clinic_label(clinic: Clinic) -> str:
    return f"{clinic.name} ({clinic.id})"


def clinic_access_matrix(
    users: Sequence[User],
    clinics: Sequence[Clinic],
    access: Mapping[str, Optional[Tuple[Clinic, ...]]],
) -> pd.DataFrame:
    """
    Rows are users, columns are clinics labelled ``name (id)`` so clinics
    sharing a name stay distinct. Users whose access is not known yet get
    missing values rather than ``False``.
    """
    rows = []
    for user in users:
        granted = access.get(user.id)
        row = {"user": user.full_name or user.email, "role": user.role}
        for clinic in clinics:
            row[_clinic_label(clinic)] = None if granted is None else any(c.id == clinic.id for c in granted)
        rows.append(row)
    columns = ["user", "role"] + [_clinic_label(c) for c in clinics]
    df = pd.DataFrame(rows, columns=columns)
    if not df.empty:
        df = df.set_index("user")
    return df


# ── Rendering ────────────────────────────────────────────────────────

def render_matrix(df: pd.DataFrame, max_rows: Optional[int] = None) -> str:
    """Markdown table with ✓ / · cells; missing values shown as ``?``."""
    if df.empty:
        return "(no rows)"
    shown = df.head(max_rows) if max_rows else df

    def mark(v):
        if v is None or (isinstance(v, float) and pd.isna(v)):
            return "?"
        if pd.api.types.is_bool(v):
            return "✓" if v else "·"
        return v

    return shown.apply(lambda col: col.map(mark)).to_markdown()
