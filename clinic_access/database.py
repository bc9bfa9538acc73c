"""
Database engine initialisation, schema and queries for the reference backend.
"""

import json
import sys
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean, Column, ForeignKey, Integer, MetaData, String, Table, Text,
    create_engine, text,
)

from clinic_access.catalog import DEFAULT_PERMISSIONS
from clinic_access.config import get_env
from clinic_access.models import AccessContext, Role, User
from clinic_access.rbac import build_access_context, validate_role_references

metadata = MetaData()

permissions_table = Table(
    "permissions", metadata,
    Column("name", String(100), primary_key=True),
    Column("display_name", String(200), nullable=False),
    Column("category", String(100)),
)

roles_table = Table(
    "roles", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("display_name", String(200)),
    Column("is_system_role", Boolean, nullable=False, default=False),
)

role_permissions_table = Table(
    "role_permissions", metadata,
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
    Column("permission_name", String(100), ForeignKey("permissions.name"), primary_key=True),
)

users_table = Table(
    "users", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(200), nullable=False, unique=True),
    Column("role", String(100)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("api_key", String(200), unique=True),
)

clinics_table = Table(
    "clinics", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(200), nullable=False),
    Column("code", String(50)),
    Column("is_active", Boolean, nullable=False, default=True),
)

clinic_users_table = Table(
    "clinic_users", metadata,
    Column("clinic_id", Integer, ForeignKey("clinics.id"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("role", String(100)),
    Column("permissions", Text),
)

ALL_PERMISSION_NAMES = [p.name for p in DEFAULT_PERMISSIONS]

# Seeded system roles.
DEFAULT_ROLES: Dict[str, Dict[str, Any]] = {
    "super_admin": {"display_name": "Super Admin", "permissions": ALL_PERMISSION_NAMES},
    "admin": {"display_name": "Administrator", "permissions": ALL_PERMISSION_NAMES},
    "doctor": {
        "display_name": "Doctor",
        "permissions": [
            "patients.view", "patients.create", "appointments.view", "prescriptions.view",
            "odontogram.view", "tests.view", "test_reports.view", "xray_analysis.view",
        ],
    },
    "nurse": {"display_name": "Nurse", "permissions": ["patients.view", "appointments.view"]},
    "receptionist": {
        "display_name": "Receptionist",
        "permissions": [
            "patients.view", "patients.create", "leads.view", "appointments.view", "invoices.view",
        ],
    },
    "accountant": {
        "display_name": "Accountant",
        "permissions": [
            "invoices.view", "payments.view", "payroll.view", "expenses.view", "analytics.reports",
        ],
    },
    "staff": {"display_name": "Staff", "permissions": ["appointments.view"]},
}


def init_engine(db_uri: Optional[str] = None, **kwargs):
    """Create a SQLAlchemy engine, verify the connection and ensure the schema."""
    db_uri = db_uri or get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True, **kwargs)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    metadata.create_all(engine)
    print("[init] Connected to DB.")
    return engine


def seed_defaults(engine) -> None:
    """Insert the default catalog and system roles if the tables are empty."""
    with engine.begin() as conn:
        if conn.execute(text("SELECT COUNT(*) FROM permissions")).scalar():
            return
        conn.execute(permissions_table.insert(), [
            {"name": p.name, "display_name": p.display_name, "category": p.category}
            for p in DEFAULT_PERMISSIONS
        ])
        for name, spec in DEFAULT_ROLES.items():
            role_id = conn.execute(roles_table.insert().values(
                name=name, display_name=spec["display_name"], is_system_role=True,
            )).inserted_primary_key[0]
            conn.execute(role_permissions_table.insert(), [
                {"role_id": role_id, "permission_name": p} for p in spec["permissions"]
            ])


# ── Catalog and roles ────────────────────────────────────────────────

def fetch_permissions(engine) -> List[Dict[str, Any]]:
    sql = text("SELECT name, display_name, category FROM permissions ORDER BY category, name")
    with engine.connect() as conn:
        return [dict(r) for r in conn.execute(sql).mappings()]


def fetch_permission_names(engine) -> set:
    with engine.connect() as conn:
        return {r[0] for r in conn.execute(text("SELECT name FROM permissions"))}


def _role_record(row, perms: Iterable[str]) -> Dict[str, Any]:
    return {
        "_id": str(row["id"]),
        "name": row["name"],
        "display_name": row["display_name"],
        "is_system_role": bool(row["is_system_role"]),
        "effective_permissions": sorted(perms),
    }


def fetch_roles(engine) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        roles = conn.execute(text(
            "SELECT id, name, display_name, is_system_role FROM roles ORDER BY id"
        )).mappings().all()
        grants = conn.execute(text(
            "SELECT role_id, permission_name FROM role_permissions"
        )).all()
    by_role: Dict[int, List[str]] = {}
    for role_id, perm in grants:
        by_role.setdefault(role_id, []).append(perm)
    return [_role_record(r, by_role.get(r["id"], [])) for r in roles]


def fetch_role(engine, role_id: int) -> Optional[Dict[str, Any]]:
    return next((r for r in fetch_roles(engine) if r["_id"] == str(role_id)), None)


def replace_role_permissions(engine, role_id: int, permissions: Iterable[str]) -> None:
    """Overwrite the role's whole permission set in one transaction."""
    perms = sorted(set(permissions))
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM role_permissions WHERE role_id = :r"), {"r": role_id})
        if perms:
            conn.execute(role_permissions_table.insert(), [
                {"role_id": role_id, "permission_name": p} for p in perms
            ])


# ── Users and clinics ────────────────────────────────────────────────

def _user_record(row) -> Dict[str, Any]:
    return {
        "_id": str(row["id"]),
        "first_name": row["first_name"],
        "last_name": row["last_name"],
        "email": row["email"],
        "role": row["role"],
        "is_active": bool(row["is_active"]),
    }


def _clinic_record(row) -> Dict[str, Any]:
    return {
        "_id": str(row["id"]),
        "name": row["name"],
        "code": row["code"],
        "is_active": bool(row["is_active"]),
    }


def fetch_users(engine) -> List[Dict[str, Any]]:
    sql = text("SELECT id, first_name, last_name, email, role, is_active FROM users ORDER BY id")
    with engine.connect() as conn:
        return [_user_record(r) for r in conn.execute(sql).mappings()]


def fetch_user(engine, user_id: int) -> Optional[Dict[str, Any]]:
    sql = text("SELECT id, first_name, last_name, email, role, is_active FROM users WHERE id = :u")
    with engine.connect() as conn:
        row = conn.execute(sql, {"u": user_id}).mappings().first()
    return _user_record(row) if row else None


def fetch_clinics(engine) -> List[Dict[str, Any]]:
    sql = text("SELECT id, name, code, is_active FROM clinics ORDER BY id")
    with engine.connect() as conn:
        return [_clinic_record(r) for r in conn.execute(sql).mappings()]


def fetch_clinic(engine, clinic_id: int) -> Optional[Dict[str, Any]]:
    sql = text("SELECT id, name, code, is_active FROM clinics WHERE id = :c")
    with engine.connect() as conn:
        row = conn.execute(sql, {"c": clinic_id}).mappings().first()
    return _clinic_record(row) if row else None


def fetch_user_clinics(engine, user_id: int) -> List[Dict[str, Any]]:
    sql = text("""
        SELECT c.id, c.name, c.code, c.is_active
        FROM clinics c
        JOIN clinic_users cu ON cu.clinic_id = c.id
        WHERE cu.user_id = :u
        ORDER BY c.id
    """)
    with engine.connect() as conn:
        return [_clinic_record(r) for r in conn.execute(sql, {"u": user_id}).mappings()]


def grant_clinic_access(engine, clinic_id: int, user_id: int,
                        role: Optional[str] = None, permissions: Iterable[str] = ()) -> bool:
    """Grant access; returns False when the grant already existed."""
    with engine.begin() as conn:
        exists = conn.execute(text(
            "SELECT 1 FROM clinic_users WHERE clinic_id = :c AND user_id = :u"
        ), {"c": clinic_id, "u": user_id}).first()
        if exists:
            return False
        conn.execute(clinic_users_table.insert().values(
            clinic_id=clinic_id, user_id=user_id, role=role,
            permissions=json.dumps(list(permissions)),
        ))
    return True


def revoke_clinic_access(engine, clinic_id: int, user_id: int) -> bool:
    """Revoke access; returns False when there was nothing to revoke."""
    with engine.begin() as conn:
        result = conn.execute(text(
            "DELETE FROM clinic_users WHERE clinic_id = :c AND user_id = :u"
        ), {"c": clinic_id, "u": user_id})
    return result.rowcount > 0


def add_clinic(engine, name: str, code: Optional[str] = None, is_active: bool = True) -> int:
    with engine.begin() as conn:
        return conn.execute(clinics_table.insert().values(
            name=name, code=code, is_active=is_active,
        )).inserted_primary_key[0]


def add_user(engine, first_name: str, last_name: str, email: str, role: str,
             api_key: Optional[str] = None, is_active: bool = True) -> int:
    with engine.begin() as conn:
        return conn.execute(users_table.insert().values(
            first_name=first_name, last_name=last_name, email=email,
            role=role, api_key=api_key, is_active=is_active,
        )).inserted_primary_key[0]


# ── Access context ───────────────────────────────────────────────────

def find_user_id_by_api_key(engine, api_key: str) -> int:
    """Look up an active user by API key."""
    sql = text("SELECT id FROM users WHERE api_key = :k AND is_active = :active")
    with engine.connect() as conn:
        row = conn.execute(sql, {"k": api_key, "active": True}).first()
    if not row:
        raise ValueError("Invalid key or user inactive (no match in users).")
    return int(row[0])


def load_access_context(engine, user_id: int) -> AccessContext:
    """Resolve a user's current permissions and clinic grants from the database."""
    rec = fetch_user(engine, user_id)
    if rec is None or not rec["is_active"]:
        raise ValueError(f"User '{user_id}' not found or inactive.")
    user = User(
        id=rec["_id"], first_name=rec["first_name"], last_name=rec["last_name"],
        email=rec["email"], role=rec["role"], is_active=rec["is_active"],
    )
    roles = [
        Role(id=r["_id"], name=r["name"], display_name=r["display_name"],
             is_system_role=r["is_system_role"], permissions=frozenset(r["effective_permissions"]))
        for r in fetch_roles(engine)
    ]
    clinic_ids = [c["_id"] for c in fetch_user_clinics(engine, user_id)]
    validate_role_references([user], roles)
    return build_access_context(user, roles, clinic_ids)
