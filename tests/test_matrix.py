"""
Unit tests for the role × permission and user × clinic matrices.
"""

import pandas as pd

from clinic_access.catalog import PermissionCatalog
from clinic_access.matrix import (
    clinic_access_matrix, coverage_summary, privileged_note,
    render_matrix, role_permission_matrix,
)
from clinic_access.models import Clinic, Permission, Role, User


# ── Helpers ──────────────────────────────────────────────────────────

CATALOG = PermissionCatalog([
    Permission("patients.view", "View Patients", "patients"),
    Permission("patients.create", "Create Patients", "patients"),
    Permission("invoices.view", "View Invoices", "financial"),
])

ROLES = [
    Role(id="2", name="nurse", permissions=frozenset({"patients.view"})),
    Role(id="3", name="accountant", permissions=frozenset({"invoices.view"})),
]

USERS = [
    User(id="10", first_name="Ada", last_name="Lee", email="ada@example.com", role="nurse"),
    User(id="11", first_name="Bo", last_name="Kim", email="bo@example.com", role="accountant"),
]
CLINICS = [Clinic(id="1", name="North"), Clinic(id="2", name="South")]


# ── Tests: role_permission_matrix ────────────────────────────────────

def test_role_permission_matrix_shape_and_cells():
    df = role_permission_matrix(ROLES, CATALOG)
    assert list(df.index) == ["patients.view", "patients.create", "invoices.view"]
    assert list(df.columns) == ["category", "nurse", "accountant"]
    assert bool(df.loc["patients.view", "nurse"]) is True
    assert bool(df.loc["invoices.view", "nurse"]) is False
    assert df.loc["invoices.view", "category"] == "financial"


def test_coverage_summary_counts_per_category():
    summary = coverage_summary(ROLES, CATALOG)
    assert list(summary.index) == ["patients", "financial", "total", "of catalog"]
    assert summary.loc["patients", "nurse"] == 1
    assert summary.loc["financial", "accountant"] == 1
    assert summary.loc["total", "nurse"] == 1
    assert summary.loc["of catalog", "accountant"] == 3


def test_coverage_summary_without_roles_is_empty():
    assert coverage_summary([], CATALOG).empty


def test_privileged_note():
    assert privileged_note(ROLES) is None
    note = privileged_note(ROLES + [Role(id="1", name="admin")])
    assert "admin" in note


# ── Tests: clinic_access_matrix ──────────────────────────────────────

def test_clinic_access_matrix_known_and_unknown_users():
    df = clinic_access_matrix(USERS, CLINICS, {"10": (CLINICS[1],), "11": None})
    assert list(df.columns) == ["role", "North (1)", "South (2)"]
    assert df.loc["Ada Lee", "North (1)"] == False  # noqa: E712
    assert df.loc["Ada Lee", "South (2)"] == True  # noqa: E712
    assert df.loc["Bo Kim", "North (1)"] is None


def test_clinic_access_matrix_keeps_same_named_clinics_apart():
    twins = [Clinic(id="1", name="Downtown"), Clinic(id="7", name="Downtown")]
    df = clinic_access_matrix(USERS[:1], twins, {"10": (twins[1],)})
    assert list(df.columns) == ["role", "Downtown (1)", "Downtown (7)"]
    assert df.loc["Ada Lee", "Downtown (1)"] == False  # noqa: E712
    assert df.loc["Ada Lee", "Downtown (7)"] == True  # noqa: E712


def test_clinic_access_matrix_no_users():
    df = clinic_access_matrix([], CLINICS, {})
    assert df.empty


# ── Tests: render_matrix ─────────────────────────────────────────────

def test_render_matrix_marks_cells():
    out = render_matrix(clinic_access_matrix(USERS, CLINICS, {"10": (CLINICS[0],)}))
    assert "✓" in out
    assert "·" in out
    assert "?" in out
    assert "Ada Lee" in out


def test_render_matrix_truncates_rows():
    out = render_matrix(role_permission_matrix(ROLES, CATALOG), max_rows=1)
    assert "patients.view" in out
    assert "invoices.view" not in out


def test_render_matrix_empty():
    assert render_matrix(pd.DataFrame()) == "(no rows)"
