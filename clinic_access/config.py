"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Access rules ─────────────────────────────────────────────────────
# Roles that bypass every permission and clinic check.
PRIVILEGED_ROLES = frozenset({"super_admin", "admin"})

# Roles hidden from the role editor (never user-editable).
LOCKED_ROLES = frozenset({"super_admin"})

# Visible to every authenticated user, whatever it declares.
DASHBOARD_ROUTE = "/dashboard"

KNOWN_ROLES = (
    "super_admin", "admin", "doctor", "nurse",
    "receptionist", "accountant", "staff",
)

# ── Backend client ───────────────────────────────────────────────────
API_BASE_URL = os.getenv("CLINIC_API_BASE_URL", "http://localhost:8000/api")
API_TOKEN = os.getenv("CLINIC_API_TOKEN")
CLINIC_ID = os.getenv("CLINIC_ID")
API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", "10"))

# Sent with every clinic grant.
DEFAULT_CLINIC_GRANT_ROLE = "staff"
DEFAULT_CLINIC_GRANT_PERMISSIONS = ["read_patients", "read_appointments"]

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24

# ── Console ──────────────────────────────────────────────────────────
MAX_PREVIEW_ROWS = 40


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
