#!/usr/bin/env python3
"""
Generate access keys for clinic staff.
Creates secure random keys that can be stored in the users.api_key column.
"""

import secrets
import string
import sys

from clinic_access.config import KNOWN_ROLES


def generate_api_key(prefix="clinic", length=32):
    """Generate a secure random access key."""
    chars = string.ascii_letters + string.digits
    random_part = ''.join(secrets.choice(chars) for _ in range(length))
    return f"{prefix}_{random_part}"


if __name__ == "__main__":
    role = sys.argv[1] if len(sys.argv) > 1 else "staff"
    if role not in KNOWN_ROLES:
        print(f"ERROR: unknown role '{role}'. Choose one of: {', '.join(KNOWN_ROLES)}", file=sys.stderr)
        sys.exit(1)

    print("=" * 70)
    print("Clinic Access Key Generator")
    print("=" * 70)

    api_key = generate_api_key(prefix=f"clinic_{role}")
    print(f"\n  {api_key}\n")

    print("SQL Insert Example:")
    print("-" * 70)
    print(f"""
INSERT INTO users
    (first_name, last_name, email, role, is_active, api_key)
VALUES
    ('Jane', 'Doe', 'jane.doe@example.com', '{role}', 1, '{api_key}');
""")
    print("Grant clinics afterwards from the admin console ('clinic <user_id> <clinic_id>').")
    print("=" * 70)
