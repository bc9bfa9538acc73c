#!/usr/bin/env python3
"""
Seed a reference backend database with demo clinics, staff and clinic grants.
Run: DB_URI=sqlite:///clinic_access.db python scripts/seed_demo_data.py
"""

import random

from faker import Faker

from clinic_access.database import (
    add_clinic, add_user, grant_clinic_access, init_engine, seed_defaults,
)
from clinic_access.config import DEFAULT_CLINIC_GRANT_PERMISSIONS, DEFAULT_CLINIC_GRANT_ROLE

# --------------------------------------------------------------------
# CONFIG
# --------------------------------------------------------------------
NUM_CLINICS = 4

# users per role
STAFF_PER_ROLE = {
    "admin": 1,
    "doctor": 4,
    "nurse": 4,
    "receptionist": 2,
    "accountant": 1,
    "staff": 3,
}

# how many clinics each non-privileged user is granted (min, max)
CLINICS_PER_USER = (1, 2)

# --------------------------------------------------------------------
# SETUP
# --------------------------------------------------------------------
fake = Faker()
random.seed(42)
Faker.seed(42)


def make_api_key(role: str) -> str:
    return f"clinic_{role}_{fake.unique.hexify('^' * 24)}"


def seed_clinics(engine, n=NUM_CLINICS):
    ids = []
    for i in range(n):
        city = fake.unique.city()
        ids.append(add_clinic(engine, name=f"{city} Clinic", code=f"CL{i + 1:03d}"))
    # one closed location
    ids.append(add_clinic(engine, name=f"{fake.unique.city()} Clinic (closed)",
                          code=f"CL{n + 1:03d}", is_active=False))
    return ids


def seed_users(engine):
    keys = {}
    user_ids = {}
    super_key = make_api_key("super_admin")
    user_ids[add_user(engine, "System", "Owner", "owner@example.com", "super_admin", api_key=super_key)] = "super_admin"
    keys["super_admin"] = super_key
    for role, count in STAFF_PER_ROLE.items():
        for _ in range(count):
            first, last = fake.first_name(), fake.last_name()
            email = f"{first}.{last}.{fake.unique.random_int(1, 9999)}@example.com".lower()
            key = make_api_key(role)
            user_ids[add_user(engine, first, last, email, role, api_key=key)] = role
            keys.setdefault(role, key)
    return user_ids, keys


def seed_clinic_access(engine, user_ids, clinic_ids):
    active = clinic_ids[:-1]
    for user_id, role in user_ids.items():
        if role in {"super_admin", "admin"}:
            continue
        lo, hi = CLINICS_PER_USER
        for clinic_id in random.sample(active, random.randint(lo, hi)):
            grant_clinic_access(
                engine, clinic_id, user_id,
                role=DEFAULT_CLINIC_GRANT_ROLE,
                permissions=DEFAULT_CLINIC_GRANT_PERMISSIONS,
            )


# --------------------------------------------------------------------
# MAIN
# --------------------------------------------------------------------
def main():
    engine = init_engine()

    print("Seeding permissions and system roles...")
    seed_defaults(engine)

    print("Seeding clinics...")
    clinic_ids = seed_clinics(engine)

    print("Seeding staff...")
    user_ids, keys = seed_users(engine)

    print("Seeding clinic access...")
    seed_clinic_access(engine, user_ids, clinic_ids)

    print("\nSample access keys (one per role):")
    for role, key in keys.items():
        print(f"  {role:<13} {key}")

    print("Done!")


if __name__ == "__main__":
    main()
