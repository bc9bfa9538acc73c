#!/usr/bin/env python3
"""
Smoke checks against a running reference backend.
Start the server first: python api_server.py
Then run: python scripts/smoke_api.py <access_key>
"""

import json
import sys

import requests

from clinic_access.config import API_BASE_URL

ROOT_URL = API_BASE_URL.rsplit("/api", 1)[0]


def banner(title):
    print("\n" + "=" * 50)
    print(f"CHECK: {title}")
    print("=" * 50)


def show(response):
    print(f"Status Code: {response.status_code}")
    try:
        print(f"Response: {json.dumps(response.json(), indent=2)[:1500]}")
    except ValueError:
        print(f"Response: {response.text[:500]}")


def check_health():
    banner("Health Check")
    r = requests.get(f"{ROOT_URL}/health", timeout=10)
    show(r)
    return r.status_code == 200


def check_login(api_key):
    banner("Login")
    r = requests.post(f"{API_BASE_URL}/auth/login", json={"api_key": api_key}, timeout=10)
    show(r)
    if r.status_code == 200:
        return r.json()["data"]["token"]
    return None


def check_login_invalid():
    banner("Login with Invalid Key")
    r = requests.post(f"{API_BASE_URL}/auth/login", json={"api_key": "invalid_key_12345"}, timeout=10)
    show(r)
    return r.status_code == 401


def check_get(token, path, expected=(200, 403)):
    banner(f"GET {path}")
    r = requests.get(f"{API_BASE_URL}{path}", headers={"Authorization": f"Bearer {token}"}, timeout=10)
    show(r)
    return r.status_code in expected


def check_no_token():
    banner("Roles without Token")
    r = requests.get(f"{API_BASE_URL}/roles", timeout=10)
    show(r)
    return r.status_code == 401


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/smoke_api.py <access_key>", file=sys.stderr)
        sys.exit(1)

    results = {}
    try:
        results["health"] = check_health()
    except requests.exceptions.ConnectionError:
        print("\n✗ ERROR: Could not connect to API server")
        print("Make sure the server is running: python api_server.py")
        sys.exit(1)

    results["login_invalid"] = check_login_invalid()
    results["no_token"] = check_no_token()
    token = check_login(sys.argv[1])
    results["login"] = token is not None
    if token:
        results["navigation"] = check_get(token, "/navigation", expected=(200,))
        for path in ("/permissions", "/roles", "/users/all", "/clinics/all"):
            results[path] = check_get(token, path)

    print("\n" + "=" * 50)
    print("SUMMARY")
    print("=" * 50)
    for name, passed in results.items():
        print(f"  {'✓' if passed else '✗'} {name}")
    sys.exit(0 if all(results.values()) else 1)


if __name__ == "__main__":
    main()
