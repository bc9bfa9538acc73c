"""
Unit tests for the backend client – request shape, parsing and error mapping.
"""

import asyncio
import json

import httpx
import pytest

from clinic_access.client import (
    BackendClient, FetchError, MutationError, role_from_record,
)


# ── Helpers ──────────────────────────────────────────────────────────

class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"success": False, "error": "Endpoint not found"})
        status, body = self.routes[key]
        return httpx.Response(status, json=body)


def run_with(routes, call, token="tok", clinic_id="c1"):
    recorder = Recorder(routes)

    async def go():
        async with BackendClient(
            base_url="http://backend/api", token=token, clinic_id=clinic_id,
            transport=httpx.MockTransport(recorder),
        ) as client:
            return await call(client)

    return asyncio.run(go()), recorder


def ok(data):
    return 200, {"success": True, "data": data}


# ── Tests: headers and envelope ──────────────────────────────────────

def test_requests_carry_token_and_clinic_headers():
    _, rec = run_with({("GET", "/api/roles"): ok({"roles": []})}, lambda c: c.list_roles())
    req = rec.requests[0]
    assert req.headers["Authorization"] == "Bearer tok"
    assert req.headers["X-Clinic-Id"] == "c1"


def test_no_headers_without_token_or_clinic():
    _, rec = run_with({("GET", "/api/roles"): ok({"roles": []})}, lambda c: c.list_roles(),
                      token=None, clinic_id=None)
    req = rec.requests[0]
    assert "Authorization" not in req.headers
    assert "X-Clinic-Id" not in req.headers


def test_list_roles_parses_effective_permissions():
    roles, _ = run_with({("GET", "/api/roles"): ok({"roles": [
        {"_id": "3", "name": "nurse", "display_name": "Nurse", "is_system_role": True,
         "effective_permissions": ["patients.view"]},
    ]})}, lambda c: c.list_roles())
    assert roles[0].id == "3"
    assert roles[0].label == "Nurse"
    assert roles[0].permissions == {"patients.view"}


def test_role_from_record_falls_back_to_permissions_and_id():
    role = role_from_record({"id": 5, "name": "staff", "permissions": ["appointments.view"]})
    assert role.id == "5"
    assert role.permissions == {"appointments.view"}


def test_role_from_record_rejects_malformed_permission():
    with pytest.raises(ValueError):
        role_from_record({"_id": "1", "name": "x", "effective_permissions": ["BAD"]})


def test_list_permissions_builds_catalog():
    catalog, _ = run_with({("GET", "/api/permissions"): ok({"permissions": [
        {"name": "patients.view", "display_name": "View Patients", "category": "patients"},
    ]})}, lambda c: c.list_permissions())
    assert catalog.names() == ["patients.view"]


def test_login_stores_token_and_returns_profile():
    async def call(client):
        profile = await client.login("key-123")
        return profile, client.token

    (profile, token), rec = run_with({("POST", "/api/auth/login"): ok({
        "token": "jwt-1",
        "user": {"_id": "9", "first_name": "Ada", "last_name": "Lee", "email": "a@x", "role": "nurse"},
        "permissions": ["patients.view"],
        "clinic_ids": ["1"],
    })}, call, token=None)
    user, perms, clinic_ids = profile
    assert token == "jwt-1"
    assert user.full_name == "Ada Lee"
    assert perms == ["patients.view"]
    assert clinic_ids == ["1"]
    assert json.loads(rec.requests[0].content) == {"api_key": "key-123"}


# ── Tests: writes ────────────────────────────────────────────────────

def test_set_role_permissions_sends_full_sorted_set():
    _, rec = run_with({("PUT", "/api/roles/4/permissions"): ok({})},
                      lambda c: c.set_role_permissions("4", {"b.view", "a.view"}))
    assert json.loads(rec.requests[0].content) == {"permissions": ["a.view", "b.view"]}


def test_grant_sends_default_role_and_permissions():
    _, rec = run_with({("POST", "/api/clinics/2/users"): (201, {"success": True, "data": {}})},
                      lambda c: c.grant_clinic_access("2", "7"))
    body = json.loads(rec.requests[0].content)
    assert body == {"user_id": "7", "role": "staff", "permissions": ["read_patients", "read_appointments"]}


def test_revoke_uses_delete():
    _, rec = run_with({("DELETE", "/api/clinics/2/users/7"): ok({})},
                      lambda c: c.revoke_clinic_access("2", "7"))
    assert rec.requests[0].method == "DELETE"


def test_get_user_clinic_access_returns_tuple():
    clinics, _ = run_with({("GET", "/api/clinics/user/7/access"): ok({"clinics": [
        {"_id": "1", "name": "North", "code": "N1"},
        {"_id": "2", "name": "South"},
    ]})}, lambda c: c.get_user_clinic_access("7"))
    assert isinstance(clinics, tuple)
    assert [c.id for c in clinics] == ["1", "2"]


# ── Tests: error mapping ─────────────────────────────────────────────

@pytest.mark.parametrize("status, message", [
    (401, "Authentication required. Please log in again."),
    (403, "Admin access required for this operation."),
])
def test_auth_statuses_have_fixed_messages(status, message):
    with pytest.raises(FetchError) as e:
        run_with({("GET", "/api/roles"): (status, {"success": False, "error": "nope"})},
                 lambda c: c.list_roles())
    assert e.value.status_code == status
    assert e.value.message == message


def test_server_error_message_is_surfaced():
    with pytest.raises(MutationError) as e:
        run_with({("PUT", "/api/roles/4/permissions"): (400, {"success": False, "error": "Unknown permissions: x.y"})},
                 lambda c: c.set_role_permissions("4", ["x.y"]))
    assert e.value.status_code == 400
    assert "Unknown permissions" in e.value.message


def test_success_false_in_2xx_is_an_error():
    with pytest.raises(FetchError) as e:
        run_with({("GET", "/api/users/all"): (200, {"success": False, "error": "Denied"})},
                 lambda c: c.list_users())
    assert e.value.message == "Denied"


def test_transport_failure_raises_backend_error():
    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def go():
        async with BackendClient(base_url="http://backend/api",
                                 transport=httpx.MockTransport(broken)) as client:
            await client.revoke_clinic_access("1", "2")

    with pytest.raises(MutationError) as e:
        asyncio.run(go())
    assert e.value.status_code is None
    assert "Could not reach backend" in e.value.message
