"""
End-to-end tests: the async admin surface talking to the Flask API through
an httpx transport bridged onto the Flask test client.
"""

import asyncio

import httpx
import pytest
from sqlalchemy.pool import StaticPool

from clinic_access.admin import AdminSession
from clinic_access.api import auth
from clinic_access.api.app import create_app
from clinic_access.client import BackendClient
from clinic_access.database import (
    add_clinic, add_user, fetch_role, fetch_user_clinics, init_engine, seed_defaults,
)
from clinic_access.models import AccessContext, MUTATION
from clinic_access.navigation import DEFAULT_NAVIGATION, filter_sections

FORWARDED_HEADERS = ("authorization", "content-type", "x-clinic-id")


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def backend():
    engine = init_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    seed_defaults(engine)
    ids = {
        "admin": add_user(engine, "Ana", "Admin", "admin@example.com", "admin", api_key="key-admin"),
        "nurse": add_user(engine, "Nia", "Nurse", "nurse@example.com", "nurse", api_key="key-nurse"),
        "north": add_clinic(engine, "North Clinic"),
    }
    auth.sessions.clear()
    app = create_app(engine)
    app.config["TESTING"] = True
    yield engine, app.test_client(), ids
    auth.sessions.clear()


def bridge(flask_client):
    """httpx MockTransport handler that forwards each request to Flask."""
    def handler(request: httpx.Request) -> httpx.Response:
        headers = {k: v for k, v in request.headers.items() if k.lower() in FORWARDED_HEADERS}
        resp = flask_client.open(
            request.url.path,
            method=request.method,
            headers=headers,
            data=request.content,
            query_string=request.url.query.decode(),
        )
        return httpx.Response(resp.status_code, content=resp.data,
                              headers={"Content-Type": resp.content_type})
    return handler


def make_client(flask_client):
    return BackendClient(base_url="http://testserver/api",
                         transport=httpx.MockTransport(bridge(flask_client)))


# ── Tests ────────────────────────────────────────────────────────────

def test_admin_edits_role_and_clinic_access(backend):
    engine, flask_client, ids = backend

    async def scenario():
        async with make_client(flask_client) as client:
            user, perms, clinic_ids = await client.login("key-admin")
            assert user.role == "admin"

            session = AdminSession(client)
            assert (await session.roles.load()).ok
            nurse = next(r for r in session.roles.list_roles() if r.name == "nurse")
            assert "super_admin" not in [r.name for r in session.roles.list_roles()]

            session.roles.toggle_permission(nurse.id, "tests.view")
            saved = await session.roles.save_role(nurse.id)
            assert saved.ok

            assert (await session.clinic_access.load()).ok
            nurse_id, north_id = str(ids["nurse"]), str(ids["north"])
            toggled = await session.clinic_access.toggle_clinic_access(nurse_id, north_id)
            assert toggled.ok
            assert [c.id for c in session.clinic_access.access_for(nurse_id)] == [north_id]

            await client.logout()
            session.reset_session_cache()
            return nurse.id

    nurse_role_id = asyncio.run(scenario())
    assert "tests.view" in fetch_role(engine, int(nurse_role_id))["effective_permissions"]
    assert [c["name"] for c in fetch_user_clinics(engine, ids["nurse"])] == ["North Clinic"]


def test_nurse_cannot_save_and_sees_failure(backend):
    engine, flask_client, ids = backend

    async def scenario():
        async with make_client(flask_client) as client:
            user, perms, clinic_ids = await client.login("key-nurse")
            ctx = AccessContext(user=user, permissions=frozenset(perms), clinic_ids=frozenset(clinic_ids))
            session = AdminSession(client)
            loaded = await session.roles.load()
            revoke = await session.clinic_access.toggle_clinic_access(str(ids["nurse"]), str(ids["north"]))
            return ctx, loaded, revoke

    ctx, loaded, revoke = asyncio.run(scenario())
    assert [s.title for s in filter_sections(ctx, DEFAULT_NAVIGATION)] == [
        "Overview", "Patient Management", "Analytics & Reports",
    ]
    assert not loaded.ok
    assert loaded.status_code == 403
    assert loaded.error == "Admin access required for this operation."
    # users were never loaded, so the toggle is rejected locally
    assert not revoke.ok
    assert revoke.kind == MUTATION
