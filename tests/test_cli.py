"""
Unit tests for the interactive admin console command dispatch.
"""

import asyncio
import threading

from clinic_access.catalog import default_catalog
from clinic_access import cli
from clinic_access.cli import Console
from clinic_access.client import MutationError
from clinic_access.models import AccessContext, Clinic, Role, User


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeBackendClient:
    def __init__(self):
        self.token = None
        self.saved = []
        self.fail_save = False
        self.access = {"10": ()}
        self.logins = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def login(self, api_key):
        self.logins.append(api_key)
        self.token = "jwt"
        user = User(id="1", first_name="Ana", last_name="Admin", email="ana@example.com", role="admin")
        return user, [], []

    async def list_permissions(self):
        return default_catalog()

    async def list_roles(self):
        return [
            Role(id="1", name="super_admin"),
            Role(id="2", name="nurse", display_name="Nurse", permissions=frozenset({"patients.view"})),
        ]

    async def set_role_permissions(self, role_id, permissions):
        if self.fail_save:
            raise MutationError("Admin access required for this operation.", 403)
        self.saved.append((role_id, set(permissions)))

    async def list_users(self):
        return [User(id="10", first_name="Nia", last_name="Nurse", email="nia@example.com", role="nurse")]

    async def list_clinics(self):
        return [Clinic(id="1", name="North")]

    async def get_user_clinic_access(self, user_id):
        return tuple(Clinic(id=c, name="North") for c in self.access[user_id])

    async def grant_clinic_access(self, clinic_id, user_id):
        self.access[user_id] = self.access[user_id] + (clinic_id,)

    async def revoke_clinic_access(self, clinic_id, user_id):
        self.access[user_id] = tuple(c for c in self.access[user_id] if c != clinic_id)


def make_console(client=None, role="admin"):
    user = User(id="1", first_name="Ana", last_name="Admin", email="ana@example.com", role=role)
    return Console(client or FakeBackendClient(), AccessContext(user=user))


def send(console, *lines):
    for line in lines:
        asyncio.run(console.dispatch(line))


# ── Tests ────────────────────────────────────────────────────────────

def test_quit_stops_loop():
    assert asyncio.run(make_console().dispatch("quit")) is False
    assert asyncio.run(make_console().dispatch("help")) is True


def test_nav_prints_visible_sections(capsys):
    send(make_console(), "nav")
    out = capsys.readouterr().out
    assert "Financial Management" in out
    assert "Test Reports" in out


def test_roles_hide_super_admin(capsys):
    send(make_console(), "roles")
    out = capsys.readouterr().out
    assert "Nurse" in out
    assert "super_admin" not in out


def test_toggle_and_save(capsys):
    client = FakeBackendClient()
    console = make_console(client)
    send(console, "role 2", "toggle appointments.view", "save")
    assert client.saved == [("2", {"patients.view", "appointments.view"})]
    assert "[role] Saved." in capsys.readouterr().out


def test_filtered_bulk_select(capsys):
    client = FakeBackendClient()
    console = make_console(client)
    send(console, "role 2", "perms invoices", "all", "save")
    assert client.saved == [("2", {"patients.view", "invoices.view"})]


def test_save_failure_is_reported(capsys):
    client = FakeBackendClient()
    client.fail_save = True
    console = make_console(client)
    send(console, "role 2", "toggle payroll.view", "save")
    out = capsys.readouterr().out
    assert "[SAVE FAILED]" in out
    assert "Admin access required" in out
    assert console.session.roles.is_dirty("2")


def test_clinic_toggle_shows_reconciled_state(capsys):
    client = FakeBackendClient()
    console = make_console(client)
    send(console, "clinic 10 1")
    assert client.access["10"] == ("1",)
    assert "North" in capsys.readouterr().out


def test_unknown_command(capsys):
    send(make_console(), "frobnicate")
    assert "Unknown command" in capsys.readouterr().out


def test_run_logs_in_and_reads_commands_off_the_event_loop(monkeypatch, capsys):
    client = FakeBackendClient()
    answers = iter(["key-123", "roles", "quit"])
    seen_threads = []

    def fake_input(prompt=""):
        seen_threads.append(threading.current_thread() is threading.main_thread())
        return next(answers)

    monkeypatch.setattr(cli, "API_TOKEN", None)
    monkeypatch.setattr(cli, "BackendClient", lambda **kwargs: client)
    monkeypatch.setattr("builtins.input", fake_input)

    asyncio.run(cli.run())
    out = capsys.readouterr().out
    assert client.logins == ["key-123"]
    assert "[auth] Logged in as: Ana Admin (role=admin)" in out
    assert "Nurse" in out
    assert "Goodbye." in out
    assert seen_threads == [False, False, False]


def test_run_stops_when_key_prompt_is_closed(monkeypatch, capsys):
    client = FakeBackendClient()

    def closed_input(prompt=""):
        raise EOFError

    monkeypatch.setattr(cli, "API_TOKEN", None)
    monkeypatch.setattr(cli, "BackendClient", lambda **kwargs: client)
    monkeypatch.setattr("builtins.input", closed_input)

    asyncio.run(cli.run())
    assert "Exiting." in capsys.readouterr().out
    assert client.logins == []


def test_run_reports_invalid_login_profile(monkeypatch, capsys):
    client = FakeBackendClient()

    async def bad_login(api_key):
        raise ValueError("Record has no id: {}")

    client.login = bad_login
    monkeypatch.setattr(cli, "API_TOKEN", None)
    monkeypatch.setattr(cli, "BackendClient", lambda **kwargs: client)
    monkeypatch.setattr("builtins.input", lambda prompt="": "key-123")

    asyncio.run(cli.run())
    out = capsys.readouterr().out
    assert "[ERROR] Login failed: backend returned an invalid profile." in out
    assert "Logged in as" not in out
