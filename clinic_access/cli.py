"""
Interactive admin console for clinic access control.
Edit role permissions and per-user clinic access against the clinic backend.
"""

import asyncio
import shlex

from clinic_access.admin import AdminSession
from clinic_access.catalog import default_catalog
from clinic_access.client import BackendClient, BackendError
from clinic_access.config import API_BASE_URL, API_TOKEN, CLINIC_ID, MAX_PREVIEW_ROWS
from clinic_access.matrix import (
    clinic_access_matrix, coverage_summary, privileged_note,
    render_matrix, role_permission_matrix,
)
from clinic_access.models import AccessContext, NavigationItem
from clinic_access.navigation import (
    DEFAULT_NAVIGATION, dangling_permissions, filter_sections, validate_navigation,
)
from clinic_access.rbac import can_access, is_privileged

HELP = """
Commands:
  nav                      show the navigation visible to you
  roles                    list editable roles
  role <id>                select a role to edit
  perms [filter]           list permissions for the selected role (sets the filter)
  toggle <permission>      toggle one permission on the selected role
  all | none               select / deselect every permission matching the filter
  save | revert            persist or discard the selected role's edits
  matrix                   role × permission matrix and coverage summary
  users [filter]           list users
  access <user_id>         show a user's clinic access
  clinic <user_id> <id>    grant or revoke a user's access to a clinic
  refresh                  reload every user's clinic access
  clinics-matrix           user × clinic matrix
  help | quit
""".strip()


def _report(result, what: str) -> bool:
    if result.ok:
        return True
    label = "SAVE FAILED" if result.kind == "mutation" else "LOAD FAILED"
    print(f"\n[{label}] {what}")
    print("Details:", result.error)
    print("Run the command again to retry.")
    return False


def _print_nav_item(item: NavigationItem, indent: str = "  "):
    badge = f" [{item.badge}]" if item.badge else ""
    print(f"{indent}- {item.name}{badge}  ({item.href})")
    for child in item.children:
        _print_nav_item(child, indent + "    ")


class Console:
    """State for one REPL session: the operator and their admin session."""

    def __init__(self, client: BackendClient, ctx: AccessContext):
        self.client = client
        self.ctx = ctx
        self.session = AdminSession(client)
        self.role_id = None
        self.filter = ""

    async def ensure_roles(self) -> bool:
        if self.session.roles.loaded:
            return True
        return _report(await self.session.roles.load(), "Could not load roles and permissions.")

    async def ensure_clinic_admin(self) -> bool:
        if self.session.clinic_access.users:
            return True
        # roles are kept as loaded so unsaved role edits survive
        if not await self.ensure_roles():
            return False
        if not _report(await self.session.clinic_access.load(), "Could not load users and clinics."):
            return False
        return _report(self.session.check_role_references(), "Users reference roles that no longer exist.")

    # ── Commands ─────────────────────────────────────────────────────

    def cmd_nav(self):
        for section in filter_sections(self.ctx, DEFAULT_NAVIGATION):
            print(f"\n{section.title}")
            for item in section.items:
                _print_nav_item(item)

    async def cmd_roles(self):
        if not await self.ensure_roles():
            return
        for role in self.session.roles.list_roles():
            marker = "*" if role.id == self.role_id else " "
            dirty = " (unsaved)" if self.session.roles.is_dirty(role.id) else ""
            kind = "system" if role.is_system_role else "custom"
            print(f" {marker} {role.id:>4}  {role.label:<20} {kind:<7} {len(role.permissions)} permissions{dirty}")

    async def cmd_role(self, role_id):
        if not await self.ensure_roles():
            return
        role = self.session.roles.get_role(role_id)
        self.role_id = role.id
        print(f"[role] Editing {role.label} ({len(role.permissions)} permissions)")

    async def cmd_perms(self, query=""):
        if not await self.ensure_roles():
            return
        self.filter = query
        role = self.session.roles.get_role(self.role_id) if self.role_id else None
        visible = self.session.roles.visible_permissions(self.filter)
        if not visible:
            print("(no permissions match the filter)")
            return
        for p in visible:
            mark = "[x]" if role and p.name in role.permissions else "[ ]"
            print(f"  {mark} {p.name:<24} {p.display_name:<30} {p.category or ''}")

    def _require_role(self):
        if not self.role_id:
            raise ValueError("Select a role first with: role <id>")
        return self.role_id

    def cmd_toggle(self, permission):
        role = self.session.roles.toggle_permission(self._require_role(), permission)
        state = "granted" if permission in role.permissions else "removed"
        print(f"[role] {permission} {state} (unsaved)")

    def cmd_bulk(self, select: bool):
        role_id = self._require_role()
        visible = self.session.roles.visible_permissions(self.filter)
        if select:
            role = self.session.roles.select_all_visible(role_id, visible)
        else:
            role = self.session.roles.deselect_all_visible(role_id, visible)
        scope = f"matching '{self.filter}'" if self.filter else "in the catalog"
        verb = "Selected" if select else "Deselected"
        print(f"[role] {verb} {len(visible)} permissions {scope}; role now has {len(role.permissions)}.")

    async def cmd_save(self):
        role_id = self._require_role()
        if _report(await self.session.roles.save_role(role_id), "Role permissions were NOT saved."):
            print("[role] Saved.")

    def cmd_revert(self):
        role = self.session.roles.revert_role(self._require_role())
        print(f"[role] Reverted to {len(role.permissions)} saved permissions.")

    async def cmd_matrix(self):
        if not await self.ensure_roles():
            return
        roles = self.session.roles.list_roles()
        catalog = self.session.roles.catalog
        print(render_matrix(role_permission_matrix(roles, catalog), max_rows=MAX_PREVIEW_ROWS))
        print("\n[Coverage by category]")
        print(render_matrix(coverage_summary(roles, catalog)))
        note = privileged_note(roles)
        if note:
            print(f"\nNote: {note}")

    async def cmd_users(self, query=""):
        if not await self.ensure_clinic_admin():
            return
        for user in self.session.clinic_access.filter_users(query):
            status = "active" if user.is_active else "inactive"
            print(f"  {user.id:>4}  {user.full_name:<24} {user.email:<30} {user.role or '-':<13} {status}")

    async def cmd_access(self, user_id):
        if not await self.ensure_clinic_admin():
            return
        editor = self.session.clinic_access
        user = editor.get_user(user_id)
        if user is None:
            raise ValueError(f"Unknown user '{user_id}'.")
        result = await editor.load_user_clinic_access(user.id)
        if not _report(result, f"Could not load clinic access for {user.full_name}."):
            return
        if is_privileged(user.role):
            print(f"[access] {user.full_name} is {user.role}: every clinic is accessible.")
        clinics = result.value
        if not clinics:
            print("(no clinic grants)")
        for clinic in clinics:
            print(f"  {clinic.id:>4}  {clinic.name} ({clinic.code or '-'})")

    async def cmd_clinic(self, user_id, clinic_id):
        if not await self.ensure_clinic_admin():
            return
        result = await self.session.clinic_access.toggle_clinic_access(user_id, clinic_id)
        _report(result, "Clinic access change did not complete; showing the backend's current state.")
        await self.cmd_access(user_id)

    async def cmd_refresh(self):
        if not await self.ensure_clinic_admin():
            return
        if _report(await self.session.clinic_access.refresh_all(), "Some users could not be refreshed."):
            print("[access] Refreshed.")

    async def cmd_clinics_matrix(self):
        if not await self.ensure_clinic_admin():
            return
        editor = self.session.clinic_access
        access = {u.id: editor.access_for(u.id) for u in editor.users}
        df = clinic_access_matrix(editor.users, editor.clinics, access)
        print(render_matrix(df, max_rows=MAX_PREVIEW_ROWS))
        if any(v is None for v in access.values()):
            print("\n'?' = not loaded yet (run 'refresh').")

    async def dispatch(self, line: str) -> bool:
        """Run one command line; returns False when the user quits."""
        parts = shlex.split(line)
        cmd, args = parts[0].lower(), parts[1:]

        if cmd in {"quit", "exit"}:
            return False
        if cmd == "help":
            print(HELP)
        elif cmd == "nav":
            self.cmd_nav()
        elif cmd == "roles":
            await self.cmd_roles()
        elif cmd == "role" and len(args) == 1:
            await self.cmd_role(args[0])
        elif cmd == "perms":
            await self.cmd_perms(" ".join(args))
        elif cmd == "toggle" and len(args) == 1:
            self.cmd_toggle(args[0])
        elif cmd in {"all", "none"}:
            self.cmd_bulk(select=(cmd == "all"))
        elif cmd == "save":
            await self.cmd_save()
        elif cmd == "revert":
            self.cmd_revert()
        elif cmd == "matrix":
            await self.cmd_matrix()
        elif cmd == "users":
            await self.cmd_users(" ".join(args))
        elif cmd == "access" and len(args) == 1:
            await self.cmd_access(args[0])
        elif cmd == "clinic" and len(args) == 2:
            await self.cmd_clinic(args[0], args[1])
        elif cmd == "refresh":
            await self.cmd_refresh()
        elif cmd == "clinics-matrix":
            await self.cmd_clinics_matrix()
        else:
            print("Unknown command or wrong arguments. Type 'help'.")
        return True


async def run():
    print("=== Clinic Access Console: Roles, Permissions & Clinic Access ===\n")

    dangling = dangling_permissions(validate_navigation(DEFAULT_NAVIGATION), default_catalog())
    if dangling:
        print(f"[WARN] Navigation references unknown permissions: {', '.join(sorted(dangling))}")

    async with BackendClient(base_url=API_BASE_URL, token=API_TOKEN, clinic_id=CLINIC_ID) as client:
        # ── Login ────────────────────────────────────────────────────
        try:
            if client.token:
                user, perms, clinic_ids = await client.get_profile()
            else:
                try:
                    api_key = (await asyncio.to_thread(input, "Enter access key (or 'quit'): ")).strip()
                except (EOFError, KeyboardInterrupt):
                    print("\nExiting.")
                    return
                if not api_key or api_key.lower() in {"quit", "exit"}:
                    print("Goodbye.")
                    return
                user, perms, clinic_ids = await client.login(api_key)
        except BackendError as e:
            print("\n[ERROR] Login failed.")
            print("Details:", e.message)
            return
        except ValueError as e:
            print("\n[ERROR] Login failed: backend returned an invalid profile.")
            print("Details:", e)
            return

        ctx = AccessContext(user=user, permissions=frozenset(perms), clinic_ids=frozenset(clinic_ids))
        print(f"\n[auth] Logged in as: {user.full_name} (role={user.role})")
        if is_privileged(user.role):
            print("[auth] Unrestricted access: all permission checks are bypassed for this account.")

        if not can_access(ctx, "permissions.view"):
            print("[auth] You need 'permissions.view' to use the console.")
            return

        console = Console(client, ctx)
        print("Type 'help' for commands.")

        # ── REPL ─────────────────────────────────────────────────────
        while True:
            try:
                line = (await asyncio.to_thread(input, "\naccess> ")).strip()
            except (EOFError, KeyboardInterrupt):
                print("\nExiting.")
                break
            if not line:
                continue
            try:
                if not await console.dispatch(line):
                    print("Goodbye.")
                    break
            except ValueError as e:
                print("[ERROR]", e)

        console.session.reset_session_cache()


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
