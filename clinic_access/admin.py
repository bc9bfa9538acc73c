"""
Administration surface – editing role permissions and per-user clinic access.

State held here is session-scoped: one ``AdminSession`` per authenticated
administrator, cleared with ``reset_session_cache()`` on logout. Entities
are always replaced whole (a full ``Role``, a full per-user clinic tuple),
never patched field by field.
"""

import asyncio
from collections import Counter
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set, Tuple

from clinic_access.catalog import PermissionCatalog
from clinic_access.client import BackendClient, BackendError, FetchError
from clinic_access.config import LOCKED_ROLES
from clinic_access.models import (
    FETCH, MUTATION, Clinic, ConfigurationError, OperationResult, Permission, Role, User,
)
from clinic_access.rbac import validate_role_references


class _InFlight:
    """Named in-flight operations, so unrelated rows never block each other."""

    def __init__(self):
        self.keys: Counter = Counter()

    @contextmanager
    def track(self, key: str):
        self.keys[key] += 1
        try:
            yield
        finally:
            self.keys[key] -= 1
            if self.keys[key] <= 0:
                del self.keys[key]

    def busy(self, key: str) -> bool:
        return self.keys[key] > 0


def _names(perms: Iterable) -> Set[str]:
    return {p.name if isinstance(p, Permission) else str(p) for p in perms}


# ── Role permissions ─────────────────────────────────────────────────

class RolePermissionEditor:
    def __init__(self, client: BackendClient, in_flight: Optional[_InFlight] = None):
        self.client = client
        self.in_flight = in_flight or _InFlight()
        self.catalog = PermissionCatalog()
        self._roles: Dict[str, Role] = {}
        self._saved: Dict[str, frozenset] = {}
        self.loaded = False
        self._epoch = 0

    async def load(self) -> OperationResult:
        """Fetch catalog and roles together; ``super_admin`` is never listed."""
        epoch = self._epoch
        with self.in_flight.track("load:roles"):
            try:
                catalog, roles = await asyncio.gather(
                    self.client.list_permissions(), self.client.list_roles(),
                )
            except BackendError as e:
                return OperationResult.failure(FETCH, e.message, e.status_code)
            except ValueError as e:
                return OperationResult.failure(FETCH, f"Backend returned invalid data: {e}")

        if epoch != self._epoch:
            return OperationResult.failure(FETCH, "Session was reset while loading.")
        editable = [r for r in roles if r.name not in LOCKED_ROLES]
        self.catalog = catalog
        self._roles = {r.id: r for r in editable}
        self._saved = {r.id: r.permissions for r in editable}
        self.loaded = True
        return OperationResult.success(FETCH)

    def list_roles(self) -> List[Role]:
        return list(self._roles.values())

    def list_permissions(self) -> List[Permission]:
        return list(self.catalog)

    def get_role(self, role_id: str) -> Role:
        try:
            return self._roles[str(role_id)]
        except KeyError:
            raise ValueError(f"Unknown or non-editable role '{role_id}'.") from None

    def visible_permissions(self, query: Optional[str] = None) -> List[Permission]:
        return self.catalog.search(query)

    def _set(self, role_id: str, permissions: Iterable[str]) -> Role:
        role = replace(self.get_role(role_id), permissions=frozenset(permissions))
        self._roles[role.id] = role
        return role

    def toggle_permission(self, role_id: str, permission: str) -> Role:
        """Local only; nothing is sent until ``save_role``."""
        if permission not in self.catalog:
            raise ValueError(f"Unknown permission '{permission}'.")
        current = set(self.get_role(role_id).permissions)
        current.symmetric_difference_update({permission})
        return self._set(role_id, current)

    def select_all_visible(self, role_id: str, visible: Iterable) -> Role:
        """Add exactly the permissions passing the active filter."""
        return self._set(role_id, set(self.get_role(role_id).permissions) | _names(visible))

    def deselect_all_visible(self, role_id: str, visible: Iterable) -> Role:
        """Remove exactly the permissions passing the active filter."""
        return self._set(role_id, set(self.get_role(role_id).permissions) - _names(visible))

    def all_visible_selected(self, role_id: str, visible: Iterable) -> bool:
        names = _names(visible)
        if not names:
            return False
        return names <= self.get_role(role_id).permissions

    def is_dirty(self, role_id: str) -> bool:
        role = self.get_role(role_id)
        return role.permissions != self._saved.get(role.id, frozenset())

    def revert_role(self, role_id: str) -> Role:
        role = self.get_role(role_id)
        return self._set(role.id, self._saved.get(role.id, frozenset()))

    async def save_role(self, role_id: str) -> OperationResult:
        """
        Persist the role's full local set in one call. On failure the local
        edits are kept so the caller can retry or revert.
        """
        role = self.get_role(role_id)
        epoch = self._epoch
        with self.in_flight.track(f"save:{role.id}"):
            try:
                await self.client.set_role_permissions(role.id, role.permissions)
            except BackendError as e:
                return OperationResult.failure(MUTATION, e.message, e.status_code)
        if epoch == self._epoch:
            self._saved[role.id] = role.permissions
        return OperationResult.success(MUTATION)

    def reset(self) -> None:
        self._epoch += 1
        self.catalog = PermissionCatalog()
        self._roles.clear()
        self._saved.clear()
        self.loaded = False


# ── Clinic access ────────────────────────────────────────────────────

class ClinicAccessEditor:
    def __init__(self, client: BackendClient, in_flight: Optional[_InFlight] = None):
        self.client = client
        self.in_flight = in_flight or _InFlight()
        self.users: List[User] = []
        self.clinics: List[Clinic] = []
        # What the caller shows; may briefly hold an optimistic guess.
        self._shown: Dict[str, Tuple[Clinic, ...]] = {}
        # Per-user backend reads, cleared by every reconciliation.
        self._cache: Dict[str, Tuple[Clinic, ...]] = {}
        self.failed_users: Set[str] = set()
        self._refresh_seq = 0
        self._applied_seq = 0
        # Bumped by every refresh and reset; per-user reads started under an
        # older generation never write.
        self._generation = 0
        # Bumped by reset only; reads started in a previous session never write.
        self._epoch = 0

    async def load(self) -> OperationResult:
        epoch = self._epoch
        with self.in_flight.track("load:clinic-admin"):
            try:
                users, clinics = await asyncio.gather(
                    self.client.list_users(), self.client.list_clinics(),
                )
            except BackendError as e:
                return OperationResult.failure(FETCH, e.message, e.status_code)
            except ValueError as e:
                return OperationResult.failure(FETCH, f"Backend returned invalid data: {e}")
        if epoch != self._epoch:
            return OperationResult.failure(FETCH, "Session was reset while loading.")
        self.users = users
        self.clinics = clinics
        return OperationResult.success(FETCH)

    def get_user(self, user_id: str) -> Optional[User]:
        return next((u for u in self.users if u.id == str(user_id)), None)

    def get_clinic(self, clinic_id: str) -> Optional[Clinic]:
        return next((c for c in self.clinics if c.id == str(clinic_id)), None)

    def filter_users(self, query: Optional[str] = None) -> List[User]:
        q = (query or "").strip().lower()
        if not q:
            return list(self.users)
        return [
            u for u in self.users
            if q in u.first_name.lower() or q in u.last_name.lower() or q in u.email.lower()
        ]

    def access_for(self, user_id: str) -> Optional[Tuple[Clinic, ...]]:
        """The shown clinic list, or ``None`` while unknown."""
        return self._shown.get(str(user_id))

    def is_cached(self, user_id: str) -> bool:
        return str(user_id) in self._cache

    async def load_user_clinic_access(self, user_id: str, refresh: bool = False) -> OperationResult:
        """
        Memoized per user: a cached entry is returned as-is (``value`` is the
        same tuple) with no network call unless *refresh* is set.
        """
        user_id = str(user_id)
        if not refresh and user_id in self._cache:
            self._shown[user_id] = self._cache[user_id]
            return OperationResult.success(FETCH, value=self._cache[user_id])

        generation = self._generation
        with self.in_flight.track(f"load:{user_id}"):
            try:
                clinics = await self._read_access(user_id)
            except BackendError as e:
                return OperationResult.failure(FETCH, e.message, e.status_code, failed_ids=(user_id,))

        # A reconciliation or reset happened meanwhile; its state is newer.
        if generation != self._generation:
            return OperationResult.success(FETCH, value=clinics)
        self._cache[user_id] = clinics
        self._shown[user_id] = clinics
        self.failed_users.discard(user_id)
        return OperationResult.success(FETCH, value=clinics)

    async def _read_access(self, user_id: str) -> Tuple[Clinic, ...]:
        try:
            return await self.client.get_user_clinic_access(user_id)
        except ValueError as e:
            raise FetchError(f"Backend returned invalid data: {e}") from e

    async def refresh_all(self) -> OperationResult:
        """
        Re-read every user's clinic list and replace all local state. If two
        refreshes overlap, the one started last wins.
        """
        self._refresh_seq += 1
        self._generation += 1
        seq = self._refresh_seq
        epoch = self._epoch
        user_ids = [u.id for u in self.users]

        async def read(uid):
            try:
                return uid, await self._read_access(uid), None
            except BackendError as e:
                return uid, None, e

        with self.in_flight.track("refresh"):
            results = await asyncio.gather(*(read(uid) for uid in user_ids))

        if epoch != self._epoch or seq < self._applied_seq:
            return OperationResult.success(FETCH)
        self._applied_seq = seq

        fresh: Dict[str, Tuple[Clinic, ...]] = {}
        failed: List[str] = []
        last_error: Optional[BackendError] = None
        for uid, clinics, err in results:
            if err is None:
                fresh[uid] = clinics
            else:
                failed.append(uid)
                last_error = err

        self._cache = dict(fresh)
        self._shown = dict(fresh)
        self.failed_users = set(failed)

        if failed:
            return OperationResult.failure(
                FETCH,
                f"Could not refresh clinic access for {len(failed)} user(s): {last_error.message}",
                last_error.status_code,
                failed_ids=tuple(failed),
            )
        return OperationResult.success(FETCH)

    async def toggle_clinic_access(self, user_id: str, clinic_id: str) -> OperationResult:
        """
        Flip the user's access to one clinic: update the shown list at once,
        call grant or revoke, then reconcile every user from the backend
        whatever the outcome.
        """
        user_id, clinic_id = str(user_id), str(clinic_id)
        clinic = self.get_clinic(clinic_id)
        if self.get_user(user_id) is None or clinic is None:
            return OperationResult.failure(MUTATION, f"Unknown user '{user_id}' or clinic '{clinic_id}'.")

        current = self._shown.get(user_id)
        if current is None:
            loaded = await self.load_user_clinic_access(user_id)
            if not loaded.ok:
                return loaded
            current = loaded.value

        had_access = any(c.id == clinic_id for c in current)
        if had_access:
            self._shown[user_id] = tuple(c for c in current if c.id != clinic_id)
        else:
            self._shown[user_id] = current + (clinic,)

        outcome = OperationResult.success(MUTATION)
        with self.in_flight.track(f"toggle:{user_id}:{clinic_id}"):
            try:
                if had_access:
                    await self.client.revoke_clinic_access(clinic_id, user_id)
                else:
                    await self.client.grant_clinic_access(clinic_id, user_id)
            except BackendError as e:
                outcome = OperationResult.failure(MUTATION, e.message, e.status_code)

        refreshed = await self.refresh_all()
        if not outcome.ok:
            return outcome
        return refreshed if not refreshed.ok else outcome

    def reset(self) -> None:
        self._epoch += 1
        self._generation += 1
        self.users = []
        self.clinics = []
        self._shown.clear()
        self._cache.clear()
        self.failed_users.clear()


# ── Session ──────────────────────────────────────────────────────────

class AdminSession:
    """Both editors for one administrator, sharing in-flight tracking."""

    def __init__(self, client: BackendClient):
        self.client = client
        self.in_flight = _InFlight()
        self.roles = RolePermissionEditor(client, self.in_flight)
        self.clinic_access = ClinicAccessEditor(client, self.in_flight)

    def is_busy(self, key: str) -> bool:
        return self.in_flight.busy(key)

    async def load(self) -> OperationResult:
        """
        Load both editors, then reject the data if any user references a
        role that no longer exists.
        """
        roles, access = await asyncio.gather(self.roles.load(), self.clinic_access.load())
        if not roles.ok:
            return roles
        if not access.ok:
            return access
        return self.check_role_references()

    def check_role_references(self) -> OperationResult:
        try:
            validate_role_references(self.clinic_access.users, self.roles.list_roles())
        except ConfigurationError as e:
            self.clinic_access.reset()
            return OperationResult.failure(FETCH, str(e))
        return OperationResult.success(FETCH)

    def reset_session_cache(self) -> None:
        """Logout hook: drop every session-scoped snapshot and cache."""
        self.roles.reset()
        self.clinic_access.reset()
