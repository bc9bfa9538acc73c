"""
Async HTTP client for the clinic backend's access-control endpoints.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from clinic_access.catalog import PermissionCatalog, parse_permission_id
from clinic_access.config import (
    API_BASE_URL, API_TIMEOUT_SECONDS,
    DEFAULT_CLINIC_GRANT_PERMISSIONS, DEFAULT_CLINIC_GRANT_ROLE,
)
from clinic_access.models import Clinic, Role, User


class BackendError(Exception):
    """A backend call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class FetchError(BackendError):
    pass


class MutationError(BackendError):
    pass


def _error_message(status: int, body: Any, fallback: str) -> str:
    if status == 401:
        return "Authentication required. Please log in again."
    if status == 403:
        return "Admin access required for this operation."
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return fallback


# ── Record parsing ───────────────────────────────────────────────────

def _rid(rec: Mapping) -> str:
    if not isinstance(rec, Mapping):
        raise ValueError(f"Expected a record object, got {type(rec).__name__}.")
    rid = rec.get("_id", rec.get("id"))
    if rid is None or rid == "":
        raise ValueError(f"Record has no id: {dict(rec)!r}")
    return str(rid)


def role_from_record(rec: Mapping) -> Role:
    rid = _rid(rec)
    if not rec.get("name"):
        raise ValueError(f"Role '{rid}' has no name.")
    perms = rec.get("effective_permissions")
    if perms is None:
        perms = rec.get("permissions") or []
    if not isinstance(perms, (list, tuple)):
        raise ValueError(f"Role '{rid}' permissions must be a list.")
    return Role(
        id=rid,
        name=str(rec["name"]),
        display_name=rec.get("display_name"),
        is_system_role=bool(rec.get("is_system_role", False)),
        permissions=frozenset(parse_permission_id(p) for p in perms),
    )


def user_from_record(rec: Mapping) -> User:
    return User(
        id=_rid(rec),
        first_name=str(rec.get("first_name") or ""),
        last_name=str(rec.get("last_name") or ""),
        email=str(rec.get("email") or ""),
        role=rec.get("role"),
        is_active=bool(rec.get("is_active", True)),
    )


def clinic_from_record(rec: Mapping) -> Clinic:
    return Clinic(
        id=_rid(rec),
        name=str(rec.get("name") or ""),
        code=rec.get("code"),
        is_active=bool(rec.get("is_active", True)),
    )


# ── Client ───────────────────────────────────────────────────────────

class BackendClient:
    """
    Thin wrapper over ``httpx.AsyncClient``. Reads raise ``FetchError``,
    writes raise ``MutationError``; both carry the HTTP status when there
    was a response.
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        token: Optional[str] = None,
        clinic_id: Optional[str] = None,
        timeout: float = API_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.clinic_id = clinic_id
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.clinic_id:
            headers["X-Clinic-Id"] = str(self.clinic_id)
        return headers

    async def _request(self, method: str, path: str, error_cls=FetchError,
                       json: Optional[dict] = None) -> Dict[str, Any]:
        try:
            response = await self._http.request(method, path, json=json, headers=self._headers())
        except httpx.HTTPError as e:
            raise error_cls(f"Could not reach backend: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            raise error_cls(
                _error_message(response.status_code, body,
                               f"{method} {path} failed with status {response.status_code}"),
                status_code=response.status_code,
            )
        if isinstance(body, dict) and body.get("success") is False:
            raise error_cls(str(body.get("error") or f"{method} {path} was rejected"),
                            status_code=response.status_code)
        if isinstance(body, dict):
            return body.get("data") or {}
        return {}

    async def _get(self, path: str) -> Dict[str, Any]:
        return await self._request("GET", path)

    # ── Session ──────────────────────────────────────────────────────

    async def login(self, api_key: str) -> Tuple[User, List[str], List[str]]:
        """Exchange an access key for a token; returns (user, permissions, clinic ids)."""
        data = await self._request("POST", "/auth/login", json={"api_key": api_key})
        self.token = data.get("token")
        return self._profile_from(data)

    async def get_profile(self) -> Tuple[User, List[str], List[str]]:
        return self._profile_from(await self._get("/auth/me"))

    async def logout(self) -> None:
        await self._request("POST", "/auth/logout", error_cls=MutationError)
        self.token = None

    @staticmethod
    def _profile_from(data: Mapping) -> Tuple[User, List[str], List[str]]:
        user = user_from_record(data.get("user") or {})
        perms = [str(p) for p in data.get("permissions") or []]
        clinic_ids = [str(c) for c in data.get("clinic_ids") or []]
        return user, perms, clinic_ids

    # ── Catalog and roles ────────────────────────────────────────────

    async def list_permissions(self) -> PermissionCatalog:
        data = await self._get("/permissions")
        return PermissionCatalog.from_records(data.get("permissions") or [])

    async def list_roles(self) -> List[Role]:
        data = await self._get("/roles")
        return [role_from_record(r) for r in data.get("roles") or []]

    async def set_role_permissions(self, role_id: str, permissions: Iterable[str]) -> None:
        """Overwrite the role's whole permission set."""
        await self._request(
            "PUT", f"/roles/{role_id}/permissions", error_cls=MutationError,
            json={"permissions": sorted(permissions)},
        )

    # ── Users, clinics and clinic access ─────────────────────────────

    async def list_users(self) -> List[User]:
        data = await self._get("/users/all")
        return [user_from_record(u) for u in data.get("users") or []]

    async def list_clinics(self) -> List[Clinic]:
        data = await self._get("/clinics/all")
        return [clinic_from_record(c) for c in data.get("clinics") or []]

    async def get_user_clinic_access(self, user_id: str) -> Tuple[Clinic, ...]:
        data = await self._get(f"/clinics/user/{user_id}/access")
        return tuple(clinic_from_record(c) for c in data.get("clinics") or [])

    async def grant_clinic_access(self, clinic_id: str, user_id: str) -> None:
        await self._request(
            "POST", f"/clinics/{clinic_id}/users", error_cls=MutationError,
            json={
                "user_id": user_id,
                "role": DEFAULT_CLINIC_GRANT_ROLE,
                "permissions": list(DEFAULT_CLINIC_GRANT_PERMISSIONS),
            },
        )

    async def revoke_clinic_access(self, clinic_id: str, user_id: str) -> None:
        await self._request("DELETE", f"/clinics/{clinic_id}/users/{user_id}", error_cls=MutationError)
