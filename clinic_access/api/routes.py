"""
Flask route handlers for the REST API.
"""

import os
import sys
import traceback
from datetime import datetime, timedelta, timezone

from flask import jsonify, request
from sqlalchemy import text

from clinic_access.catalog import parse_permission_id
from clinic_access.config import LOCKED_ROLES, TOKEN_EXPIRY_HOURS
from clinic_access.database import (
    fetch_clinic, fetch_clinics, fetch_permission_names, fetch_permissions,
    fetch_role, fetch_roles, fetch_user, fetch_user_clinics, fetch_users,
    find_user_id_by_api_key, grant_clinic_access, load_access_context,
    replace_role_permissions, revoke_clinic_access,
)
from clinic_access.navigation import DEFAULT_NAVIGATION, filter_sections, navigation_to_dict
from clinic_access.api.auth import (
    cleanup_expired_sessions,
    generate_token,
    permission_required,
    sessions,
    token_required,
)


def _ok(data=None, status=200, **extra):
    body = {"success": True, "data": data if data is not None else {}}
    body.update(extra)
    return jsonify(body), status


def _fail(message, status):
    return jsonify({"success": False, "error": message}), status


def _profile(ctx):
    user = ctx.user
    return {
        "user": {
            "_id": user.id,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "email": user.email,
            "role": user.role,
            "is_active": user.is_active,
        },
        "permissions": sorted(ctx.permissions),
        "clinic_ids": sorted(ctx.clinic_ids),
    }


def register_routes(app, engine):
    """Register all API routes on the Flask *app*."""

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "Clinic Access API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "auth": "/api/auth/login",
                "navigation": "/api/navigation",
                "permissions": "/api/permissions",
                "roles": "/api/roles",
                "users": "/api/users/all",
                "clinics": "/api/clinics/all",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": False}
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            print(f"[WARN] Health check failed: {e}", file=sys.stderr)

        all_healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
            "active_sessions": len(sessions),
        }), 200 if all_healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        if not request.is_json:
            return _fail("Content-Type must be application/json", 400)

        api_key = (request.json.get("api_key") or "").strip()
        if not api_key:
            return _fail("api_key is required", 400)

        try:
            cleanup_expired_sessions()
            user_id = find_user_id_by_api_key(engine, api_key)
            ctx = load_access_context(engine, user_id)
            token = generate_token(ctx)
            now = datetime.now(timezone.utc)
            sessions[token] = {
                "user_id": user_id,
                "created_at": now,
                "last_activity": now,
            }
            data = _profile(ctx)
            data["token"] = token
            data["expires_at"] = (now + timedelta(hours=TOKEN_EXPIRY_HOURS)).isoformat()
            return _ok(data)

        except ValueError as e:
            return _fail(f"Authentication failed: {str(e)}", 401)
        except Exception as e:
            print(f"[ERROR] Login error: {e}", file=sys.stderr)
            traceback.print_exc()
            return _fail("Internal server error during login", 500)

    @app.route("/api/auth/logout", methods=["POST"])
    @token_required
    def logout():
        sessions.pop(request.token, None)
        return _ok({"message": "Logged out successfully"})

    @app.route("/api/auth/me", methods=["GET"])
    @token_required
    def me():
        data = _profile(request.access_context)
        data["session"] = {
            "created_at": request.session_data["created_at"].isoformat(),
            "last_activity": request.session_data["last_activity"].isoformat(),
        }
        return _ok(data)

    @app.route("/api/sessions", methods=["GET"])
    def get_sessions_info():
        """Development-only listing of active sessions."""
        if os.getenv("FLASK_ENV") != "development":
            return _fail("Not available in production", 403)
        info = [
            {
                "user_id": data["user_id"],
                "created_at": data["created_at"].isoformat(),
                "last_activity": data["last_activity"].isoformat(),
            }
            for data in sessions.values()
        ]
        return _ok({"sessions": info}, active_sessions=len(sessions))

    # ── Navigation ───────────────────────────────────────────────────

    @app.route("/api/navigation", methods=["GET"])
    @token_required
    def navigation():
        sections = filter_sections(request.access_context, DEFAULT_NAVIGATION)
        return _ok({"sections": navigation_to_dict(sections)})

    # ── Catalog and roles ────────────────────────────────────────────

    @app.route("/api/permissions", methods=["GET"])
    @token_required
    @permission_required("permissions.view")
    def list_permissions():
        perms = fetch_permissions(engine)
        return _ok({"permissions": perms}, total=len(perms))

    @app.route("/api/roles", methods=["GET"])
    @token_required
    @permission_required("permissions.view")
    def list_roles():
        roles = fetch_roles(engine)
        return _ok({"roles": roles}, total=len(roles))

    @app.route("/api/roles/<int:role_id>/permissions", methods=["PUT"])
    @token_required
    @permission_required("permissions.update")
    def update_role_permissions(role_id):
        if not request.is_json:
            return _fail("Content-Type must be application/json", 400)

        role = fetch_role(engine, role_id)
        if role is None:
            return _fail("Role not found", 404)
        if role["name"] in LOCKED_ROLES:
            return _fail(f"Role '{role['name']}' is not editable", 403)

        requested = request.json.get("permissions")
        if not isinstance(requested, list):
            return _fail("permissions must be a list", 400)

        try:
            perms = {parse_permission_id(p) for p in requested}
        except ValueError as e:
            return _fail(str(e), 400)
        unknown = perms - fetch_permission_names(engine)
        if unknown:
            return _fail(f"Unknown permissions: {', '.join(sorted(unknown))}", 400)

        try:
            replace_role_permissions(engine, role_id, perms)
        except Exception as e:
            print(f"[ERROR] Role update error: {e}", file=sys.stderr)
            traceback.print_exc()
            return _fail("Failed to update role permissions", 500)

        return _ok({"role": fetch_role(engine, role_id)})

    # ── Users and clinics ────────────────────────────────────────────

    @app.route("/api/users/all", methods=["GET"])
    @token_required
    @permission_required("users.view")
    def list_users():
        users = fetch_users(engine)
        return _ok({"users": users}, total=len(users))

    @app.route("/api/clinics/all", methods=["GET"])
    @token_required
    @permission_required("clinics.view")
    def list_clinics():
        clinics = fetch_clinics(engine)
        return _ok({"clinics": clinics}, total=len(clinics))

    @app.route("/api/clinics/user/<int:user_id>/access", methods=["GET"])
    @token_required
    @permission_required("clinics.view")
    def user_clinic_access(user_id):
        if fetch_user(engine, user_id) is None:
            return _fail("User not found", 404)
        return _ok({"clinics": fetch_user_clinics(engine, user_id)})

    @app.route("/api/clinics/<int:clinic_id>/users", methods=["POST"])
    @token_required
    @permission_required("clinics.update")
    def grant_access(clinic_id):
        if not request.is_json:
            return _fail("Content-Type must be application/json", 400)

        data = request.json
        try:
            user_id = int(data.get("user_id"))
        except (TypeError, ValueError):
            return _fail("user_id is required", 400)

        if fetch_clinic(engine, clinic_id) is None:
            return _fail("Clinic not found", 404)
        if fetch_user(engine, user_id) is None:
            return _fail("User not found", 404)

        created = grant_clinic_access(
            engine, clinic_id, user_id,
            role=data.get("role"), permissions=data.get("permissions") or [],
        )
        return _ok({"clinic_id": str(clinic_id), "user_id": str(user_id)},
                   status=201 if created else 200)

    @app.route("/api/clinics/<int:clinic_id>/users/<int:user_id>", methods=["DELETE"])
    @token_required
    @permission_required("clinics.update")
    def revoke_access(clinic_id, user_id):
        if not revoke_clinic_access(engine, clinic_id, user_id):
            return _fail("User has no access to this clinic", 404)
        return _ok({"clinic_id": str(clinic_id), "user_id": str(user_id)})

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({"success": False, "error": "Internal server error", "message": str(e)}), 500
