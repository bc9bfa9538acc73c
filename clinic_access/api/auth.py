"""
JWT authentication helpers and middleware for the Flask API.
"""

from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import current_app, jsonify, request

from clinic_access.config import SECRET_KEY, TOKEN_EXPIRY_HOURS
from clinic_access.database import load_access_context
from clinic_access.models import AccessContext
from clinic_access.rbac import can_access

# In-memory session store (use Redis in production)
# Structure: {token: {"user_id": int, "created_at": datetime, "last_activity": datetime}}
sessions: Dict[str, Dict[str, Any]] = {}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_token(ctx: AccessContext) -> str:
    """Generate a JWT token for an authenticated user."""
    payload = {
        "user_id": ctx.user.id,
        "role": ctx.user.role,
        "iat": _now(),
        "exp": _now() + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def _error(message: str, status: int):
    return jsonify({"success": False, "error": message}), status


def token_required(f):
    """Decorator that protects endpoints with JWT authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = None

        if "Authorization" in request.headers:
            auth_header = request.headers["Authorization"]
            try:
                token = auth_header.split(" ")[1]
            except IndexError:
                return _error("Invalid authorization header format", 401)

        if not token:
            return _error("Authentication token is missing", 401)

        payload = verify_token(token)
        if not payload:
            return _error("Invalid or expired token", 401)

        if token not in sessions:
            return _error("Session not found. Please login again.", 401)

        # Re-resolved on every request so permission edits apply at once.
        try:
            ctx = load_access_context(current_app.config["ENGINE"], int(payload["user_id"]))
        except ValueError as e:
            return _error(str(e), 401)

        sessions[token]["last_activity"] = _now()
        request.session_data = sessions[token]
        request.access_context = ctx
        request.token = token

        return f(*args, **kwargs)

    return decorated


def permission_required(permission: str):
    """Decorator (stacked under ``token_required``) gating on one permission."""
    def wrapper(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            if not can_access(request.access_context, permission):
                return _error(f"Permission '{permission}' required", 403)
            return f(*args, **kwargs)
        return decorated
    return wrapper


def cleanup_expired_sessions():
    """Remove sessions that have been inactive beyond TOKEN_EXPIRY_HOURS."""
    now = _now()
    expired = [
        tok for tok, data in sessions.items()
        if (now - data["last_activity"]).total_seconds() > TOKEN_EXPIRY_HOURS * 3600
    ]
    for tok in expired:
        del sessions[tok]
    if expired:
        print(f"[cleanup] Removed {len(expired)} expired sessions")
