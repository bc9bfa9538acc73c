"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from clinic_access.config import TOKEN_EXPIRY_HOURS
from clinic_access.database import init_engine, seed_defaults
from clinic_access.api.routes import register_routes


def create_app(engine=None):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    CORS(app)

    # ── Initialise shared resources ──────────────────────────────────
    if engine is None:
        try:
            print("[init] Initializing database connection...")
            engine = init_engine()

            print("[init] Seeding default permissions and roles...")
            seed_defaults(engine)

            print("[init] ✓ API server ready")
        except Exception as e:
            print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
            traceback.print_exc()
            sys.exit(1)

    app.config["ENGINE"] = engine

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("Clinic Access – REST API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] CORS enabled: True")
    print(f"[server] Session expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST   http://{host}:{port}/api/auth/login")
    print(f"  - GET    http://{host}:{port}/api/navigation")
    print(f"  - GET    http://{host}:{port}/api/permissions")
    print(f"  - GET    http://{host}:{port}/api/roles")
    print(f"  - PUT    http://{host}:{port}/api/roles/<id>/permissions")
    print(f"  - GET    http://{host}:{port}/api/users/all")
    print(f"  - GET    http://{host}:{port}/api/clinics/all")
    print(f"  - GET    http://{host}:{port}/api/clinics/user/<id>/access")
    print(f"  - POST   http://{host}:{port}/api/clinics/<id>/users")
    print(f"  - DELETE http://{host}:{port}/api/clinics/<id>/users/<user_id>")
    print(f"  - GET    http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
