"""
Flask application factory and server entry-point.
"""

import logging
import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from carecoord.api.routes import register_routes
from carecoord.config import LOG_LEVEL, STORE_BACKEND, TOKEN_EXPIRY_HOURS
from carecoord.database import open_store


def create_app(store=None, clock=None):
    """Build and return a configured Flask application; opens the configured store when none is given."""
    app = Flask(__name__)
    CORS(app)

    if store is None:
        try:
            print(f"[init] Opening {STORE_BACKEND} store...")
            store = open_store()
            print("[init] ✓ API server ready")
        except Exception as e:
            print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
            traceback.print_exc()
            sys.exit(1)

    register_routes(app, store, clock=clock)
    return app


def main():
    """Run the development server."""
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("=" * 60)
    print("Care Coordination – Dashboard API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] Session expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/login")
    print(f"  - GET  http://{host}:{port}/api/snapshot")
    print(f"  - POST http://{host}:{port}/api/snapshot/refresh")
    print(f"  - GET  http://{host}:{port}/api/user/profile")
    print(f"  - POST http://{host}:{port}/api/auth/logout")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
