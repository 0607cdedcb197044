"""
Flask route handlers for the REST API.
"""

import asyncio
import logging
import sys
import traceback
from datetime import timedelta

from flask import jsonify, request

from carecoord.api.auth import cleanup_expired_sessions, generate_token, sessions, token_required, utc_now
from carecoord.assembler import SnapshotController, ViewAssembler
from carecoord.config import TOKEN_EXPIRY_HOURS, USERS
from carecoord.models import snapshot_to_dict
from carecoord.session import load_session_user

logger = logging.getLogger(__name__)


def _user_json(user):
    return {"id": user.user_id, "display_name": user.display_name, "role": user.role}


def register_routes(app, store, clock=None):
    """Register all API routes on the Flask *app*."""
    assembler = ViewAssembler(store, clock=clock)

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "Care Coordination Dashboard API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "auth": "/api/auth/login",
                "snapshot": "/api/snapshot",
                "refresh": "/api/snapshot/refresh",
                "profile": "/api/user/profile",
                "logout": "/api/auth/logout",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"store": False}
        try:
            asyncio.run(store.get_by_id(USERS, "__health__"))
            checks["store"] = True
        except Exception as e:
            logger.warning("Health check could not reach the store: %s", e)

        healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if healthy else "unhealthy",
            "checks": checks,
            "active_sessions": len(sessions),
        }), 200 if healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        api_key = str(request.json.get("api_key", "")).strip()
        if not api_key:
            return jsonify({"error": "api_key is required"}), 400

        try:
            user = asyncio.run(load_session_user(store, api_key))
            token = generate_token(user)
            cleanup_expired_sessions()

            sessions[token] = {
                "user": user,
                "controller": SnapshotController(assembler, user),
                "created_at": utc_now(),
                "last_activity": utc_now(),
            }
            logger.info("Login: %s (%s)", user.user_id, user.role)

            return jsonify({
                "success": True,
                "token": token,
                "user": _user_json(user),
                "expires_at": (utc_now() + timedelta(hours=TOKEN_EXPIRY_HOURS)).isoformat(),
            }), 200

        except ValueError as e:
            return jsonify({"error": f"Authentication failed: {str(e)}"}), 401
        except Exception as e:
            print(f"[ERROR] Login error: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Internal server error during login"}), 500

    @app.route("/api/auth/logout", methods=["POST"])
    @token_required
    def logout():
        sessions.pop(request.token, None)
        return jsonify({"success": True, "message": "Logged out successfully"}), 200

    # ── Snapshot ─────────────────────────────────────────────────────

    def _respond(snapshot, controller):
        if snapshot is None:
            snapshot = controller.current
        if snapshot is None:
            return jsonify({"success": False, "error": "Snapshot superseded by a newer build"}), 409
        return jsonify({"success": True, "snapshot": snapshot_to_dict(snapshot)}), 200

    def _build(refresh: bool):
        controller = request.session_data["controller"]
        try:
            if controller.current is not None and not refresh:
                return _respond(controller.current, controller)
            return _respond(controller.load_sync(), controller)
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 401
        except Exception as e:
            print(f"[ERROR] Snapshot build error: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"success": False, "error": "Snapshot build failed", "details": str(e)}), 500

    @app.route("/api/snapshot", methods=["GET"])
    @token_required
    def get_snapshot():
        return _build(refresh=False)

    @app.route("/api/snapshot/refresh", methods=["POST"])
    @token_required
    def refresh_snapshot():
        return _build(refresh=True)

    # ── Profile ──────────────────────────────────────────────────────

    @app.route("/api/user/profile", methods=["GET"])
    @token_required
    def get_profile():
        session_data = request.session_data
        return jsonify({
            "success": True,
            "user": _user_json(session_data["user"]),
            "session": {
                "created_at": session_data["created_at"].isoformat(),
                "last_activity": session_data["last_activity"].isoformat(),
            },
        }), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({"error": "Internal server error", "message": str(e)}), 500
