# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/commerce/routes/auth.py
"""
Authentication API routes.

Customers and outlets register themselves; admin accounts come from the
CLI (flask users create) or promotion by an existing admin.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import CommerceError
from ..services import auth_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register_route():
    """
    Create a customer or outlet account and sign it in.

    Request body:
    {
        "username": "ada",
        "password": "...",
        "email": "ada@example.com",     (optional)
        "name": "Ada",                  (optional)
        "phone_number": "...",          (optional)
        "role": "customer" | "outlet",  (optional, default customer)
        "store_name": "..."             (outlets, optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.register_user(data)
        session, token = session_service.create_session(user)
        current_app.logger.info("User %s registered as %s", user.id, user.role)
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
        }), 201
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Registration failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Request body: {"username": "...", "password": "..."} (email accepted as username)
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user)
        current_app.logger.info("User %s logged in", user.id)
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
        }), 200
    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
