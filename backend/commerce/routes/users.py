# Overview: Flask API routes for account administration; parses input and returns JSON responses.

# backend/commerce/routes/users.py
"""
User administration routes.

- Admins list, edit, deactivate and reactivate accounts.
- Any signed-in user may read and edit their own profile (not their role).
- Credit limits are changed through /api/credits/users/<id>/limit.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import CommerceError
from ..models.users import ROLE_ADMIN
from ..services import user_service
from ..validation import query_bool, query_int


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("/")
@require_auth
@require_role(ROLE_ADMIN)
def list_users_route():
    """Query params: role, search, include_inactive, offset, limit"""
    try:
        rows, total = user_service.list_users(
            role=request.args.get("role"),
            search=request.args.get("search"),
            include_inactive=query_bool(request.args, "include_inactive"),
            offset=query_int(request.args, "offset", 0, minimum=0),
            limit=query_int(request.args, "limit", 50, minimum=1, maximum=200),
        )
        return jsonify({"users": [u.to_dict() for u in rows], "total": total}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@users_bp.get("/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    try:
        user = user_service.get_user(user_id, actor=g.current_user)
        return jsonify({"user": user.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@users_bp.patch("/<int:user_id>")
@require_auth
def update_user_route(user_id: int):
    """
    Updatable: name, email, phone_number, store_name, password;
    role (admins only).
    """
    try:
        data = request.get_json(silent=True) or {}
        user = user_service.update_user(user_id, data, actor=g.current_user)
        return jsonify({"user": user.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/<int:user_id>/deactivate")
@require_auth
@require_role(ROLE_ADMIN)
def deactivate_user_route(user_id: int):
    """
    Sets is_active=False and revokes every session. The account and its
    history stay in place.
    """
    try:
        revoked = user_service.deactivate_user(user_id, actor=g.current_user)
        current_app.logger.info("User %s deactivated by %s", user_id, g.current_user.id)
        return jsonify({"message": "User deactivated", "sessions_revoked": revoked}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@users_bp.post("/<int:user_id>/reactivate")
@require_auth
@require_role(ROLE_ADMIN)
def reactivate_user_route(user_id: int):
    try:
        user = user_service.reactivate_user(user_id, actor=g.current_user)
        return jsonify({"user": user.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
