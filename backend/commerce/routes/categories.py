# Overview: Flask API routes for product categories; parses input and returns JSON responses.

# backend/commerce/routes/categories.py
"""
Category routes. Reads are public; only admins create, edit or delete.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import CommerceError
from ..models.users import ROLE_ADMIN
from ..services import category_service
from ..validation import query_bool, query_int


categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("/")
def list_categories_route():
    """Query params: include_inactive, parent_id"""
    try:
        rows = category_service.list_categories(
            include_inactive=query_bool(request.args, "include_inactive"),
            parent_id=query_int(request.args, "parent_id", None),
        )
        return jsonify({"categories": [c.to_dict() for c in rows], "count": len(rows)}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@categories_bp.post("/")
@require_auth
@require_role(ROLE_ADMIN)
def create_category_route():
    """
    Request body:
    {
        "name": "Grains",
        "description": "...",   (optional)
        "parent_id": 1,         (optional)
        "featured": false       (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        category = category_service.create_category(
            name=data.get("name"),
            description=data.get("description"),
            parent_id=data.get("parent_id"),
            featured=data.get("featured", False),
            actor=g.current_user,
        )
        return jsonify({"category": category.to_dict()}), 201
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.get("/<int:category_id>")
def get_category_route(category_id: int):
    try:
        category = category_service.find_category(category_id)
        return jsonify({"category": category.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@categories_bp.patch("/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_category_route(category_id: int):
    """Updatable: name, description, parent_id ("" or null clears), featured, is_active."""
    try:
        data = request.get_json(silent=True) or {}
        category = category_service.update_category(category_id, data, actor=g.current_user)
        return jsonify({"category": category.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_category_route(category_id: int):
    """
    Returns:
        200: deleted; products_detached counts products left uncategorized
        400: category has subcategories
        404: unknown category
    """
    try:
        detached = category_service.delete_category(category_id, actor=g.current_user)
        return jsonify({"message": "Category deleted", "products_detached": detached}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete category")
        return jsonify({"error": "Internal server error"}), 500
