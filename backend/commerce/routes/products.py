# Overview: Flask API routes for products and stock levels; parses input and returns JSON responses.

# backend/commerce/routes/products.py
"""
Product catalog routes.

- Listing and detail are public (active products only unless include_inactive
  is requested by an outlet or admin).
- Outlets create and edit their own products; admins may manage any.
- Stock cannot be edited here: it moves only through orders, cancellations
  and approved restock requests.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import CommerceError
from ..models.users import ROLE_ADMIN, ROLE_OUTLET
from ..services import inventory_service
from ..validation import query_bool, query_int


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/")
def list_products_route():
    """
    Query params: outlet_id, category_id, search, include_inactive, offset, limit
    """
    try:
        rows, total = inventory_service.list_products(
            outlet_id=query_int(request.args, "outlet_id", None),
            category_id=query_int(request.args, "category_id", None),
            search=request.args.get("search"),
            include_inactive=query_bool(request.args, "include_inactive"),
            offset=query_int(request.args, "offset", 0, minimum=0),
            limit=query_int(request.args, "limit", 50, minimum=1, maximum=200),
        )
        return jsonify({"products": [p.to_dict() for p in rows], "total": total}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.post("/")
@require_auth
@require_role(ROLE_OUTLET, ROLE_ADMIN)
def create_product_route():
    """
    Request body:
    {
        "name": "Rice 5kg",
        "price_cents": 2500,
        "available_quantity": 10,     (optional, default 0)
        "reorder_point": 3,           (optional, default DEFAULT_REORDER_POINT)
        "description": "...",         (optional)
        "category_id": 4,             (optional)
        "outlet_id": 2                (admins only; outlets always create for themselves)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        product = inventory_service.create_product(
            name=data.get("name"),
            price_cents=data.get("price_cents"),
            outlet_id=data.get("outlet_id"),
            available_quantity=data.get("available_quantity", 0),
            reorder_point=data.get("reorder_point"),
            description=data.get("description"),
            category_id=data.get("category_id"),
            actor=g.current_user,
        )
        return jsonify({"product": product.to_dict()}), 201
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/low-stock")
@require_auth
@require_role(ROLE_OUTLET, ROLE_ADMIN)
def low_stock_route():
    """Outlets see their own products; admins may filter by outlet_id."""
    try:
        if g.current_user.is_outlet:
            outlet_id = g.current_user.id
        else:
            outlet_id = query_int(request.args, "outlet_id", None)
        products = inventory_service.list_low_stock(outlet_id=outlet_id)
        return jsonify({"products": [p.to_dict() for p in products], "count": len(products)}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(product_id)
        stock = inventory_service.get_stock(product_id)
        return jsonify({"product": product, "stock": stock}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.patch("/<int:product_id>")
@require_auth
@require_role(ROLE_OUTLET, ROLE_ADMIN)
def update_product_route(product_id: int):
    """
    Updatable: name, description, price_cents, reorder_point, is_active, category_id.
    available_quantity is rejected.
    """
    try:
        data = request.get_json(silent=True) or {}
        product = inventory_service.update_product(product_id, data, actor=g.current_user)
        return jsonify({"product": product.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
