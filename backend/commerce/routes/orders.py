# Overview: Flask API routes for orders; checkout, fulfillment and payment callbacks.

# backend/commerce/routes/orders.py
"""
Order API Routes

- POST /api/orders/ accepts signed-in buyers and guests. Signed-in buyers are
  snapshotted from their account; guests send a "buyer" object.
- Customers see their own orders, outlets see orders containing their
  products, admins see everything.
- Status changes follow pending -> processing -> shipped -> delivered, with
  cancellation from any pre-delivered state. Admins may override.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import optional_auth, require_auth
from ..errors import CommerceError, Unauthorized
from ..services import order_service
from ..validation import coerce_datetime, query_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _ensure_can_view(order, user) -> None:
    if user.is_admin or order.user_id == user.id:
        return
    if user.is_outlet and user.id in order.outlet_ids:
        return
    raise Unauthorized("You are not allowed to view this order")


@orders_bp.post("/")
@optional_auth
def create_order_route():
    """
    Place an order.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}, ...],
        "shipping": {"address": "...", "city": "...", "state": "...",
                     "phone_number": "...", "postal_code": "..."},
        "payment_method": "paystack",
        "payment_transaction_id": "T123",      (optional)
        "expected_total_cents": 5000,          (optional; rejected if prices changed)
        "buyer": {"name": "...", "email": "...", "phone_number": "..."}   (guests only)
    }

    Returns:
        201: order created
        400: invalid input
        404: unknown product
        409: insufficient stock (nothing is reserved)
    """
    try:
        data = request.get_json(silent=True) or {}
        user = g.current_user
        order = order_service.create_order(
            items=data.get("items"),
            shipping=data.get("shipping"),
            payment_method=data.get("payment_method"),
            user_id=user.id if user else None,
            buyer=None if user else data.get("buyer"),
            payment_transaction_id=data.get("payment_transaction_id"),
            expected_total_cents=data.get("expected_total_cents"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
@require_auth
def list_orders_route():
    """
    Query params: status, search, date_from, date_to, offset, limit,
    user_id / outlet_id (admins only; others are scoped to themselves)
    """
    try:
        user = g.current_user
        user_id = outlet_id = None
        if user.is_admin:
            user_id = query_int(request.args, "user_id", None)
            outlet_id = query_int(request.args, "outlet_id", None)
        elif user.is_outlet:
            outlet_id = user.id
        else:
            user_id = user.id

        limit = query_int(request.args, "limit", 50, minimum=1, maximum=200)
        rows, total = order_service.list_orders(
            status=request.args.get("status"),
            search=request.args.get("search"),
            user_id=user_id,
            outlet_id=outlet_id,
            date_from=coerce_datetime(request.args.get("date_from"), "date_from", required=False),
            date_to=coerce_datetime(request.args.get("date_to"), "date_to", required=False),
            offset=query_int(request.args, "offset", 0, minimum=0),
            limit=limit,
        )
        return jsonify({"orders": [o.to_dict() for o in rows], "total": total}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.find_order(order_id)
        _ensure_can_view(order, g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.patch("/<int:order_id>/status")
@require_auth
def update_order_status_route(order_id: int):
    """
    Request body: {"status": "shipped", "override": false, "note": "..."}

    Returns:
        200: updated
        403: not allowed (override requires admin)
        409: transition not allowed from the current status
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_order_status(
            order_id,
            data.get("status"),
            actor=g.current_user,
            override=bool(data.get("override", False)),
            note=data.get("note"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/payment-callback/<transaction_id>")
def payment_callback_route(transaction_id: str):
    """
    Payment provider callback.

    Request body: {"status": "success"} or {"status": "failed"}
    A claimed success for a verified payment method is checked with the
    provider before the order moves on.
    """
    try:
        data = request.get_json(silent=True) or {}
        succeeded = str(data.get("status", "")).lower() in {"success", "successful", "paid"}
        order = order_service.apply_payment_callback(transaction_id, succeeded=succeeded)
        return jsonify({"order": order.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply payment callback")
        return jsonify({"error": "Internal server error"}), 500
