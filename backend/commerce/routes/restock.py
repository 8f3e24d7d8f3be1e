# Overview: Flask API routes for restock requests; parses input and returns JSON responses.

# backend/commerce/routes/restock.py
"""
Restock Request Routes

- Outlets file requests for their own products and list their own.
- Admins list all requests and approve or reject them. Approval credits
  inventory; each request can be processed once.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import CommerceError
from ..models.users import ROLE_ADMIN, ROLE_OUTLET
from ..services import restock_service
from ..validation import coerce_datetime, query_int


restock_bp = Blueprint("restock", __name__, url_prefix="/api/restock")


@restock_bp.post("/")
@require_auth
@require_role(ROLE_OUTLET, ROLE_ADMIN)
def create_restock_route():
    """
    Request body: {"product_id": 1, "requested_quantity": 20, "reason": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        req = restock_service.create_request(
            data.get("product_id"),
            data.get("requested_quantity"),
            reason=data.get("reason"),
            actor=g.current_user,
        )
        return jsonify({"request": req.to_dict()}), 201
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create restock request")
        return jsonify({"error": "Internal server error"}), 500


@restock_bp.get("/")
@require_auth
@require_role(ROLE_OUTLET, ROLE_ADMIN)
def list_restock_route():
    """
    Query params: status, search, date_from, date_to, offset, limit,
    outlet_id (admins only)
    """
    try:
        user = g.current_user
        outlet_id = user.id if user.is_outlet else query_int(request.args, "outlet_id", None)
        rows, total = restock_service.list_requests(
            status=request.args.get("status"),
            outlet_id=outlet_id,
            search=request.args.get("search"),
            date_from=coerce_datetime(request.args.get("date_from"), "date_from", required=False),
            date_to=coerce_datetime(request.args.get("date_to"), "date_to", required=False),
            offset=query_int(request.args, "offset", 0, minimum=0),
            limit=query_int(request.args, "limit", 50, minimum=1, maximum=200),
        )
        return jsonify({"requests": [r.to_dict() for r in rows], "total": total}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@restock_bp.post("/<int:request_id>/process")
@require_auth
@require_role(ROLE_ADMIN)
def process_restock_route(request_id: int):
    """
    Request body: {"status": "approved" | "rejected", "admin_note": "..."}

    Returns:
        200: processed
        400: invalid decision
        404: unknown request
        409: already processed
    """
    try:
        data = request.get_json(silent=True) or {}
        req = restock_service.process_request(
            request_id,
            data.get("status"),
            admin_note=data.get("admin_note"),
            actor=g.current_user,
        )
        return jsonify({"request": req.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process restock request")
        return jsonify({"error": "Internal server error"}), 500
