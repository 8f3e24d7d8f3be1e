# Overview: Flask API routes for the credit ledger; parses input and returns JSON responses.

# backend/commerce/routes/credit.py
"""
Credit Ledger Routes

- Customers see their own credits; outlets see credits they extended;
  admins see everything.
- Status filters and every "status" field in responses use the effective
  status (overdue is computed at read time).
- Payment methods listed in VERIFIED_PAYMENT_METHODS are verified with the
  provider before the ledger changes.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import CommerceError, Unauthorized
from ..models.users import ROLE_ADMIN
from ..services import credit_service
from ..validation import coerce_datetime, query_int


credit_bp = Blueprint("credit", __name__, url_prefix="/api/credits")


def _scope_for(user) -> dict:
    if user.is_admin:
        return {
            "user_id": query_int(request.args, "user_id", None),
            "outlet_id": query_int(request.args, "outlet_id", None),
        }
    if user.is_outlet:
        return {"outlet_id": user.id}
    return {"user_id": user.id}


@credit_bp.post("/")
@require_auth
def open_credit_route():
    """
    Request body:
    {
        "user_id": 3,                     (defaults to the caller)
        "order_id": 10,
        "amount_cents": 5000,
        "due_at": "2026-12-01T00:00:00Z",
        "notes": "..."                    (optional)
    }

    Returns:
        201: credit opened
        400: invalid amount, amount above order total, credit limit exceeded
        403: order does not belong to the user
        404: unknown user or order
    """
    try:
        data = request.get_json(silent=True) or {}
        credit = credit_service.open_credit(
            data.get("user_id") or g.current_user.id,
            data.get("order_id"),
            data.get("amount_cents"),
            data.get("due_at"),
            notes=data.get("notes"),
            actor=g.current_user,
        )
        return jsonify({"credit": credit.to_dict()}), 201
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open credit")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.get("/")
@require_auth
def list_credits_route():
    """Query params: status, sort_by (created|due_date|amount), page, limit."""
    try:
        result = credit_service.list_credits(
            status=request.args.get("status"),
            sort_by=request.args.get("sort_by", "created"),
            page=query_int(request.args, "page", 1, minimum=1),
            limit=query_int(request.args, "limit", 10, minimum=1, maximum=100),
            **_scope_for(g.current_user),
        )
        return jsonify(result), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@credit_bp.get("/summary")
@require_auth
def credit_summary_route():
    try:
        return jsonify({"summary": credit_service.credit_summary(**_scope_for(g.current_user))}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@credit_bp.get("/payments")
@require_auth
def list_payments_route():
    """
    Repayments received. Outlets see payments on credits they extended.

    Query params: date_from, date_to, offset, limit; user_id/outlet_id (admins only)
    """
    try:
        rows, total = credit_service.list_payments(
            date_from=coerce_datetime(request.args.get("date_from"), "date_from", required=False),
            date_to=coerce_datetime(request.args.get("date_to"), "date_to", required=False),
            offset=query_int(request.args, "offset", 0, minimum=0),
            limit=query_int(request.args, "limit", 50, minimum=1, maximum=200),
            **_scope_for(g.current_user),
        )
        return jsonify({"payments": [p.to_dict() for p in rows], "total": total}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@credit_bp.get("/<int:credit_id>")
@require_auth
def get_credit_route(credit_id: int):
    try:
        credit = credit_service.find_credit(credit_id)
        user = g.current_user
        if not user.is_admin and user.id not in (credit.user_id, credit.outlet_id):
            raise Unauthorized("You are not a party to this credit")
        return jsonify({"credit": credit.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@credit_bp.post("/<int:credit_id>/payments")
@require_auth
def record_payment_route(credit_id: int):
    """
    Request body:
    {
        "amount_cents": 2500,
        "payment_method": "cash" | "paystack" | ...,
        "reference": "T123",     (required for verified methods)
        "notes": "..."
    }

    Returns:
        200: payment applied
        400: invalid amount, or amount exceeds remaining
        402: provider verification failed (ledger unchanged)
    """
    try:
        data = request.get_json(silent=True) or {}
        credit = credit_service.record_payment(
            credit_id,
            data.get("amount_cents"),
            data.get("payment_method"),
            data.get("reference"),
            notes=data.get("notes"),
            actor=g.current_user,
        )
        return jsonify({"credit": credit.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record credit payment")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.patch("/<int:credit_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_credit_route(credit_id: int):
    """Request body: any of {"due_at", "notes", "status"}. A status is an override."""
    try:
        data = request.get_json(silent=True) or {}
        credit = credit_service.update_terms(
            credit_id,
            due_at=data.get("due_at"),
            notes=data.get("notes"),
            status=data.get("status"),
            actor=g.current_user,
        )
        return jsonify({"credit": credit.to_dict()}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update credit")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.get("/users/<int:user_id>")
@require_auth
def user_credit_route(user_id: int):
    """Credit limit, usage recomputed from the ledger, and the user's credits."""
    try:
        user = g.current_user
        if not user.is_admin and user.id != user_id:
            raise Unauthorized("You can only view your own credit")
        return jsonify(credit_service.user_credit_overview(user_id)), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@credit_bp.put("/users/<int:user_id>/limit")
@require_auth
@require_role(ROLE_ADMIN)
def update_credit_limit_route(user_id: int):
    """Request body: {"credit_limit_cents": 100000}"""
    try:
        data = request.get_json(silent=True) or {}
        credit_service.update_credit_limit(user_id, data.get("credit_limit_cents"), actor=g.current_user)
        return jsonify(credit_service.user_credit_overview(user_id)), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update credit limit")
        return jsonify({"error": "Internal server error"}), 500
