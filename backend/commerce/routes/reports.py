# Overview: Flask API routes for reporting; read-only sales and dashboard aggregates.

# backend/commerce/routes/reports.py
"""
Reporting routes. Outlets are always scoped to their own lines; admins may
pass outlet_id or see the whole platform.

Time semantics:
- start/end accept ISO-8601 datetimes with Z/offsets; filtering is inclusive.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import CommerceError
from ..models.users import ROLE_ADMIN, ROLE_OUTLET
from ..services import reporting_service
from ..validation import coerce_datetime, query_int


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _outlet_scope():
    if g.current_user.is_outlet:
        return g.current_user.id
    return query_int(request.args, "outlet_id", None)


def _range():
    return (
        coerce_datetime(request.args.get("start"), "start", required=False),
        coerce_datetime(request.args.get("end"), "end", required=False),
    )


@reports_bp.get("/sales")
@require_auth
@require_role(ROLE_OUTLET, ROLE_ADMIN)
def sales_report_route():
    """Query params: outlet_id, start, end, group_by (day|week|month)."""
    try:
        start, end = _range()
        outlet_id = _outlet_scope()
        summary = reporting_service.sales_summary(outlet_id=outlet_id, start=start, end=end)
        periods = reporting_service.sales_by_period(
            group_by=request.args.get("group_by", "day"),
            outlet_id=outlet_id,
            start=start,
            end=end,
        )
        return jsonify({"summary": summary, "periods": periods}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@reports_bp.get("/top-products")
@require_auth
@require_role(ROLE_OUTLET, ROLE_ADMIN)
def top_products_route():
    try:
        start, end = _range()
        rows = reporting_service.top_products(
            limit=query_int(request.args, "limit", 5, minimum=1, maximum=100),
            outlet_id=_outlet_scope(),
            start=start,
            end=end,
        )
        return jsonify({"products": rows}), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code


@reports_bp.get("/dashboard")
@require_auth
@require_role(ROLE_OUTLET, ROLE_ADMIN)
def dashboard_route():
    try:
        return jsonify(reporting_service.dashboard(outlet_id=_outlet_scope())), 200
    except CommerceError as e:
        return jsonify(e.to_dict()), e.status_code
