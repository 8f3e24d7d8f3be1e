# Overview: Service-layer operations for reporting; read-only aggregates over orders and inventory.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Order, OrderLine, RestockRequest
from ..models.orders import ORDER_CANCELLED, VALID_ORDER_STATUSES
from ..models.restock import RESTOCK_PENDING
from ..time_utils import inclusive_upper_bound, to_utc_z
from . import credit_service, inventory_service


def _scoped_lines(outlet_id: int | None, start: datetime | None, end: datetime | None):
    query = db.session.query(OrderLine).join(Order, OrderLine.order_id == Order.id)
    if outlet_id is not None:
        query = query.filter(OrderLine.outlet_id == outlet_id)
    if start:
        query = query.filter(Order.created_at >= start)
    if end:
        query = query.filter(Order.created_at <= inclusive_upper_bound(end))
    return query


def sales_summary(
    *,
    outlet_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """
    Order count, revenue and items sold. Cancelled orders count in
    orders_by_status but never in revenue. With outlet_id, only that outlet's
    lines contribute (matched by OrderLine.outlet_id).
    """
    base = _scoped_lines(outlet_id, start, end)

    totals = base.filter(Order.status != ORDER_CANCELLED).with_entities(
        func.count(func.distinct(Order.id)).label("order_count"),
        func.coalesce(func.sum(OrderLine.line_total_cents), 0).label("revenue_cents"),
        func.coalesce(func.sum(OrderLine.quantity), 0).label("items_sold"),
    ).one()

    by_status = {s: 0 for s in VALID_ORDER_STATUSES}
    for status, count in base.with_entities(
        Order.status, func.count(func.distinct(Order.id))
    ).group_by(Order.status).all():
        by_status[status] = int(count)

    order_count = int(totals.order_count or 0)
    revenue = int(totals.revenue_cents or 0)
    return {
        "outlet_id": outlet_id,
        "start": to_utc_z(start) if start else None,
        "end": to_utc_z(end) if end else None,
        "order_count": order_count,
        "revenue_cents": revenue,
        "items_sold": int(totals.items_sold or 0),
        "average_order_cents": revenue // order_count if order_count else 0,
        "orders_by_status": by_status,
    }


def sales_by_period(
    *,
    group_by: str = "day",
    outlet_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    if group_by == "day":
        period_expr = func.strftime("%Y-%m-%d", Order.created_at)
    elif group_by == "week":
        period_expr = func.strftime("%Y-W%W", Order.created_at)
    elif group_by == "month":
        period_expr = func.strftime("%Y-%m", Order.created_at)
    else:
        raise ValidationError("group_by must be day, week, or month")

    rows = _scoped_lines(outlet_id, start, end).filter(
        Order.status != ORDER_CANCELLED
    ).with_entities(
        period_expr.label("period"),
        func.count(func.distinct(Order.id)).label("order_count"),
        func.coalesce(func.sum(OrderLine.quantity), 0).label("items_sold"),
        func.coalesce(func.sum(OrderLine.line_total_cents), 0).label("revenue_cents"),
    ).group_by("period").order_by("period").all()

    return {
        "outlet_id": outlet_id,
        "group_by": group_by,
        "rows": [
            {
                "period": row.period,
                "order_count": int(row.order_count or 0),
                "items_sold": int(row.items_sold or 0),
                "revenue_cents": int(row.revenue_cents or 0),
            }
            for row in rows
        ],
    }


def top_products(
    *,
    limit: int = 5,
    outlet_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict]:
    """Best sellers by units, grouped by product id (renames do not split a product)."""
    rows = _scoped_lines(outlet_id, start, end).filter(
        Order.status != ORDER_CANCELLED
    ).with_entities(
        OrderLine.product_id,
        func.max(OrderLine.product_name).label("product_name"),
        func.sum(OrderLine.quantity).label("units_sold"),
        func.sum(OrderLine.line_total_cents).label("revenue_cents"),
    ).group_by(OrderLine.product_id).order_by(
        func.sum(OrderLine.quantity).desc(), OrderLine.product_id.asc()
    ).limit(limit).all()

    return [
        {
            "product_id": row.product_id,
            "product_name": row.product_name,
            "units_sold": int(row.units_sold or 0),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in rows
    ]


def dashboard(*, outlet_id: int | None = None) -> dict:
    pending_restocks = db.session.query(func.count(RestockRequest.id)).filter(
        RestockRequest.status == RESTOCK_PENDING
    )
    if outlet_id is not None:
        pending_restocks = pending_restocks.filter(RestockRequest.outlet_id == outlet_id)

    return {
        "sales": sales_summary(outlet_id=outlet_id),
        "top_products": top_products(outlet_id=outlet_id),
        "low_stock_count": len(inventory_service.list_low_stock(outlet_id=outlet_id)),
        "pending_restock_requests": int(pending_restocks.scalar() or 0),
        "credit": credit_service.credit_summary(outlet_id=outlet_id),
    }
