# Overview: Service-layer operations for orders; checkout saga, fulfillment and payment callbacks.

"""
Order Placement Service

WHY: An order is only real if every one of its lines is backed by stock.

DESIGN PRINCIPLES:
- Validate everything that can be validated before touching inventory.
- Each line reserves stock in its own short transaction (guarded UPDATE), so
  concurrent checkouts only contend per product.
- The reservations form a saga: if any line fails, or the order cannot be
  saved, every reservation already taken is released newest-first and the
  first error is raised. A partial order is never persisted.
- Lines snapshot name and unit price at reservation time; later catalog
  edits never rewrite history.
- total_price_cents is computed here, never trusted from the client.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from flask import current_app

from ..errors import (
    InsufficientStock,
    InvalidTransition,
    NotFound,
    OrderNotFound,
    PersistenceConflict,
    Unauthorized,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderLine, Product, User
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    VALID_ORDER_STATUSES,
)
from ..time_utils import inclusive_upper_bound, utcnow
from ..validation import coerce_int, coerce_str
from . import inventory_service, notification_service
from .audit_service import append_audit_event
from .concurrency import guarded_update, run_with_retry
from .payment_verification import requires_verification, verify_payment
from .saga import Saga


SHIPPING_FIELDS = ("address", "city", "state", "phone_number", "postal_code")
GUEST_FIELDS = ("name", "email", "phone_number")

ALLOWED_TRANSITIONS = {
    ORDER_PENDING: {ORDER_PROCESSING, ORDER_CANCELLED},
    ORDER_PROCESSING: {ORDER_SHIPPED, ORDER_CANCELLED},
    ORDER_SHIPPED: {ORDER_DELIVERED, ORDER_CANCELLED},
    ORDER_DELIVERED: set(),
    ORDER_CANCELLED: set(),
}

MAX_LINES_PER_ORDER = 100


# =============================================================================
# LOOKUPS
# =============================================================================

def find_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def find_order_by_transaction(transaction_id: str) -> Order:
    order = db.session.query(Order).filter_by(payment_transaction_id=transaction_id).first()
    if order is None:
        raise OrderNotFound("No order found with this transaction ID")
    return order


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_items(items) -> list[tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item")
    if len(items) > MAX_LINES_PER_ORDER:
        raise ValidationError(f"Order cannot contain more than {MAX_LINES_PER_ORDER} lines")

    normalized = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        product_id = coerce_int(item.get("product_id"), f"items[{idx}].product_id", minimum=1)
        quantity = coerce_int(item.get("quantity"), f"items[{idx}].quantity", minimum=1)
        normalized.append((product_id, quantity))
    return normalized


def _normalize_shipping(shipping) -> dict:
    if not isinstance(shipping, dict):
        raise ValidationError("shipping is required")
    missing = [f for f in SHIPPING_FIELDS if not str(shipping.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required shipping fields: {', '.join(missing)}", missing=missing)
    return {
        "address": coerce_str(shipping["address"], "address", max_length=200),
        "city": coerce_str(shipping["city"], "city", max_length=100),
        "state": coerce_str(shipping["state"], "state", max_length=100),
        "phone_number": coerce_str(shipping["phone_number"], "phone_number", max_length=32),
        "postal_code": coerce_str(shipping["postal_code"], "postal_code", max_length=20),
    }


def _buyer_snapshot(user_id: int | None, buyer) -> dict:
    """Registered buyers are snapshotted from their account; guests must supply full contact info."""
    if user_id is not None:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return {"name": user.name, "email": user.email, "phone": user.phone_number}

    if not isinstance(buyer, dict) or any(not str(buyer.get(f) or "").strip() for f in GUEST_FIELDS):
        raise ValidationError("A signed-in user or complete guest contact info (name, email, phone_number) is required")
    return {
        "name": coerce_str(buyer["name"], "buyer.name", max_length=255),
        "email": coerce_str(buyer["email"], "buyer.email", max_length=255),
        "phone": coerce_str(buyer["phone_number"], "buyer.phone_number", max_length=32),
    }


# =============================================================================
# ORDER CREATION
# =============================================================================

def create_order(
    *,
    items,
    shipping,
    payment_method,
    user_id: int | None = None,
    buyer: dict | None = None,
    payment_transaction_id: str | None = None,
    expected_total_cents: int | None = None,
) -> Order:
    """
    Reserve stock for every line and persist the order.

    Raises:
        ValidationError: malformed input, or expected_total_cents mismatch
        NotFound: unknown buyer or product
        InsufficientStock: some line cannot be backed by stock
        PersistenceConflict: the order could not be saved after retries
    Nothing is left reserved when any of these is raised.
    """
    lines = _normalize_items(items)
    shipping_fields = _normalize_shipping(shipping)
    payment_method = coerce_str(payment_method, "payment_method", max_length=32).lower()
    payment_transaction_id = coerce_str(
        payment_transaction_id, "payment_transaction_id", max_length=128, required=False
    )
    if expected_total_cents is not None:
        expected_total_cents = coerce_int(expected_total_cents, "expected_total_cents", minimum=0)
    buyer_snapshot = _buyer_snapshot(user_id, buyer)

    checkout_id = uuid.uuid4().hex

    with Saga(f"checkout:{checkout_id}") as saga:
        snapshots = []
        for product_id, quantity in lines:
            saga.run(
                f"reserve:{product_id}",
                lambda pid=product_id, qty=quantity: inventory_service.reserve(
                    pid, qty, checkout_id=checkout_id, actor_user_id=user_id
                ),
                lambda reservation: inventory_service.release_reservation(
                    reservation.id, reason="checkout rolled back"
                ),
            )
            product = db.session.get(Product, product_id)
            snapshots.append({
                "product_id": product.id,
                "outlet_id": product.outlet_id,
                "product_name": product.name,
                "unit_price_cents": product.price_cents,
                "quantity": quantity,
                "line_total_cents": product.price_cents * quantity,
            })

        total = sum(s["line_total_cents"] for s in snapshots)
        if expected_total_cents is not None and expected_total_cents != total:
            raise ValidationError(
                "Order total does not match current prices",
                expected_total_cents=expected_total_cents,
                total_price_cents=total,
            )

        def _persist():
            order = Order(
                order_number=str(uuid.uuid4()),
                user_id=user_id,
                buyer_name=buyer_snapshot["name"],
                buyer_email=buyer_snapshot["email"],
                buyer_phone=buyer_snapshot["phone"],
                total_price_cents=total,
                payment_method=payment_method,
                payment_transaction_id=payment_transaction_id,
                status=ORDER_PENDING,
                **shipping_fields,
            )
            order.lines = [OrderLine(**s) for s in snapshots]
            db.session.add(order)
            db.session.flush()

            committed = inventory_service.commit_reservations(checkout_id, order.id)
            if committed != len(snapshots):
                # A hold was swept between reserve and save; the stock is gone
                raise InsufficientStock("Stock reservation expired before the order was saved")

            append_audit_event(
                event_type="order.created",
                entity_type="order",
                entity_id=order.id,
                actor_user_id=user_id,
                payload={"total_price_cents": total, "lines": len(snapshots), "checkout_id": checkout_id},
            )
            db.session.commit()
            return order

        order = run_with_retry(_persist)

    for outlet_id in order.outlet_ids:
        notification_service.publish(
            notification_service.outlet_channel(outlet_id),
            "order.created",
            order_id=order.id,
            order_number=order.order_number,
            message=f"New order {order.order_number}",
        )
    return order


# =============================================================================
# FULFILLMENT
# =============================================================================

def _ensure_can_update(order: Order, actor: User | None, new_status: str) -> None:
    if actor is None or actor.is_admin:
        return
    if actor.is_outlet and actor.id in order.outlet_ids:
        return
    if order.user_id == actor.id and new_status == ORDER_CANCELLED and order.status == ORDER_PENDING:
        return
    raise Unauthorized("You are not allowed to update this order")


def update_order_status(
    order_id: int,
    new_status: str,
    *,
    actor: User | None = None,
    override: bool = False,
    note: str | None = None,
) -> Order:
    """
    Move an order along its lifecycle.

    pending -> processing -> shipped -> delivered; cancelled from any
    pre-delivered state. Cancelling credits every line back to inventory in
    the same transaction. delivered/cancelled are final except for an admin
    override, which is logged and audited. A cancelled order cannot be
    reopened even by override: its stock has already been returned.
    """
    if new_status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {new_status}. Must be one of {list(VALID_ORDER_STATUSES)}")
    if override and (actor is None or not actor.is_admin):
        raise Unauthorized("Only admins can override order status")

    actor_id = actor.id if actor else None

    def _op():
        order = db.session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        _ensure_can_update(order, actor, new_status)

        current = order.status
        if current == new_status:
            return order, None

        if current == ORDER_CANCELLED:
            raise InvalidTransition("Cancelled orders cannot be reopened")
        if new_status not in ALLOWED_TRANSITIONS[current] and not override:
            raise InvalidTransition(f"Cannot move order from {current} to {new_status}")

        updated = guarded_update(
            Order,
            Order.id == order_id,
            Order.status == current,
            values={Order.status: new_status, Order.updated_at: utcnow()},
        )
        if updated == 0:
            raise PersistenceConflict("Order was modified concurrently")

        if new_status == ORDER_CANCELLED:
            for line in order.lines:
                inventory_service.release(
                    line.product_id,
                    line.quantity,
                    reason=f"order {order.order_number} cancelled",
                    actor_user_id=actor_id,
                    commit=False,
                )

        is_override = override and new_status not in ALLOWED_TRANSITIONS[current]
        append_audit_event(
            event_type="order.status_overridden" if is_override else "order.status_changed",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=actor_id,
            note=note,
            payload={"from": current, "to": new_status},
        )
        db.session.commit()
        if is_override:
            current_app.logger.warning(
                "Order %s status overridden %s -> %s by user %s", order.id, current, new_status, actor_id
            )
        return db.session.get(Order, order_id), current

    order, previous = run_with_retry(_op)

    if previous is not None:
        _notify_status_change(order, previous)
    return order


def _notify_status_change(order: Order, previous: str) -> None:
    if order.user_id:
        notification_service.publish(
            notification_service.user_channel(order.user_id),
            "order.status_changed",
            order_id=order.id,
            previous_status=previous,
            new_status=order.status,
            message=f"Your order {order.order_number} status has been updated to {order.status}",
        )
    for outlet_id in order.outlet_ids:
        notification_service.publish(
            notification_service.outlet_channel(outlet_id),
            "order.status_changed",
            order_id=order.id,
            previous_status=previous,
            new_status=order.status,
            message=f"Order {order.order_number} status updated to {order.status}",
        )


def apply_payment_callback(transaction_id: str, *, succeeded: bool) -> Order:
    """
    External payment confirmation for an order.

    Success moves a pending order to processing; failure cancels it (and
    returns its stock). A claimed success for a third-party method is checked
    with the provider first. Orders already past pending are left as they are, so
    duplicate callbacks are harmless.
    """
    transaction_id = coerce_str(transaction_id, "transaction_id", max_length=128)
    order = find_order_by_transaction(transaction_id)

    if order.status != ORDER_PENDING:
        return order

    if not succeeded:
        return update_order_status(order.id, ORDER_CANCELLED, note="payment failed")
    if requires_verification(order.payment_method):
        verify_payment(transaction_id, order.total_price_cents)

    order = update_order_status(order.id, ORDER_PROCESSING, note="payment confirmed")
    targets = [notification_service.outlet_channel(o) for o in order.outlet_ids]
    if order.user_id:
        targets.insert(0, notification_service.user_channel(order.user_id))
    for channel in targets:
        notification_service.publish(
            channel,
            "payment.confirmed",
            order_id=order.id,
            order_number=order.order_number,
            message=f"Payment confirmed for order {order.order_number}",
        )
    return order


# =============================================================================
# QUERIES
# =============================================================================

def list_orders(
    *,
    status: str | None = None,
    search: str | None = None,
    user_id: int | None = None,
    outlet_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Order], int]:
    """
    Filtered, newest-first order listing. Outlet scoping joins on
    OrderLine.outlet_id; product names are never used to match orders.
    """
    q = db.session.query(Order)

    if status and status != "all":
        q = q.filter(Order.status == status)
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    if outlet_id is not None:
        q = q.filter(Order.id.in_(
            db.session.query(OrderLine.order_id).filter(OrderLine.outlet_id == outlet_id)
        ))
    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(
            Order.order_number.ilike(pattern),
            Order.id.in_(db.session.query(OrderLine.order_id).filter(OrderLine.product_name.ilike(pattern))),
        ))
    if date_from is not None:
        q = q.filter(Order.created_at >= date_from)
    if date_to is not None:
        q = q.filter(Order.created_at <= inclusive_upper_bound(date_to))

    total = q.count()
    rows = q.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()
    return rows, total
