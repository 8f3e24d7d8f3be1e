# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# commerce/services/inventory_service.py

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from flask import current_app

from ..errors import InsufficientStock, NotFound, Unauthorized, ValidationError
from ..extensions import db
from ..models import Product, StockReservation, User
from ..models.catalog import RESERVATION_COMMITTED, RESERVATION_HELD, RESERVATION_RELEASED
from ..models.users import ROLE_OUTLET
from ..time_utils import utcnow
from ..validation import MAX_AMOUNT_CENTS, coerce_int, coerce_str, reject_unknown_fields
from . import notification_service
from .audit_service import append_audit_event
from .category_service import find_category
from .concurrency import guarded_update, run_with_retry
"""
Inventory Counter Invariants (authoritative)

- Product.available_quantity >= 0 at all times.
- The counter only moves through single-statement guarded UPDATEs:
    reserve:  SET q = q - n WHERE id = :id AND q >= n AND is_active
    release:  SET q = q + n WHERE id = :id
  Two concurrent reservations against one product therefore serialize in the
  database; neither can observe a stale value and drive the counter negative.
- Every reservation leaves a StockReservation row (held) in the same
  transaction as the decrement. The row moves to committed with its order, or
  to released exactly once (guarded on status='held') when stock is credited
  back. Held rows that outlive RESERVATION_HOLD_MINUTES are swept.
- Low-stock signals are published after commit and never roll anything back.
"""


# =============================================================================
# DIRECTORY LOOKUPS
# =============================================================================

def find_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


def get_product(product_id: int) -> dict:
    return find_product(product_id).to_dict()


def find_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user


def _ensure_can_manage(product: Product, actor: User | None) -> None:
    if actor is None or actor.is_admin:
        return
    if actor.is_outlet and product.outlet_id == actor.id:
        return
    raise Unauthorized("You can only manage your own products")


# =============================================================================
# CATALOG
# =============================================================================

def _resolve_category(category_id) -> int | None:
    if category_id is None or category_id == "":
        return None
    category = find_category(coerce_int(category_id, "category_id", minimum=1))
    if not category.is_active:
        raise ValidationError(f"Category {category.id} is inactive")
    return category.id


PRODUCT_UPDATABLE_FIELDS = {"name", "description", "price_cents", "reorder_point", "is_active", "category_id"}


def create_product(
    *,
    name,
    price_cents,
    outlet_id: int | None = None,
    available_quantity=0,
    reorder_point=None,
    description=None,
    category_id=None,
    actor: User | None = None,
) -> Product:
    """
    Create a product owned by an outlet.

    Outlets always create for themselves; admins must name the outlet.
    """
    if actor is not None and actor.is_outlet:
        outlet_id = actor.id
    elif actor is not None and not actor.is_admin:
        raise Unauthorized("Only outlets and admins can create products")

    if outlet_id is None:
        raise ValidationError("outlet_id is required")
    outlet = find_user(coerce_int(outlet_id, "outlet_id"))
    if outlet.role != ROLE_OUTLET:
        raise ValidationError(f"User {outlet.id} is not an outlet")

    if reorder_point is None:
        reorder_point = current_app.config.get("DEFAULT_REORDER_POINT", 0)

    product = Product(
        outlet_id=outlet.id,
        name=coerce_str(name, "name", max_length=255),
        description=coerce_str(description, "description", required=False),
        price_cents=coerce_int(price_cents, "price_cents", minimum=0, maximum=MAX_AMOUNT_CENTS),
        available_quantity=coerce_int(available_quantity, "available_quantity", minimum=0),
        reorder_point=coerce_int(reorder_point, "reorder_point", minimum=0),
        category_id=_resolve_category(category_id),
        is_active=True,
    )
    db.session.add(product)
    db.session.flush()

    append_audit_event(
        event_type="product.created",
        entity_type="product",
        entity_id=product.id,
        actor_user_id=actor.id if actor else None,
        payload={"available_quantity": product.available_quantity},
    )
    db.session.commit()
    return product


def update_product(product_id: int, patch: dict, *, actor: User | None = None) -> Product:
    """
    Update catalog fields. available_quantity is not writable here: stock only
    changes through reservations, cancellations and approved restocks.
    """
    if "available_quantity" in patch:
        raise ValidationError("available_quantity cannot be set directly; file a restock request")
    reject_unknown_fields(patch, PRODUCT_UPDATABLE_FIELDS)

    product = find_product(product_id)
    _ensure_can_manage(product, actor)

    if "name" in patch:
        product.name = coerce_str(patch["name"], "name", max_length=255)
    if "description" in patch:
        product.description = coerce_str(patch["description"], "description", required=False)
    if "price_cents" in patch:
        product.price_cents = coerce_int(patch["price_cents"], "price_cents", minimum=0, maximum=MAX_AMOUNT_CENTS)
    if "reorder_point" in patch:
        product.reorder_point = coerce_int(patch["reorder_point"], "reorder_point", minimum=0)
    if "is_active" in patch:
        product.is_active = bool(patch["is_active"])
    if "category_id" in patch:
        product.category_id = _resolve_category(patch["category_id"])

    db.session.commit()
    return product


def list_products(
    *,
    outlet_id: int | None = None,
    category_id: int | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[Product], int]:
    q = db.session.query(Product)
    if outlet_id is not None:
        q = q.filter(Product.outlet_id == outlet_id)
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        q = q.filter(Product.name.ilike(f"%{search}%"))
    total = q.count()
    rows = q.order_by(Product.name.asc(), Product.id.asc()).offset(offset).limit(limit).all()
    return rows, total


def list_low_stock(*, outlet_id: int | None = None) -> list[Product]:
    q = db.session.query(Product).filter(
        Product.is_active.is_(True),
        Product.available_quantity <= Product.reorder_point,
    )
    if outlet_id is not None:
        q = q.filter(Product.outlet_id == outlet_id)
    return q.order_by(Product.available_quantity.asc(), Product.id.asc()).all()


def get_stock(product_id: int) -> dict:
    row = db.session.query(
        Product.id, Product.available_quantity, Product.reorder_point, Product.outlet_id
    ).filter(Product.id == product_id).first()
    if row is None:
        raise NotFound(f"Product {product_id} not found")

    held = db.session.query(db.func.coalesce(db.func.sum(StockReservation.quantity), 0)).filter(
        StockReservation.product_id == product_id,
        StockReservation.status == RESERVATION_HELD,
    ).scalar()

    return {
        "product_id": row.id,
        "outlet_id": row.outlet_id,
        "available_quantity": row.available_quantity,
        "reorder_point": row.reorder_point,
        "held_quantity": int(held or 0),
        "is_low_stock": row.available_quantity <= row.reorder_point,
    }


# =============================================================================
# COUNTER PRIMITIVES
# =============================================================================

def reserve(
    product_id: int,
    quantity: int,
    *,
    checkout_id: str | None = None,
    actor_user_id: int | None = None,
) -> StockReservation:
    """
    Atomically take `quantity` units of stock.

    Raises:
        ValidationError: quantity is not a positive integer
        NotFound: product does not exist
        InsufficientStock: product inactive or not enough stock (nothing changed)
    """
    quantity = coerce_int(quantity, "quantity", minimum=1)
    checkout_id = checkout_id or uuid.uuid4().hex

    def _op():
        updated = guarded_update(
            Product,
            Product.id == product_id,
            Product.is_active.is_(True),
            Product.available_quantity >= quantity,
            values={Product.available_quantity: Product.available_quantity - quantity},
        )
        if updated == 0:
            product = db.session.get(Product, product_id, populate_existing=True)
            if product is None:
                raise NotFound(f"Product {product_id} not found")
            if not product.is_active:
                raise InsufficientStock(f"{product.name} is no longer available", product_id=product_id)
            raise InsufficientStock(
                f"Insufficient stock for {product.name}",
                product_id=product_id,
                requested=quantity,
                available=product.available_quantity,
            )

        after = db.session.query(
            Product.name, Product.outlet_id, Product.available_quantity, Product.reorder_point
        ).filter(Product.id == product_id).one()

        reservation = StockReservation(
            product_id=product_id,
            quantity=quantity,
            checkout_id=checkout_id,
            status=RESERVATION_HELD,
            created_at=utcnow(),
        )
        db.session.add(reservation)
        db.session.flush()

        append_audit_event(
            event_type="inventory.reserved",
            entity_type="product",
            entity_id=product_id,
            actor_user_id=actor_user_id,
            payload={
                "quantity": quantity,
                "reservation_id": reservation.id,
                "checkout_id": checkout_id,
                "available_after": after.available_quantity,
            },
        )
        db.session.commit()
        return reservation, after

    reservation, after = run_with_retry(_op)

    if after.available_quantity <= after.reorder_point:
        _signal_low_stock(
            product_id=product_id,
            outlet_id=after.outlet_id,
            product_name=after.name,
            remaining=after.available_quantity,
            reorder_point=after.reorder_point,
        )
    return reservation


def release(
    product_id: int,
    quantity: int,
    *,
    reason: str,
    actor_user_id: int | None = None,
    commit: bool = True,
) -> int:
    """
    Credit `quantity` units back to a product. Returns the new quantity.

    commit=False joins the caller's transaction (restock approval, order
    cancellation) so the credit and the state change it belongs to land
    together.
    """
    quantity = coerce_int(quantity, "quantity", minimum=1)

    def _op():
        updated = guarded_update(
            Product,
            Product.id == product_id,
            values={Product.available_quantity: Product.available_quantity + quantity},
        )
        if updated == 0:
            raise NotFound(f"Product {product_id} not found")

        available = db.session.query(Product.available_quantity).filter(Product.id == product_id).scalar()

        append_audit_event(
            event_type="inventory.released",
            entity_type="product",
            entity_id=product_id,
            actor_user_id=actor_user_id,
            note=reason,
            payload={"quantity": quantity, "available_after": available},
        )
        if commit:
            db.session.commit()
        return available

    if commit:
        return run_with_retry(_op)
    return _op()


def release_reservation(reservation_id: int, *, reason: str = "reservation released") -> bool:
    """
    Give a held reservation's stock back, exactly once.

    Returns False (and changes nothing) when the reservation is already
    released or committed.
    """
    def _op():
        updated = guarded_update(
            StockReservation,
            StockReservation.id == reservation_id,
            StockReservation.status == RESERVATION_HELD,
            values={
                StockReservation.status: RESERVATION_RELEASED,
                StockReservation.resolved_at: utcnow(),
            },
        )
        if updated == 0:
            db.session.rollback()
            return False

        row = db.session.query(StockReservation.product_id, StockReservation.quantity).filter(
            StockReservation.id == reservation_id
        ).one()
        release(row.product_id, row.quantity, reason=reason, commit=False)
        db.session.commit()
        return True

    return run_with_retry(_op)


def commit_reservations(checkout_id: str, order_id: int) -> int:
    """
    Attach a checkout's held reservations to its order. Joins the caller's
    transaction; returns how many holds were committed.
    """
    return guarded_update(
        StockReservation,
        StockReservation.checkout_id == checkout_id,
        StockReservation.status == RESERVATION_HELD,
        values={
            StockReservation.status: RESERVATION_COMMITTED,
            StockReservation.order_id: order_id,
            StockReservation.resolved_at: utcnow(),
        },
    )


def sweep_stale_reservations(*, older_than: datetime | None = None) -> int:
    """
    Release holds left behind by checkouts that never persisted their order
    (process died between reserving and saving). Returns the number released.
    """
    if older_than is None:
        minutes = current_app.config.get("RESERVATION_HOLD_MINUTES", 15)
        older_than = utcnow() - timedelta(minutes=minutes)

    stale_ids = [
        rid for (rid,) in db.session.query(StockReservation.id).filter(
            StockReservation.status == RESERVATION_HELD,
            StockReservation.created_at < older_than,
        ).order_by(StockReservation.id.asc()).all()
    ]

    released = 0
    for rid in stale_ids:
        if release_reservation(rid, reason="stale reservation swept"):
            released += 1

    if released:
        current_app.logger.warning("Swept %d stale stock reservation(s)", released)
    return released


def _signal_low_stock(
    *,
    product_id: int,
    outlet_id: int,
    product_name: str,
    remaining: int,
    reorder_point: int,
) -> None:
    notification_service.publish(
        notification_service.outlet_channel(outlet_id),
        "low_stock",
        product_id=product_id,
        product_name=product_name,
        remaining_stock=remaining,
        reorder_point=reorder_point,
        message=f"Low stock alert for {product_name}. Remaining: {remaining}",
    )
