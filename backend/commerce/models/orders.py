from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z
from .credit import effective_status


ORDER_PENDING = "pending"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

VALID_ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
)


def _new_order_number() -> str:
    return str(uuid.uuid4())


class Order(db.Model):
    """
    Customer order.

    Lines snapshot product name and price at reservation time so historical
    orders are immune to later catalog edits. total_price_cents is the exact
    sum of line totals. user_id is null for guest checkout; the buyer_*
    columns always hold the contact snapshot.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("total_price_cents >= 0", name="ck_orders_total_nonneg"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True, default=_new_order_number)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    buyer_name = db.Column(db.String(255), nullable=True)
    buyer_email = db.Column(db.String(255), nullable=True)
    buyer_phone = db.Column(db.String(32), nullable=True)

    total_price_cents = db.Column(db.Integer, nullable=False)

    # Shipping
    address = db.Column(db.String(200), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    state = db.Column(db.String(100), nullable=True)
    phone_number = db.Column(db.String(32), nullable=True)
    postal_code = db.Column(db.String(20), nullable=True)

    payment_method = db.Column(db.String(32), nullable=False)
    payment_transaction_id = db.Column(db.String(128), nullable=True, unique=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)
    credit_status = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
    )

    @property
    def outlet_ids(self) -> list[int]:
        seen = []
        for line in self.lines:
            if line.outlet_id not in seen:
                seen.append(line.outlet_id)
        return seen

    def effective_credit_status(self) -> str | None:
        """Status of the latest linked credit as readers see it (overdue is computed now)."""
        if not self.credit_transactions:
            return self.credit_status
        latest = max(self.credit_transactions, key=lambda c: c.id)
        return effective_status(latest)

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "buyer": {
                "name": self.buyer_name,
                "email": self.buyer_email,
                "phone_number": self.buyer_phone,
            },
            "lines": [line.to_dict() for line in self.lines],
            "total_price_cents": self.total_price_cents,
            "shipping": {
                "address": self.address,
                "city": self.city,
                "state": self.state,
                "phone_number": self.phone_number,
                "postal_code": self.postal_code,
            },
            "payment_method": self.payment_method,
            "payment_transaction_id": self.payment_transaction_id,
            "status": self.status,
            "credit_status": self.effective_credit_status(),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderLine(db.Model):
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_qty_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Stable references; reporting joins on these, never on product_name
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Snapshots taken at reservation time
    product_name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "outlet_id": self.outlet_id,
            "product_name": self.product_name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }
