from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


RESTOCK_PENDING = "pending"
RESTOCK_APPROVED = "approved"
RESTOCK_REJECTED = "rejected"

RESTOCK_DECISIONS = (RESTOCK_APPROVED, RESTOCK_REJECTED)


class RestockRequest(db.Model):
    """
    Outlet request to replenish a product.

    pending -> approved | rejected, exactly once. The transition is a guarded
    UPDATE on status='pending' (see restock_service.process_request), so a
    second processing attempt finds zero rows and fails.
    """
    __tablename__ = "restock_requests"
    __table_args__ = (
        db.CheckConstraint("requested_quantity > 0", name="ck_restock_requested_pos"),
        db.Index("ix_restock_requests_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    requested_quantity = db.Column(db.Integer, nullable=False)
    # Snapshot of available_quantity when the request was filed
    current_quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=RESTOCK_PENDING, index=True)
    reason = db.Column(db.String(255), nullable=False, default="Stock replenishment")
    admin_note = db.Column(db.String(255), nullable=False, default="")

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("restock_requests", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "outlet_id": self.outlet_id,
            "requested_quantity": self.requested_quantity,
            "current_quantity": self.current_quantity,
            "status": self.status,
            "reason": self.reason,
            "admin_note": self.admin_note,
            "processed_at": to_utc_z(self.processed_at),
            "processed_by_user_id": self.processed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
