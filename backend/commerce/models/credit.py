from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


CREDIT_PENDING = "pending"
CREDIT_PARTIALLY_PAID = "partially_paid"
CREDIT_PAID = "paid"
CREDIT_OVERDUE = "overdue"

VALID_CREDIT_STATUSES = (CREDIT_PENDING, CREDIT_PARTIALLY_PAID, CREDIT_PAID, CREDIT_OVERDUE)


def payment_status(amount_cents: int, remaining_amount_cents: int) -> str:
    """Stored status: a pure function of payment progress."""
    if remaining_amount_cents <= 0:
        return CREDIT_PAID
    if remaining_amount_cents < amount_cents:
        return CREDIT_PARTIALLY_PAID
    return CREDIT_PENDING


def effective_status(credit: "CreditTransaction", now: datetime | None = None) -> str:
    """
    Status as reported to readers.

    overdue is an overlay, never a stored transition: any non-paid credit whose
    due date has passed reads as overdue regardless of partial progress. An
    administrative override is reported verbatim until the next payment
    recomputes the stored status.
    """
    if credit.status_overridden:
        return credit.status
    status = payment_status(credit.amount_cents, credit.remaining_amount_cents)
    if status != CREDIT_PAID and (now or utcnow()) > credit.due_at:
        return CREDIT_OVERDUE
    return status


class CreditTransaction(db.Model):
    """
    Credit extended by an outlet to a user for one order.

    INVARIANT: remaining_amount_cents == amount_cents - sum(payments) and is
    never negative. remaining_amount_cents only moves through the guarded
    UPDATE in credit_service.record_payment.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_credit_amount_pos"),
        db.CheckConstraint("remaining_amount_cents >= 0", name="ck_credit_remaining_nonneg"),
        db.CheckConstraint(
            "remaining_amount_cents <= amount_cents", name="ck_credit_remaining_le_amount"
        ),
        db.Index("ix_credit_user_outlet_status", "user_id", "outlet_id", "status"),
        db.Index("ix_credit_due_status", "due_at", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    remaining_amount_cents = db.Column(db.Integer, nullable=False)

    due_at = db.Column(db.DateTime(timezone=True), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=CREDIT_PENDING)
    status_overridden = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", foreign_keys=[user_id])
    outlet = db.relationship("User", foreign_keys=[outlet_id])
    order = db.relationship("Order", backref=db.backref("credit_transactions", lazy=True))
    payments = db.relationship(
        "CreditPayment",
        backref="credit",
        lazy=True,
        order_by="CreditPayment.id",
        cascade="all, delete-orphan",
    )

    @property
    def paid_cents(self) -> int:
        return sum(p.amount_cents for p in self.payments)

    def to_dict(self, now: datetime | None = None) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "outlet_id": self.outlet_id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "paid_cents": self.paid_cents,
            "due_at": to_utc_z(self.due_at),
            "status": effective_status(self, now),
            "stored_status": self.status,
            "status_overridden": self.status_overridden,
            "notes": self.notes,
            "payments": [p.to_dict() for p in self.payments],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CreditPayment(db.Model):
    __tablename__ = "credit_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_credit_payments_amount_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("credit_transactions.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_id": self.credit_id,
            "order_id": self.credit.order_id if self.credit else None,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "reference": self.reference,
            "notes": self.notes,
            "recorded_by_user_id": self.recorded_by_user_id,
            "paid_at": to_utc_z(self.paid_at),
        }
