# Overview: Service-layer operations for the credit ledger; open, repay, terms, limits and summaries.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..errors import (
    AmountExceedsRemaining,
    CreditLimitExceeded,
    InvalidAmount,
    NotFound,
    OrderOwnershipMismatch,
    PersistenceConflict,
    Unauthorized,
    ValidationError,
)
from ..extensions import db
from ..models import CreditPayment, CreditTransaction, Order, User
from ..models.orders import ORDER_CANCELLED
from ..models.credit import (
    CREDIT_OVERDUE,
    CREDIT_PAID,
    CREDIT_PARTIALLY_PAID,
    CREDIT_PENDING,
    VALID_CREDIT_STATUSES,
    effective_status,
    payment_status,
)
from ..time_utils import inclusive_upper_bound, utcnow
from ..validation import MAX_AMOUNT_CENTS, coerce_datetime, coerce_int, coerce_str
from . import notification_service
from .audit_service import append_audit_event
from .concurrency import guarded_update, run_with_retry
from .inventory_service import find_user
from .order_service import find_order
from .payment_verification import requires_verification, verify_payment
"""
Credit Ledger Invariants (authoritative)

- remaining_amount_cents == amount_cents - sum(payments) for every credit,
  and never drops below zero (DB check constraint plus guarded UPDATE).
- remaining_amount_cents only moves through one statement:
      UPDATE credit_transactions SET remaining = remaining - :a
      WHERE id = :id AND remaining >= :a
  Two concurrent payments whose sum exceeds the remaining amount cannot both
  land; the loser sees zero rows and gets AmountExceedsRemaining.
- Credit in use is recomputed from the ledger (sum of remaining amounts) on
  every check, never cached on the user.
- Opening credit bumps users.credit_version guarded on the version that was
  read before the per-order checks and the ledger sum, so two concurrent
  openings cannot both pass the limit check, or both find the order free of
  open credit, against the same snapshot.
- Stored status is payment progress only (pending/partially_paid/paid) unless
  an admin override is in force. overdue is computed at read time.
"""

SORT_FIELDS = {
    "created": CreditTransaction.created_at.desc(),
    "due_date": CreditTransaction.due_at.asc(),
    "amount": CreditTransaction.amount_cents.desc(),
}

DUE_SOON_DAYS = 7


# =============================================================================
# HELPERS
# =============================================================================

def _coerce_amount(value, field: str = "amount_cents") -> int:
    try:
        return coerce_int(value, field, minimum=1, maximum=MAX_AMOUNT_CENTS)
    except ValidationError as exc:
        raise InvalidAmount(exc.message)


def find_credit(credit_id: int) -> CreditTransaction:
    credit = db.session.get(CreditTransaction, credit_id)
    if credit is None:
        raise NotFound(f"Credit transaction {credit_id} not found")
    return credit


def _ensure_party(credit: CreditTransaction, actor: User | None) -> None:
    if actor is None or actor.is_admin:
        return
    if actor.id in (credit.user_id, credit.outlet_id):
        return
    raise Unauthorized("You are not a party to this credit")


def _mirror_to_order(credit: CreditTransaction, now: datetime | None = None) -> None:
    db.session.query(Order).filter(Order.id == credit.order_id).update(
        {Order.credit_status: effective_status(credit, now)}, synchronize_session=False
    )


def _notify_parties(credit: CreditTransaction, event_type: str, message: str, **data) -> None:
    for channel in (
        notification_service.user_channel(credit.user_id),
        notification_service.outlet_channel(credit.outlet_id),
    ):
        notification_service.publish(
            channel,
            event_type,
            credit_id=credit.id,
            order_id=credit.order_id,
            message=message,
            **data,
        )


def _ensure_order_accepts_credit(order_id: int) -> None:
    status = db.session.query(Order.status).filter(Order.id == order_id).scalar()
    if status == ORDER_CANCELLED:
        raise ValidationError("Cannot open credit on a cancelled order")
    open_exists = db.session.query(CreditTransaction.id).filter(
        CreditTransaction.order_id == order_id,
        CreditTransaction.remaining_amount_cents > 0,
    ).first()
    if open_exists is not None:
        raise ValidationError("Order already has an open credit transaction")


def credit_used(user_id: int) -> int:
    """Outstanding credit for a user, recomputed from the ledger."""
    used = db.session.query(
        db.func.coalesce(db.func.sum(CreditTransaction.remaining_amount_cents), 0)
    ).filter(
        CreditTransaction.user_id == user_id,
        CreditTransaction.remaining_amount_cents > 0,
    ).scalar()
    return int(used or 0)


# =============================================================================
# OPEN
# =============================================================================

def open_credit(
    user_id: int,
    order_id: int,
    amount_cents,
    due_at,
    *,
    notes: str | None = None,
    actor: User | None = None,
) -> CreditTransaction:
    """
    Extend credit to a user for one of their orders.

    The creditor is the outlet that owns the order's first line.

    Raises:
        InvalidAmount, ValidationError, NotFound, OrderNotFound,
        OrderOwnershipMismatch, Unauthorized, CreditLimitExceeded,
        PersistenceConflict
    """
    amount_cents = _coerce_amount(amount_cents)
    due_at = coerce_datetime(due_at, "due_at")
    notes = coerce_str(notes, "notes", required=False)

    user = find_user(user_id)
    order = find_order(order_id)
    if order.user_id != user.id:
        raise OrderOwnershipMismatch("Order does not belong to this user")
    if amount_cents > order.total_price_cents:
        raise ValidationError(
            "Credit amount cannot exceed the order total",
            amount_cents=amount_cents,
            total_price_cents=order.total_price_cents,
        )

    outlet_id = order.lines[0].outlet_id
    if actor is not None and not actor.is_admin and actor.id not in (user.id, outlet_id):
        raise Unauthorized("You cannot open credit on this order")

    def _op():
        debtor = db.session.get(User, user_id, populate_existing=True)
        version = debtor.credit_version

        # Read after the version: any opening committed since then fails the bump below.
        _ensure_order_accepts_credit(order_id)
        used = credit_used(user_id)
        if used + amount_cents > debtor.credit_limit_cents:
            raise CreditLimitExceeded(
                "Credit limit exceeded",
                credit_limit_cents=debtor.credit_limit_cents,
                credit_used_cents=used,
                requested_cents=amount_cents,
            )

        bumped = guarded_update(
            User,
            User.id == user_id,
            User.credit_version == version,
            values={User.credit_version: User.credit_version + 1},
        )
        if bumped == 0:
            raise PersistenceConflict("Credit was opened concurrently for this user")

        credit = CreditTransaction(
            user_id=user_id,
            outlet_id=outlet_id,
            order_id=order_id,
            amount_cents=amount_cents,
            remaining_amount_cents=amount_cents,
            due_at=due_at,
            status=CREDIT_PENDING,
            status_overridden=False,
            notes=notes,
        )
        db.session.add(credit)
        db.session.flush()

        db.session.query(Order).filter(Order.id == order_id).update(
            {Order.payment_method: "credit", Order.credit_status: effective_status(credit)},
            synchronize_session=False,
        )
        append_audit_event(
            event_type="credit.opened",
            entity_type="credit_transaction",
            entity_id=credit.id,
            actor_user_id=actor.id if actor else None,
            payload={"amount_cents": amount_cents, "order_id": order_id, "credit_used_before": used},
        )
        db.session.commit()
        return credit

    credit = run_with_retry(_op)

    _notify_parties(
        credit,
        "credit.opened",
        f"Credit of {credit.amount_cents} cents opened for order {credit.order_id}",
        amount_cents=credit.amount_cents,
        status=effective_status(credit),
    )
    return credit


# =============================================================================
# REPAY
# =============================================================================

def record_payment(
    credit_id: int,
    amount_cents,
    method,
    reference: str | None = None,
    *,
    notes: str | None = None,
    actor: User | None = None,
) -> CreditTransaction:
    """
    Apply a repayment to a credit transaction.

    Third-party methods are verified with the provider before anything is
    written; a failed verification leaves the ledger untouched.
    """
    amount_cents = _coerce_amount(amount_cents)
    method = coerce_str(method, "payment_method", max_length=32).lower()
    reference = coerce_str(reference, "reference", max_length=128, required=False)
    notes = coerce_str(notes, "notes", max_length=255, required=False)

    credit = find_credit(credit_id)
    _ensure_party(credit, actor)

    if amount_cents > credit.remaining_amount_cents:
        raise AmountExceedsRemaining(
            "Payment amount cannot exceed remaining amount",
            remaining_amount_cents=credit.remaining_amount_cents,
        )

    if requires_verification(method):
        if not reference:
            raise ValidationError("reference is required for verified payment methods")
        verify_payment(reference, amount_cents)

    actor_id = actor.id if actor else None

    def _op():
        before = db.session.get(CreditTransaction, credit_id, populate_existing=True)
        previous_status = effective_status(before)

        updated = guarded_update(
            CreditTransaction,
            CreditTransaction.id == credit_id,
            CreditTransaction.remaining_amount_cents >= amount_cents,
            values={
                CreditTransaction.remaining_amount_cents: CreditTransaction.remaining_amount_cents - amount_cents,
            },
        )
        if updated == 0:
            remaining = db.session.query(CreditTransaction.remaining_amount_cents).filter(
                CreditTransaction.id == credit_id
            ).scalar()
            raise AmountExceedsRemaining(
                "Payment amount cannot exceed remaining amount",
                remaining_amount_cents=remaining,
            )

        credit = db.session.get(CreditTransaction, credit_id, populate_existing=True)
        credit.status = payment_status(credit.amount_cents, credit.remaining_amount_cents)
        credit.status_overridden = False
        db.session.add(CreditPayment(
            credit_id=credit_id,
            amount_cents=amount_cents,
            payment_method=method,
            reference=reference,
            notes=notes,
            recorded_by_user_id=actor_id,
            paid_at=utcnow(),
        ))
        db.session.flush()

        _mirror_to_order(credit)
        append_audit_event(
            event_type="credit.payment_recorded",
            entity_type="credit_transaction",
            entity_id=credit_id,
            actor_user_id=actor_id,
            payload={
                "amount_cents": amount_cents,
                "payment_method": method,
                "reference": reference,
                "remaining_after": credit.remaining_amount_cents,
            },
        )
        db.session.commit()
        return credit, previous_status

    credit, previous_status = run_with_retry(_op)

    current = effective_status(credit)
    if current != previous_status:
        _notify_parties(
            credit,
            "credit.status_changed",
            f"Credit status updated to {current}",
            previous_status=previous_status,
            status=current,
        )
    return credit


# =============================================================================
# ADMINISTRATION
# =============================================================================

def update_terms(
    credit_id: int,
    *,
    due_at=None,
    notes=None,
    status: str | None = None,
    actor: User | None,
) -> CreditTransaction:
    """
    Admin edit of due date, notes or status. A status set here is an
    override: it is reported as-is until the next payment recomputes it.
    """
    if actor is None or not actor.is_admin:
        raise Unauthorized("Only admins can update credit terms")
    if status is not None and status not in VALID_CREDIT_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {list(VALID_CREDIT_STATUSES)}")
    new_due_at = coerce_datetime(due_at, "due_at", required=False)

    credit = find_credit(credit_id)
    previous_status = effective_status(credit)
    changes = {}

    if new_due_at is not None:
        changes["due_at"] = new_due_at.isoformat()
        credit.due_at = new_due_at
    if notes is not None:
        credit.notes = coerce_str(notes, "notes", required=False)
        changes["notes"] = credit.notes
    if status is not None:
        credit.status = status
        credit.status_overridden = True
        changes["status"] = status

    if not changes:
        return credit

    db.session.flush()
    _mirror_to_order(credit)

    if status is not None:
        current_app.logger.warning(
            "Credit %s status overridden %s -> %s by user %s", credit.id, previous_status, status, actor.id
        )
        append_audit_event(
            event_type="credit.status_overridden",
            entity_type="credit_transaction",
            entity_id=credit.id,
            actor_user_id=actor.id,
            payload={"from": previous_status, "to": status},
        )
    append_audit_event(
        event_type="credit.terms_updated",
        entity_type="credit_transaction",
        entity_id=credit.id,
        actor_user_id=actor.id,
        payload=changes,
    )
    db.session.commit()

    current = effective_status(credit)
    if current != previous_status:
        _notify_parties(
            credit,
            "credit.status_changed",
            f"Credit status updated to {current}",
            previous_status=previous_status,
            status=current,
        )
    return credit


def update_credit_limit(user_id: int, credit_limit_cents, *, actor: User | None) -> User:
    """Lowering a limit below current usage is allowed; it only blocks new credit."""
    if actor is None or not actor.is_admin:
        raise Unauthorized("Only admins can change credit limits")
    limit = coerce_int(credit_limit_cents, "credit_limit_cents", minimum=0, maximum=MAX_AMOUNT_CENTS)

    user = find_user(user_id)
    previous = user.credit_limit_cents
    user.credit_limit_cents = limit

    append_audit_event(
        event_type="credit.limit_updated",
        entity_type="user",
        entity_id=user.id,
        actor_user_id=actor.id,
        payload={"from": previous, "to": limit},
    )
    db.session.commit()
    return user


# =============================================================================
# QUERIES
# =============================================================================

def _effective_status_filter(status: str, now: datetime):
    """SQL form of models.credit.effective_status, for list filtering."""
    C = CreditTransaction
    overridden = db.and_(C.status_overridden.is_(True), C.status == status)
    not_due = C.due_at >= now

    if status == CREDIT_OVERDUE:
        computed = db.and_(C.remaining_amount_cents > 0, C.due_at < now)
    elif status == CREDIT_PAID:
        computed = C.remaining_amount_cents == 0
    elif status == CREDIT_PARTIALLY_PAID:
        computed = db.and_(
            C.remaining_amount_cents > 0, C.remaining_amount_cents < C.amount_cents, not_due
        )
    else:
        computed = db.and_(C.remaining_amount_cents == C.amount_cents, not_due)

    return db.or_(overridden, db.and_(C.status_overridden.is_(False), computed))


def list_credits(
    *,
    user_id: int | None = None,
    outlet_id: int | None = None,
    status: str | None = None,
    sort_by: str = "created",
    page: int = 1,
    limit: int = 10,
    now: datetime | None = None,
) -> dict:
    """Paginated listing; the status filter matches the status readers see."""
    if sort_by not in SORT_FIELDS:
        raise ValidationError(f"sort_by must be one of {sorted(SORT_FIELDS)}")
    page = max(page, 1)
    now = now or utcnow()

    q = db.session.query(CreditTransaction)
    if user_id is not None:
        q = q.filter(CreditTransaction.user_id == user_id)
    if outlet_id is not None:
        q = q.filter(CreditTransaction.outlet_id == outlet_id)
    if status and status != "all":
        if status not in VALID_CREDIT_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        q = q.filter(_effective_status_filter(status, now))

    total = q.count()
    rows = (
        q.order_by(SORT_FIELDS[sort_by], CreditTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "credits": [c.to_dict(now) for c in rows],
        "total": total,
        "page": page,
        "pages": (total + limit - 1) // limit if limit else 0,
    }


def credit_summary(
    *,
    outlet_id: int | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    soon = now + timedelta(days=DUE_SOON_DAYS)

    q = db.session.query(CreditTransaction)
    if outlet_id is not None:
        q = q.filter(CreditTransaction.outlet_id == outlet_id)
    if user_id is not None:
        q = q.filter(CreditTransaction.user_id == user_id)

    summary = {
        "total_credits": 0,
        "total_amount_cents": 0,
        "total_remaining_cents": 0,
        "total_paid_cents": 0,
        "overdue_amount_cents": 0,
        "due_soon_count": 0,
        "due_soon_amount_cents": 0,
        "by_status": {s: 0 for s in VALID_CREDIT_STATUSES},
    }
    for credit in q.all():
        status = effective_status(credit, now)
        summary["total_credits"] += 1
        summary["total_amount_cents"] += credit.amount_cents
        summary["total_remaining_cents"] += credit.remaining_amount_cents
        summary["total_paid_cents"] += credit.amount_cents - credit.remaining_amount_cents
        summary["by_status"][status] += 1
        if status == CREDIT_OVERDUE:
            summary["overdue_amount_cents"] += credit.remaining_amount_cents
        elif status != CREDIT_PAID and credit.due_at <= soon:
            summary["due_soon_count"] += 1
            summary["due_soon_amount_cents"] += credit.remaining_amount_cents
    return summary


def user_credit_overview(user_id: int, *, now: datetime | None = None) -> dict:
    user = find_user(user_id)
    now = now or utcnow()
    used = credit_used(user.id)
    credits = (
        db.session.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user.id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .all()
    )
    return {
        "user": user.to_dict(),
        "credit_limit_cents": user.credit_limit_cents,
        "credit_used_cents": used,
        "available_credit_cents": max(user.credit_limit_cents - used, 0),
        "credits": [c.to_dict(now) for c in credits],
        "summary": credit_summary(user_id=user.id, now=now),
    }


def list_payments(
    *,
    user_id: int | None = None,
    outlet_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[CreditPayment], int]:
    """Repayments received, newest first. outlet_id scopes to credits that outlet extended."""
    q = db.session.query(CreditPayment).join(
        CreditTransaction, CreditTransaction.id == CreditPayment.credit_id
    )
    if user_id is not None:
        q = q.filter(CreditTransaction.user_id == user_id)
    if outlet_id is not None:
        q = q.filter(CreditTransaction.outlet_id == outlet_id)
    if date_from is not None:
        q = q.filter(CreditPayment.paid_at >= date_from)
    if date_to is not None:
        q = q.filter(CreditPayment.paid_at <= inclusive_upper_bound(date_to))

    total = q.count()
    rows = q.order_by(CreditPayment.paid_at.desc(), CreditPayment.id.desc()).offset(offset).limit(limit).all()
    return rows, total
