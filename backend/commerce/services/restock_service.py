# Overview: Service-layer operations for restock requests; outlet request, admin decision.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import AlreadyProcessed, InvalidDecision, NotFound, Unauthorized
from ..extensions import db
from ..models import Product, RestockRequest, User
from ..models.restock import RESTOCK_APPROVED, RESTOCK_DECISIONS, RESTOCK_PENDING
from ..time_utils import inclusive_upper_bound, utcnow
from ..validation import coerce_int, coerce_str
from . import inventory_service, notification_service
from .audit_service import append_audit_event
from .concurrency import guarded_update, run_with_retry
"""
Restock Workflow Invariants (authoritative)

- A request is pending until processed, then approved or rejected forever.
- Processing is a guarded UPDATE on status='pending'; the loser of two
  concurrent decisions sees zero rows and gets AlreadyProcessed, so stock is
  credited at most once per request.
- Approval credits inventory through inventory_service.release in the same
  transaction as the status change. Rejection never touches inventory.
- With RESTOCK_AUTO_APPROVE on, new requests go through the very same
  approval path immediately after being filed.
"""


def create_request(
    product_id: int,
    requested_quantity,
    *,
    reason: str | None = None,
    actor: User | None = None,
) -> RestockRequest:
    """
    File a restock request for a product.

    Outlets may only request stock for their own products; admins (and
    system callers with no actor) may file for any product.
    """
    requested_quantity = coerce_int(requested_quantity, "requested_quantity", minimum=1)
    reason = coerce_str(reason, "reason", max_length=255, required=False) or "Stock replenishment"

    product = inventory_service.find_product(product_id)
    if actor is not None and not actor.is_admin:
        if not (actor.is_outlet and product.outlet_id == actor.id):
            raise Unauthorized("You can only request restocks for your own products")

    req = RestockRequest(
        product_id=product.id,
        outlet_id=product.outlet_id,
        requested_quantity=requested_quantity,
        current_quantity=product.available_quantity,
        status=RESTOCK_PENDING,
        reason=reason,
    )
    db.session.add(req)
    db.session.flush()

    append_audit_event(
        event_type="restock.requested",
        entity_type="restock_request",
        entity_id=req.id,
        actor_user_id=actor.id if actor else None,
        payload={"product_id": product.id, "requested_quantity": requested_quantity},
    )
    db.session.commit()

    if current_app.config.get("RESTOCK_AUTO_APPROVE", False):
        current_app.logger.info("Auto-approving restock request %s", req.id)
        return process_request(req.id, RESTOCK_APPROVED, admin_note="Auto-approved")
    return req


def process_request(
    request_id: int,
    decision: str,
    *,
    admin_note: str | None = None,
    actor: User | None = None,
) -> RestockRequest:
    """
    Approve or reject a pending request.

    Raises:
        InvalidDecision: decision is not approved/rejected
        Unauthorized: actor is not an admin
        NotFound: unknown request
        AlreadyProcessed: request already left pending (nothing changes)
    """
    if decision not in RESTOCK_DECISIONS:
        raise InvalidDecision(f"Invalid status: {decision}. Must be one of {list(RESTOCK_DECISIONS)}")
    if actor is not None and not actor.is_admin:
        raise Unauthorized("Only admins can process restock requests")
    admin_note = coerce_str(admin_note, "admin_note", max_length=255, required=False) or ""
    actor_id = actor.id if actor else None

    def _op():
        req = db.session.get(RestockRequest, request_id, populate_existing=True)
        if req is None:
            raise NotFound(f"Restock request {request_id} not found")

        now = utcnow()
        updated = guarded_update(
            RestockRequest,
            RestockRequest.id == request_id,
            RestockRequest.status == RESTOCK_PENDING,
            values={
                RestockRequest.status: decision,
                RestockRequest.admin_note: admin_note,
                RestockRequest.processed_at: now,
                RestockRequest.processed_by_user_id: actor_id,
                RestockRequest.updated_at: now,
            },
        )
        if updated == 0:
            raise AlreadyProcessed("This request has already been processed", status=req.status)

        new_quantity = None
        if decision == RESTOCK_APPROVED:
            new_quantity = inventory_service.release(
                req.product_id,
                req.requested_quantity,
                reason=f"restock request {request_id} approved",
                actor_user_id=actor_id,
                commit=False,
            )

        append_audit_event(
            event_type="restock.processed",
            entity_type="restock_request",
            entity_id=request_id,
            actor_user_id=actor_id,
            note=admin_note or None,
            payload={"decision": decision, "available_after": new_quantity},
        )
        db.session.commit()
        return db.session.get(RestockRequest, request_id, populate_existing=True)

    req = run_with_retry(_op)

    notification_service.publish(
        notification_service.outlet_channel(req.outlet_id),
        "restock.processed",
        request_id=req.id,
        product_id=req.product_id,
        status=req.status,
        message=f"Your restock request for {req.product.name} has been {req.status}",
    )
    return req


def list_requests(
    *,
    status: str | None = None,
    outlet_id: int | None = None,
    search: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[RestockRequest], int]:
    q = db.session.query(RestockRequest).join(Product, Product.id == RestockRequest.product_id)

    if status and status != "all":
        q = q.filter(RestockRequest.status == status)
    if outlet_id is not None:
        q = q.filter(RestockRequest.outlet_id == outlet_id)
    if search:
        q = q.filter(Product.name.ilike(f"%{search}%"))
    if date_from is not None:
        q = q.filter(RestockRequest.created_at >= date_from)
    if date_to is not None:
        q = q.filter(RestockRequest.created_at <= inclusive_upper_bound(date_to))

    total = q.count()
    rows = q.order_by(RestockRequest.created_at.desc(), RestockRequest.id.desc()).offset(offset).limit(limit).all()
    return rows, total
