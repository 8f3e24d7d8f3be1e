# Overview: Service-layer operations for account administration; client listing, profile edits and deactivation.

"""
User Administration

Accounts are never hard-deleted: orders, credits and audit events keep
pointing at them. Deactivation sets is_active=False and revokes every
session, so the user is logged out immediately and cannot log back in.
"""

from __future__ import annotations

from ..errors import Unauthorized, ValidationError
from ..extensions import db
from ..models import User
from ..models.users import ROLE_ADMIN, VALID_ROLES
from ..validation import coerce_str, reject_unknown_fields
from . import session_service
from .audit_service import append_audit_event
from .auth_service import hash_password
from .inventory_service import find_user


SELF_UPDATABLE_FIELDS = {"name", "email", "phone_number", "store_name", "password"}
ADMIN_UPDATABLE_FIELDS = SELF_UPDATABLE_FIELDS | {"role"}


def _ensure_admin(actor: User | None, message: str) -> None:
    if actor is None or not actor.is_admin:
        raise Unauthorized(message)


def _active_admin_count() -> int:
    return db.session.query(User).filter(
        User.role == ROLE_ADMIN,
        User.is_active.is_(True),
    ).count()


def get_user(user_id: int, *, actor: User | None) -> User:
    user = find_user(user_id)
    if actor is not None and not actor.is_admin and actor.id != user.id:
        raise Unauthorized("You can only view your own account")
    return user


def list_users(
    *,
    role: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[User], int]:
    """Newest first. search matches username, name, email or store name."""
    q = db.session.query(User)
    if role and role != "all":
        if role not in VALID_ROLES:
            raise ValidationError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")
        q = q.filter(User.role == role)
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(
            User.username.ilike(pattern),
            User.name.ilike(pattern),
            User.email.ilike(pattern),
            User.store_name.ilike(pattern),
        ))
    total = q.count()
    rows = q.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def update_user(user_id: int, patch: dict, *, actor: User | None) -> User:
    """
    Profile edit. Users may edit their own profile; admins may edit anyone
    and change roles. credit_limit_cents has its own endpoint.
    """
    user = find_user(user_id)
    is_admin = actor is None or actor.is_admin
    if not is_admin and actor.id != user.id:
        raise Unauthorized("You can only update your own account")
    reject_unknown_fields(patch, ADMIN_UPDATABLE_FIELDS if is_admin else SELF_UPDATABLE_FIELDS)

    changes = []
    if "name" in patch:
        user.name = coerce_str(patch["name"], "name", max_length=255)
        changes.append("name")
    if "email" in patch:
        email = coerce_str(patch["email"], "email", max_length=255, required=False)
        if email and db.session.query(User.id).filter(User.email == email, User.id != user.id).first():
            raise ValidationError("Email already exists")
        user.email = email
        changes.append("email")
    if "phone_number" in patch:
        user.phone_number = coerce_str(patch["phone_number"], "phone_number", max_length=32, required=False)
        changes.append("phone_number")
    if "store_name" in patch:
        user.store_name = coerce_str(patch["store_name"], "store_name", max_length=255, required=False)
        changes.append("store_name")
    if "password" in patch:
        user.password_hash = hash_password(patch["password"])
        changes.append("password")
    if "role" in patch:
        role = patch["role"]
        if role not in VALID_ROLES:
            raise ValidationError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")
        if user.role == ROLE_ADMIN and role != ROLE_ADMIN and _active_admin_count() <= 1:
            raise ValidationError("Cannot demote the last admin")
        user.role = role
        changes.append("role")

    if changes:
        append_audit_event(
            event_type="user.updated",
            entity_type="user",
            entity_id=user.id,
            actor_user_id=actor.id if actor else None,
            payload={"fields": changes},
        )
    db.session.commit()
    return user


def deactivate_user(user_id: int, *, actor: User | None) -> int:
    """
    Returns the number of sessions revoked.

    Raises:
        Unauthorized: caller is not an admin
        ValidationError: self-deactivation or an already inactive account
    """
    _ensure_admin(actor, "Only admins can deactivate accounts")
    user = find_user(user_id)
    if user.id == actor.id:
        raise ValidationError("Cannot deactivate your own account")
    if not user.is_active:
        raise ValidationError("User is already deactivated")

    user.is_active = False
    revoked = session_service.revoke_all_user_sessions(user.id)
    append_audit_event(
        event_type="user.deactivated",
        entity_type="user",
        entity_id=user.id,
        actor_user_id=actor.id,
        payload={"sessions_revoked": revoked},
    )
    db.session.commit()
    return revoked


def reactivate_user(user_id: int, *, actor: User | None) -> User:
    _ensure_admin(actor, "Only admins can reactivate accounts")
    user = find_user(user_id)
    if user.is_active:
        raise ValidationError("User is already active")

    user.is_active = True
    append_audit_event(
        event_type="user.reactivated",
        entity_type="user",
        entity_id=user.id,
        actor_user_id=actor.id,
    )
    db.session.commit()
    return user
