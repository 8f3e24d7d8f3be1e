# Overview: Service-layer operations for product categories; admin CRUD with parent nesting.

from __future__ import annotations

from ..errors import NotFound, Unauthorized, ValidationError
from ..extensions import db
from ..models import Category, Product, User
from ..validation import coerce_int, coerce_str, reject_unknown_fields
from .audit_service import append_audit_event


CATEGORY_UPDATABLE_FIELDS = {"name", "description", "parent_id", "featured", "is_active"}


def find_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFound(f"Category {category_id} not found")
    return category


def _ensure_admin(actor: User | None) -> None:
    if actor is not None and not actor.is_admin:
        raise Unauthorized("Only admins can manage categories")


def _ensure_unique_name(name: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Category.id).filter(db.func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Category.id != exclude_id)
    if q.first() is not None:
        raise ValidationError(f"Category '{name}' already exists")


def _resolve_parent(parent_id, category_id: int | None = None) -> int | None:
    """Empty clears the parent. A category can never become its own ancestor."""
    if parent_id is None or parent_id == "":
        return None
    parent = find_category(coerce_int(parent_id, "parent_id", minimum=1))

    node = parent
    while node is not None:
        if category_id is not None and node.id == category_id:
            raise ValidationError("A category cannot be nested under itself")
        node = node.parent
    return parent.id


def create_category(
    *,
    name,
    description=None,
    parent_id=None,
    featured: bool = False,
    actor: User | None = None,
) -> Category:
    _ensure_admin(actor)
    name = coerce_str(name, "name", max_length=120)
    _ensure_unique_name(name)

    category = Category(
        name=name,
        description=coerce_str(description, "description", required=False),
        parent_id=_resolve_parent(parent_id),
        featured=bool(featured),
        is_active=True,
    )
    db.session.add(category)
    db.session.flush()

    append_audit_event(
        event_type="category.created",
        entity_type="category",
        entity_id=category.id,
        actor_user_id=actor.id if actor else None,
        payload={"name": name, "parent_id": category.parent_id},
    )
    db.session.commit()
    return category


def update_category(category_id: int, patch: dict, *, actor: User | None = None) -> Category:
    _ensure_admin(actor)
    reject_unknown_fields(patch, CATEGORY_UPDATABLE_FIELDS)
    category = find_category(category_id)

    if "name" in patch:
        name = coerce_str(patch["name"], "name", max_length=120)
        _ensure_unique_name(name, exclude_id=category.id)
        category.name = name
    if "description" in patch:
        category.description = coerce_str(patch["description"], "description", required=False)
    if "parent_id" in patch:
        category.parent_id = _resolve_parent(patch["parent_id"], category.id)
    if "featured" in patch:
        category.featured = bool(patch["featured"])
    if "is_active" in patch:
        category.is_active = bool(patch["is_active"])

    append_audit_event(
        event_type="category.updated",
        entity_type="category",
        entity_id=category.id,
        actor_user_id=actor.id if actor else None,
        payload={"fields": sorted(patch)},
    )
    db.session.commit()
    return category


def delete_category(category_id: int, *, actor: User | None = None) -> int:
    """
    Delete a leaf category. Its products stay in the catalog, uncategorized.

    Returns the number of products detached.
    """
    _ensure_admin(actor)
    category = find_category(category_id)

    has_children = db.session.query(Category.id).filter(Category.parent_id == category.id).first()
    if has_children is not None:
        raise ValidationError("Cannot delete category with subcategories")

    detached = db.session.query(Product).filter(Product.category_id == category.id).update(
        {Product.category_id: None}, synchronize_session=False
    )
    append_audit_event(
        event_type="category.deleted",
        entity_type="category",
        entity_id=category.id,
        actor_user_id=actor.id if actor else None,
        payload={"name": category.name, "products_detached": detached},
    )
    db.session.delete(category)
    db.session.commit()
    return detached


def list_categories(*, include_inactive: bool = False, parent_id: int | None = None) -> list[Category]:
    q = db.session.query(Category)
    if not include_inactive:
        q = q.filter(Category.is_active.is_(True))
    if parent_id is not None:
        q = q.filter(Category.parent_id == parent_id)
    return q.order_by(Category.name.asc(), Category.id.asc()).all()
