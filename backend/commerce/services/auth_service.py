# Overview: Service-layer operations for auth; password hashing, user creation and login.

"""
Authentication Service

Passwords are hashed with bcrypt (cost factor 12). Session tokens are managed
separately (see session_service.py).

Roles:
- admin:    platform operator; processes restocks, overrides statuses, sets credit limits
- outlet:   seller tenant; owns products, files restock requests, extends credit
- customer: buyer; places orders and repays credit
"""

import re

import bcrypt
from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import User
from ..models.users import ROLE_CUSTOMER, ROLE_OUTLET, VALID_ROLES
from ..time_utils import utcnow
from ..validation import MAX_AMOUNT_CENTS, coerce_int, coerce_str


MIN_PASSWORD_LENGTH = 8

SELF_REGISTER_ROLES = (ROLE_CUSTOMER, ROLE_OUTLET)


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters with at least one letter and one digit.

    Raises ValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Za-z]", password):
        raise ValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe comparison via bcrypt.checkpw."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    *,
    username,
    password,
    role: str = ROLE_CUSTOMER,
    email=None,
    name=None,
    phone_number=None,
    store_name=None,
    credit_limit_cents=None,
) -> User:
    """
    Create a user. New users get DEFAULT_CREDIT_LIMIT_CENTS unless a limit
    is given.

    Raises ValidationError for bad input or a duplicate username/email.
    """
    username = coerce_str(username, "username", max_length=64)
    email = coerce_str(email, "email", max_length=255, required=False)
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")
    if role == ROLE_OUTLET and not store_name:
        store_name = username

    if credit_limit_cents is None:
        credit_limit_cents = current_app.config.get("DEFAULT_CREDIT_LIMIT_CENTS", 0)
    credit_limit_cents = coerce_int(credit_limit_cents, "credit_limit_cents", minimum=0, maximum=MAX_AMOUNT_CENTS)

    clauses = [User.username == username]
    if email:
        clauses.append(User.email == email)
    if db.session.query(User.id).filter(db.or_(*clauses)).first() is not None:
        raise ValidationError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        name=coerce_str(name, "name", max_length=255, required=False) or username,
        phone_number=coerce_str(phone_number, "phone_number", max_length=32, required=False),
        role=role,
        store_name=coerce_str(store_name, "store_name", max_length=255, required=False),
        password_hash=hash_password(password),
        credit_limit_cents=credit_limit_cents,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def register_user(data: dict) -> User:
    """
    Self-service signup. Customers and outlets may register themselves;
    admin accounts and custom credit limits are only granted by an admin.
    """
    role = data.get("role") or ROLE_CUSTOMER
    if role not in SELF_REGISTER_ROLES:
        raise ValidationError(f"role must be one of {list(SELF_REGISTER_ROLES)}")
    return create_user(
        username=data.get("username"),
        password=data.get("password"),
        role=role,
        email=data.get("email"),
        name=data.get("name"),
        phone_number=data.get("phone_number"),
        store_name=data.get("store_name"),
    )


def authenticate(username: str, password: str) -> User | None:
    """
    Returns the active User for valid credentials (username or email),
    otherwise None. Updates last_login_at on success.
    """
    if not username or not password:
        return None

    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()
    if user is None or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
