# commerce/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///commerce.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Inventory
    DEFAULT_REORDER_POINT = int(os.environ.get("DEFAULT_REORDER_POINT", "5"))
    RESERVATION_HOLD_MINUTES = int(os.environ.get("RESERVATION_HOLD_MINUTES", "15"))

    # Restock requests wait for an admin unless this is switched on
    RESTOCK_AUTO_APPROVE = _env_bool("RESTOCK_AUTO_APPROVE", False)

    # Credit
    DEFAULT_CREDIT_LIMIT_CENTS = int(os.environ.get("DEFAULT_CREDIT_LIMIT_CENTS", "0"))

    # Bounded retry for lost conditional-update races
    CONFLICT_RETRY_ATTEMPTS = int(os.environ.get("CONFLICT_RETRY_ATTEMPTS", "3"))
    CONFLICT_RETRY_BACKOFF = float(os.environ.get("CONFLICT_RETRY_BACKOFF", "0.05"))

    # Third-party payment verification
    PAYSTACK_SECRET_KEY = os.environ.get("PAYSTACK_SECRET_KEY", "")
    PAYSTACK_BASE_URL = os.environ.get("PAYSTACK_BASE_URL", "https://api.paystack.co")
    PAYMENT_VERIFY_TIMEOUT = float(os.environ.get("PAYMENT_VERIFY_TIMEOUT", "10"))
    VERIFIED_PAYMENT_METHODS = frozenset(
        m.strip().lower()
        for m in os.environ.get("VERIFIED_PAYMENT_METHODS", "paystack").split(",")
        if m.strip()
    )

    # Bearer session lifetime
    SESSION_TIMEOUT_HOURS = int(os.environ.get("SESSION_TIMEOUT_HOURS", "24"))
