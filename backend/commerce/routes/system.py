# Overview: Flask API routes for system health; reports database and reservation state.

# backend/commerce/routes/system.py
"""
System health endpoint.
"""

import time
from datetime import timedelta

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Product, StockReservation, User
from ..models.catalog import RESERVATION_HELD
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        product_count = db.session.query(Product).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count, "products": product_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_reservation_health() -> dict:
    """Held reservations older than the hold window mean the sweep is not running."""
    try:
        window = timedelta(minutes=current_app.config.get("RESERVATION_HOLD_MINUTES", 15))
        stale = db.session.query(StockReservation).filter(
            StockReservation.status == RESERVATION_HELD,
            StockReservation.created_at < utcnow() - window,
        ).count()
        if stale:
            return {"status": "degraded", "warning": f"{stale} stale stock reservation(s) awaiting sweep"}
        return {"status": "healthy"}
    except Exception:
        current_app.logger.exception("Reservation health check failed")
        return {"status": "unhealthy", "error": "Reservation check error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()
    checks = {
        "database": check_database_health(),
        "reservations": check_reservation_health(),
    }

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
