# backend/maltiti/routes/system.py
"""
System health endpoint.

Checks the database and reports which payment and email integrations are
configured, for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, Sale
from maltiti.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        sale_count = db.session.query(Sale).filter(Sale.deleted_at.is_(None)).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "sales": sale_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_integrations() -> dict:
    """Missing Paystack key is degraded: orders can be placed but not paid."""
    payments_configured = bool(current_app.config.get("PAYSTACK_SECRET_KEY"))
    return {
        "status": "healthy" if payments_configured else "degraded",
        "details": {
            "payments_configured": payments_configured,
            "email_configured": bool(current_app.config.get("EMAIL_API_KEY")),
        }
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    integrations = check_integrations()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif integrations["status"] == "degraded":
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "integrations": integrations,
        }
    }

    return response, http_status
