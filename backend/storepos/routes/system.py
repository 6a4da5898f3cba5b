# backend/storepos/routes/system.py
"""
System health endpoint.

Reports database reachability, store settings presence and the state of
the analytics components (cache size, live subscribers).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db, DISPATCHER_KEY
from ..models import Product, StoreSettings, Transaction
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        transaction_count = db.session.query(Transaction).count()
        settings_present = db.session.query(StoreSettings).count() > 0

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "transactions": transaction_count,
                "settings_configured": settings_present,
            }
        }
        if not settings_present:
            # Sales still work with the default VAT rate
            result["status"] = "degraded"
            result["warning"] = "Store settings not initialized (run `flask system seed`)"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_analytics_health() -> dict:
    dispatcher = current_app.extensions.get(DISPATCHER_KEY)
    if dispatcher is None:
        return {"status": "unhealthy", "error": "Analytics dispatcher not initialized"}
    stats = dispatcher.cache.stats()
    return {
        "status": "healthy",
        "details": {
            "cache_entries": stats["valid_entries"],
            "subscribers": dispatcher.broker.subscriber_count(),
            "refreshing": dispatcher.is_refreshing,
        }
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable or analytics not wired
    """
    start_time = time.time()

    database_health = check_database_health()
    analytics_health = check_analytics_health()

    all_checks = [database_health, analytics_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "analytics": analytics_health,
        }
    }

    return response, http_status
