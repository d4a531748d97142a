# backend/orderdesk/routes/system.py
"""
System health endpoint.

Reports database connectivity and the realtime fan-out configuration for
deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db, order_events
from ..models import Store
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"stores": store_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    overall = "healthy" if database["status"] == "healthy" else "unhealthy"
    body = {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database,
            "realtime": {
                "status": "healthy",
                "redis": order_events.publisher is not None,
            },
        },
    }
    return body, 200 if overall == "healthy" else 503
