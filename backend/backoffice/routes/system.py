# backend/backoffice/routes/system.py
"""
System health and version endpoints.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import OutletStock, PurchaseOrder, ReturnPolicy
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    """
    Check database connectivity with a few cheap counts.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        stock_rows = db.session.query(OutletStock).count()
        purchase_orders = db.session.query(PurchaseOrder).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stock_rows": stock_rows,
                "purchase_orders": purchase_orders,
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


def check_policy_health() -> dict:
    """Degraded (still operational) when no return policy is active."""
    try:
        active = db.session.query(ReturnPolicy).filter(ReturnPolicy.is_active.is_(True)).count()
    except Exception:
        current_app.logger.exception("Return policy health check failed")
        return {"status": "unhealthy", "error": "Database error"}
    if not active:
        return {"status": "degraded", "details": "No active return policy; returns are unrestricted"}
    return {"status": "healthy", "details": {"active_policies": active}}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    policy_health = check_policy_health()

    all_checks = [database_health, policy_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "return_policy": policy_health,
        }
    }
    return response, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": API_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
