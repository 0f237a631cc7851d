# backend/storefront/routes/system.py
"""
System health endpoint.

Reports database reachability and which payment gateways and object store
this process was configured with.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Store
from storefront.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
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
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_gateways_health() -> dict:
    registry = current_app.extensions.get("gateways")
    types = registry.types() if registry is not None else []
    if not types:
        return {"status": "degraded", "warning": "No payment gateways registered", "details": {"gateways": []}}
    return {"status": "healthy", "details": {"gateways": types}}


def check_object_store_health() -> dict:
    store = current_app.extensions.get("object_store")
    if store is None:
        return {"status": "unhealthy", "error": "Object store not configured"}
    return {"status": "healthy", "details": {"backend": type(store).__name__}}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: a required dependency is unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "gateways": check_gateways_health(),
        "object_store": check_object_store_health(),
    }
    statuses = [check["status"] for check in checks.values()]

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }
    return response, http_status
