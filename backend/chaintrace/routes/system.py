# backend/chaintrace/routes/system.py
"""
System health endpoint.

Reports the record store and the registry connection separately. The
registry being down degrades the service (reads still work for
manufacturers) but does not make it unhealthy.
"""

import time

from flask import Blueprint, current_app

from ..errors import ChainUnavailableError
from ..extensions import db
from ..models import Batch, Product, User
from ..services.chain_registry import get_chain_registry
from chaintrace.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "products": db.session.query(Product).count(),
            "batches": db.session.query(Batch).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_chain_health() -> dict:
    start_time = time.time()
    try:
        status = get_chain_registry().status()
    except ChainUnavailableError as e:
        status = {"connected": False, "error": str(e)}
    elapsed_ms = (time.time() - start_time) * 1000
    return {
        "status": "healthy" if status.get("connected") else "degraded",
        "latency_ms": round(elapsed_ms, 2),
        "details": status,
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (registry unreachable)
    - 503: record store unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    chain_health = check_chain_health()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif chain_health["status"] != "healthy":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "chain": chain_health,
        },
    }, http_status
