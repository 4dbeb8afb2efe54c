"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  - simple 200 for load balancers
    GET /api/v1/health/live   - detailed system health (DB, workflow config)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from unisync.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness check - always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check - database failed: %s", exc)

    # ── Workflow ─────────────────────────────────────────────────────
    engine = current_app.extensions.get("workflow_engine")
    if engine is None:
        checks["workflow"] = {"status": "error", "detail": "engine not configured"}
        overall = False
    else:
        checks["workflow"] = {
            "status": "ok",
            "variant": engine.variant.name,
            "stages": [s.value for s in engine.variant.stage_order],
            "bim_coordinator_scope": engine.variant.bim_coordinator_scope,
        }

    checks["app"] = {
        "name": "UniSync ShowSet Tracker",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
