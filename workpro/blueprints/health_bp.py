"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — dependency status (database, rate-limit store, SLA monitor)
"""

import logging
import time

import redis
from flask import Blueprint, current_app, jsonify

from workpro.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
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
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Redis (rate-limit storage) ───────────────────────────────────
    redis_url = current_app.config.get("REDIS_URL") or ""
    if redis_url.startswith("redis"):
        try:
            t0 = time.perf_counter()
            redis.from_url(redis_url, socket_timeout=2).ping()
            redis_ms = (time.perf_counter() - t0) * 1000
            checks["redis"] = {"status": "ok", "latency_ms": round(redis_ms, 1)}
        except redis.RedisError as exc:
            # reported, not fatal
            checks["redis"] = {"status": "error", "detail": str(exc)}
    else:
        checks["redis"] = {"status": "skipped", "detail": "no REDIS_URL configured"}

    # ── SLA monitor ──────────────────────────────────────────────────
    monitor = current_app.extensions.get("sla_monitor")
    checks["sla_monitor"] = {
        "status": "running" if monitor and monitor.is_running else "stopped",
    }

    checks["app"] = {
        "name": "WorkPro Maintenance Core",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), (
        200 if overall else 503
    )
