"""
Health check blueprint.

Endpoints:
    GET /api/health        simple 200 for load balancers
    GET /api/health/live   database connectivity check
"""

import logging
import time

from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from koassets.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/health")


@health_bp.route("", methods=["GET"])
def ready():
    """Simple readiness probe; always 200 if app is running."""
    return jsonify({"status": "ok", "app": "KO Assets Rights Review"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check including the record store."""
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        database = {"status": "ok", "latency_ms": round(db_ms, 1)}
        overall = True
    except SQLAlchemyError as exc:
        logger.error("Health check: database failed: %s", exc)
        database = {"status": "error"}
        overall = False

    return jsonify({
        "status": "ok" if overall else "degraded",
        "checks": {"database": database},
    }), 200 if overall else 503
