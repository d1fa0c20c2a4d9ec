"""
Health probes.

    GET /api/v1/health/ready   process is up (load balancer)
    GET /api/v1/health/live    database round-trip plus deployment facts
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from testhub.models import db
from testhub.models.uat import UatSession

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _database_check():
    started = time.perf_counter()
    try:
        active = db.session.query(UatSession.id).filter(UatSession.status == "active").count()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health probe could not reach the database: %s", exc)
        return False, {"status": "error", "detail": exc.__class__.__name__}
    elapsed_ms = (time.perf_counter() - started) * 1000
    return True, {"status": "ok", "latency_ms": round(elapsed_ms, 1), "active_sessions": active}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    db_ok, db_check = _database_check()
    body = {
        "status": "healthy" if db_ok else "degraded",
        "checks": {
            "database": db_check,
            "app": {
                "name": "TestHub UAT Review Engine",
                "links_base_url": current_app.config.get("UAT_BASE_URL"),
                "testing": current_app.testing,
            },
        },
    }
    return jsonify(body), 200 if db_ok else 503
