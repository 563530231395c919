"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — process is up (no dependencies touched)
    GET /api/v1/health/live   — database round-trip, debt-ledger backlog and
                                rate-limit storage
"""

import logging
import time

import redis
from flask import Blueprint, current_app, jsonify
from sqlalchemy import func

from repairflow.models import db
from repairflow.models.debt import ACCRUAL_FAILED, ACCRUAL_PENDING, DebtAccrual

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


def _rate_limit_storage_check() -> dict:
    """Ping the Flask-Limiter Redis backend; other storages are skipped."""
    storage_url = current_app.config.get("REDIS_URL") or ""
    if not storage_url.startswith(("redis://", "rediss://")):
        return {"status": "skipped", "detail": f"storage {storage_url.split(':', 1)[0] or 'unset'}"}
    try:
        started = time.perf_counter()
        redis.from_url(storage_url, socket_timeout=2).ping()
    except redis.RedisError as exc:
        logger.warning("Health check: rate-limit storage unavailable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


@health_bp.route("/live", methods=["GET"])
def live():
    """
    503 when the database is unreachable.

    Pending/failed accrual counts and the rate-limit storage are reported but
    never fail the probe; a growing backlog means ``flask reconcile-debt`` is
    not running.
    """
    checks = {}
    try:
        started = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
        }
        counts = dict(
            db.session.query(DebtAccrual.status, func.count(DebtAccrual.id))
            .filter(DebtAccrual.status.in_([ACCRUAL_PENDING, ACCRUAL_FAILED]))
            .group_by(DebtAccrual.status)
            .all()
        )
        checks["debt_ledger"] = {
            "pending": counts.get(ACCRUAL_PENDING, 0),
            "failed": counts.get(ACCRUAL_FAILED, 0),
        }
    except Exception as exc:
        db.session.rollback()
        logger.error("Health check: database unavailable: %s", exc)
        checks["database"] = {"status": "error", "detail": str(exc)}
        return jsonify({"status": "degraded", "checks": checks}), 503

    checks["rate_limit_storage"] = _rate_limit_storage_check()
    return jsonify({"status": "ok", "checks": checks}), 200
