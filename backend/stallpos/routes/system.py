# backend/stallpos/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether a payment provider key and
webhook secret are configured. Never returns the secrets themselves.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_payment_provider_config() -> dict:
    has_key = bool(current_app.config.get("STRIPE_SECRET_KEY"))
    has_webhook_secret = bool(current_app.config.get("STRIPE_WEBHOOK_SECRET"))
    return {
        "status": "healthy" if has_key and has_webhook_secret else "degraded",
        "details": {
            "secret_key_configured": has_key,
            "webhook_secret_configured": has_webhook_secret,
            "default_reader_configured": bool(current_app.config.get("STRIPE_TERMINAL_READER_ID")),
        }
    }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    provider = check_payment_provider_config()

    overall = "healthy"
    if database["status"] != "healthy":
        overall = "unhealthy"
    elif provider["status"] != "healthy":
        overall = "degraded"

    return jsonify({
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database,
            "payment_provider": provider,
        }
    }), 200 if overall != "unhealthy" else 503
