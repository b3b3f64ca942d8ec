# backend/stallpos/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stallpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stallpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bearer tokens expire this long after login
    SESSION_TIMEOUT_HOURS = _int_env("SESSION_TIMEOUT_HOURS", 24)

    # Stripe credentials. Webhooks are rejected when the secret is empty.
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    # Reader used by Admin accounts that have no stall of their own
    STRIPE_TERMINAL_READER_ID = os.environ.get("STRIPE_TERMINAL_READER_ID", "")

    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "sgd")
    PAYMENT_CAPTURE_METHOD = os.environ.get("PAYMENT_CAPTURE_METHOD", "automatic")
    WEBHOOK_TOLERANCE_SECONDS = _int_env("WEBHOOK_TOLERANCE_SECONDS", 300)

    # Poll heuristic: requires_payment_method older than this is reported as a failure
    TERMINAL_FAILURE_AFTER_SECONDS = _int_env("TERMINAL_FAILURE_AFTER_SECONDS", 30)
    # Pending orders older than this are failed by check-failure and the sweep command
    STALE_PENDING_ORDER_SECONDS = _int_env("STALE_PENDING_ORDER_SECONDS", 600)

    # 5.25%
    DEFAULT_TAX_RATE_BPS = _int_env("DEFAULT_TAX_RATE_BPS", 525)

    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
    CORS_ALLOWED_ORIGINS = [
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if o.strip()
    ]
