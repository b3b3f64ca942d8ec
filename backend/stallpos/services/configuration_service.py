# Overview: Service-layer operations for per-admin configuration; tax rate, platform fee and linked users.

"""
Configuration Service

WHY: Each Admin owns exactly one Configuration row. Stall managers and
cashiers read their Admin's rates but never change them. Rows are created
lazily with the default tax rate the first time an Admin touches them.

Linked users follow an Admin's tax rate: when the Admin changes it, the
linked users' own configurations are updated in the same transaction.

The platform fee is a reporting figure only. It is stored on each order
and never changes what the customer is charged.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Configuration, User
from ..validation import parse_percentage_to_bps, NotFoundError
from ..time_utils import utcnow
from .concurrency import run_with_retry


class ConfigurationPermissionError(Exception):
    """Raised when a non-admin tries to change configuration."""
    pass


def _default_tax_rate_bps() -> int:
    return int(current_app.config.get("DEFAULT_TAX_RATE_BPS", 525))


def get_configuration(admin_id: int) -> Configuration | None:
    return db.session.query(Configuration).filter_by(admin_id=admin_id).first()


def get_or_create_configuration(admin_id: int) -> Configuration:
    """
    Return the Admin's configuration, creating it with defaults if absent.

    Two first requests can race to insert; the loser hits the unique
    admin_id constraint, rolls back and reads the winner's row.
    """
    config = get_configuration(admin_id)
    if config:
        return config

    config = Configuration(
        admin_id=admin_id,
        tax_rate_bps=_default_tax_rate_bps(),
        platform_fee_bps=0,
        tax_updated_at=utcnow(),
        currency=current_app.config.get("PAYMENT_CURRENCY", "sgd"),
    )
    db.session.add(config)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        config = get_configuration(admin_id)
        if config is None:
            raise
    return config


def resolve_configuration_for_user(user: User) -> Configuration | None:
    """
    Configuration that governs the user's orders.

    Admin -> own (created lazily). Staff -> owning Admin's (created lazily).
    Otherwise the first configuration the user is linked to, if any.
    """
    if user.is_admin:
        return get_or_create_configuration(user.id)
    if user.admin_id:
        return get_or_create_configuration(user.admin_id)
    if user.linked_configurations:
        return user.linked_configurations[0]
    return None


# =============================================================================
# TAX RATE
# =============================================================================

def get_tax_rate(user: User) -> dict:
    config = resolve_configuration_for_user(user)
    bps = config.tax_rate_bps if config else _default_tax_rate_bps()
    return {
        "tax_rate": bps / 100,
        "tax_rate_bps": bps,
        "is_admin": user.is_admin,
        "can_modify": user.is_admin,
        "last_updated": config.to_dict()["tax_updated_at"] if config else None,
    }


def update_tax_rate(user: User, rate) -> tuple[Configuration, int]:
    """
    Set the Admin's tax rate (percent, 0-100) and push it to linked users.

    Returns (configuration, linked_users_updated).
    Raises ConfigurationPermissionError for non-admins and ValidationError
    for out-of-range rates.
    """
    if not user.is_admin:
        raise ConfigurationPermissionError("Only admin users can update tax rate configuration")

    bps = parse_percentage_to_bps(rate, "tax_rate")
    config = get_or_create_configuration(user.id)

    def _op():
        now = utcnow()
        config.tax_rate_bps = bps
        config.tax_updated_at = now

        linked_ids = [u.id for u in config.linked_users]
        if linked_ids:
            linked_configs = (
                db.session.query(Configuration)
                .filter(Configuration.admin_id.in_(linked_ids))
                .all()
            )
            for linked in linked_configs:
                linked.tax_rate_bps = bps
                linked.tax_updated_at = now

        db.session.commit()
        return len(linked_ids)

    linked_updated = run_with_retry(_op)
    current_app.logger.info(
        "Tax rate for admin %s set to %s bps (%d linked users)", user.id, bps, linked_updated
    )
    return config, linked_updated


# =============================================================================
# PLATFORM FEE
# =============================================================================

def update_platform_fee_rate(user: User, rate) -> Configuration:
    if not user.is_admin:
        raise ConfigurationPermissionError("Only admin users can update the platform fee rate")

    bps = parse_percentage_to_bps(rate, "platform_fee_rate")
    config = get_or_create_configuration(user.id)

    def _op():
        config.platform_fee_bps = bps
        config.platform_fee_updated_at = utcnow()
        db.session.commit()
        return config

    return run_with_retry(_op)


def calculate_platform_fee_cents(total_with_tax_cents: int, admin_id: int | None) -> int:
    """
    Reporting-only fee for an order total, rounded to the nearest cent.

    Any lookup problem yields 0 so fee reporting can never block a sale.
    """
    if not admin_id or total_with_tax_cents <= 0:
        return 0
    try:
        config = get_configuration(admin_id)
    except Exception:
        current_app.logger.exception("Platform fee lookup failed for admin %s", admin_id)
        return 0
    if not config or config.platform_fee_bps <= 0:
        return 0
    return int(round(total_with_tax_cents * config.platform_fee_bps / 10000))


# =============================================================================
# LINKED USERS
# =============================================================================

def link_user(admin_id: int, user_id: int) -> Configuration:
    """Make user_id follow admin_id's tax rate. Idempotent."""
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    config = get_or_create_configuration(admin_id)
    if user not in config.linked_users:
        config.linked_users.append(user)
        db.session.commit()
    return config
