from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TERMINAL_STATUS_ONLINE = "online"
TERMINAL_STATUS_OFFLINE = "offline"


# Users that follow an Admin's configuration without being its staff
configuration_linked_users = db.Table(
    "configuration_linked_users",
    db.Column("configuration_id", db.Integer, db.ForeignKey("configurations.id"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
)


class Configuration(db.Model):
    """
    Per-Admin business configuration.

    WHY: Each Admin (tenant) owns one row holding the tax rate used by its
    stalls, the platform fee used for reporting, and its registered readers.
    Rows are created lazily the first time the Admin reads or writes a rate.

    Rates are stored as basis points (525 = 5.25%).
    """
    __tablename__ = "configurations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    tax_rate_bps = db.Column(db.Integer, nullable=False, default=525)
    tax_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    platform_fee_bps = db.Column(db.Integer, nullable=False, default=0)
    platform_fee_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    currency = db.Column(db.String(8), nullable=False, default="sgd")
    timezone = db.Column(db.String(64), nullable=False, default="Asia/Singapore")

    business_name = db.Column(db.String(255), nullable=True)
    business_phone = db.Column(db.String(32), nullable=True)
    business_email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    admin = db.relationship("User", foreign_keys=[admin_id])
    terminals = db.relationship(
        "Terminal",
        backref="configuration",
        lazy=True,
        order_by="Terminal.id",
        cascade="all, delete-orphan",
    )
    linked_users = db.relationship(
        "User",
        secondary=configuration_linked_users,
        lazy=True,
        backref=db.backref("linked_configurations", lazy=True),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def tax_rate_percent(self) -> float:
        return self.tax_rate_bps / 100

    @property
    def platform_fee_percent(self) -> float:
        return self.platform_fee_bps / 100

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "admin_id": self.admin_id,
            "tax_rate": self.tax_rate_percent,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_updated_at": to_utc_z(self.tax_updated_at) if self.tax_updated_at else None,
            "platform_fee_rate": self.platform_fee_percent,
            "platform_fee_bps": self.platform_fee_bps,
            "platform_fee_updated_at": (
                to_utc_z(self.platform_fee_updated_at) if self.platform_fee_updated_at else None
            ),
            "currency": self.currency,
            "timezone": self.timezone,
            "business_name": self.business_name,
            "business_phone": self.business_phone,
            "business_email": self.business_email,
            "linked_user_ids": [u.id for u in self.linked_users],
            "terminal_count": len(self.terminals),
        }


class Terminal(db.Model):
    """Card reader registered with the provider and owned by a Configuration."""
    __tablename__ = "terminals"
    __table_args__ = (
        db.UniqueConstraint(
            "configuration_id", "provider_terminal_id", name="uq_terminals_config_provider_id"
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    configuration_id = db.Column(db.Integer, db.ForeignKey("configurations.id"), nullable=False, index=True)

    # Provider reader id (tmr_...)
    provider_terminal_id = db.Column(db.String(255), nullable=False, index=True)
    label = db.Column(db.String(120), nullable=False)
    device_type = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=TERMINAL_STATUS_OFFLINE)
    location = db.Column(db.String(255), nullable=True)
    serial_number = db.Column(db.String(128), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    last_seen_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        stall = self.stall
        return {
            "id": self.id,
            "configuration_id": self.configuration_id,
            "provider_terminal_id": self.provider_terminal_id,
            "label": self.label,
            "device_type": self.device_type,
            "status": self.status,
            "location": self.location,
            "serial_number": self.serial_number,
            "ip_address": self.ip_address,
            "last_seen_at": to_utc_z(self.last_seen_at) if self.last_seen_at else None,
            "is_active": self.is_active,
            "assigned_stall_id": stall.id if stall else None,
            "assigned_stall_number": stall.stall_number if stall else None,
            "created_at": to_utc_z(self.created_at),
        }
