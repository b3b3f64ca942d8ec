from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Stall(db.Model):
    """
    A physical market stall owned by an Admin and run by a stall manager.

    INVARIANT: terminal_id is unique, so one reader serves at most one stall.
    The terminal service also checks the reverse mapping under a row lock
    before assignment; the constraint is the backstop.
    """
    __tablename__ = "stalls"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    stall_number = db.Column(db.String(10), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    location = db.Column(db.String(255), nullable=True)

    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    terminal_id = db.Column(db.Integer, db.ForeignKey("terminals.id"), nullable=True, unique=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    admin = db.relationship("User", foreign_keys=[admin_id])
    manager = db.relationship("User", foreign_keys=[manager_id], backref=db.backref("managed_stalls", lazy=True))
    terminal = db.relationship("Terminal", backref=db.backref("stall", uselist=False))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Stall {self.stall_number} terminal_id={self.terminal_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stall_number": self.stall_number,
            "name": self.name,
            "location": self.location,
            "admin_id": self.admin_id,
            "manager_id": self.manager_id,
            "terminal_id": self.terminal_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
