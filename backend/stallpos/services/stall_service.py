# Overview: Service-layer operations for stalls; creation and listing for an Admin.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Stall, User
from ..validation import ConflictError, ValidationError, validate_stall_number


def create_stall(
    admin_id: int,
    stall_number: str,
    name: str,
    location: str | None = None,
    manager_id: int | None = None,
) -> Stall:
    stall_number = validate_stall_number(stall_number)
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")

    if manager_id is not None:
        manager = db.session.get(User, manager_id)
        if manager is None or manager.tenant_admin_id != admin_id:
            raise ValidationError("Manager must belong to the same admin")

    stall = Stall(
        stall_number=stall_number,
        name=name[:120],
        location=location,
        admin_id=admin_id,
        manager_id=manager_id,
    )
    db.session.add(stall)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Stall number {stall_number} already exists")
    return stall


def list_stalls(admin_id: int | None = None) -> list[Stall]:
    query = db.session.query(Stall)
    if admin_id is not None:
        query = query.filter_by(admin_id=admin_id)
    return query.order_by(Stall.stall_number).all()
