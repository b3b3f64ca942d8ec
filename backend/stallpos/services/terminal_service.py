# Overview: Service-layer operations for card readers; registration, stall assignment and per-user resolution.

"""
Terminal Service

WHY: A payment is pushed to exactly one physical reader. Which reader is
decided server-side from who is logged in, never by the client:

- Stall manager: the first stall they manage (lowest id), then that
  stall's assigned terminal.
- Admin: a stall they manage themselves if any, else the configured
  default reader (STRIPE_TERMINAL_READER_ID).

ASSIGNMENT: terminal <-> stall is 1:1. The assigning request locks any stall
already holding the terminal before writing, and stalls.terminal_id is
UNIQUE as the backstop for concurrent assigners.

Terminals are addressed by their provider reader id (tmr_...) within the
Admin's configuration.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Stall, Terminal, User
from ..models.settings import TERMINAL_STATUS_ONLINE, TERMINAL_STATUS_OFFLINE
from ..validation import ConflictError, NotFoundError, ValidationError
from ..time_utils import utcnow, from_epoch_seconds
from .concurrency import lock_for_update, run_with_retry, is_unique_violation
from .configuration_service import get_configuration, get_or_create_configuration


class NoTerminalAssignedError(Exception):
    """Caller has no usable reader (no stall, no terminal on the stall, no default)."""
    pass


class NoStallAssignedError(NoTerminalAssignedError):
    pass


class TerminalNotFoundError(Exception):
    """Stall points at a terminal row that is missing or deactivated."""
    pass


@dataclass
class ResolvedTerminal:
    reader_id: str
    stall: Stall | None = None
    terminal: Terminal | None = None

    def to_dict(self) -> dict:
        return {
            "reader_id": self.reader_id,
            "stall_id": self.stall.id if self.stall else None,
            "stall_number": self.stall.stall_number if self.stall else None,
            "terminal_id": self.terminal.id if self.terminal else None,
        }


# =============================================================================
# RESOLUTION
# =============================================================================

def first_managed_stall(user_id: int) -> Stall | None:
    return (
        db.session.query(Stall)
        .filter(Stall.manager_id == user_id, Stall.is_active.is_(True))
        .order_by(Stall.id)
        .first()
    )


def _terminal_for_stall(stall: Stall) -> ResolvedTerminal:
    if not stall.terminal_id:
        raise NoTerminalAssignedError(
            f"No terminal assigned to stall {stall.stall_number}. Ask your admin to assign one."
        )
    terminal = db.session.get(Terminal, stall.terminal_id)
    if terminal is None or not terminal.is_active:
        raise TerminalNotFoundError(
            f"Terminal assigned to stall {stall.stall_number} was not found or is inactive"
        )
    return ResolvedTerminal(reader_id=terminal.provider_terminal_id, stall=stall, terminal=terminal)


def resolve_terminal_for_user(user: User) -> ResolvedTerminal:
    stall = first_managed_stall(user.id)

    if user.is_admin:
        if stall is not None:
            return _terminal_for_stall(stall)
        reader_id = current_app.config.get("STRIPE_TERMINAL_READER_ID")
        if not reader_id:
            raise NoTerminalAssignedError(
                "No default terminal configured. Set STRIPE_TERMINAL_READER_ID."
            )
        return ResolvedTerminal(reader_id=reader_id)

    if stall is None:
        raise NoStallAssignedError("No stall assigned to this user")
    return _terminal_for_stall(stall)


def resolve_reader_for_user(user: User, reader_id: str | None = None) -> str:
    """
    The caller's own reader, or an explicitly requested one.

    An explicit reader must be an active terminal registered in the caller's
    tenant configuration (Admins may also name the default reader).
    """
    if not reader_id:
        return resolve_terminal_for_user(user).reader_id
    if user.is_admin and reader_id == current_app.config.get("STRIPE_TERMINAL_READER_ID"):
        return reader_id

    terminal = _find_terminal(user.tenant_admin_id, reader_id)
    if terminal is None or not terminal.is_active:
        raise TerminalNotFoundError(f"Reader {reader_id} is not registered in your configuration")
    return reader_id


# =============================================================================
# REGISTRATION
# =============================================================================

def _reader_to_terminal_data(reader: dict) -> dict:
    return {
        "provider_terminal_id": reader.get("id"),
        "label": reader.get("label") or reader.get("id"),
        "device_type": reader.get("device_type"),
        "status": reader.get("status") or TERMINAL_STATUS_OFFLINE,
        "location": reader.get("location"),
        "serial_number": reader.get("serial_number"),
        "ip_address": reader.get("ip_address"),
        "last_seen_at": reader.get("last_seen_at"),
    }


def _find_terminal(admin_id: int, provider_terminal_id: str) -> Terminal | None:
    config = get_configuration(admin_id)
    if config is None:
        return None
    return (
        db.session.query(Terminal)
        .filter_by(configuration_id=config.id, provider_terminal_id=provider_terminal_id)
        .first()
    )


def get_terminal(admin_id: int, provider_terminal_id: str) -> Terminal:
    terminal = _find_terminal(admin_id, provider_terminal_id)
    if terminal is None:
        raise NotFoundError("Terminal not found in your configuration")
    return terminal


def verify_terminal(gateway, admin_id: int, provider_terminal_id: str) -> dict:
    """
    Look the reader up at the provider and report it for confirmation.

    Raises ConflictError if it is already registered, ProviderError if the
    provider does not know it.
    """
    if not provider_terminal_id:
        raise ValidationError("terminal_id is required")
    if _find_terminal(admin_id, provider_terminal_id) is not None:
        raise ConflictError("Terminal already added to your system")

    reader = gateway.retrieve_reader(provider_terminal_id)
    return _reader_to_terminal_data(reader)


def add_terminal(admin_id: int, data: dict) -> Terminal:
    provider_terminal_id = (data or {}).get("provider_terminal_id")
    if not provider_terminal_id:
        raise ValidationError("provider_terminal_id is required")

    config = get_or_create_configuration(admin_id)
    last_seen = data.get("last_seen_at")
    terminal = Terminal(
        configuration_id=config.id,
        provider_terminal_id=provider_terminal_id,
        label=(data.get("label") or provider_terminal_id)[:120],
        device_type=data.get("device_type"),
        status=data.get("status") or TERMINAL_STATUS_OFFLINE,
        location=data.get("location"),
        serial_number=data.get("serial_number"),
        ip_address=data.get("ip_address"),
        last_seen_at=from_epoch_seconds(last_seen) if isinstance(last_seen, int) else None,
        is_active=True,
    )
    db.session.add(terminal)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if is_unique_violation(exc):
            raise ConflictError("Terminal already added to your system")
        raise
    return terminal


def list_terminals(admin_id: int) -> list[Terminal]:
    config = get_configuration(admin_id)
    if config is None:
        return []
    return list(config.terminals)


def update_terminal(
    admin_id: int,
    provider_terminal_id: str,
    *,
    label: str | None = None,
    location: str | None = None,
    is_active: bool | None = None,
) -> Terminal:
    terminal = get_terminal(admin_id, provider_terminal_id)

    if label is not None:
        label = str(label).strip()
        if not label:
            raise ValidationError("label cannot be blank")
        terminal.label = label[:120]
    if location is not None:
        terminal.location = str(location).strip() or None
    if is_active is not None:
        if not is_active and terminal.stall is not None:
            raise ConflictError("Unassign the terminal from its stall before deactivating it")
        terminal.is_active = bool(is_active)

    db.session.commit()
    return terminal


def update_terminal_status(admin_id: int, provider_terminal_id: str, status: str) -> Terminal:
    if status not in (TERMINAL_STATUS_ONLINE, TERMINAL_STATUS_OFFLINE):
        raise ValidationError("status must be 'online' or 'offline'")
    terminal = get_terminal(admin_id, provider_terminal_id)
    terminal.status = status
    if status == TERMINAL_STATUS_ONLINE:
        terminal.last_seen_at = utcnow()
    db.session.commit()
    return terminal


def delete_terminal(admin_id: int, provider_terminal_id: str) -> None:
    terminal = get_terminal(admin_id, provider_terminal_id)
    if terminal.stall is not None:
        raise ConflictError(
            f"Terminal is assigned to stall {terminal.stall.stall_number}; unassign it first"
        )
    db.session.delete(terminal)
    db.session.commit()


# =============================================================================
# STALL ASSIGNMENT
# =============================================================================

def assign_terminal_to_stall(admin_id: int, provider_terminal_id: str, stall_id: int) -> Stall:
    """
    Point a stall at a terminal, replacing whatever terminal it had.

    Raises NotFoundError for an unknown terminal or stall, ConflictError if
    the terminal already serves a different stall.
    """
    def _op():
        terminal = get_terminal(admin_id, provider_terminal_id)
        if not terminal.is_active:
            raise ConflictError("Terminal is inactive")

        stall = lock_for_update(
            db.session.query(Stall).filter_by(id=stall_id, admin_id=admin_id)
        ).first()
        if stall is None:
            raise NotFoundError("Stall not found")

        holder = lock_for_update(
            db.session.query(Stall).filter(Stall.terminal_id == terminal.id)
        ).first()
        if holder is not None and holder.id != stall.id:
            raise ConflictError("Terminal is already assigned to another stall")

        stall.terminal_id = terminal.id
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            if is_unique_violation(exc):
                raise ConflictError("Terminal is already assigned to another stall")
            raise
        return stall

    stall = run_with_retry(_op)
    current_app.logger.info(
        "Terminal %s assigned to stall %s", provider_terminal_id, stall.stall_number
    )
    return stall


def unassign_terminal(admin_id: int, provider_terminal_id: str) -> Stall:
    terminal = get_terminal(admin_id, provider_terminal_id)

    def _op():
        stall = lock_for_update(
            db.session.query(Stall).filter(Stall.terminal_id == terminal.id)
        ).first()
        if stall is None:
            raise ValidationError("Terminal is not assigned to any stall")
        stall.terminal_id = None
        db.session.commit()
        return stall

    return run_with_retry(_op)


def list_assignments(admin_id: int) -> list[dict]:
    stalls = (
        db.session.query(Stall)
        .filter(Stall.admin_id == admin_id, Stall.terminal_id.isnot(None))
        .order_by(Stall.id)
        .all()
    )
    assignments = []
    for stall in stalls:
        data = stall.terminal.to_dict() if stall.terminal else {"id": stall.terminal_id}
        data["assigned_stall"] = {
            "id": stall.id,
            "name": stall.name,
            "stall_number": stall.stall_number,
            "location": stall.location,
        }
        assignments.append(data)
    return assignments
