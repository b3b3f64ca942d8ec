from __future__ import annotations

from flask import Blueprint, jsonify, request, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import configuration_service, terminal_service
from ..services.configuration_service import ConfigurationPermissionError
from ..services.payment_gateway import ProviderError
from ..validation import ConflictError, NotFoundError, ValidationError, parse_int


configuration_bp = Blueprint("configuration", __name__, url_prefix="/api/configuration")


def _json_error(exc: Exception):
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, ConfigurationPermissionError):
        return jsonify({"error": str(exc)}), 403
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, ProviderError):
        return jsonify({"error": str(exc), "code": exc.code}), 400 if exc.is_invalid_request else 502
    current_app.logger.exception("Configuration request failed")
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TAX RATE / PLATFORM FEE
# =============================================================================

@configuration_bp.get("/tax-rate")
@require_auth
def get_tax_rate():
    return jsonify(configuration_service.get_tax_rate(g.current_user)), 200


@configuration_bp.put("/tax-rate")
@require_auth
def update_tax_rate():
    payload = request.get_json(silent=True) or {}
    try:
        config, linked_updated = configuration_service.update_tax_rate(
            g.current_user, payload.get("tax_rate")
        )
    except Exception as exc:
        return _json_error(exc)
    return jsonify({
        "configuration": config.to_dict(),
        "linked_users_updated": linked_updated,
    }), 200


@configuration_bp.put("/platform-fee")
@require_auth
def update_platform_fee():
    payload = request.get_json(silent=True) or {}
    try:
        config = configuration_service.update_platform_fee_rate(
            g.current_user, payload.get("platform_fee_rate")
        )
    except Exception as exc:
        return _json_error(exc)
    return jsonify({"configuration": config.to_dict()}), 200


# =============================================================================
# TERMINALS
# =============================================================================

@configuration_bp.post("/terminals/verify")
@require_auth
@require_role(ROLE_ADMIN)
def verify_terminal():
    payload = request.get_json(silent=True) or {}
    try:
        reader = terminal_service.verify_terminal(
            current_app.extensions["payment_gateway"], g.admin_id, payload.get("terminal_id")
        )
    except Exception as exc:
        return _json_error(exc)
    return jsonify({"terminal": reader}), 200


@configuration_bp.post("/terminals")
@require_auth
@require_role(ROLE_ADMIN)
def add_terminal():
    payload = request.get_json(silent=True) or {}
    try:
        terminal = terminal_service.add_terminal(g.admin_id, payload)
    except Exception as exc:
        return _json_error(exc)
    return jsonify({"terminal": terminal.to_dict()}), 201


@configuration_bp.get("/terminals")
@require_auth
@require_role(ROLE_ADMIN)
def list_terminals():
    terminals = terminal_service.list_terminals(g.admin_id)
    return jsonify({"terminals": [t.to_dict() for t in terminals], "count": len(terminals)}), 200


@configuration_bp.get("/terminals/assignments")
@require_auth
@require_role(ROLE_ADMIN)
def list_assignments():
    assignments = terminal_service.list_assignments(g.admin_id)
    return jsonify({"assignments": assignments, "count": len(assignments)}), 200


@configuration_bp.get("/terminals/<terminal_id>")
@require_auth
@require_role(ROLE_ADMIN)
def get_terminal(terminal_id: str):
    try:
        terminal = terminal_service.get_terminal(g.admin_id, terminal_id)
    except Exception as exc:
        return _json_error(exc)
    return jsonify({"terminal": terminal.to_dict()}), 200


@configuration_bp.put("/terminals/<terminal_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_terminal(terminal_id: str):
    payload = request.get_json(silent=True) or {}
    is_active = payload.get("is_active")
    if is_active is not None and not isinstance(is_active, bool):
        return jsonify({"error": "is_active must be a boolean"}), 400
    try:
        terminal = terminal_service.update_terminal(
            g.admin_id,
            terminal_id,
            label=payload.get("label"),
            location=payload.get("location"),
            is_active=is_active,
        )
    except Exception as exc:
        return _json_error(exc)
    return jsonify({"terminal": terminal.to_dict()}), 200


@configuration_bp.delete("/terminals/<terminal_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_terminal(terminal_id: str):
    try:
        terminal_service.delete_terminal(g.admin_id, terminal_id)
    except Exception as exc:
        return _json_error(exc)
    return jsonify({"message": "Terminal deleted"}), 200


@configuration_bp.put("/terminals/<terminal_id>/status")
@require_auth
@require_role(ROLE_ADMIN)
def update_terminal_status(terminal_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        terminal = terminal_service.update_terminal_status(g.admin_id, terminal_id, payload.get("status"))
    except Exception as exc:
        return _json_error(exc)
    return jsonify({"terminal": terminal.to_dict()}), 200


@configuration_bp.post("/terminals/<terminal_id>/assign")
@require_auth
@require_role(ROLE_ADMIN)
def assign_terminal(terminal_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        if payload.get("stall_id") is None:
            raise ValidationError("stall_id is required")
        stall_id = parse_int(payload.get("stall_id"), "stall_id")
        stall = terminal_service.assign_terminal_to_stall(g.admin_id, terminal_id, stall_id)
    except Exception as exc:
        return _json_error(exc)
    return jsonify({
        "message": f"Terminal assigned to stall {stall.stall_number}",
        "stall": stall.to_dict(),
    }), 200


@configuration_bp.post("/terminals/<terminal_id>/unassign")
@require_auth
@require_role(ROLE_ADMIN)
def unassign_terminal(terminal_id: str):
    try:
        stall = terminal_service.unassign_terminal(g.admin_id, terminal_id)
    except Exception as exc:
        return _json_error(exc)
    return jsonify({
        "message": f"Terminal unassigned from stall {stall.stall_number}",
        "stall": stall.to_dict(),
    }), 200
