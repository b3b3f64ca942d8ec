# Overview: Flask API routes for orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import order_service
from ..services.inventory_service import InsufficientInventoryError
from ..services.terminal_service import first_managed_stall
from ..models.sales import ORDER_STATUS_PENDING, ORDER_STATUS_COMPLETED, ORDER_STATUS_FAILED
from ..validation import ValidationError, parse_sale_request
from ..decorators import require_auth


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

VALID_STATUS_FILTERS = (ORDER_STATUS_PENDING, ORDER_STATUS_COMPLETED, ORDER_STATUS_FAILED)


@orders_bp.post("")
@require_auth
def create_cash_order_route():
    """
    Record a cash sale. The order is Completed immediately and stock is
    decremented once.

    Request body: same as POST /api/payments/intents.

    Returns:
        201: Order plus per-item inventory results
        400: Invalid input or insufficient inventory
    """
    try:
        sale = parse_sale_request(request.get_json(silent=True))
        stall = first_managed_stall(g.current_user.id)

        order, inventory = order_service.create_cash_order(
            user=g.current_user,
            items=sale.items,
            bills=sale.bills,
            customer=sale.customer,
            stall_id=stall.id if stall else None,
        )
        return jsonify({"order": order.to_dict(), "inventory": inventory.to_dict()}), 201

    except InsufficientInventoryError as e:
        return jsonify({"error": str(e), "invalid_items": e.invalid_items}), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create cash order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    List the tenant's orders, newest first.

    Query params:
    - status: Pending | Completed | Failed (optional)
    - limit: max rows (default 100, capped at 500)
    """
    status = request.args.get("status")
    if status and status not in VALID_STATUS_FILTERS:
        return jsonify({"error": f"status must be one of {', '.join(VALID_STATUS_FILTERS)}"}), 400
    limit = max(1, min(request.args.get("limit", 100, type=int), 500))

    orders = order_service.list_orders(g.admin_id, status=status, limit=limit)
    return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]}), 200


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    order = order_service.get_order(order_id, admin_id=g.admin_id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.get("/by-number/<order_number>")
@require_auth
def get_order_by_number_route(order_number: str):
    order = order_service.get_order_by_number(order_number)
    if not order or order.admin_id != g.admin_id:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": order.to_dict()}), 200
