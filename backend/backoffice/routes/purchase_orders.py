# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

# backend/backoffice/routes/purchase_orders.py
"""
Purchase Order API Routes

LIFECYCLE: pending -> approved -> received, with cancel from pending or
approved. Receiving increases stock at the order's outlet by the received
quantities and notes any shortage or surplus on the order.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_actor
from ..domain.identifiers import IdentifierError
from ..domain.purchase_orders import PurchaseOrderItemInput, ReceivedItem
from ..services import purchase_order_service
from ..services.purchase_order_service import PurchaseOrderError, PurchaseOrderNotFoundError
from ..validation import (
    ValidationError,
    date_range_args,
    parse_amount,
    parse_datetime,
    parse_int,
    parse_items,
    parse_string,
    require_json,
)


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


def _error_response(e: Exception, action: str):
    """Map a failure to its response, rolling back the session."""
    db.session.rollback()
    if isinstance(e, PurchaseOrderNotFoundError):
        return jsonify(e.to_dict()), 404
    if isinstance(e, PurchaseOrderError):
        return jsonify(e.to_dict()), 400
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, KeyError):
        return jsonify({"error": f"Missing required field: {e}"}), 400
    if isinstance(e, IdentifierError):
        current_app.logger.warning("Identifier allocation failed: %s", e)
        return jsonify({"error": str(e)}), 409
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("")
@require_actor
def create_purchase_order_route():
    """
    Create a purchase order (status: pending).

    Request body:
    {
        "supplier_id": "sup-1",
        "outlet_id": "out-1",
        "expected_date": "2024-06-01T00:00:00Z",  (optional)
        "notes": "...",  (optional)
        "items": [{"product_id": "p-1", "quantity": 10, "unit_price": 1500}]
    }

    Returns:
        201: Order created
        400: Invalid input (all problems listed)
    """
    try:
        data = require_json()
        items = [
            PurchaseOrderItemInput(
                product_id=parse_string(item.get("product_id"), "product_id") or "",
                quantity=parse_int(item["quantity"], "quantity"),
                unit_price=parse_amount(item["unit_price"], "unit_price"),
            )
            for item in parse_items(data)
        ]
        order = purchase_order_service.create_purchase_order(
            supplier_id=parse_string(data.get("supplier_id"), "supplier_id"),
            outlet_id=parse_string(data.get("outlet_id"), "outlet_id"),
            items=items,
            user_id=g.actor_id,
            expected_date=parse_datetime(data.get("expected_date"), "expected_date"),
            notes=parse_string(data.get("notes"), "notes"),
        )
        return jsonify({"purchase_order": order.to_dict()}), 201
    except Exception as e:
        return _error_response(e, "create purchase order")


@purchase_orders_bp.get("")
@require_actor
def list_purchase_orders_route():
    """
    List purchase orders, newest first.

    Query params: status, outlet_id, search (order number), start_date, end_date
    """
    try:
        start_date, end_date = date_range_args()
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    orders = purchase_order_service.list_purchase_orders(
        status=request.args.get("status"),
        start_date=start_date,
        end_date=end_date,
        search=request.args.get("search"),
        outlet_id=request.args.get("outlet_id"),
    )
    return jsonify({"purchase_orders": [o.to_dict(include_items=False) for o in orders]}), 200


@purchase_orders_bp.get("/<order_id>")
@require_actor
def get_purchase_order_route(order_id: str):
    try:
        order = purchase_order_service.get_purchase_order(order_id)
        return jsonify({"purchase_order": order.to_dict()}), 200
    except PurchaseOrderNotFoundError as e:
        return jsonify(e.to_dict()), 404


@purchase_orders_bp.post("/<order_id>/approve")
@require_actor
def approve_purchase_order_route(order_id: str):
    """pending -> approved."""
    try:
        order = purchase_order_service.approve_purchase_order(order_id, g.actor_id)
        return jsonify({"purchase_order": order.to_dict()}), 200
    except Exception as e:
        return _error_response(e, "approve purchase order")


@purchase_orders_bp.post("/<order_id>/cancel")
@require_actor
def cancel_purchase_order_route(order_id: str):
    """pending|approved -> cancelled."""
    try:
        order = purchase_order_service.cancel_purchase_order(order_id, g.actor_id)
        return jsonify({"purchase_order": order.to_dict()}), 200
    except Exception as e:
        return _error_response(e, "cancel purchase order")


@purchase_orders_bp.post("/<order_id>/receive")
@require_actor
def receive_purchase_order_route(order_id: str):
    """
    Receive goods into stock.

    Request body:
    {
        "items": [{"product_id": "p-1", "received_quantity": 7}],
        "notes": "Box damaged"  (optional)
    }

    Returns:
        200: Order received; the discrepancy report is included
        400: Not approved, or invalid receipt
        404: Order not found
    """
    try:
        data = require_json()
        received = [
            ReceivedItem(
                product_id=parse_string(item.get("product_id"), "product_id") or "",
                received_quantity=parse_int(item["received_quantity"], "received_quantity"),
            )
            for item in parse_items(data)
        ]
        order = purchase_order_service.receive_purchase_order(
            order_id,
            received,
            g.actor_id,
            notes=parse_string(data.get("notes"), "notes"),
        )
        report = purchase_order_service.discrepancy_report(order, received)
        return jsonify({
            "purchase_order": order.to_dict(),
            "discrepancies": [d.to_dict() for d in report.discrepancies],
        }), 200
    except Exception as e:
        return _error_response(e, "receive purchase order")
