# Overview: Flask API routes for outlet stock; parses input and returns JSON responses.

# backend/backoffice/routes/stock.py
"""
Stock ledger API routes.

Reads of on-hand quantities and movements, plus the manual stock-count
correction. Lifecycle stock changes happen through purchase orders,
transfers and returns only.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_actor
from ..services import stock_service
from ..services.stock_service import StockError, ProductNotFoundError
from ..validation import ValidationError, parse_int, parse_string, require_json


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("")
@require_actor
def list_stock_route():
    """
    On-hand quantities.

    Query params:
        outlet_id: only this outlet
        product_id: only this product
    """
    rows = stock_service.list_outlet_stock(
        outlet_id=request.args.get("outlet_id"),
        product_id=request.args.get("product_id"),
    )
    return jsonify({"items": [row.to_dict() for row in rows]}), 200


@stock_bp.get("/products/<product_id>")
@require_actor
def product_breakdown_route(product_id: str):
    """Per-outlet quantities and total of one product."""
    try:
        return jsonify(stock_service.product_breakdown(product_id)), 200
    except ProductNotFoundError as e:
        return jsonify(e.to_dict()), 404


@stock_bp.put("/<outlet_id>/<product_id>")
@require_actor
def set_stock_route(outlet_id: str, product_id: str):
    """
    Overwrite the on-hand quantity after a stock count.

    Request body:
    {
        "quantity": 12,
        "notes": "Cycle count"  (optional)
    }

    Returns:
        200: New stock row
        400: Invalid quantity
        404: Unknown product
    """
    try:
        data = require_json()
        quantity = parse_int(data["quantity"], "quantity")
        row = stock_service.set_stock(
            outlet_id=outlet_id,
            product_id=product_id,
            quantity=quantity,
            actor_id=g.actor_id,
            notes=parse_string(data.get("notes"), "notes"),
        )
        return jsonify(row.to_dict()), 200

    except ProductNotFoundError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), 404
    except StockError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), 400
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/movements")
@require_actor
def list_movements_route():
    """
    Stock movements, newest first.

    Query params:
        outlet_id, product_id, reference_type, reference_id
        limit: maximum rows (default 100)
    """
    try:
        limit = parse_int(request.args.get("limit", "100"), "limit", minimum=1, maximum=1000)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    movements = stock_service.list_movements(
        outlet_id=request.args.get("outlet_id"),
        product_id=request.args.get("product_id"),
        reference_type=request.args.get("reference_type"),
        reference_id=request.args.get("reference_id"),
        limit=limit,
    )
    return jsonify({"items": [m.to_dict() for m in movements]}), 200
