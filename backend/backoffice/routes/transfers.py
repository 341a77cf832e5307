# backend/backoffice/routes/transfers.py
"""
Inter-outlet transfer API routes.

LIFECYCLE: pending -> approved -> completed, with cancel before completion.
Stock only moves on completion.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_actor
from ..domain.identifiers import IdentifierError
from ..domain.transfers import TransferItemInput
from ..services import transfer_service
from ..services.transfer_service import TransferError, TransferNotFoundError
from ..validation import (
    ValidationError,
    date_range_args,
    parse_int,
    parse_items,
    parse_string,
    require_json,
)


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.route("", methods=["POST"])
@require_actor
def create_transfer():
    """
    Create a transfer (status: pending).

    Request body:
    {
        "source_outlet_id": "out-1",
        "destination_outlet_id": "out-2",
        "notes": "...",  (optional)
        "items": [{"product_id": "p-1", "quantity": 30}]
    }

    Returns:
        201: Transfer created
        400: Invalid request or insufficient stock
    """
    try:
        data = require_json()
        items = [
            TransferItemInput(
                product_id=parse_string(item.get("product_id"), "product_id") or "",
                quantity=parse_int(item["quantity"], "quantity"),
            )
            for item in parse_items(data)
        ]
        transfer = transfer_service.create_transfer(
            source_outlet_id=parse_string(data["source_outlet_id"], "source_outlet_id"),
            destination_outlet_id=parse_string(data["destination_outlet_id"], "destination_outlet_id"),
            items=items,
            user_id=g.actor_id,
            notes=parse_string(data.get("notes"), "notes"),
        )
        return jsonify({"transfer": transfer.to_dict()}), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except TransferError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), 400
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except IdentifierError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("", methods=["GET"])
@require_actor
def list_transfers():
    """
    List transfers, newest first.

    Query params: status, source_outlet_id, destination_outlet_id, start_date, end_date
    """
    try:
        start_date, end_date = date_range_args()
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    transfers = transfer_service.list_transfers(
        status=request.args.get("status"),
        source_outlet_id=request.args.get("source_outlet_id"),
        destination_outlet_id=request.args.get("destination_outlet_id"),
        start_date=start_date,
        end_date=end_date,
    )
    return jsonify({"transfers": [t.to_dict(include_items=False) for t in transfers]}), 200


@transfers_bp.route("/<transfer_id>", methods=["GET"])
@require_actor
def get_transfer(transfer_id: str):
    try:
        transfer = transfer_service.get_transfer(transfer_id)
        return jsonify({"transfer": transfer.to_dict()}), 200
    except TransferNotFoundError as e:
        return jsonify(e.to_dict()), 404


def _run_transition(operation, transfer_id: str, action: str):
    try:
        transfer = operation(transfer_id=transfer_id, user_id=g.actor_id)
        return jsonify({"transfer": transfer.to_dict()}), 200

    except TransferNotFoundError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), 404
    except TransferError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s transfer", action)
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("/<transfer_id>/approve", methods=["POST"])
@require_actor
def approve_transfer(transfer_id: str):
    """
    Approve a pending transfer.

    Returns:
        200: Transfer approved
        400: Invalid state
        404: Transfer not found
    """
    return _run_transition(transfer_service.approve_transfer, transfer_id, "approve")


@transfers_bp.route("/<transfer_id>/complete", methods=["POST"])
@require_actor
def complete_transfer(transfer_id: str):
    """
    Complete an approved transfer, moving the stock.

    Returns:
        200: Transfer completed
        400: Invalid state or insufficient stock at the source
        404: Transfer not found
    """
    return _run_transition(transfer_service.complete_transfer, transfer_id, "complete")


@transfers_bp.route("/<transfer_id>/cancel", methods=["POST"])
@require_actor
def cancel_transfer(transfer_id: str):
    """Cancel a transfer that has not completed."""
    return _run_transition(transfer_service.cancel_transfer, transfer_id, "cancel")
