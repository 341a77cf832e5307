# Overview: Flask API routes for returns and refunds; parses input and returns JSON responses.

# backend/backoffice/routes/returns.py
"""
Return Processing API Routes

WHY: Customer returns against an original sale, with the store's return
policy deciding whether a manager has to approve first.

LIFECYCLE:
- created as approved, or pending_approval when past the return window
- pending_approval -> approved | rejected (manager)
- approved -> completed (refund paid, resellable units restocked)
- pending_approval | approved -> cancelled
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_actor
from ..domain.identifiers import IdentifierError
from ..domain.returns import REASON_OTHER, ReturnItemInput
from ..services import return_service
from ..services.return_service import ReturnError
from ..services.errors import RecordNotFoundError
from ..validation import (
    ValidationError,
    date_range_args,
    parse_bool,
    parse_int,
    parse_items,
    parse_string,
    require_json,
)


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


def _parse_return_item(item: dict) -> ReturnItemInput:
    return ReturnItemInput(
        transaction_item_id=parse_string(item.get("transaction_item_id"), "transaction_item_id") or "",
        quantity=parse_int(item["quantity"], "quantity"),
        reason=parse_string(item.get("reason"), "reason") or REASON_OTHER,
        is_damaged=parse_bool(item.get("is_damaged", False), "is_damaged"),
        reason_detail=parse_string(item.get("reason_detail"), "reason_detail"),
    )


def _failure(e: Exception, action: str):
    db.session.rollback()
    if isinstance(e, RecordNotFoundError):
        return jsonify(e.to_dict()), 404
    if isinstance(e, ReturnError):
        return jsonify(e.to_dict()), 400
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, KeyError):
        return jsonify({"error": f"Missing required field: {e}"}), 400
    if isinstance(e, IdentifierError):
        return jsonify({"error": str(e)}), 409
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("")
@require_actor
def create_return_route():
    """
    Create a return against a sale.

    Request body:
    {
        "transaction_id": "txn-1",
        "notes": "...",  (optional)
        "items": [
            {
                "transaction_item_id": "line-1",
                "quantity": 2,
                "reason": "damaged",  (optional, default: other)
                "is_damaged": true,  (optional, default: false)
                "reason_detail": "Cracked screen"  (optional)
            }
        ]
    }

    Returns:
        201: Return created (approved or pending_approval)
        400: Invalid input or blocked by policy
        404: Transaction not found
    """
    try:
        data = require_json()
        ret = return_service.create_return(
            transaction_id=parse_string(data["transaction_id"], "transaction_id"),
            items=[_parse_return_item(item) for item in parse_items(data)],
            user_id=g.actor_id,
            notes=parse_string(data.get("notes"), "notes"),
        )
        return jsonify({"return": ret.to_dict()}), 201
    except Exception as e:
        return _failure(e, "create return")


# =============================================================================
# READS
# =============================================================================

@returns_bp.get("")
@require_actor
def list_returns_route():
    """
    List returns, newest first.

    Query params: status, outlet_id, start_date, end_date
    """
    try:
        start_date, end_date = date_range_args()
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    returns = return_service.list_returns(
        status=request.args.get("status"),
        outlet_id=request.args.get("outlet_id"),
        start_date=start_date,
        end_date=end_date,
    )
    return jsonify({"returns": [r.to_dict(include_items=False) for r in returns]}), 200


@returns_bp.get("/pending-approvals")
@require_actor
def list_pending_approvals_route():
    """Returns waiting for a manager, oldest first."""
    returns = return_service.list_pending_approvals(outlet_id=request.args.get("outlet_id"))
    return jsonify({"returns": [r.to_dict() for r in returns]}), 200


@returns_bp.get("/<return_id>")
@require_actor
def get_return_route(return_id: str):
    try:
        ret = return_service.get_return(return_id)
        return jsonify({"return": ret.to_dict()}), 200
    except RecordNotFoundError as e:
        return jsonify(e.to_dict()), 404


@returns_bp.get("/<return_id>/refund")
@require_actor
def refund_details_route(return_id: str):
    """Refund breakdown priced from the original sale lines."""
    try:
        return jsonify(return_service.get_refund_details(return_id)), 200
    except RecordNotFoundError as e:
        return jsonify(e.to_dict()), 404


@returns_bp.get("/transactions/<transaction_id>/eligibility")
@require_actor
def eligibility_route(transaction_id: str):
    """Whether the sale can be returned today, and with or without approval."""
    try:
        return jsonify(return_service.check_eligibility(transaction_id)), 200
    except RecordNotFoundError as e:
        return jsonify(e.to_dict()), 404


@returns_bp.get("/transactions/<transaction_id>/returnable-items")
@require_actor
def returnable_items_route(transaction_id: str):
    """Sale lines with the quantity still available to return."""
    try:
        items = return_service.get_returnable_items(transaction_id)
        return jsonify({"transaction_id": transaction_id, "items": items}), 200
    except RecordNotFoundError as e:
        return jsonify(e.to_dict()), 404


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================

@returns_bp.post("/<return_id>/approve")
@require_actor
def approve_return_route(return_id: str):
    """
    Approve a return waiting for a manager.

    Request body:
    {
        "reason": "Regular customer, receipt checked"
    }
    """
    try:
        data = require_json()
        ret = return_service.approve_return(
            return_id, g.actor_id, parse_string(data.get("reason"), "reason"),
        )
        return jsonify({"return": ret.to_dict()}), 200
    except Exception as e:
        return _failure(e, "approve return")


@returns_bp.post("/<return_id>/reject")
@require_actor
def reject_return_route(return_id: str):
    """
    Reject a return waiting for a manager.

    Request body:
    {
        "reason": "Outside policy"
    }
    """
    try:
        data = require_json()
        ret = return_service.reject_return(
            return_id, g.actor_id, parse_string(data.get("reason"), "reason"),
        )
        return jsonify({"return": ret.to_dict()}), 200
    except Exception as e:
        return _failure(e, "reject return")


@returns_bp.post("/<return_id>/complete")
@require_actor
def complete_return_route(return_id: str):
    """
    Pay the refund and restock resellable items.

    Request body:
    {
        "refund_method": "cash" | "card" | "e-wallet"
    }
    """
    try:
        data = require_json()
        ret = return_service.complete_return(
            return_id, parse_string(data["refund_method"], "refund_method"), g.actor_id,
        )
        return jsonify({"return": ret.to_dict()}), 200
    except Exception as e:
        return _failure(e, "complete return")


@returns_bp.post("/<return_id>/cancel")
@require_actor
def cancel_return_route(return_id: str):
    """Cancel a return that has not completed."""
    try:
        ret = return_service.cancel_return(return_id, g.actor_id)
        return jsonify({"return": ret.to_dict()}), 200
    except Exception as e:
        return _failure(e, "cancel return")
