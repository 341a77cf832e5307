# backend/backoffice/routes/return_policies.py
"""
Return policy API routes.
"""

from flask import Blueprint, jsonify, g, current_app

from ..extensions import db
from ..decorators import require_actor
from ..services import policy_service
from ..services.policy_service import ReturnPolicyError
from ..validation import ValidationError, require_json


return_policies_bp = Blueprint("return_policies", __name__, url_prefix="/api/return-policy")


@return_policies_bp.get("")
@require_actor
def get_policy_route():
    """The active policy, or {"policy": null} when returns are unrestricted."""
    policy = policy_service.get_active_policy()
    return jsonify({"policy": policy.to_dict() if policy else None}), 200


@return_policies_bp.put("")
@require_actor
def update_policy_route():
    """
    Update the active policy (created from defaults if missing).

    Request body (all optional):
    {
        "max_return_days": 14,
        "non_returnable_categories": ["cat-underwear"],
        "require_receipt": true,
        "is_active": true
    }

    Returns:
        200: Updated policy
        400: Invalid value (all problems listed)
    """
    try:
        data = require_json()
        unknown = sorted(set(data) - set(policy_service.UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Field not allowed: {', '.join(unknown)}")
        policy = policy_service.update_policy(g.actor_id, **data)
        return jsonify({"policy": policy.to_dict()}), 200

    except ReturnPolicyError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), 400
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update return policy")
        return jsonify({"error": "Internal server error"}), 500
