# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require an acting user and expose it as g.actor_id.

    Identity is asserted by the caller (a gateway or the front end) through
    the X-Actor-Id header; every lifecycle operation records it.

    Returns 401 when the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor_id:
            return jsonify({"error": "Actor identity required"}), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
