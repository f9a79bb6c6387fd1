# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def _header_int(name: str) -> int | None:
    value = request.headers.get(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def require_shop_context(f):
    """
    Establish shop and actor context from the upstream auth gateway.

    The gateway verifies the caller and forwards:
    - X-Shop-Id: the shop (tenant) the request acts on - REQUIRED
    - X-Actor-Id: the staff member performing it - REQUIRED

    Sets g.shop_id and g.actor_id. Returns 401 when either is missing or not
    an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        shop_id = _header_int("X-Shop-Id")
        actor_id = _header_int("X-Actor-Id")

        if shop_id is None or actor_id is None:
            return jsonify({"error": "Shop context required", "code": "UNAUTHENTICATED"}), 401

        g.shop_id = shop_id
        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
