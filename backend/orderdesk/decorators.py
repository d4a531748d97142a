# Overview: Request context decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


class _HeaderError(ValueError):
    pass


def _int_header(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        raise _HeaderError(f"{name} must be an integer")
    if value <= 0:
        raise _HeaderError(f"{name} must be positive")
    return value


def _load_context() -> None:
    g.current_user_id = _int_header("X-User-Id")
    g.store_id = _int_header("X-Store-Id")


def with_actor(f):
    """
    Establish the optional request actor.

    Sets the following Flask g attributes (None when the header is absent):
    - g.current_user_id: operator id from X-User-Id
    - g.store_id: store the operator works in, from X-Store-Id

    Used by endpoints customers also reach (storefront, kiosk).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            _load_context()
        except _HeaderError as e:
            return jsonify({"error": str(e)}), 400
        return f(*args, **kwargs)

    return decorated_function


def require_actor(f):
    """
    Require an operator context.

    Identity is asserted by the upstream session provider through request
    headers; this only establishes it. Returns 401 without X-User-Id and 403
    when X-Store-Id names a different store than the route's store_id.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            _load_context()
        except _HeaderError as e:
            return jsonify({"error": str(e)}), 400

        if g.current_user_id is None:
            return jsonify({"error": "Authentication required"}), 401

        route_store_id = kwargs.get("store_id")
        if route_store_id is not None and g.store_id is not None and g.store_id != route_store_id:
            return jsonify({"error": "Access denied for this store"}), 403

        return f(*args, **kwargs)

    return decorated_function


def resolve_store_id(explicit) -> int | None:
    """Store from an explicit request value, else the actor's store."""
    if explicit is not None:
        try:
            return int(explicit)
        except (TypeError, ValueError):
            return None
    return getattr(g, "store_id", None)
