# Overview: Flask API routes for cash register sessions; parses input and returns JSON responses.

# backend/orderdesk/routes/registers.py
"""
Cash Register API Routes

WHY: Operators open the till before taking orders and reconcile it at the
end of the day.

DESIGN:
- Session lifecycle: open -> close (immutable once closed)
- Close is two-step: GET the summary, then POST close with the total the
  operator confirmed; a stale total is rejected with 409
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, resolve_store_id
from ..services import register_service
from ..services.register_service import RegisterError
from ..services.status_service import StatusConfigError
from ..validation import ValidationError, coerce_int, enforce_amount_cents


registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")


def _ensure_store_scope(store_id: int | None):
    if g.store_id and store_id and g.store_id != store_id:
        return jsonify({"error": "Store access denied"}), 403
    return None


@registers_bp.post("/open")
@require_actor
def open_register_route():
    """
    Open the store's cash register.

    Request body:
    {
        "store_id": 1,
        "initial_amount_cents": 10000
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        store_id = resolve_store_id(data.get("store_id"))
        if store_id is None:
            return jsonify({"error": "store_id is required"}), 400
        scope_error = _ensure_store_scope(store_id)
        if scope_error:
            return scope_error

        initial_amount = coerce_int("initial_amount_cents", data.get("initial_amount_cents", 0))
        enforce_amount_cents("initial_amount_cents", initial_amount)
        session = register_service.open_register(store_id, g.current_user_id, initial_amount)

        result = session.to_dict()
        result["attached_order_ids"] = [o.id for o in register_service.get_session_orders(session.id)]
        return jsonify({"session": result}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except (RegisterError, StatusConfigError) as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to open cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/current")
@require_actor
def current_register_route():
    """Open session of a store, or null."""
    store_id = resolve_store_id(request.args.get("store_id"))
    if store_id is None:
        return jsonify({"error": "store_id is required"}), 400
    scope_error = _ensure_store_scope(store_id)
    if scope_error:
        return scope_error

    session = register_service.get_open_session(store_id)
    return jsonify({"session": session.to_dict() if session else None}), 200


@registers_bp.get("")
@registers_bp.get("/")
@require_actor
def list_sessions_route():
    store_id = resolve_store_id(request.args.get("store_id"))
    if store_id is None:
        return jsonify({"error": "store_id is required"}), 400
    scope_error = _ensure_store_scope(store_id)
    if scope_error:
        return scope_error

    limit = request.args.get("limit", 50, type=int)
    sessions = register_service.list_sessions(store_id, limit=min(limit, 200))
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200


@registers_bp.get("/<int:session_id>/summary")
@require_actor
def session_summary_route(session_id: int):
    """Reconciliation summary (totals per payment method, products sold)."""
    session = register_service.get_session(session_id)
    if not session:
        return jsonify({"error": "Session not found"}), 404
    scope_error = _ensure_store_scope(session.store_id)
    if scope_error:
        return scope_error

    summary = register_service.prepare_close(session_id)
    return jsonify({"session": session.to_dict(), "summary": summary.to_dict()}), 200


@registers_bp.get("/<int:session_id>/orders")
@require_actor
def session_orders_route(session_id: int):
    session = register_service.get_session(session_id)
    if not session:
        return jsonify({"error": "Session not found"}), 404
    scope_error = _ensure_store_scope(session.store_id)
    if scope_error:
        return scope_error

    orders = register_service.get_session_orders(session_id)
    return jsonify({"orders": [o.to_dict(include_items=True) for o in orders]}), 200


@registers_bp.post("/<int:session_id>/close")
@require_actor
def close_register_route(session_id: int):
    """
    Close a session.

    Request body:
    {
        "expected_total_sales_cents": 5500
    }
    """
    session = register_service.get_session(session_id)
    if not session:
        return jsonify({"error": "Session not found"}), 404
    scope_error = _ensure_store_scope(session.store_id)
    if scope_error:
        return scope_error

    try:
        data = request.get_json(silent=True) or {}
        expected = data.get("expected_total_sales_cents")
        if expected is not None:
            expected = coerce_int("expected_total_sales_cents", expected)
            enforce_amount_cents("expected_total_sales_cents", expected)

        session = register_service.confirm_close(
            session_id,
            closed_by=g.current_user_id,
            expected_total_sales_cents=expected,
        )
        summary = register_service.prepare_close(session_id)
        return jsonify({"session": session.to_dict(), "summary": summary.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except RegisterError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to close cash register")
        return jsonify({"error": "Internal server error"}), 500
