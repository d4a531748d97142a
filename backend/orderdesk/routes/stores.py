# Overview: Flask API routes for store catalog, availability, status board and rewards.

# backend/orderdesk/routes/stores.py
"""
Store API Routes

WHY: Storefront and kiosk screens read the catalog and opening hours before
building a cart; operators configure the status board.
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..models import Store
from ..decorators import require_actor
from ..services import availability_service, catalog_service, loyalty_service, status_service
from ..services.status_service import StatusConfigError
from ..time_utils import parse_iso_date, parse_clock_time
from ..validation import ValidationError


stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


def _get_store(store_id: int):
    return db.session.query(Store).filter_by(id=store_id).first()


@stores_bp.get("/<int:store_id>")
def get_store_route(store_id: int):
    store = _get_store(store_id)
    if not store:
        return jsonify({"error": "Store not found"}), 404
    return jsonify({"store": store.to_dict()}), 200


@stores_bp.get("/<int:store_id>/catalog")
def get_catalog_route(store_id: int):
    """Active products with variations and min/max prices."""
    if not _get_store(store_id):
        return jsonify({"error": "Store not found"}), 404
    products = catalog_service.get_catalog(store_id)
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@stores_bp.get("/<int:store_id>/availability")
def get_availability_route(store_id: int):
    """
    Whether the store is open.

    Query params:
        date: YYYY-MM-DD (required)
        time: HH:MM (optional)
    """
    if not _get_store(store_id):
        return jsonify({"error": "Store not found"}), 404

    try:
        on_date = parse_iso_date(request.args.get("date"))
        at_time = parse_clock_time(request.args.get("time"))
    except ValueError:
        return jsonify({"error": "date must be YYYY-MM-DD and time HH:MM"}), 400
    if on_date is None:
        return jsonify({"error": "date is required"}), 400

    return jsonify(availability_service.describe_availability(store_id, on_date, at_time)), 200


@stores_bp.get("/<int:store_id>/statuses")
def list_statuses_route(store_id: int):
    if not _get_store(store_id):
        return jsonify({"error": "Store not found"}), 404
    statuses = status_service.list_status_configs(store_id)
    return jsonify({"statuses": [s.to_dict() for s in statuses]}), 200


@stores_bp.patch("/<int:store_id>/statuses/<status_key>")
@require_actor
def update_status_route(store_id: int, status_key: str):
    """
    Update label, is_active or display_order of one status.

    Request body:
    {
        "label": "Saiu para entrega",
        "is_active": false,
        "display_order": 3
    }
    """
    if not _get_store(store_id):
        return jsonify({"error": "Store not found"}), 404
    try:
        row = status_service.update_status_config(store_id, status_key, request.get_json(silent=True))
        return jsonify({"status": row.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StatusConfigError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to update order status config")
        return jsonify({"error": "Internal server error"}), 500


@stores_bp.get("/<int:store_id>/rewards")
def list_rewards_route(store_id: int):
    if not _get_store(store_id):
        return jsonify({"error": "Store not found"}), 404
    rewards = loyalty_service.list_rewards(store_id)
    return jsonify({
        "rewards": [r.to_dict() for r in rewards],
        "redeem_cost": loyalty_service.get_redeem_cost(store_id),
    }), 200
