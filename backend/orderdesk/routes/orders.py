# Overview: Flask API routes for order commit and fulfillment; parses input and returns JSON responses.

# backend/orderdesk/routes/orders.py
"""
Order API Routes

WHY: One commit endpoint for every surface (POS, kiosk, storefront,
relayed messaging orders) plus the fulfillment board actions.

DESIGN:
- POST /api/orders rebuilds the client cart against current stock, then
  commits through order_service.commit_order (all-or-nothing)
- Precondition failures return 400/404 with a machine-readable "code"
- Stock or points that changed mid-checkout return 409 so the client can
  refresh the cart and retry
- Advance/cancel are operator actions (require_actor)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, with_actor, resolve_store_id
from ..extensions import db
from ..models import Store
from ..services import order_service, status_service
from ..services.cart_service import CartError, build_cart
from ..services.catalog_service import CatalogError, CatalogNotFoundError
from ..services.order_service import (
    OrderCommitError, OrderConflictError, OrderRequest, OrderValidationError,
)
from ..services.status_service import StatusConfigError, StatusError
from ..time_utils import parse_iso_date, parse_clock_time
from ..validation import ValidationError, coerce_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

_NOT_FOUND_CODES = {"store_not_found", "customer_not_found"}

_TEXT_FIELDS = (
    "delivery_street", "delivery_number", "delivery_neighborhood",
    "delivery_reference", "delivery_postal_code", "notes",
)


def _optional_int(data: dict, key: str) -> int | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    return coerce_int(key, value)


def _text(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_order_request(data) -> OrderRequest:
    """Build an OrderRequest from JSON; only shape/type checks happen here."""
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    store_id = resolve_store_id(data.get("store_id"))
    if store_id is None:
        raise ValidationError("store_id is required")

    try:
        reservation_date = parse_iso_date(data.get("reservation_date"))
    except (TypeError, ValueError):
        raise ValidationError("reservation_date must be YYYY-MM-DD")
    try:
        pickup_time = parse_clock_time(data.get("pickup_time"))
    except (TypeError, ValueError):
        raise ValidationError("pickup_time must be HH:MM")

    reservation = bool(data.get("reservation")) or reservation_date is not None or pickup_time is not None
    delivery = bool(data.get("delivery"))

    request_obj = OrderRequest(
        store_id=store_id,
        source=_text(data, "source") or "in_person",
        channel=_text(data, "channel") or "pos",
        payment_method=_text(data, "payment_method"),
        customer_id=_optional_int(data, "customer_id"),
        created_by=getattr(g, "current_user_id", None),
        change_for_cents=_optional_int(data, "change_for_cents"),
        delivery=delivery,
        delivery_fee_cents=_optional_int(data, "delivery_fee_cents") or 0,
        save_address=bool(data.get("save_address")),
        reservation=reservation,
        reservation_date=reservation_date,
        pickup_time=pickup_time,
    )
    for key in _TEXT_FIELDS:
        setattr(request_obj, key, _text(data, key))
    return request_obj


@orders_bp.post("")
@orders_bp.post("/")
@with_actor
def create_order_route():
    """
    Commit an order from a cart.

    Request body:
    {
        "store_id": 1,
        "source": "in_person",
        "channel": "pos",
        "payment_method": "pix",
        "customer_id": 7,
        "items": [{"product_id": 3, "variation_id": null, "quantity": 2}],
        "delivery": true,
        "delivery_fee_cents": 500,
        "delivery_street": "Rua A",
        "delivery_number": "10",
        "delivery_neighborhood": "Centro",
        "save_address": true,
        "reservation_date": "2026-10-20",
        "pickup_time": "10:30"
    }
    """
    try:
        data = request.get_json(silent=True)
        order_request = parse_order_request(data)
        items = data.get("items") or []
        if not isinstance(items, list):
            raise ValidationError("items must be a list")

        cart = build_cart(order_request.store_id, items)
        result = order_service.commit_order(order_request, cart)
        return jsonify(result.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CatalogNotFoundError as e:
        return jsonify({"error": str(e), "code": "product_not_found", "details": e.details}), 404
    except CatalogError as e:
        return jsonify({"error": str(e), "code": "product_unavailable", "details": e.details}), 400
    except CartError as e:
        return jsonify({"error": str(e), "code": "stale_ceiling", "details": e.details}), 409
    except OrderValidationError as e:
        status = 404 if e.code in _NOT_FOUND_CODES else 400
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), status
    except OrderConflictError as e:
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), 409
    except StatusConfigError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except OrderCommitError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@orders_bp.get("/")
@with_actor
def list_orders_route():
    """
    List orders of a store.

    Query params:
        store_id: required unless X-Store-Id is sent
        status: filter by status
        active: "1" for the fulfillment board (non-terminal only)
    """
    store_id = resolve_store_id(request.args.get("store_id"))
    if store_id is None:
        return jsonify({"error": "store_id is required"}), 400

    if request.args.get("active") in ("1", "true"):
        orders = status_service.list_active_orders(store_id)
    else:
        limit = request.args.get("limit", 100, type=int)
        orders = order_service.list_orders(store_id, status=request.args.get("status"), limit=min(limit, 500))

    return jsonify({"orders": [o.to_dict(include_items=True) for o in orders]}), 200


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    order = order_service.get_order(order_id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": order.to_dict(include_items=True)}), 200


def _transition(order_id: int, action):
    order = order_service.get_order(order_id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    if g.store_id is not None and g.store_id != order.store_id:
        return jsonify({"error": "Access denied for this store"}), 403
    try:
        order = action(order_id, actor_id=g.current_user_id)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except StatusError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/advance")
@require_actor
def advance_order_route(order_id: int):
    """Move the order to its next status (the last step delivers it)."""
    return _transition(order_id, status_service.advance_order)


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    """Cancel a non-terminal order. Stock is not returned."""
    return _transition(order_id, status_service.cancel_order)


@orders_bp.get("/<int:order_id>/delivery-message")
@require_actor
def delivery_message_route(order_id: int):
    """Courier hand-off text and wa.me link for a delivery order."""
    order = order_service.get_order(order_id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    if not order.delivery:
        return jsonify({"error": "Order is not a delivery order"}), 409

    store = db.session.query(Store).filter_by(id=order.store_id).first()
    return jsonify({
        "message": order_service.compose_delivery_message(order),
        "link": order_service.courier_link(store, order),
    }), 200
