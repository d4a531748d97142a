# Overview: Flask API routes for the client-held cart; validates changes against current stock.

# backend/orderdesk/routes/cart.py
"""
Cart API Routes

The cart lives on the client. Each call sends the current lines and one
change; the server rebuilds the cart against the catalog, applies the change
and echoes the result (or a user-visible error, leaving the cart as sent).
"""

from flask import Blueprint, request, jsonify, current_app

from ..services.cart_service import CartError, build_cart
from ..services.catalog_service import CatalogError, CatalogNotFoundError, find_sellable
from ..validation import ValidationError, coerce_int


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _parse_cart_request(data):
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    if data.get("store_id") is None:
        raise ValidationError("store_id is required")
    store_id = coerce_int("store_id", data.get("store_id"))
    items = data.get("items") or []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    product_id = data.get("product_id")
    if product_id is None:
        raise ValidationError("product_id is required")
    product_id = coerce_int("product_id", product_id)
    variation_id = data.get("variation_id")
    if variation_id is not None:
        variation_id = coerce_int("variation_id", variation_id)
    return store_id, items, product_id, variation_id


@cart_bp.post("/lines")
def add_line_route():
    """
    Add one unit of a product (or variation).

    Request body:
    {
        "store_id": 1,
        "items": [{"product_id": 3, "variation_id": null, "quantity": 2}],
        "product_id": 5,
        "variation_id": 9
    }
    """
    try:
        store_id, items, product_id, variation_id = _parse_cart_request(request.get_json(silent=True))
        cart = build_cart(store_id, items)
        product, variation = find_sellable(store_id, product_id, variation_id)
        cart.add_item(product, variation)
        return jsonify({"cart": cart.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CatalogNotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except CatalogError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except CartError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to add cart line")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.patch("/lines")
def set_line_quantity_route():
    """
    Set the quantity of one line; 0 removes it.

    Request body: same as POST plus "quantity".
    """
    try:
        data = request.get_json(silent=True)
        store_id, items, product_id, variation_id = _parse_cart_request(data)
        if data.get("quantity") is None:
            raise ValidationError("quantity is required")
        quantity = coerce_int("quantity", data.get("quantity"))
        cart = build_cart(store_id, items)
        cart.set_quantity(product_id, variation_id, quantity)
        return jsonify({"cart": cart.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CatalogNotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except CatalogError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except CartError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to update cart line")
        return jsonify({"error": "Internal server error"}), 500
