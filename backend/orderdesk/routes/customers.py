# Overview: Flask API routes for customer identification, addresses and loyalty statements.

# backend/orderdesk/routes/customers.py

from flask import Blueprint, request, jsonify, current_app

from ..decorators import with_actor, resolve_store_id
from ..services import customer_service, loyalty_service
from ..services.customer_service import CustomerError
from ..time_utils import parse_iso_date, to_utc_z


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("/identify")
@with_actor
def identify_customer_route():
    """
    Find a customer by phone, creating one on first contact.

    Request body:
    {
        "store_id": 1,
        "phone": "(11) 98888-7777",
        "name": "Maria"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        store_id = resolve_store_id(data.get("store_id"))
        if store_id is None:
            return jsonify({"error": "store_id is required"}), 400

        customer, created = customer_service.identify_customer(store_id, data.get("phone"), data.get("name"))
        return jsonify({
            "customer": customer_service.customer_profile(customer),
            "created": created,
        }), 201 if created else 200

    except CustomerError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to identify customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/lookup")
@with_actor
def lookup_customer_route():
    """Find a store customer by phone (query params: store_id, phone)."""
    store_id = resolve_store_id(request.args.get("store_id"))
    if store_id is None:
        return jsonify({"error": "store_id is required"}), 400
    try:
        customer = customer_service.find_by_phone(store_id, request.args.get("phone"))
    except CustomerError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    if not customer:
        return jsonify({"error": "Customer not found"}), 404
    return jsonify({"customer": customer_service.customer_profile(customer)}), 200


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    customer = customer_service.get_customer(customer_id)
    if not customer:
        return jsonify({"error": "Customer not found"}), 404
    return jsonify({"customer": customer_service.customer_profile(customer)}), 200


@customers_bp.get("/<int:customer_id>/addresses")
def list_addresses_route(customer_id: int):
    if not customer_service.get_customer(customer_id):
        return jsonify({"error": "Customer not found"}), 404
    addresses = customer_service.list_addresses(customer_id)
    return jsonify({"addresses": [a.to_dict() for a in addresses]}), 200


@customers_bp.get("/<int:customer_id>/statement")
def statement_route(customer_id: int):
    """
    Orders and point movements, newest first.

    Query params:
        from: YYYY-MM-DD (optional, inclusive)
        to: YYYY-MM-DD (optional, inclusive)
    """
    customer = customer_service.get_customer(customer_id)
    if not customer:
        return jsonify({"error": "Customer not found"}), 404

    try:
        date_from = parse_iso_date(request.args.get("from"))
        date_to = parse_iso_date(request.args.get("to"))
    except ValueError:
        return jsonify({"error": "from/to must be YYYY-MM-DD"}), 400

    entries = loyalty_service.customer_statement(customer_id, date_from, date_to)
    return jsonify({
        "customer": customer_service.customer_profile(customer),
        "entries": [_serialize_entry(e) for e in entries],
    }), 200


def _serialize_entry(entry: dict) -> dict:
    data = dict(entry)
    data["created_at"] = to_utc_z(entry.get("created_at"))
    return data
