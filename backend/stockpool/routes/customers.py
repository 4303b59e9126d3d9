# Overview: Flask API routes for customer lookup, resolution and creation.

# backend/stockpool/routes/customers.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError
from ..services import customer_resolver
from ..services.customer_resolver import CustomerCandidate
from ..validation import require_int


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def search_customers_route():
    company_id = request.args.get("company_id", type=int)
    if not company_id:
        return jsonify({"error": "company_id required"}), 400

    try:
        limit = min(request.args.get("limit", 20, type=int), 100)
        customers = customer_resolver.search_customers(company_id, request.args.get("q"), limit=limit)
        return jsonify({"items": [c.to_dict() for c in customers]}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to search customers")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/resolve")
def resolve_customer_route():
    """
    Find-or-create by name, then phone, then identification number.

    Returns 200 with the matched or newly created customer.
    """
    try:
        data = request.get_json() or {}
        company_id = require_int(data, "company_id")
        customer_id = customer_resolver.resolve_or_create(company_id, CustomerCandidate.from_payload(data))
        customer = customer_resolver.get_customer(customer_id, company_id)
        return jsonify({"customer": customer.to_dict()}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to resolve customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("")
def create_customer_route():
    """Explicit creation; identification type and number are mandatory."""
    try:
        data = request.get_json() or {}
        company_id = require_int(data, "company_id")
        customer_id = customer_resolver.create_explicit(company_id, CustomerCandidate.from_payload(data))
        customer = customer_resolver.get_customer(customer_id, company_id)
        return jsonify({"customer": customer.to_dict()}), 201

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500
