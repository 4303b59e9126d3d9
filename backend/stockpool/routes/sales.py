# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/stockpool/routes/sales.py
"""Sales API routes: checkout, listing, cancellation and credit payments"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError, ValidationError
from ..extensions import db
from ..models import Sale
from ..services import customer_resolver, sale_query
from ..services.cancellation_service import CANCEL_REASON_MAX_LENGTH, cancel_sale, get_sale
from ..services.cart_composer import cart_from_payload
from ..services.customer_resolver import CustomerCandidate
from ..services.payment_service import record_credit_payment
from ..services.sale_finalizer import SaleFinalizer
from ..services.stock_model import StockModel
from ..time_utils import parse_date_or_datetime
from ..validation import optional_int, optional_str, require_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _credit_method() -> str:
    return current_app.config["CREDIT_PAYMENT_METHOD"]


def _sale_payload(sale: Sale, include_lines: bool = False) -> dict:
    data = sale.to_dict(include_lines=include_lines)
    data["credit_status"] = sale_query.credit_status(sale, credit_method=_credit_method())
    return data


def _customer_id_for(company_id: int, data: dict) -> int:
    """customer_id when given, otherwise find-or-create from the customer object."""
    customer_id = optional_int(data, "customer_id")
    if customer_id is not None:
        return customer_id
    customer = data.get("customer")
    if not isinstance(customer, dict):
        raise ValidationError("customer_id or customer required")
    return customer_resolver.resolve_or_create(company_id, CustomerCandidate.from_payload(customer))


@sales_bp.post("")
def create_sale_route():
    """
    Compose and finalize a sale in one request.

    Body:
    {
      "company_id": 1, "branch_id": 2,
      "customer_id": 5 | "customer": {"name": ..., "phone": ...},
      "payment_method": "CASH", "credit_days": 30,
      "items": [{"product_id": 1, "quantity": 2}, {"product_id": 2, "unit_ids": [7]}],
      "actor": "maria"
    }
    """
    try:
        data = request.get_json() or {}
        company_id = require_int(data, "company_id")
        branch_id = optional_int(data, "branch_id")
        actor = optional_str(data, "actor", max_length=128)

        payment_method = data.get("payment_method")
        credit_days = optional_int(data, "credit_days")

        stock = StockModel(company_id)
        cart = cart_from_payload(stock, data.get("items"))
        finalizer = SaleFinalizer(company_id, stock)

        # Reject the order before an inline customer gets created
        finalizer.validate_order(cart, branch_id, payment_method, credit_days)
        customer_id = _customer_id_for(company_id, data)

        sale = finalizer.finalize(
            cart,
            customer_id,
            branch_id,
            payment_method,
            credit_days,
            actor=actor,
        )

        return jsonify({
            "sale": _sale_payload(sale, include_lines=True),
            "advisories": [a.to_dict() for a in cart.advisories],
        }), 201

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
def list_sales_route():
    """
    List sales of a company, newest first.

    Query params:
    - company_id: int (required)
    - branch_id: int (optional)
    - status: all | active | cancelled
    - payment_type: all | cash | credit | overdue
    - date_from, date_to: YYYY-MM-DD (whole day) or ISO-8601 datetime
    - page, per_page: pagination (default 20, max 100)
    """
    company_id = request.args.get("company_id", type=int)
    if not company_id:
        return jsonify({"error": "company_id required"}), 400

    try:
        try:
            date_from = parse_date_or_datetime(request.args.get("date_from"))
            date_to = parse_date_or_datetime(request.args.get("date_to"))
        except ValueError:
            raise ValidationError("date_from/date_to must be YYYY-MM-DD or ISO-8601")

        query = db.session.query(Sale).filter(Sale.company_id == company_id)
        branch_id = request.args.get("branch_id", type=int)
        if branch_id:
            query = query.filter(Sale.branch_id == branch_id)
        sales = query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()

        matched = sale_query.filter_sales(
            sales,
            status=request.args.get("status", "all"),
            payment_type=request.args.get("payment_type", "all"),
            date_from=date_from,
            date_to=date_to,
            credit_method=_credit_method(),
        )
        page = sale_query.paginate(
            matched,
            request.args.get("page", 1, type=int),
            request.args.get("per_page", 20, type=int),
        )
        return jsonify(page.to_dict(_sale_payload)), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = get_sale(sale_id, request.args.get("company_id", type=int))
        return jsonify({"sale": _sale_payload(sale, include_lines=True)}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    """
    Cancel an ACTIVE sale. Stock is not returned to the pool.

    Body: {"reason": "...", "actor": "...", "company_id": 1}
    """
    try:
        data = request.get_json() or {}
        sale = cancel_sale(
            sale_id,
            optional_str(data, "reason", max_length=CANCEL_REASON_MAX_LENGTH),
            optional_str(data, "actor", max_length=128),
            company_id=optional_int(data, "company_id"),
        )
        return jsonify({"sale": _sale_payload(sale)}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/payments")
def record_payment_route(sale_id: int):
    """Body: {"amount_cents": 5000, "actor": "...", "company_id": 1}"""
    try:
        data = request.get_json() or {}
        sale = record_credit_payment(
            sale_id,
            require_int(data, "amount_cents"),
            optional_str(data, "actor", max_length=128),
            company_id=optional_int(data, "company_id"),
        )
        return jsonify({"sale": _sale_payload(sale)}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500
