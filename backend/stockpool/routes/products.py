# Overview: Flask API routes for sellable products and their stock pools.

# backend/stockpool/routes/products.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import EngineError, ValidationError
from ..services.stock_model import StockModel, snapshot_to_dict


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _company_id() -> int | None:
    return request.args.get("company_id", type=int)


@products_bp.get("")
def list_products_route():
    """
    List active products with stock left.

    Query params:
    - company_id: int (required)
    - branch_id: int (optional) - branch products plus company-wide ones
    """
    company_id = _company_id()
    if not company_id:
        return jsonify({"error": "company_id required"}), 400
    branch_id = request.args.get("branch_id", type=int)

    try:
        stock = StockModel(company_id)
        products = stock.list_sellable_products([branch_id] if branch_id else None)
        items = []
        for product in products:
            data = product.to_dict()
            data["available"] = stock.available_quantity(product)
            items.append(data)
        return jsonify({"items": items, "count": len(items)}), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/stock")
def get_stock_route(product_id: int):
    try:
        stock = StockModel(_company_id())
        product = stock.get_product(product_id)
        snapshot = stock.snapshot(product)
        return jsonify({
            "product": product.to_dict(),
            "available": snapshot.available,
            "stock": snapshot_to_dict(snapshot),
        }), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to read product stock")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/selectable")
def list_selectable_route(product_id: int):
    """
    Pickable units or variants of a product.

    Query params:
    - q: str (optional) - IMEI / serial substring for unit products
    """
    try:
        stock = StockModel(_company_id())
        product = stock.get_product(product_id)
        if not product.is_active:
            raise ValidationError("Product is inactive", {"product_id": product.id})
        options = stock.list_selectable(product, request.args.get("q"))
        return jsonify({
            "product_id": product.id,
            "tracking_mode": product.tracking_mode,
            "items": [o.to_dict() for o in options],
        }), 200

    except EngineError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list selectable stock")
        return jsonify({"error": "Internal server error"}), 500
