# Overview: Flask API route exposing a product's stock counter and its movement history.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import stock_ledger
from ..services.errors import LedgerError
from ..decorators import require_shop_context


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/<int:product_id>/stock")
@require_shop_context
def get_product_stock_route(product_id: int):
    """
    Current stock with the most recent Stock Ledger movements.

    Query params: limit (default 50)
    """
    try:
        product = stock_ledger.get_product(product_id, g.shop_id)
        movements = stock_ledger.list_movements(
            product_id,
            g.shop_id,
            limit=request.args.get("limit", default=50, type=int),
        )
        return jsonify({
            "product_id": product.id,
            "name": product.name,
            "stock": product.stock,
            "movements": [m.to_dict() for m in movements],
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to get product stock")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
