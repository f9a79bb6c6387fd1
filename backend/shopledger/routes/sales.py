# Overview: Flask API routes for sales and their installments; parses input and returns JSON responses.

# backend/shopledger/routes/sales.py
"""
Sales API Routes

DESIGN:
- POST records a POS sale (items, optional customer, optional payment)
- Sales are addressed by numeric id or by order_id ("ORD-001-000042")
- Installments are appended through POST /<ref>/payments only

ERRORS:
Ledger failures come back as {"error", "code", "details"} with the status
carried by the error class; anything else is logged and returned as 500.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import payment_service, sales_service
from ..services.errors import LedgerError
from ..decorators import require_shop_context


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_shop_context
def record_sale_route():
    """
    Record a sale.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "price_cents": 500}],
        "customer_id": 7,  (optional)
        "payment_type": "full" | "installment",  (optional, default full)
        "amount_paid_cents": 1000,  (optional)
        "installments": [{"amount_cents": 500, "payment_method": "cash"}],  (optional)
        "payment_method": "cash",  (optional)
        "bank_name": "...", "account_number": "..."  (optional)
    }

    Returns:
        201: Sale with items and installments
        400: Invalid input
        404: Product or customer not found
        409: Concurrent update conflict (retryable)
        422: Insufficient stock or amount paid exceeds total
    """
    try:
        data = request.get_json(silent=True) or {}

        sale = sales_service.record_sale(
            shop_id=g.shop_id,
            staff_id=g.actor_id,
            items=data.get("items"),
            customer_id=data.get("customer_id"),
            payment=data,
        )
        return jsonify({"sale": sale.to_dict(include_items=True)}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@sales_bp.get("")
@require_shop_context
def list_sales_route():
    """
    List sales, newest first.

    Query params: payment_status, customer_id, limit (default 50), offset
    """
    try:
        customer_id = request.args.get("customer_id", type=int)
        sales = sales_service.list_sales(
            g.shop_id,
            payment_status=request.args.get("payment_status"),
            customer_id=customer_id,
            limit=request.args.get("limit", default=50, type=int),
            offset=request.args.get("offset", default=0, type=int),
        )
        return jsonify({"sales": [s.to_dict() for s in sales], "count": len(sales)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@sales_bp.get("/<sale_ref>")
@require_shop_context
def get_sale_route(sale_ref: str):
    try:
        sale = sales_service.get_sale(g.shop_id, sale_ref)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@sales_bp.get("/<sale_ref>/items")
@require_shop_context
def get_sale_items_route(sale_ref: str):
    try:
        items = sales_service.get_sale_items(g.shop_id, sale_ref)
        return jsonify({"items": [item.to_dict() for item in items]}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to get sale items")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@sales_bp.post("/<sale_ref>/payments")
@require_shop_context
def add_payment_route(sale_ref: str):
    """
    Apply an installment payment to a sale.

    Request body:
    {
        "amount_cents": 2500,
        "payment_method": "cash",  (optional)
        "bank_name": "...",  (optional)
        "account_number": "..."  (optional)
    }

    Returns:
        201: Updated sale and the new installment
        400: Invalid amount
        404: Sale not found
        409: Concurrent update conflict (retryable)
        422: Sale already settled, or amount exceeds outstanding balance
    """
    try:
        data = request.get_json(silent=True) or {}

        sale, installment = payment_service.apply_payment(
            g.shop_id,
            sale_ref,
            data.get("amount_cents"),
            method=data.get("payment_method") or "cash",
            bank_name=data.get("bank_name"),
            account_number=data.get("account_number"),
            actor_id=g.actor_id,
        )
        return jsonify({
            "sale": sale.to_dict(),
            "installment": installment.to_dict(),
        }), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to apply payment")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@sales_bp.get("/<sale_ref>/installments")
@require_shop_context
def list_installments_route(sale_ref: str):
    """Installment history with the sale's payment summary."""
    try:
        installments = payment_service.list_installments(g.shop_id, sale_ref)
        summary = payment_service.get_payment_summary(g.shop_id, sale_ref)
        return jsonify({
            "installments": [i.to_dict() for i in installments],
            "summary": summary,
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list installments")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
