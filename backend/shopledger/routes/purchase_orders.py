# Overview: Flask API routes for supplier purchase orders and receiving.

# backend/shopledger/routes/purchase_orders.py
"""
Purchase Order API Routes

LIFECYCLE: draft -> sent -> partial -> received, with cancel from draft or
sent. Illegal moves return 409 INVALID_TRANSITION.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import purchase_order_service
from ..services.errors import LedgerError
from ..decorators import require_shop_context


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


def _error_response(e: LedgerError):
    return jsonify(e.to_dict()), e.http_status


@purchase_orders_bp.post("")
@require_shop_context
def create_purchase_order_route():
    """
    Create a draft purchase order.

    Request body:
    {
        "supplier_id": 3,
        "items": [{"product_id": 1, "quantity_ordered": 20, "unit_cost_cents": 250}],
        "notes": "..."  (optional)
    }

    Returns:
        201: Purchase order
        400: Invalid input
        404: Supplier or product not found
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("supplier_id") is None:
            return jsonify({"error": "supplier_id is required", "code": "INVALID_INPUT"}), 400

        po = purchase_order_service.create_purchase_order(
            g.shop_id,
            data.get("supplier_id"),
            data.get("items"),
            notes=data.get("notes"),
            actor_id=g.actor_id,
        )
        return jsonify({"purchase_order": po.to_dict()}), 201

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@purchase_orders_bp.get("")
@require_shop_context
def list_purchase_orders_route():
    """Query params: status, supplier_id"""
    try:
        orders = purchase_order_service.list_purchase_orders(
            g.shop_id,
            status=request.args.get("status"),
            supplier_id=request.args.get("supplier_id", type=int),
        )
        return jsonify({"purchase_orders": [po.to_dict() for po in orders], "count": len(orders)}), 200
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list purchase orders")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@purchase_orders_bp.get("/<int:po_id>")
@require_shop_context
def get_purchase_order_route(po_id: int):
    try:
        po = purchase_order_service.get_purchase_order(g.shop_id, po_id)
        return jsonify({"purchase_order": po.to_dict()}), 200
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to get purchase order")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@purchase_orders_bp.put("/<int:po_id>")
@require_shop_context
def update_purchase_order_route(po_id: int):
    """Edit a draft: replace items and/or notes."""
    try:
        data = request.get_json(silent=True) or {}
        po = purchase_order_service.update_purchase_order(
            g.shop_id,
            po_id,
            items=data.get("items"),
            notes=data.get("notes"),
            actor_id=g.actor_id,
        )
        return jsonify({"purchase_order": po.to_dict()}), 200
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update purchase order")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@purchase_orders_bp.post("/<int:po_id>/send")
@require_shop_context
def send_purchase_order_route(po_id: int):
    try:
        po = purchase_order_service.send_purchase_order(g.shop_id, po_id, actor_id=g.actor_id)
        return jsonify({"purchase_order": po.to_dict()}), 200
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to send purchase order")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@purchase_orders_bp.post("/<int:po_id>/receive")
@require_shop_context
def receive_purchase_order_route(po_id: int):
    """
    Receive goods.

    Request body (optional):
    {
        "items": [{"item_id": 10, "quantity_received": 5}]
    }
    Without items every line's remaining quantity is received.

    Returns:
        200: Purchase order (partial or received)
        400: Non-positive quantity or nothing left to receive
        404: Purchase order or item not found
        409: Invalid transition or remaining quantity exceeded
    """
    try:
        data = request.get_json(silent=True) or {}
        po = purchase_order_service.receive_purchase_order(
            g.shop_id,
            po_id,
            items=data.get("items"),
            actor_id=g.actor_id,
        )
        return jsonify({"purchase_order": po.to_dict()}), 200
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive purchase order")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@purchase_orders_bp.post("/<int:po_id>/cancel")
@require_shop_context
def cancel_purchase_order_route(po_id: int):
    try:
        data = request.get_json(silent=True) or {}
        po = purchase_order_service.cancel_purchase_order(
            g.shop_id,
            po_id,
            reason=data.get("reason"),
            actor_id=g.actor_id,
        )
        return jsonify({"purchase_order": po.to_dict()}), 200
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel purchase order")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
