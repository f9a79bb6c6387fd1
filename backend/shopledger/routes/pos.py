# Overview: Flask API route for replaying sales queued by an offline POS client.

# backend/shopledger/routes/pos.py
"""
POS Offline Sync API

The till uploads the sales it rang up while offline. Each entry is applied
independently; the response lists what was synced and what failed, so the
client can drop the synced entries from its queue and keep the rest.
Replaying an entry that was already synced is safe and returns it with
status "existing".
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import offline_sync_service
from ..services.errors import LedgerError
from ..decorators import require_shop_context


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


@pos_bp.post("/sync")
@require_shop_context
def sync_offline_sales_route():
    """
    Request body:
    {
        "sales": [
            {
                "client_temp_id": "till-1-000123",
                "items": [{"product_id": 1, "quantity": 2, "price_cents": 500}],
                "customer_id": 7,  (optional, dropped if unknown)
                "created_at": "2024-05-01T10:15:00Z",  (optional)
                "total_amount_cents": 1000,  (optional, informational)
                "payment_type": "full",  (optional)
                "amount_paid_cents": 1000,  (optional)
                "payment_method": "cash"  (optional)
            }
        ]
    }

    Returns:
        200: {"synced": [...], "errors": [...]}
        400: sales missing or empty
    """
    try:
        data = request.get_json(silent=True) or {}
        result = offline_sync_service.sync_batch(g.shop_id, g.actor_id, data.get("sales"))
        return jsonify({
            "success": True,
            "synced": result["synced"],
            "errors": result["errors"],
            "message": f"Synced {len(result['synced'])} sales, {len(result['errors'])} errors",
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Offline sync failed")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
