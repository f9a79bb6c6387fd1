# Overview: Offline Sync Replayer - idempotent replay of sales rung up while the POS client was offline.

"""
Offline Sync Replayer

A POS client that lost connectivity keeps selling and later uploads the
queued sales in a batch. Each entry carries a client_temp_id chosen by the
till; (shop_id, client_temp_id) identifies the sale forever.

IDEMPOTENCY:
- The OfflineSaleSync mapping is inserted in the same transaction as the
  sale, so a replay either sees the mapping (and changes nothing) or the
  whole sale is written once.
- Two replays of the same entry racing each other collide on the unique
  constraint; the loser is rolled back and retried, and on retry finds the
  winner's mapping.

STOCK:
The goods already left the shop, so stock is decremented without a floor
and may go negative. InsufficientStock is never reported from here.

PAYMENT:
An up-front payment larger than the server-computed total is capped at the
total and logged. ExceedsBalance is never reported from here either.

Entries are independent: one failing entry is reported in "errors" and does
not affect the others.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, OfflineSaleSync
from ..models.activity import STOCK_REASON_OFFLINE_SALE
from ..models.sales import PAYMENT_TYPE_FULL, SALE_SOURCE_OFFLINE_SYNC
from shopledger.time_utils import parse_iso_datetime
from . import notification_service
from .concurrency import begin_ledger_transaction, run_with_retry
from .errors import InvalidInput, LedgerError
from .sales_service import PaymentSpec, create_sale_locked, normalize_items, run_side_effects
from .stock_ledger import StockPolicy


SYNC_STATUS_CREATED = "created"
SYNC_STATUS_EXISTING = "existing"


def _client_temp_id(entry) -> str:
    if not isinstance(entry, dict):
        raise InvalidInput("Each offline sale must be an object")
    value = entry.get("client_temp_id")
    if value is None or not str(value).strip():
        raise InvalidInput("client_temp_id is required")
    return str(value).strip()


def _resolve_customer(shop_id: int, value) -> int | None:
    """Offline tills may reference customers the server never saw; those are dropped."""
    if value in (None, ""):
        return None
    try:
        customer_id = int(value)
    except (TypeError, ValueError):
        return None
    exists = db.session.query(Customer.id).filter_by(id=customer_id, shop_id=shop_id).first()
    if exists is None:
        current_app.logger.info("Dropping unknown customer %s from offline sale", value)
        return None
    return customer_id


def sync_offline_sale(shop_id: int, staff_id: int | None, entry: dict) -> dict:
    """
    Replay one offline sale.

    Returns {"client_temp_id", "server_id", "order_id", "status"} where status
    is "created" for a first replay and "existing" for a repeat.
    """
    client_temp_id = _client_temp_id(entry)

    def _op():
        begin_ledger_transaction()

        mapping = (
            db.session.query(OfflineSaleSync)
            .filter_by(shop_id=shop_id, client_temp_id=client_temp_id)
            .first()
        )
        if mapping is not None:
            existing = {
                "client_temp_id": client_temp_id,
                "server_id": mapping.sale_id,
                "order_id": mapping.sale.order_id,
                "status": SYNC_STATUS_EXISTING,
            }
            db.session.rollback()
            return existing, []

        lines = normalize_items(entry.get("items"))
        try:
            sold_at = parse_iso_datetime(entry.get("created_at"))
        except (TypeError, ValueError):
            raise InvalidInput(
                "created_at must be an ISO-8601 timestamp",
                details={"client_temp_id": client_temp_id, "created_at": entry.get("created_at")},
            )
        customer_id = _resolve_customer(shop_id, entry.get("customer_id"))
        payment = PaymentSpec.from_dict(entry, default_type=PAYMENT_TYPE_FULL)

        sale = create_sale_locked(
            shop_id=shop_id,
            staff_id=staff_id,
            lines=lines,
            customer_id=customer_id,
            payment=payment,
            policy=StockPolicy.ALLOW_NEGATIVE,
            source=SALE_SOURCE_OFFLINE_SYNC,
            stock_reason=STOCK_REASON_OFFLINE_SALE,
            sold_at=sold_at,
            activity_action="sync_offline_sale",
            clamp_overpayment=True,
        )

        client_total = entry.get("total_amount_cents")
        if client_total is not None and client_total != sale.total_amount_cents:
            current_app.logger.warning(
                "Offline sale %s total mismatch: client %s, server %s",
                client_temp_id, client_total, sale.total_amount_cents,
            )

        db.session.add(OfflineSaleSync(
            shop_id=shop_id,
            client_temp_id=client_temp_id,
            sale_id=sale.id,
        ))
        db.session.flush()
        created = {
            "client_temp_id": client_temp_id,
            "server_id": sale.id,
            "order_id": sale.order_id,
            "status": SYNC_STATUS_CREATED,
        }
        db.session.commit()
        return created, [line["product_id"] for line in lines]

    result, product_ids = run_with_retry(_op, retry_on=(IntegrityError,))

    if result["status"] == SYNC_STATUS_CREATED:
        run_side_effects(
            result["server_id"],
            product_ids=product_ids,
            notification_type=notification_service.NOTIFICATION_OFFLINE_SYNC,
            title="Offline sale synced",
            user_id=staff_id,
        )
    return result


def sync_batch(shop_id: int, staff_id: int | None, sales) -> dict:
    """
    Replay a batch of offline sales, each in its own transaction.

    Returns {"synced": [...], "errors": [{"client_temp_id", "error", "code"}]}.
    Raises InvalidInput only when the batch itself is empty or not a list.
    """
    if not isinstance(sales, list) or not sales:
        raise InvalidInput("sales must be a non-empty list")

    synced = []
    errors = []
    for entry in sales:
        client_temp_id = entry.get("client_temp_id") if isinstance(entry, dict) else None
        try:
            synced.append(sync_offline_sale(shop_id, staff_id, entry))
        except LedgerError as e:
            errors.append({
                "client_temp_id": client_temp_id,
                "error": e.message,
                "code": e.code,
            })
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to sync offline sale %s", client_temp_id)
            errors.append({
                "client_temp_id": client_temp_id,
                "error": "Failed to sync sale",
                "code": "INTERNAL_ERROR",
            })

    current_app.logger.info(
        "Offline sync for shop %s: %d synced, %d errors", shop_id, len(synced), len(errors)
    )
    return {"synced": synced, "errors": errors}
