# Overview: Purchase order operations (create, edit, send, cancel, receive) over the lifecycle state machine.

"""
Purchase Order Service

Replenishes stock from suppliers. Every status change goes through
po_lifecycle.transition(); this module decides which action applies.

RECEIVING:
- Only sent or partial orders can be received.
- Per line, quantity_received only grows and never passes quantity_ordered.
  A request naming the same line twice is summed before that check.
- Stock increments, line updates, the status change and the supplier's
  total_spent all commit in one ledger transaction.
- The supplier's total_spent grows by the value of this receipt only, so
  partial receipts add up to the order total without double counting.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, PurchaseOrder, PurchaseOrderItem, Supplier
from ..models.activity import STOCK_REASON_PO_RECEIPT
from shopledger.time_utils import utcnow
from . import stock_ledger
from .activity_service import append_activity
from .concurrency import begin_ledger_transaction, lock_for_update, run_with_retry
from .document_service import DOC_TYPE_PURCHASE_ORDER, next_document_number
from .errors import InvalidInput, NotFound, RemainingExceeded
from .po_lifecycle import PurchaseOrderAction, PurchaseOrderStatus, transition
from .sales_service import as_int
from .stock_ledger import StockPolicy


def _get_supplier(shop_id: int, supplier_id: int, *, for_update: bool = False) -> Supplier:
    query = db.session.query(Supplier).filter_by(id=supplier_id, shop_id=shop_id)
    if for_update:
        query = lock_for_update(query)
    supplier = query.first()
    if supplier is None:
        raise NotFound(f"Supplier {supplier_id} not found", details={"supplier_id": supplier_id})
    return supplier


def _load_po(shop_id: int, po_id, *, for_update: bool = False) -> PurchaseOrder:
    po_id = as_int(po_id, "po_id")
    query = db.session.query(PurchaseOrder).filter_by(id=po_id, shop_id=shop_id)
    if for_update:
        query = lock_for_update(query).populate_existing()
    po = query.first()
    if po is None:
        raise NotFound(f"Purchase order {po_id} not found", details={"po_id": po_id})
    return po


def _build_items(shop_id: int, items) -> tuple[list[PurchaseOrderItem], int]:
    """Validate request items and build (unsaved) PO lines with the order total."""
    if not isinstance(items, list) or not items:
        raise InvalidInput("Purchase order must contain at least one item")

    parsed = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise InvalidInput("Each item must be an object", details={"index": idx})
        if item.get("product_id") in (None, ""):
            raise InvalidInput("product_id is required", details={"index": idx})
        product_id = as_int(item.get("product_id"), "product_id")

        raw_qty = item.get("quantity_ordered", item.get("quantity"))
        quantity = as_int(raw_qty, "quantity_ordered")
        if quantity <= 0:
            raise InvalidInput(
                "quantity_ordered must be positive",
                details={"index": idx, "product_id": product_id, "quantity_ordered": quantity},
            )

        unit_cost = item.get("unit_cost_cents")
        if unit_cost is not None:
            unit_cost = as_int(unit_cost, "unit_cost_cents")
            if unit_cost < 0:
                raise InvalidInput("unit_cost_cents cannot be negative", details={"index": idx})
        parsed.append((product_id, quantity, unit_cost))

    product_ids = sorted({p[0] for p in parsed})
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.shop_id == shop_id, Product.id.in_(product_ids)).all()
    }
    for product_id in product_ids:
        if product_id not in products:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})

    lines = []
    total = 0
    for product_id, quantity, unit_cost in parsed:
        if unit_cost is None:
            unit_cost = products[product_id].price_cents or 0
        total += quantity * unit_cost
        lines.append(PurchaseOrderItem(
            product_id=product_id,
            quantity_ordered=quantity,
            quantity_received=0,
            unit_cost_cents=unit_cost,
        ))
    return lines, total


def create_purchase_order(
    shop_id: int,
    supplier_id,
    items,
    notes: str | None = None,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """
    Create a draft purchase order.

    Args:
        shop_id: Shop placing the order
        supplier_id: Supplier (must belong to the shop)
        items: [{"product_id", "quantity_ordered", "unit_cost_cents"?}]
            unit cost defaults to the product's current price
        notes: Free text
        actor_id: Staff member creating the order

    Raises:
        InvalidInput: no items, or a non-positive quantity
        NotFound: supplier or product outside the shop
    """
    supplier_id = as_int(supplier_id, "supplier_id")

    def _op():
        begin_ledger_transaction()
        _get_supplier(shop_id, supplier_id)
        lines, total = _build_items(shop_id, items)

        po = PurchaseOrder(
            shop_id=shop_id,
            supplier_id=supplier_id,
            po_number=next_document_number(shop_id=shop_id, document_type=DOC_TYPE_PURCHASE_ORDER),
            status=PurchaseOrderStatus.DRAFT.value,
            total_amount_cents=total,
            notes=notes,
            created_by_id=actor_id,
            items=lines,
        )
        db.session.add(po)
        db.session.flush()

        append_activity(
            shop_id=shop_id,
            staff_id=actor_id,
            action="create_purchase_order",
            details={"po_id": po.id, "po_number": po.po_number, "total_amount_cents": total},
        )
        db.session.commit()
        return po.id

    po_id = run_with_retry(_op)
    current_app.logger.info("Created purchase order %s for shop %s", po_id, shop_id)
    return db.session.get(PurchaseOrder, po_id)


def update_purchase_order(
    shop_id: int,
    po_id,
    items=None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """Edit a draft order; given items replace every existing line."""
    def _op():
        begin_ledger_transaction()
        po = _load_po(shop_id, po_id, for_update=True)
        transition(po.status, PurchaseOrderAction.EDIT)

        if items is not None:
            lines, total = _build_items(shop_id, items)
            po.items = lines
            po.total_amount_cents = total
        if notes is not None:
            po.notes = notes
        db.session.flush()

        append_activity(
            shop_id=shop_id,
            staff_id=actor_id,
            action="update_purchase_order",
            details={"po_id": po.id, "po_number": po.po_number, "total_amount_cents": po.total_amount_cents},
        )
        db.session.commit()
        return po.id

    return db.session.get(PurchaseOrder, run_with_retry(_op))


def send_purchase_order(shop_id: int, po_id, actor_id: int | None = None) -> PurchaseOrder:
    """draft -> sent. Counts the order against the supplier."""
    def _op():
        begin_ledger_transaction()
        po = _load_po(shop_id, po_id, for_update=True)
        target = transition(po.status, PurchaseOrderAction.SEND)

        now = utcnow()
        po.status = target.value
        po.sent_at = now

        supplier = _get_supplier(shop_id, po.supplier_id, for_update=True)
        supplier.total_orders = (supplier.total_orders or 0) + 1
        supplier.last_order_at = now
        db.session.flush()

        append_activity(
            shop_id=shop_id,
            staff_id=actor_id,
            action="send_purchase_order",
            details={"po_id": po.id, "po_number": po.po_number, "supplier_id": supplier.id},
        )
        db.session.commit()
        return po.id

    return db.session.get(PurchaseOrder, run_with_retry(_op))


def cancel_purchase_order(
    shop_id: int,
    po_id,
    reason: str | None = None,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """draft|sent -> cancelled."""
    def _op():
        begin_ledger_transaction()
        po = _load_po(shop_id, po_id, for_update=True)
        target = transition(po.status, PurchaseOrderAction.CANCEL)

        po.status = target.value
        po.cancelled_at = utcnow()
        po.cancellation_reason = reason
        db.session.flush()

        append_activity(
            shop_id=shop_id,
            staff_id=actor_id,
            action="cancel_purchase_order",
            details={"po_id": po.id, "po_number": po.po_number, "reason": reason},
        )
        db.session.commit()
        return po.id

    return db.session.get(PurchaseOrder, run_with_retry(_op))


def _requested_quantities(po: PurchaseOrder, items) -> dict[int, int]:
    lines = {item.id: item for item in po.items}

    if items is None:
        return {item.id: item.remaining for item in po.items if item.remaining > 0}

    if not isinstance(items, list):
        raise InvalidInput("items must be a list")

    requested: dict[int, int] = {}
    for idx, entry in enumerate(items):
        if not isinstance(entry, dict):
            raise InvalidInput("Each item must be an object", details={"index": idx})
        item_id = as_int(entry.get("item_id"), "item_id")
        quantity = as_int(entry.get("quantity_received", entry.get("quantity")), "quantity_received")
        if quantity <= 0:
            raise InvalidInput(
                "quantity_received must be positive",
                details={"index": idx, "item_id": item_id, "quantity_received": quantity},
            )
        if item_id not in lines:
            raise NotFound(
                f"Item {item_id} is not part of purchase order {po.po_number}",
                details={"item_id": item_id, "po_id": po.id},
            )
        requested[item_id] = requested.get(item_id, 0) + quantity

    for item_id, quantity in requested.items():
        line = lines[item_id]
        if quantity > line.remaining:
            raise RemainingExceeded(
                f"Cannot receive {quantity} of item {item_id}; only {line.remaining} remaining",
                details={
                    "item_id": item_id,
                    "product_id": line.product_id,
                    "requested": quantity,
                    "remaining": line.remaining,
                },
            )
    return requested


def receive_purchase_order(
    shop_id: int,
    po_id,
    items=None,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """
    Receive goods against a sent or partial order.

    Args:
        shop_id: Shop receiving
        po_id: Purchase order id
        items: [{"item_id", "quantity_received"}]; None receives every
            line's full remaining quantity
        actor_id: Staff member receiving

    Returns:
        PurchaseOrder in status partial or received

    Raises:
        InvalidTransition: order is draft, received or cancelled
        InvalidInput: non-positive quantity, or nothing left to receive
        NotFound: item_id not on this order
        RemainingExceeded: more than the line's remaining quantity
    """
    def _op():
        begin_ledger_transaction()
        po = _load_po(shop_id, po_id, for_update=True)
        # sent and partial are the only states with receive edges
        transition(po.status, PurchaseOrderAction.RECEIVE_PARTIAL)

        requested = _requested_quantities(po, items)
        if not requested:
            raise InvalidInput(
                f"Nothing left to receive on purchase order {po.po_number}",
                details={"po_id": po.id},
            )

        lines = {item.id: item for item in po.items}
        receipt_value = 0
        for item_id in sorted(requested):
            quantity = requested[item_id]
            line = lines[item_id]
            stock_ledger.adjust(
                line.product_id,
                shop_id,
                quantity,
                policy=StockPolicy.ALLOW_NEGATIVE,
                reason=STOCK_REASON_PO_RECEIPT,
                reference_type="purchase_order",
                reference_id=po.id,
                actor_id=actor_id,
            )
            line.quantity_received = (line.quantity_received or 0) + quantity
            receipt_value += quantity * line.unit_cost_cents

        action = (
            PurchaseOrderAction.RECEIVE_FULL if po.is_fully_received
            else PurchaseOrderAction.RECEIVE_PARTIAL
        )
        target = transition(po.status, action)
        now = utcnow()
        po.status = target.value
        if target is PurchaseOrderStatus.RECEIVED:
            po.received_at = now

        supplier = _get_supplier(shop_id, po.supplier_id, for_update=True)
        supplier.total_spent_cents = (supplier.total_spent_cents or 0) + receipt_value
        supplier.last_order_at = now
        db.session.flush()

        append_activity(
            shop_id=shop_id,
            staff_id=actor_id,
            action="receive_purchase_order",
            details={
                "po_id": po.id,
                "po_number": po.po_number,
                "status": po.status,
                "received": [{"item_id": i, "quantity": requested[i]} for i in sorted(requested)],
                "receipt_value_cents": receipt_value,
            },
        )
        db.session.commit()
        return po.id

    po_id_result = run_with_retry(_op)
    current_app.logger.info("Received goods on purchase order %s", po_id_result)
    return db.session.get(PurchaseOrder, po_id_result)


def get_purchase_order(shop_id: int, po_id) -> PurchaseOrder:
    return _load_po(shop_id, po_id)


def list_purchase_orders(shop_id: int, status: str | None = None, supplier_id=None) -> list[PurchaseOrder]:
    query = db.session.query(PurchaseOrder).filter(PurchaseOrder.shop_id == shop_id)
    if status:
        try:
            status = PurchaseOrderStatus(status).value
        except ValueError:
            raise InvalidInput(f"Unknown purchase order status: {status}", details={"status": status})
        query = query.filter(PurchaseOrder.status == status)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == as_int(supplier_id, "supplier_id"))
    return query.order_by(PurchaseOrder.id.desc()).all()
