# Overview: Read-only consistency checks over the payment and receiving ledgers.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Installment, PurchaseOrder, PurchaseOrderItem, Sale
from ..models.sales import PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_PENDING
from .po_lifecycle import PurchaseOrderStatus


def _sale_violations(shop_id: int | None) -> list[dict]:
    paid_by_sale = dict(
        db.session.query(Installment.sale_id, func.coalesce(func.sum(Installment.amount_cents), 0))
        .group_by(Installment.sale_id)
        .all()
    )

    query = db.session.query(Sale)
    if shop_id is not None:
        query = query.filter(Sale.shop_id == shop_id)

    violations = []
    for sale in query.order_by(Sale.id).all():
        ref = {"sale_id": sale.id, "order_id": sale.order_id}
        if sale.amount_paid_cents + sale.outstanding_balance_cents != sale.total_amount_cents:
            violations.append({**ref, "check": "balance"})

        expected = PAYMENT_STATUS_COMPLETED if sale.outstanding_balance_cents <= 0 else PAYMENT_STATUS_PENDING
        if sale.payment_status != expected:
            violations.append({**ref, "check": "payment_status"})

        installments_total = paid_by_sale.get(sale.id, 0)
        if installments_total != sale.amount_paid_cents:
            violations.append({**ref, "check": "installments_total", "installments_total_cents": installments_total})
    return violations


def _purchase_order_violations(shop_id: int | None) -> list[dict]:
    query = db.session.query(PurchaseOrder)
    if shop_id is not None:
        query = query.filter(PurchaseOrder.shop_id == shop_id)

    violations = []
    for po in query.order_by(PurchaseOrder.id).all():
        ref = {"po_id": po.id, "po_number": po.po_number}
        for item in po.items:
            if not 0 <= item.quantity_received <= item.quantity_ordered:
                violations.append({**ref, "check": "received_bounds", "item_id": item.id})

        any_received = any(item.quantity_received for item in po.items)
        status = PurchaseOrderStatus(po.status)
        if status is PurchaseOrderStatus.RECEIVED and not po.is_fully_received:
            violations.append({**ref, "check": "received_status"})
        elif status is PurchaseOrderStatus.PARTIAL and (po.is_fully_received or not any_received):
            violations.append({**ref, "check": "partial_status"})
        elif status in (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.SENT) and any_received:
            violations.append({**ref, "check": "unreceived_status"})
    return violations


def find_violations(shop_id: int | None = None) -> list[dict]:
    """
    Every row that breaks a ledger invariant.

    Sales: paid + outstanding == total, status matches the balance, and the
    installment rows add up to amount_paid. Purchase orders: received
    quantities within bounds and status consistent with what was received.
    """
    return _sale_violations(shop_id) + _purchase_order_violations(shop_id)
