# Overview: Notification outbox writes (sale, low_stock, offline_sync), issued after the ledger commits.

from __future__ import annotations

from ..extensions import db
from ..models import Notification, Product


NOTIFICATION_SALE = "sale"
NOTIFICATION_LOW_STOCK = "low_stock"
NOTIFICATION_OFFLINE_SYNC = "offline_sync"


def notify(
    *,
    shop_id: int,
    type: str,
    title: str,
    message: str,
    user_id: int | None = None,
    data: dict | None = None,
) -> Notification:
    """Queue a notification. Caller commits."""
    notification = Notification(
        shop_id=shop_id,
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=data,
        is_read=False,
    )
    db.session.add(notification)
    return notification


def emit_low_stock_alerts(
    *,
    shop_id: int,
    product_ids,
    threshold: int,
    user_id: int | None = None,
    sale_id: int | None = None,
) -> list[Notification]:
    """
    Queue one low_stock notification per product at or below threshold.

    Reads stock as committed; negative stock (offline oversell) also alerts.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return []

    products = (
        db.session.query(Product)
        .filter(Product.shop_id == shop_id, Product.id.in_(ids))
        .order_by(Product.id)
        .all()
    )

    alerts = []
    for product in products:
        if product.stock > threshold:
            continue
        alerts.append(notify(
            shop_id=shop_id,
            user_id=user_id,
            type=NOTIFICATION_LOW_STOCK,
            title="Low stock",
            message=f"{product.name} is running low ({product.stock} left)",
            data={"product_id": product.id, "stock": product.stock, "sale_id": sale_id},
        ))
    return alerts


def list_notifications(shop_id: int, *, type: str | None = None, unread_only: bool = False) -> list[Notification]:
    query = db.session.query(Notification).filter_by(shop_id=shop_id)
    if type:
        query = query.filter_by(type=type)
    if unread_only:
        query = query.filter_by(is_read=False)
    return query.order_by(Notification.id.asc()).all()
