# Overview: Stock Ledger - the only writer of Product.stock.

"""
Stock Ledger

Every change to a product's stock counter goes through adjust(). There is
no other code path that writes Product.stock.

INVARIANTS:
- adjust() runs inside the caller's transaction and never commits.
- The change is a single `UPDATE products SET stock = stock + :delta`
  statement, so two concurrent writers cannot both apply a delta to the
  same stale value.
- Each adjustment appends a StockMovement row with the resulting stock.

POLICY:
Whether stock may go below zero is decided by the caller and passed in as a
StockPolicy, so the divergence between the write paths lives here and
nowhere else:
- ENFORCE_FLOOR: point-of-sale checkout. The floor is part of the UPDATE's
  WHERE clause; a miss raises InsufficientStock and nothing changes.
- ALLOW_NEGATIVE: offline reconciliation (the goods already left the shop)
  and purchase order receipts.
"""

from __future__ import annotations

import enum

from sqlalchemy import update

from ..extensions import db
from ..models import Product, StockMovement
from .errors import InsufficientStock, NotFound


class StockPolicy(enum.Enum):
    ENFORCE_FLOOR = "enforce_floor"
    ALLOW_NEGATIVE = "allow_negative"


def get_product(product_id: int, shop_id: int) -> Product:
    """Load a product owned by shop_id; other shops' products are NotFound."""
    product = db.session.query(Product).filter_by(id=product_id, shop_id=shop_id).first()
    if product is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def adjust(
    product_id: int,
    shop_id: int,
    delta: int,
    *,
    policy: StockPolicy,
    reason: str,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_id: int | None = None,
) -> Product:
    """
    Apply `stock += delta` to a shop's product.

    Raises:
        NotFound: product missing or owned by another shop
        InsufficientStock: policy is ENFORCE_FLOOR and stock + delta < 0

    Returns the product with its post-adjustment stock loaded.
    """
    if not isinstance(policy, StockPolicy):
        raise TypeError("policy must be a StockPolicy")

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.shop_id == shop_id)
        .values(stock=Product.stock + delta)
        .execution_options(synchronize_session=False)
    )
    if policy is StockPolicy.ENFORCE_FLOOR:
        stmt = stmt.where(Product.stock + delta >= 0)

    result = db.session.execute(stmt)

    product = (
        db.session.query(Product)
        .filter_by(id=product_id, shop_id=shop_id)
        .populate_existing()
        .first()
    )
    if product is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})

    if not result.rowcount:
        # Only the floor predicate can make an existing row miss
        raise InsufficientStock(
            f"Insufficient stock for product {product.name}. "
            f"Available: {product.stock}, Requested: {-delta}",
            details={
                "product_id": product.id,
                "available": product.stock,
                "requested": -delta,
            },
        )

    db.session.add(StockMovement(
        shop_id=shop_id,
        product_id=product_id,
        delta=delta,
        stock_after=product.stock,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
    ))
    db.session.flush()
    return product


def get_stock(product_id: int, shop_id: int) -> int:
    return get_product(product_id, shop_id).stock


def list_movements(product_id: int, shop_id: int, *, limit: int = 50) -> list[StockMovement]:
    get_product(product_id, shop_id)
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id, shop_id=shop_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
