from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_COMPLETED = "completed"

PAYMENT_TYPE_FULL = "full"
PAYMENT_TYPE_INSTALLMENT = "installment"

SALE_SOURCE_POS = "pos"
SALE_SOURCE_OFFLINE_SYNC = "offline_sync"


class Sale(db.Model):
    """
    Sale header with its payment position.

    INVARIANTS (enforced by the services and by a CHECK constraint):
    - amount_paid_cents + outstanding_balance_cents == total_amount_cents
    - payment_status == "completed" iff outstanding_balance_cents == 0

    total_amount_cents is fixed at creation. Later payments append
    Installment rows and move amount_paid/outstanding through
    services.payment_service only. version_id turns a concurrent
    read-modify-write of the payment fields into a StaleDataError.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "order_id", name="uq_sales_shop_order_id"),
        db.Index("ix_sales_shop_status_created", "shop_id", "payment_status", "created_at"),
        db.CheckConstraint(
            "amount_paid_cents + outstanding_balance_cents = total_amount_cents",
            name="ck_sales_balance",
        ),
        db.CheckConstraint("amount_paid_cents >= 0", name="ck_sales_amount_paid_nonneg"),
        db.CheckConstraint("outstanding_balance_cents >= 0", name="ck_sales_outstanding_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    # Human-facing code (e.g., "ORD-001-000042")
    order_id = db.Column(db.String(64), nullable=False, index=True)

    staff_id = db.Column(db.Integer, nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    outstanding_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    payment_type = db.Column(db.String(16), nullable=False, default=PAYMENT_TYPE_FULL)
    payment_method = db.Column(db.String(32), nullable=True)
    bank_name = db.Column(db.String(128), nullable=True)
    account_number = db.Column(db.String(64), nullable=True)

    source = db.Column(db.String(16), nullable=False, default=SALE_SOURCE_POS)

    # Business time: when the till rang it up (client clock for offline sales)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    shop = db.relationship("Shop", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} order_id={self.order_id!r} status={self.payment_status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "shop_id": self.shop_id,
            "staff_id": self.staff_id,
            "customer_id": self.customer_id,
            "total_amount_cents": self.total_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "outstanding_balance_cents": self.outstanding_balance_cents,
            "payment_status": self.payment_status,
            "payment_type": self.payment_type,
            "payment_method": self.payment_method,
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "source": self.source,
            "sold_at": to_utc_z(self.sold_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["installments"] = [inst.to_dict() for inst in self.installments]
        return data


class SaleItem(db.Model):
    """Sale line; immutable once written. Cost is snapshotted for margin reporting."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("items", lazy=True, order_by="SaleItem.id"),
    )
    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "discount_percent": float(self.discount_percent or 0),
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Installment(db.Model):
    """
    One payment applied toward a sale.

    APPEND-ONLY: rows are never updated or deleted. The sum of a sale's
    installments equals its amount_paid_cents and never exceeds its total.
    """
    __tablename__ = "installments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_installments_amount_positive"),
        db.Index("ix_installments_sale_created", "sale_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    bank_name = db.Column(db.String(128), nullable=True)
    account_number = db.Column(db.String(64), nullable=True)

    recorded_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("installments", lazy=True, order_by="Installment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "recorded_by_id": self.recorded_by_id,
            "created_at": to_utc_z(self.created_at),
        }


class OfflineSaleSync(db.Model):
    """
    Idempotency index for replayed offline sales.

    WRITE-ONCE: (shop_id, client_temp_id) -> sale_id is inserted in the same
    transaction as the sale it points at and never updated. The unique
    constraint is what makes concurrent replays of one client sale collapse
    into a single server-side effect.
    """
    __tablename__ = "offline_sale_syncs"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "client_temp_id", name="uq_offline_sale_syncs_shop_client"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    client_temp_id = db.Column(db.String(128), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale")

    def to_dict(self) -> dict:
        return {
            "shop_id": self.shop_id,
            "client_temp_id": self.client_temp_id,
            "sale_id": self.sale_id,
            "created_at": to_utc_z(self.created_at),
        }
