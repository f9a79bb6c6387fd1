# Overview: Sale Recorder - validates and commits a POS sale with its items, payment and stock decrements.

"""
Sale Recorder

A sale is written in one ledger transaction: header, items, initial
installment(s), one Stock Ledger decrement per item and an activity entry.
Either all of it commits or none of it does.

Customer aggregates, loyalty and notifications are applied after the commit
and are best effort: a failure there is logged and never undoes the sale.

The offline replayer reuses create_sale_locked() with a different stock
policy and source; see offline_sync_service.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Customer, Installment, Product, Sale, SaleItem
from ..models.activity import STOCK_REASON_SALE
from ..models.sales import (
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_PENDING,
    PAYMENT_TYPE_FULL,
    PAYMENT_TYPE_INSTALLMENT,
    SALE_SOURCE_POS,
)
from shopledger.time_utils import utcnow
from . import customer_service, notification_service, stock_ledger
from .activity_service import append_activity
from .concurrency import begin_ledger_transaction, lock_for_update, run_with_retry
from .document_service import DOC_TYPE_SALE, next_document_number
from .errors import ExceedsBalance, InsufficientStock, InvalidInput, NotFound
from .stock_ledger import StockPolicy


PAYMENT_TYPES = (PAYMENT_TYPE_FULL, PAYMENT_TYPE_INSTALLMENT)
PAYMENT_STATUSES = (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_COMPLETED)


def as_int(value, field_name: str) -> int:
    """Coerce a JSON number to int; fractional values and booleans are rejected."""
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f"{field_name} must be an integer", details={"field": field_name})
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise InvalidInput(f"{field_name} must be an integer", details={"field": field_name})


@dataclass
class PaymentSpec:
    """How a new sale is being paid for."""
    payment_type: str = PAYMENT_TYPE_FULL
    amount_paid_cents: int | None = None
    installments: list[dict] = field(default_factory=list)
    payment_method: str = "cash"
    bank_name: str | None = None
    account_number: str | None = None

    @classmethod
    def from_dict(cls, data: dict | None, *, default_type: str = PAYMENT_TYPE_FULL) -> "PaymentSpec":
        data = data or {}
        payment_type = data.get("payment_type") or default_type
        if payment_type not in PAYMENT_TYPES:
            raise InvalidInput(
                f"payment_type must be one of {', '.join(PAYMENT_TYPES)}",
                details={"payment_type": payment_type},
            )

        amount_paid = data.get("amount_paid_cents")
        if amount_paid is not None:
            amount_paid = as_int(amount_paid, "amount_paid_cents")

        installments = data.get("installments") or []
        if not isinstance(installments, list):
            raise InvalidInput("installments must be a list")

        return cls(
            payment_type=payment_type,
            amount_paid_cents=amount_paid,
            installments=installments,
            payment_method=data.get("payment_method") or "cash",
            bank_name=data.get("bank_name"),
            account_number=data.get("account_number"),
        )


@dataclass
class ResolvedPayment:
    amount_paid_cents: int
    outstanding_balance_cents: int
    payment_status: str
    # (amount_cents, payment_method, bank_name, account_number) per Installment row
    installments: list[tuple] = field(default_factory=list)


def _cap_installment_rows(rows: list[tuple], total_cents: int) -> list[tuple]:
    capped = []
    remaining = total_cents
    for amount, *rest in rows:
        if remaining <= 0:
            break
        take = min(amount, remaining)
        capped.append((take, *rest))
        remaining -= take
    return capped


def resolve_payment(total_cents: int, spec: PaymentSpec, *, clamp_overpayment: bool = False) -> ResolvedPayment:
    """
    Decide the amount paid up front and the resulting balance.

    Precedence: explicit installments, then amount_paid_cents, then the
    payment type (full pays the total, installment pays nothing yet).

    Paying more than the total raises ExceedsBalance, unless clamp_overpayment
    is set: then the paid amount and its installment rows are cut down to the
    total. Offline replays use this since the money already changed hands.
    """
    rows = []
    if spec.installments:
        amount_paid = 0
        for idx, entry in enumerate(spec.installments):
            if not isinstance(entry, dict):
                raise InvalidInput("Each installment must be an object", details={"index": idx})
            amount = as_int(entry.get("amount_cents"), "installments.amount_cents")
            if amount < 0:
                raise InvalidInput("Installment amount cannot be negative", details={"index": idx})
            if amount == 0:
                continue
            amount_paid += amount
            rows.append((
                amount,
                entry.get("payment_method") or spec.payment_method,
                entry.get("bank_name", spec.bank_name),
                entry.get("account_number", spec.account_number),
            ))
    elif spec.amount_paid_cents is not None:
        amount_paid = spec.amount_paid_cents
        if amount_paid < 0:
            raise InvalidInput("amount_paid_cents cannot be negative")
        if amount_paid:
            rows.append((amount_paid, spec.payment_method, spec.bank_name, spec.account_number))
    elif spec.payment_type == PAYMENT_TYPE_FULL:
        amount_paid = total_cents
        if amount_paid:
            rows.append((amount_paid, spec.payment_method, spec.bank_name, spec.account_number))
    else:
        amount_paid = 0

    if amount_paid > total_cents and clamp_overpayment:
        current_app.logger.warning(
            "Up-front payment %s exceeds sale total %s; capping at total", amount_paid, total_cents
        )
        amount_paid = total_cents
        rows = _cap_installment_rows(rows, total_cents)
    elif amount_paid > total_cents:
        raise ExceedsBalance(
            "Amount paid exceeds sale total",
            details={"amount_paid_cents": amount_paid, "total_amount_cents": total_cents},
        )

    outstanding = max(0, total_cents - amount_paid)
    return ResolvedPayment(
        amount_paid_cents=amount_paid,
        outstanding_balance_cents=outstanding,
        payment_status=PAYMENT_STATUS_PENDING if outstanding > 0 else PAYMENT_STATUS_COMPLETED,
        installments=rows,
    )


def normalize_items(items) -> list[dict]:
    """Validate request items into {product_id, quantity, price_cents, discount_percent} dicts."""
    if not isinstance(items, list) or not items:
        raise InvalidInput("Sale must contain at least one item")

    lines = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise InvalidInput("Each item must be an object", details={"index": idx})
        if item.get("product_id") in (None, ""):
            raise InvalidInput("product_id is required", details={"index": idx})

        product_id = as_int(item.get("product_id"), "product_id")
        quantity = as_int(item.get("quantity"), "quantity")
        if quantity <= 0:
            raise InvalidInput(
                "quantity must be positive",
                details={"index": idx, "product_id": product_id, "quantity": quantity},
            )

        price = item.get("price_cents")
        if price is not None:
            price = as_int(price, "price_cents")
            if price < 0:
                raise InvalidInput(
                    "price_cents cannot be negative",
                    details={"index": idx, "product_id": product_id},
                )

        try:
            discount = float(item.get("discount_percent") or 0)
        except (TypeError, ValueError):
            raise InvalidInput("discount_percent must be a number", details={"index": idx})

        lines.append({
            "product_id": product_id,
            "quantity": quantity,
            "price_cents": price,
            "discount_percent": discount,
        })
    return lines


def load_products(shop_id: int, lines: list[dict]) -> dict[int, Product]:
    product_ids = sorted({line["product_id"] for line in lines})
    products = (
        lock_for_update(
            db.session.query(Product)
            .filter(Product.shop_id == shop_id, Product.id.in_(product_ids))
            .order_by(Product.id)
        )
        .all()
    )
    by_id = {p.id: p for p in products}
    missing = [pid for pid in product_ids if pid not in by_id]
    if missing:
        raise NotFound(
            f"Product {missing[0]} not found",
            details={"product_id": missing[0], "missing_product_ids": missing},
        )
    return by_id


def _validate_on_hand(lines: list[dict], products: dict[int, Product]) -> None:
    product_totals: dict[int, int] = {}
    for line in lines:
        product_totals[line["product_id"]] = product_totals.get(line["product_id"], 0) + line["quantity"]

    for product_id, qty in product_totals.items():
        product = products[product_id]
        if product.stock < qty:
            raise InsufficientStock(
                f"Insufficient stock for product {product.name}. "
                f"Available: {product.stock}, Requested: {qty}",
                details={"product_id": product_id, "available": product.stock, "requested": qty},
            )


def create_sale_locked(
    *,
    shop_id: int,
    staff_id: int | None,
    lines: list[dict],
    customer_id: int | None,
    payment: PaymentSpec,
    policy: StockPolicy,
    source: str = SALE_SOURCE_POS,
    stock_reason: str = STOCK_REASON_SALE,
    sold_at=None,
    activity_action: str = "record_sale",
    clamp_overpayment: bool = False,
) -> Sale:
    """
    Write one sale inside an already open ledger transaction. Does not commit.

    Every check runs before the first write so a rejected sale leaves no
    trace in the transaction.
    """
    products = load_products(shop_id, lines)
    if policy is StockPolicy.ENFORCE_FLOOR:
        _validate_on_hand(lines, products)

    priced = []
    total = 0
    for line in lines:
        product = products[line["product_id"]]
        price = line["price_cents"] if line["price_cents"] is not None else (product.price_cents or 0)
        total += line["quantity"] * price
        priced.append((line, product, price))

    resolved = resolve_payment(total, payment, clamp_overpayment=clamp_overpayment)

    now = utcnow()
    sale = Sale(
        shop_id=shop_id,
        order_id=next_document_number(shop_id=shop_id, document_type=DOC_TYPE_SALE),
        staff_id=staff_id,
        customer_id=customer_id,
        total_amount_cents=total,
        amount_paid_cents=resolved.amount_paid_cents,
        outstanding_balance_cents=resolved.outstanding_balance_cents,
        payment_status=resolved.payment_status,
        payment_type=payment.payment_type,
        payment_method=payment.payment_method,
        bank_name=payment.bank_name,
        account_number=payment.account_number,
        source=source,
        sold_at=sold_at or now,
        created_at=now,
        updated_at=now,
    )
    db.session.add(sale)
    db.session.flush()

    for line, product, price in priced:
        db.session.add(SaleItem(
            sale_id=sale.id,
            product_id=product.id,
            quantity=line["quantity"],
            price_cents=price,
            cost_price_cents=product.cost_price_cents or 0,
            discount_percent=line["discount_percent"],
            created_at=now,
        ))

    for amount, method, bank_name, account_number in resolved.installments:
        db.session.add(Installment(
            sale_id=sale.id,
            amount_cents=amount,
            payment_method=method or "cash",
            bank_name=bank_name,
            account_number=account_number,
            recorded_by_id=staff_id,
            created_at=now,
        ))

    for line, product, _price in priced:
        stock_ledger.adjust(
            product.id,
            shop_id,
            -line["quantity"],
            policy=policy,
            reason=stock_reason,
            reference_type="sale",
            reference_id=sale.id,
            actor_id=staff_id,
        )

    append_activity(
        shop_id=shop_id,
        staff_id=staff_id,
        action=activity_action,
        details={
            "sale_id": sale.id,
            "order_id": sale.order_id,
            "total_amount_cents": total,
            "amount_paid_cents": resolved.amount_paid_cents,
            "item_count": len(lines),
            "source": source,
        },
    )
    return sale


def run_side_effects(
    sale_id: int,
    *,
    product_ids,
    notification_type: str,
    title: str,
    user_id: int | None = None,
) -> None:
    """Post-commit customer, loyalty and notification updates; failures are logged only."""
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        return

    if sale.customer_id:
        try:
            customer_service.apply_sale_to_customer(sale.customer_id, sale.shop_id, sale.total_amount_cents)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to update customer stats for sale %s", sale_id)

    try:
        sale = db.session.get(Sale, sale_id)
        notification_service.notify(
            shop_id=sale.shop_id,
            user_id=user_id,
            type=notification_type,
            title=title,
            message=f"Sale {sale.order_id} recorded for {sale.total_amount_cents} cents",
            data={"sale_id": sale.id, "order_id": sale.order_id, "total_amount_cents": sale.total_amount_cents},
        )
        notification_service.emit_low_stock_alerts(
            shop_id=sale.shop_id,
            user_id=user_id,
            product_ids=product_ids,
            threshold=int(current_app.config.get("LOW_STOCK_THRESHOLD", 10)),
            sale_id=sale.id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to queue notifications for sale %s", sale_id)


def record_sale(
    shop_id: int,
    staff_id: int | None,
    items,
    customer_id: int | None = None,
    payment: PaymentSpec | dict | None = None,
) -> Sale:
    """
    Record a point-of-sale sale.

    Raises InvalidInput, NotFound (product or customer outside the shop),
    InsufficientStock, ExceedsBalance, or Conflict when the transaction kept
    losing to concurrent writers.
    """
    lines = normalize_items(items)
    if not isinstance(payment, PaymentSpec):
        payment = PaymentSpec.from_dict(payment)
    if customer_id is not None:
        customer_id = as_int(customer_id, "customer_id")

    def _op():
        begin_ledger_transaction()

        if customer_id is not None:
            customer = db.session.query(Customer).filter_by(id=customer_id, shop_id=shop_id).first()
            if customer is None:
                raise NotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})

        sale = create_sale_locked(
            shop_id=shop_id,
            staff_id=staff_id,
            lines=lines,
            customer_id=customer_id,
            payment=payment,
            policy=StockPolicy.ENFORCE_FLOOR,
        )
        db.session.commit()
        return sale.id

    sale_id = run_with_retry(_op)
    current_app.logger.info("Recorded sale %s for shop %s", sale_id, shop_id)

    run_side_effects(
        sale_id,
        product_ids=[line["product_id"] for line in lines],
        notification_type=notification_service.NOTIFICATION_SALE,
        title="New sale",
        user_id=staff_id,
    )
    return db.session.get(Sale, sale_id)


def get_sale(shop_id: int, sale_ref) -> Sale:
    """Look a sale up by numeric id or by its order_id code."""
    query = db.session.query(Sale).filter(Sale.shop_id == shop_id)
    sale = None

    ref = str(sale_ref).strip() if sale_ref is not None else ""
    if ref.isdigit():
        sale = query.filter(Sale.id == int(ref)).first()
    if sale is None and ref:
        sale = query.filter(Sale.order_id == ref).first()

    if sale is None:
        raise NotFound(f"Sale {sale_ref} not found", details={"sale_ref": sale_ref})
    return sale


def list_sales(
    shop_id: int,
    payment_status: str | None = None,
    customer_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Sale]:
    if payment_status and payment_status not in PAYMENT_STATUSES:
        raise InvalidInput(
            f"payment_status must be one of {', '.join(PAYMENT_STATUSES)}",
            details={"payment_status": payment_status},
        )

    query = db.session.query(Sale).filter(Sale.shop_id == shop_id)
    if payment_status:
        query = query.filter(Sale.payment_status == payment_status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)

    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))
    return query.order_by(Sale.id.desc()).offset(offset).limit(limit).all()


def get_sale_items(shop_id: int, sale_ref) -> list[SaleItem]:
    sale = get_sale(shop_id, sale_ref)
    return list(sale.items)
