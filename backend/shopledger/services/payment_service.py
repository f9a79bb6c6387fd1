# Overview: Payment Ledger - installments against a sale and the sale's paid/outstanding position.

"""
Payment Ledger

apply_payment() is the only code that changes amount_paid_cents,
outstanding_balance_cents or payment_status after a sale is created.

The balance check and the write happen in the same ledger transaction on a
row read FOR UPDATE. Sale.version_id backs this up: a concurrent payment that
slipped past the lock turns into StaleDataError, which run_with_retry()
retries against fresh data, so two payments can never both pass the check
against the same stale balance.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Installment, Sale
from ..models.sales import PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_PENDING
from shopledger.time_utils import utcnow
from .activity_service import append_activity
from .concurrency import begin_ledger_transaction, lock_for_update, run_with_retry
from .errors import AlreadySettled, ExceedsBalance, InvalidInput
from .sales_service import as_int, get_sale


def apply_payment(
    shop_id: int,
    sale_ref,
    amount_cents,
    method: str = "cash",
    bank_name: str | None = None,
    account_number: str | None = None,
    actor_id: int | None = None,
) -> tuple[Sale, Installment]:
    """
    Apply one installment to a sale.

    Raises:
        InvalidInput: amount is not a positive integer
        NotFound: sale is not in this shop
        AlreadySettled: sale has no outstanding balance
        ExceedsBalance: amount is larger than what is still owed
    """
    amount_cents = as_int(amount_cents, "amount_cents")
    if amount_cents <= 0:
        raise InvalidInput("Payment amount must be positive", details={"amount_cents": amount_cents})

    def _op():
        begin_ledger_transaction()

        found = get_sale(shop_id, sale_ref)
        sale = lock_for_update(
            db.session.query(Sale).filter_by(id=found.id, shop_id=shop_id).populate_existing()
        ).first()

        if sale.payment_status == PAYMENT_STATUS_COMPLETED:
            raise AlreadySettled(
                f"Sale {sale.order_id} is already fully paid",
                details={"sale_id": sale.id, "order_id": sale.order_id},
            )

        remaining = sale.total_amount_cents - sale.amount_paid_cents
        if amount_cents > remaining:
            raise ExceedsBalance(
                "Payment amount exceeds outstanding balance",
                details={
                    "sale_id": sale.id,
                    "amount_cents": amount_cents,
                    "outstanding_balance_cents": remaining,
                },
            )

        now = utcnow()
        installment = Installment(
            sale_id=sale.id,
            amount_cents=amount_cents,
            payment_method=method or "cash",
            bank_name=bank_name,
            account_number=account_number,
            recorded_by_id=actor_id,
            created_at=now,
        )
        db.session.add(installment)

        sale.amount_paid_cents = sale.amount_paid_cents + amount_cents
        sale.outstanding_balance_cents = max(0, sale.total_amount_cents - sale.amount_paid_cents)
        sale.payment_status = (
            PAYMENT_STATUS_COMPLETED if sale.outstanding_balance_cents <= 0 else PAYMENT_STATUS_PENDING
        )
        sale.updated_at = now
        db.session.flush()

        append_activity(
            shop_id=shop_id,
            staff_id=actor_id,
            action="add_installment",
            details={
                "sale_id": sale.id,
                "order_id": sale.order_id,
                "installment_id": installment.id,
                "amount_cents": amount_cents,
                "payment_method": installment.payment_method,
                "outstanding_balance_cents": sale.outstanding_balance_cents,
            },
        )
        db.session.commit()
        return sale.id, installment.id

    sale_id, installment_id = run_with_retry(_op)
    current_app.logger.info(
        "Applied installment %s of %s cents to sale %s", installment_id, amount_cents, sale_id
    )
    return db.session.get(Sale, sale_id), db.session.get(Installment, installment_id)


def list_installments(shop_id: int, sale_ref) -> list[Installment]:
    sale = get_sale(shop_id, sale_ref)
    return (
        db.session.query(Installment)
        .filter_by(sale_id=sale.id)
        .order_by(Installment.id.asc())
        .all()
    )


def get_payment_summary(shop_id: int, sale_ref) -> dict:
    """Paid/outstanding position of a sale, with the installment total cross-checked."""
    sale = get_sale(shop_id, sale_ref)
    installments = list_installments(shop_id, sale.id)
    installments_total = sum(i.amount_cents for i in installments)
    return {
        "sale_id": sale.id,
        "order_id": sale.order_id,
        "total_amount_cents": sale.total_amount_cents,
        "amount_paid_cents": sale.amount_paid_cents,
        "outstanding_balance_cents": sale.outstanding_balance_cents,
        "payment_status": sale.payment_status,
        "installment_count": len(installments),
        "installments_total_cents": installments_total,
        "is_fully_paid": sale.payment_status == PAYMENT_STATUS_COMPLETED,
    }
