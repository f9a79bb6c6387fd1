# Overview: Customer lifetime aggregates and loyalty points, refreshed after a sale commits.

from __future__ import annotations

from ..extensions import db
from ..models import Customer, LoyaltyAccount
from shopledger.time_utils import utcnow


# (minimum points, tier) from highest to lowest
LOYALTY_TIERS = (
    (10000, "platinum"),
    (5000, "gold"),
    (1000, "silver"),
    (0, "bronze"),
)

# 1 point per 100 currency units
CENTS_PER_POINT = 10000


def loyalty_tier(points: int) -> str:
    for minimum, tier in LOYALTY_TIERS:
        if points >= minimum:
            return tier
    return "bronze"


def points_for_amount(total_cents: int) -> int:
    if total_cents <= 0:
        return 0
    return total_cents // CENTS_PER_POINT


def get_customer(customer_id: int, shop_id: int) -> Customer | None:
    return db.session.query(Customer).filter_by(id=customer_id, shop_id=shop_id).first()


def apply_sale_to_customer(customer_id: int, shop_id: int, total_cents: int) -> Customer | None:
    """
    Fold one committed sale into the customer's aggregates and loyalty balance.

    Runs after the sale transaction, so it commits on its own. The loyalty
    account is created on the customer's first sale.
    """
    customer = get_customer(customer_id, shop_id)
    if customer is None:
        return None

    customer.total_spent_cents = (customer.total_spent_cents or 0) + total_cents
    customer.visit_count = (customer.visit_count or 0) + 1
    customer.last_visit_at = utcnow()

    account = db.session.query(LoyaltyAccount).filter_by(customer_id=customer.id).first()
    if account is None:
        account = LoyaltyAccount(customer_id=customer.id, points=0)
        db.session.add(account)

    account.points = (account.points or 0) + points_for_amount(total_cents)
    account.tier = loyalty_tier(account.points)

    db.session.commit()
    return customer
