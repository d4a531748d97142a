# Overview: Loyalty ledger; append-only point transactions and customer statements.

"""
Loyalty Ledger

WHY: Customers earn points on delivered orders and spend a fixed number of
points as a payment method. The ledger is the audit trail of every change
to Customer.points.

DESIGN PRINCIPLES:
- LoyaltyTransaction rows are append-only (never updated or deleted)
- Balance changes are single conditional UPDATEs; a redeem can never push
  the balance below zero even under concurrent redeems
- Earning on delivery is idempotent per order: an order is credited at most
  once no matter how many paths reach "delivered"
- Functions take commit=False so order and register flows can include the
  ledger write in their own transaction
"""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Customer, LoyaltyRule, LoyaltyTransaction, Order, Product, StoreConfig
from .concurrency import run_with_retry


REDEEM_COST_CONFIG_KEY = "loyalty.redeem_cost"

TRANSACTION_EARN = "earn"
TRANSACTION_REDEEM = "redeem"

STATEMENT_ORDER_STATUSES = ("delivered", "cancelled")


class LoyaltyError(Exception):
    """Raised for loyalty ledger errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientPointsError(LoyaltyError):
    """Raised when a redeem is attempted against a balance below the cost."""


def loyalty_payment_method() -> str:
    return current_app.config.get("LOYALTY_PAYMENT_METHOD", "fidelidade")


def get_redeem_cost(store_id: int) -> int:
    """
    Points charged when paying with the loyalty method.

    Resolution: store config `loyalty.redeem_cost`, else the application's
    LOYALTY_REDEEM_COST (9 by default). The rewards table does not take part.
    """
    config = db.session.query(StoreConfig).filter_by(
        store_id=store_id,
        key=REDEEM_COST_CONFIG_KEY
    ).first()
    if config and config.value:
        try:
            cost = int(config.value)
        except ValueError:
            raise LoyaltyError(f"Invalid {REDEEM_COST_CONFIG_KEY} for store {store_id}: {config.value!r}")
        if cost <= 0:
            raise LoyaltyError(f"{REDEEM_COST_CONFIG_KEY} must be positive")
        return cost
    return int(current_app.config.get("LOYALTY_REDEEM_COST", 9))


def set_redeem_cost(store_id: int, cost: int) -> StoreConfig:
    if cost <= 0:
        raise LoyaltyError("Redeem cost must be positive")

    def _op():
        config = db.session.query(StoreConfig).filter_by(
            store_id=store_id,
            key=REDEEM_COST_CONFIG_KEY
        ).first()
        if config is None:
            config = StoreConfig(store_id=store_id, key=REDEEM_COST_CONFIG_KEY)
            db.session.add(config)
        config.value = str(cost)
        db.session.commit()
        return config

    return run_with_retry(_op)


def _get_customer(customer_id: int) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id).first()
    if not customer:
        raise LoyaltyError("Customer not found", details={"customer_id": customer_id})
    return customer


def earn(
    customer_id: int,
    order_id: int | None,
    points: int,
    description: str | None = None,
    *,
    commit: bool = True,
) -> LoyaltyTransaction:
    """Credit points and append an earn transaction."""
    if points <= 0:
        raise LoyaltyError("Earned points must be positive")

    customer = _get_customer(customer_id)

    db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(points=Customer.points + points)
        .execution_options(synchronize_session=False)
    )

    tx = LoyaltyTransaction(
        store_id=customer.store_id,
        customer_id=customer_id,
        order_id=order_id,
        transaction_type=TRANSACTION_EARN,
        points=points,
        description=description,
    )
    db.session.add(tx)

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    db.session.expire(customer, ["points"])
    return tx


def redeem(
    customer_id: int,
    order_id: int | None,
    cost: int,
    description: str | None = None,
    *,
    commit: bool = True,
) -> LoyaltyTransaction:
    """
    Debit `cost` points and append a redeem transaction (negative points).

    Callers validate the balance up front for a friendly message; the
    conditional UPDATE is what actually guarantees the balance stays >= 0.

    Raises:
        InsufficientPointsError: balance no longer covers the cost
    """
    if cost <= 0:
        raise LoyaltyError("Redeem cost must be positive")

    customer = _get_customer(customer_id)

    result = db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.points >= cost)
        .values(points=Customer.points - cost)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientPointsError(
            f"Insufficient points: {cost} required",
            details={"customer_id": customer_id, "required": cost},
        )

    tx = LoyaltyTransaction(
        store_id=customer.store_id,
        customer_id=customer_id,
        order_id=order_id,
        transaction_type=TRANSACTION_REDEEM,
        points=-cost,
        description=description,
    )
    db.session.add(tx)

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    db.session.expire(customer, ["points"])
    return tx


def order_earnable_points(order: Order) -> int:
    """
    Points an order is worth on delivery.

    Sum of floor(quantity * loyalty_points_value) over items whose product
    earns points. Orders paid with points earn nothing.
    """
    if order.payment_method == loyalty_payment_method():
        return 0

    product_ids = {item.product_id for item in order.items}
    if not product_ids:
        return 0
    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    }

    total = 0
    for item in order.items:
        product = products.get(item.product_id)
        if not product or not product.earns_loyalty_points:
            continue
        value = Decimal(product.loyalty_points_value or 0)
        total += math.floor(item.quantity * value)
    return total


def accrue_order_points(order: Order, *, commit: bool = False) -> LoyaltyTransaction | None:
    """
    Credit a delivered order's points exactly once.

    No-op when accrual is disabled (LOYALTY_ACCRUE_ON_DELIVERY), when the
    order has no customer or earns nothing, or when an earn transaction for
    the order already exists.
    """
    if not current_app.config.get("LOYALTY_ACCRUE_ON_DELIVERY", True):
        return None
    if order.customer_id is None:
        return None

    already = db.session.query(LoyaltyTransaction.id).filter_by(
        order_id=order.id,
        transaction_type=TRANSACTION_EARN
    ).first()
    if already:
        return None

    points = order_earnable_points(order)
    if points <= 0:
        return None

    return earn(
        order.customer_id,
        order.id,
        points,
        description=f"Order {order.order_number}",
        commit=commit,
    )


def _date_bounds(date_from: date | None, date_to: date | None):
    start = datetime.combine(date_from, time.min) if date_from else None
    # date_to is inclusive of the whole day
    end = datetime.combine(date_to + timedelta(days=1), time.min) if date_to else None
    return start, end


def customer_statement(
    customer_id: int,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[dict]:
    """
    Customer-facing history merging finished orders and point movements.

    - One "order" entry per delivered/cancelled order; transactions tied to
      that order are folded into it (earned_points / redeemed_points) and
      never listed again on their own
    - A delivered order without transactions shows its earnable points as
      an estimate
    - Remaining transactions appear as "loyalty_transaction" entries
    - Newest first
    """
    _get_customer(customer_id)
    start, end = _date_bounds(date_from, date_to)

    orders_query = db.session.query(Order).filter(
        Order.customer_id == customer_id,
        Order.status.in_(STATEMENT_ORDER_STATUSES),
    )
    tx_query = db.session.query(LoyaltyTransaction).filter(
        LoyaltyTransaction.customer_id == customer_id,
    )
    if start is not None:
        orders_query = orders_query.filter(Order.created_at >= start)
        tx_query = tx_query.filter(LoyaltyTransaction.created_at >= start)
    if end is not None:
        orders_query = orders_query.filter(Order.created_at < end)
        tx_query = tx_query.filter(LoyaltyTransaction.created_at < end)

    orders = orders_query.order_by(Order.created_at.desc(), Order.id.desc()).all()
    transactions = tx_query.order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc()).all()

    by_order: dict[int, list[LoyaltyTransaction]] = {}
    for tx in transactions:
        if tx.order_id is not None:
            by_order.setdefault(tx.order_id, []).append(tx)

    entries: list[dict] = []
    folded: set[int] = set()

    for order in orders:
        entry = {
            "type": "order",
            "id": order.id,
            "created_at": order.created_at,
            "order_number": order.order_number,
            "status": order.status,
            "total_cents": order.total_cents,
            "delivery": order.delivery,
            "payment_method": order.payment_method,
            "earned_points": 0,
            "redeemed_points": 0,
            "estimated": False,
        }
        linked = by_order.get(order.id, [])
        if linked:
            for tx in linked:
                if tx.transaction_type == TRANSACTION_EARN:
                    entry["earned_points"] += tx.points
                elif tx.transaction_type == TRANSACTION_REDEEM:
                    entry["redeemed_points"] -= tx.points
                folded.add(tx.id)
        elif order.status == "delivered":
            estimate = order_earnable_points(order)
            if estimate > 0:
                entry["earned_points"] = estimate
                entry["estimated"] = True
        entries.append(entry)

    for tx in transactions:
        if tx.id in folded:
            continue
        entries.append({
            "type": "loyalty_transaction",
            "id": tx.id,
            "created_at": tx.created_at,
            "order_id": tx.order_id,
            "transaction_type": tx.transaction_type,
            "points_change": tx.points,
            "description": tx.description,
        })

    entries.sort(key=lambda e: (e["created_at"] is not None, e["created_at"]), reverse=True)
    return entries


def list_rewards(store_id: int, include_inactive: bool = False) -> list[LoyaltyRule]:
    query = db.session.query(LoyaltyRule).filter_by(store_id=store_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(LoyaltyRule.points_required.asc()).all()


def customer_tier(points: int) -> str:
    if points >= 15:
        return "Ouro"
    if points >= 8:
        return "Prata"
    return "Bronze"
