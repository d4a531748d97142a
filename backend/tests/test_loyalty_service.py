from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from orderdesk.models import Customer, LoyaltyRule, LoyaltyTransaction, Order, Product
from orderdesk.services import loyalty_service, order_service, status_service
from orderdesk.services.loyalty_service import InsufficientPointsError, LoyaltyError
from orderdesk.services.order_service import OrderRequest


def _sell(store, cart, customer, **overrides):
    fields = dict(store_id=store.id, source="in_person", channel="pos", payment_method="pix",
                  customer_id=customer.id)
    fields.update(overrides)
    return order_service.commit_order(OrderRequest(**fields), cart).order


def _deliver(order):
    for _ in range(3):
        order = status_service.advance_order(order.id)
    return order


def test_earn_and_redeem_move_balance_and_append_ledger(db_session, customer):
    loyalty_service.earn(customer.id, None, 5, "Welcome bonus")
    tx = loyalty_service.redeem(customer.id, None, 9, "Free coffee")

    assert db_session.get(Customer, customer.id).points == 12 + 5 - 9
    assert tx.points == -9
    assert [t.transaction_type for t in db_session.query(LoyaltyTransaction).order_by(LoyaltyTransaction.id)] == [
        "earn", "redeem"
    ]


def test_redeem_never_goes_negative(db_session, customer):
    with pytest.raises(InsufficientPointsError):
        loyalty_service.redeem(customer.id, None, 13)

    db_session.rollback()
    assert db_session.get(Customer, customer.id).points == 12
    assert db_session.query(LoyaltyTransaction).count() == 0


def test_non_positive_amounts_are_rejected(db_session, customer):
    with pytest.raises(LoyaltyError):
        loyalty_service.earn(customer.id, None, 0)
    with pytest.raises(LoyaltyError):
        loyalty_service.redeem(customer.id, None, -1)
    with pytest.raises(LoyaltyError, match="Customer not found"):
        loyalty_service.earn(999, None, 1)


def test_redeem_cost_prefers_store_config(db_session, store):
    db_session.add(LoyaltyRule(store_id=store.id, name="Cafe gratis", points_required=3, is_active=True))
    db_session.commit()

    # Rewards do not drive the cost
    assert loyalty_service.get_redeem_cost(store.id) == 9

    loyalty_service.set_redeem_cost(store.id, 15)
    assert loyalty_service.get_redeem_cost(store.id) == 15

    with pytest.raises(LoyaltyError):
        loyalty_service.set_redeem_cost(store.id, 0)


def test_redeem_cost_falls_back_to_app_config(app, db_session, store, monkeypatch):
    monkeypatch.setitem(app.config, "LOYALTY_REDEEM_COST", 7)

    assert loyalty_service.get_redeem_cost(store.id) == 7


def test_earnable_points_floor_per_line(db_session, store, bread, coffee, coffee_small, coffee_large,
                                        customer, make_cart, open_register):
    cart = make_cart(store.id, (bread, None, 2), (coffee, coffee_small, 1), (coffee, coffee_large, 1))
    order = _sell(store, cart, customer)

    # 2 x 1 + floor(1 x 1.5) + floor(1 x 1.5)
    assert loyalty_service.order_earnable_points(order) == 4


def test_products_without_loyalty_earn_nothing(db_session, store, customer, make_cart, open_register):
    water = Product(store_id=store.id, name="Agua", price_cents=300, stock_quantity=5,
                    earns_loyalty_points=False, loyalty_points_value=Decimal("5"))
    db_session.add(water)
    db_session.commit()

    order = _sell(store, make_cart(store.id, (water, None, 2)), customer)

    assert loyalty_service.order_earnable_points(order) == 0
    assert loyalty_service.accrue_order_points(order, commit=True) is None


def test_accrual_is_idempotent(db_session, store, bread, customer, make_cart, open_register):
    order = _sell(store, make_cart(store.id, (bread, None, 3)), customer)

    first = loyalty_service.accrue_order_points(order, commit=True)
    second = loyalty_service.accrue_order_points(order, commit=True)

    assert first is not None and first.points == 3
    assert second is None
    assert db_session.get(Customer, customer.id).points == 15


def test_anonymous_order_accrues_nothing(db_session, store, bread, make_cart, open_register):
    order = order_service.commit_order(
        OrderRequest(store_id=store.id, source="in_person", channel="pos", payment_method="dinheiro"),
        make_cart(store.id, (bread, None, 3)),
    ).order

    assert loyalty_service.accrue_order_points(order, commit=True) is None


def test_statement_folds_order_transactions(db_session, store, bread, customer, make_cart, open_register):
    paid_with_points = _sell(store, make_cart(store.id, (bread, None, 1)), customer, payment_method="fidelidade")
    earning = _sell(store, make_cart(store.id, (bread, None, 4)), customer)
    _deliver(paid_with_points)
    _deliver(earning)
    loyalty_service.earn(customer.id, None, 2, "Birthday")

    entries = loyalty_service.customer_statement(customer.id)

    orders = {e["id"]: e for e in entries if e["type"] == "order"}
    assert orders[earning.id]["earned_points"] == 4
    assert orders[earning.id]["estimated"] is False
    assert orders[paid_with_points.id]["redeemed_points"] == 9
    assert orders[paid_with_points.id]["earned_points"] == 0

    loose = [e for e in entries if e["type"] == "loyalty_transaction"]
    assert [(e["transaction_type"], e["points_change"]) for e in loose] == [("earn", 2)]


def test_statement_estimates_unaccrued_delivered_orders(app, db_session, store, bread, customer,
                                                        make_cart, open_register, monkeypatch):
    monkeypatch.setitem(app.config, "LOYALTY_ACCRUE_ON_DELIVERY", False)
    order = _deliver(_sell(store, make_cart(store.id, (bread, None, 2)), customer))

    [entry] = loyalty_service.customer_statement(customer.id)

    assert entry["id"] == order.id
    assert entry["earned_points"] == 2
    assert entry["estimated"] is True


def test_statement_skips_open_orders_and_filters_dates(db_session, store, bread, customer, make_cart, open_register):
    _sell(store, make_cart(store.id, (bread, None, 1)), customer)
    old = _sell(store, make_cart(store.id, (bread, None, 1)), customer)
    status_service.cancel_order(old.id)
    db_session.get(Order, old.id).created_at = datetime(2026, 1, 10, 12, 0)
    db_session.commit()

    assert [e["id"] for e in loyalty_service.customer_statement(customer.id)] == [old.id]
    assert loyalty_service.customer_statement(customer.id, date_from=date(2026, 2, 1)) == []
    in_range = loyalty_service.customer_statement(
        customer.id, date_from=date(2026, 1, 10), date_to=date(2026, 1, 10)
    )
    assert [e["id"] for e in in_range] == [old.id]


def test_statement_is_newest_first(db_session, store, bread, customer, make_cart, open_register):
    first = _deliver(_sell(store, make_cart(store.id, (bread, None, 1)), customer))
    second = _deliver(_sell(store, make_cart(store.id, (bread, None, 1)), customer))
    now = datetime.utcnow()
    db_session.get(Order, first.id).created_at = now - timedelta(hours=2)
    db_session.get(Order, second.id).created_at = now - timedelta(hours=1)
    db_session.commit()

    ids = [e["id"] for e in loyalty_service.customer_statement(customer.id) if e["type"] == "order"]

    assert ids == [second.id, first.id]


def test_list_rewards_hides_inactive(db_session, store):
    db_session.add_all([
        LoyaltyRule(store_id=store.id, name="Bolo", points_required=20, is_active=True),
        LoyaltyRule(store_id=store.id, name="Cafe", points_required=9, is_active=True),
        LoyaltyRule(store_id=store.id, name="Antigo", points_required=5, is_active=False),
    ])
    db_session.commit()

    assert [r.name for r in loyalty_service.list_rewards(store.id)] == ["Cafe", "Bolo"]
    assert len(loyalty_service.list_rewards(store.id, include_inactive=True)) == 3


@pytest.mark.parametrize("points, tier", [(0, "Bronze"), (7, "Bronze"), (8, "Prata"), (14, "Prata"), (15, "Ouro")])
def test_customer_tier(points, tier):
    assert loyalty_service.customer_tier(points) == tier
