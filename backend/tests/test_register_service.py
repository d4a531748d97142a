from datetime import date, time
from decimal import Decimal

import pytest

from orderdesk.models import CashRegisterSession, Customer, LoyaltyTransaction, Order, Product
from orderdesk.services import availability_service, order_service, register_service, status_service
from orderdesk.services.order_service import OrderRequest
from orderdesk.services.register_service import RegisterError


MONDAY = date(2026, 10, 19)


def _sell(store, cart, payment_method="pix", **overrides):
    fields = dict(store_id=store.id, source="in_person", channel="pos", payment_method=payment_method)
    fields.update(overrides)
    return order_service.commit_order(OrderRequest(**fields), cart).order


@pytest.fixture
def cake(db_session, store):
    """R$ 25.00, no loyalty points."""
    product = Product(store_id=store.id, name="Bolo", price_cents=2500, stock_quantity=10)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def pie(db_session, store):
    """R$ 30.00, 2 points per unit."""
    product = Product(store_id=store.id, name="Torta", price_cents=3000, stock_quantity=10,
                      earns_loyalty_points=True, loyalty_points_value=Decimal("2"))
    db_session.add(product)
    db_session.commit()
    return product


def test_open_register(db_session, store):
    session = register_service.open_register(store.id, 1, 10000)

    assert session.is_open
    assert session.initial_amount_cents == 10000
    assert register_service.get_open_session(store.id).id == session.id


def test_only_one_open_register_per_store(db_session, store, other_store):
    register_service.open_register(store.id, 1, 0)

    with pytest.raises(RegisterError, match="already has an open cash register"):
        register_service.open_register(store.id, 2, 0)

    register_service.open_register(other_store.id, 3, 0)
    assert db_session.query(CashRegisterSession).count() == 2


def test_open_register_validates_amount_and_store(db_session, store):
    with pytest.raises(RegisterError):
        register_service.open_register(store.id, 1, -1)
    with pytest.raises(RegisterError, match="Store not found"):
        register_service.open_register(9999, 1, 0)


def test_open_register_attaches_pending_reservations(db_session, store, bread, make_cart):
    availability_service.set_weekly_hours(store.id, 1, is_open=True, open_time=time(8, 0), close_time=time(18, 0))
    reservation = _sell(
        store,
        make_cart(store.id, (bread, None, 1)),
        reservation=True,
        reservation_date=MONDAY,
        pickup_time=time(10, 0),
    )
    cancelled = _sell(
        store,
        make_cart(store.id, (bread, None, 1)),
        reservation=True,
        reservation_date=MONDAY,
        pickup_time=time(11, 0),
    )
    status_service.cancel_order(cancelled.id)
    assert db_session.get(Order, reservation.id).cash_register_id is None

    session = register_service.open_register(store.id, 1, 5000)

    assert db_session.get(Order, reservation.id).cash_register_id == session.id
    assert db_session.get(Order, cancelled.id).cash_register_id is None
    assert [o.id for o in register_service.get_session_orders(session.id)] == [reservation.id]


def test_close_reconciles_drawer(db_session, store, cake, pie, make_cart):
    """Opened with 100.00; sold 25.00 cash and 30.00 pix."""
    session = register_service.open_register(store.id, 1, 10000)
    _sell(store, make_cart(store.id, (cake, None, 1)), payment_method="dinheiro")
    _sell(store, make_cart(store.id, (pie, None, 1)), payment_method="pix")

    summary = register_service.prepare_close(session.id)

    assert summary.totals_by_payment_method == {
        "dinheiro": 2500,
        "pix": 3000,
        "credito": 0,
        "debito": 0,
        "fidelidade": 0,
    }
    assert summary.total_sales_cents == 5500
    assert summary.final_amount_cents == 15500
    assert summary.order_count == 2
    assert summary.products_sold == [
        {"name": "Bolo", "quantity": 1, "total_cents": 2500},
        {"name": "Torta", "quantity": 1, "total_cents": 3000},
    ]

    closed = register_service.confirm_close(session.id, closed_by=2, expected_total_sales_cents=5500)

    assert not closed.is_open
    assert closed.closed_by == 2
    assert closed.total_sales_cents == 5500
    assert closed.final_amount_cents == 15500
    statuses = {o.status for o in register_service.get_session_orders(session.id)}
    assert statuses == {"delivered"}
    assert register_service.get_open_session(store.id) is None


def test_products_sold_group_by_display_name(db_session, store, bread, coffee, coffee_small, coffee_large,
                                              make_cart, open_register):
    _sell(store, make_cart(store.id, (bread, None, 2), (coffee, coffee_small, 1)))
    _sell(store, make_cart(store.id, (bread, None, 1), (coffee, coffee_large, 2)))

    summary = register_service.prepare_close(open_register.id)

    assert summary.products_sold == [
        {"name": "Pao de Queijo", "quantity": 3, "total_cents": 1500},
        {"name": "Cafe (Grande)", "quantity": 2, "total_cents": 1400},
        {"name": "Cafe (Pequeno)", "quantity": 1, "total_cents": 400},
    ]


def test_cancelled_orders_are_excluded_and_stay_cancelled(db_session, store, cake, pie, make_cart):
    session = register_service.open_register(store.id, 1, 0)
    kept = _sell(store, make_cart(store.id, (cake, None, 1)), payment_method="dinheiro")
    dropped = _sell(store, make_cart(store.id, (pie, None, 1)), payment_method="pix")
    status_service.cancel_order(dropped.id)

    summary = register_service.prepare_close(session.id)
    assert summary.total_sales_cents == 2500
    assert summary.totals_by_payment_method["pix"] == 0

    register_service.confirm_close(session.id)

    assert db_session.get(Order, kept.id).status == "delivered"
    assert db_session.get(Order, dropped.id).status == "cancelled"


def test_close_rejects_stale_summary(db_session, store, cake, make_cart):
    session = register_service.open_register(store.id, 1, 0)
    _sell(store, make_cart(store.id, (cake, None, 1)), payment_method="dinheiro")
    shown = register_service.prepare_close(session.id)

    # Another order lands after the operator looked at the summary
    _sell(store, make_cart(store.id, (cake, None, 1)), payment_method="credito")

    with pytest.raises(RegisterError, match="Sales changed"):
        register_service.confirm_close(session.id, expected_total_sales_cents=shown.total_sales_cents)

    session = db_session.get(CashRegisterSession, session.id)
    assert session.is_open
    assert {o.status for o in register_service.get_session_orders(session.id)} == {"pending"}


def test_close_twice_is_rejected(db_session, store, open_register):
    register_service.confirm_close(open_register.id)

    with pytest.raises(RegisterError, match="already closed"):
        register_service.confirm_close(open_register.id)


def test_close_accrues_loyalty_points_once(db_session, store, pie, customer, make_cart):
    session = register_service.open_register(store.id, 1, 0)
    order = _sell(store, make_cart(store.id, (pie, None, 2)), customer_id=customer.id)

    register_service.confirm_close(session.id)

    assert db_session.get(Customer, customer.id).points == 12 + 4
    earns = db_session.query(LoyaltyTransaction).filter_by(order_id=order.id, transaction_type="earn").all()
    assert [tx.points for tx in earns] == [4]


def test_close_does_not_reaccrue_orders_delivered_earlier(db_session, store, pie, customer, make_cart):
    session = register_service.open_register(store.id, 1, 0)
    order = _sell(store, make_cart(store.id, (pie, None, 1)), customer_id=customer.id)
    for _ in range(3):
        status_service.advance_order(order.id)
    assert db_session.get(Order, order.id).status == "delivered"

    register_service.confirm_close(session.id)

    assert db_session.get(Customer, customer.id).points == 12 + 2
    assert db_session.query(LoyaltyTransaction).filter_by(order_id=order.id).count() == 1


def test_list_sessions_newest_first(db_session, store):
    first = register_service.open_register(store.id, 1, 0)
    register_service.confirm_close(first.id)
    second = register_service.open_register(store.id, 1, 0)

    assert [s.id for s in register_service.list_sessions(store.id)] == [second.id, first.id]
