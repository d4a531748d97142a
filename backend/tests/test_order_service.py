from datetime import date, time

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from orderdesk.models import (
    CustomerAddress, LoyaltyTransaction, Order, OrderItem, Product, ProductVariation, Customer,
)
from orderdesk.services import availability_service, loyalty_service, order_service, register_service
from orderdesk.services.cart_service import CartError
from orderdesk.services.order_service import (
    OrderCommitError, OrderRequest, OrderValidationError, StaleCeilingError, StalePointsError,
)


MONDAY = date(2026, 10, 19)


def _request(store, **overrides):
    fields = dict(store_id=store.id, source="in_person", channel="pos", payment_method="pix")
    fields.update(overrides)
    return OrderRequest(**fields)


def _codes(exc_info):
    return exc_info.value.code


# =============================================================================
# PRECONDITIONS
# =============================================================================

def test_empty_cart_is_rejected(db_session, store, make_cart, open_register):
    with pytest.raises(OrderValidationError) as exc_info:
        order_service.commit_order(_request(store), make_cart(store.id))
    assert _codes(exc_info) == "empty_cart"


def test_inactive_store_is_rejected(db_session, store, bread, make_cart, open_register):
    cart = make_cart(store.id, (bread, None, 1))
    store.is_active = False
    db_session.commit()

    with pytest.raises(OrderValidationError) as exc_info:
        order_service.commit_order(_request(store), cart)
    assert _codes(exc_info) == "store_inactive"


@pytest.mark.parametrize("overrides, code", [
    ({"payment_method": None}, "payment_method_required"),
    ({"payment_method": "cheque"}, "invalid_payment_method"),
    ({"source": "fax"}, "invalid_source"),
    ({"channel": "phone"}, "invalid_channel"),
    ({"payment_method": "fidelidade"}, "customer_required"),
    ({"customer_id": 9999}, "customer_not_found"),
    ({"delivery": True, "delivery_street": "Rua A"}, "delivery_address_required"),
    ({"delivery": True, "delivery_street": "Rua A", "delivery_neighborhood": "Centro",
      "delivery_fee_cents": -1}, "invalid_delivery_fee"),
    ({"reservation": True}, "reservation_date_required"),
    ({"reservation": True, "reservation_date": MONDAY}, "pickup_time_required"),
    ({"payment_method": "pix", "change_for_cents": 10000}, "invalid_change_for"),
])
def test_precondition_codes(db_session, store, bread, make_cart, open_register, overrides, code):
    cart = make_cart(store.id, (bread, None, 1))

    with pytest.raises(OrderValidationError) as exc_info:
        order_service.commit_order(_request(store, **overrides), cart)

    assert _codes(exc_info) == code
    assert db_session.query(Order).count() == 0


def test_till_channel_requires_open_register(db_session, store, bread, make_cart):
    cart = make_cart(store.id, (bread, None, 1))

    for channel in ("pos", "kiosk"):
        with pytest.raises(OrderValidationError) as exc_info:
            order_service.commit_order(_request(store, channel=channel), cart)
        assert _codes(exc_info) == "register_closed"


def test_storefront_order_without_register_is_accepted(db_session, store, bread, make_cart):
    cart = make_cart(store.id, (bread, None, 1))

    result = order_service.commit_order(_request(store, channel="storefront", source="kiosk"), cart)

    assert result.order.cash_register_id is None


def test_storefront_order_attaches_to_open_register(db_session, store, bread, make_cart, open_register):
    cart = make_cart(store.id, (bread, None, 1))

    result = order_service.commit_order(_request(store, channel="storefront"), cart)

    assert result.order.cash_register_id == open_register.id


def test_insufficient_points_for_loyalty_payment(db_session, store, bread, customer, make_cart, open_register):
    loyalty_service.set_redeem_cost(store.id, 20)
    cart = make_cart(store.id, (bread, None, 1))

    with pytest.raises(OrderValidationError) as exc_info:
        order_service.commit_order(
            _request(store, payment_method="fidelidade", customer_id=customer.id), cart
        )

    assert _codes(exc_info) == "insufficient_points"
    assert exc_info.value.details == {"required": 20, "available": 12}


def test_reservation_outside_opening_hours_is_rejected(db_session, store, bread, make_cart):
    availability_service.set_weekly_hours(store.id, 1, is_open=True, open_time=time(8, 0), close_time=time(18, 0))
    cart = make_cart(store.id, (bread, None, 1))

    with pytest.raises(OrderValidationError) as exc_info:
        order_service.commit_order(
            _request(store, reservation=True, reservation_date=MONDAY, pickup_time=time(19, 0)), cart
        )
    assert _codes(exc_info) == "store_closed"


# =============================================================================
# COMMIT
# =============================================================================

def test_commit_writes_order_items_and_stock(db_session, store, bread, coffee, coffee_large,
                                             make_cart, open_register, events):
    cart = make_cart(store.id, (bread, None, 3), (coffee, coffee_large, 1))

    result = order_service.commit_order(_request(store, created_by=7), cart)
    order = result.order

    assert result.order_number.startswith("PED-")
    assert len(result.order_number) == len("PED-") + 6
    assert order.status == "pending"
    assert order.total_cents == 1500 + 700
    assert order.cash_register_id == open_register.id
    assert order.created_by == 7
    assert sum(item.subtotal_cents for item in order.items) == order.total_cents - order.delivery_fee_cents
    assert [(i.display_name, i.quantity, i.unit_price_cents) for i in order.items] == [
        ("Pao de Queijo", 3, 500),
        ("Cafe (Grande)", 1, 700),
    ]

    assert db_session.get(Product, bread.id).stock_quantity == 7
    assert db_session.get(ProductVariation, coffee_large.id).stock_quantity == 1
    assert not cart

    assert [(e.type, e.order_id, e.status) for e in events] == [("order.created", order.id, "pending")]


def test_item_snapshots_survive_catalog_edits(db_session, store, bread, make_cart, open_register):
    result = order_service.commit_order(_request(store), make_cart(store.id, (bread, None, 1)))

    product = db_session.get(Product, bread.id)
    product.name = "Pao de Queijo Recheado"
    product.price_cents = 900
    db_session.commit()

    item = db_session.query(OrderItem).filter_by(order_id=result.order.id).one()
    assert (item.product_name, item.unit_price_cents) == ("Pao de Queijo", 500)


def test_delivery_fee_is_added_and_address_saved(db_session, store, bread, customer, make_cart, open_register):
    cart = make_cart(store.id, (bread, None, 2))
    request = _request(
        store,
        customer_id=customer.id,
        delivery=True,
        delivery_fee_cents=500,
        delivery_street="Rua A",
        delivery_number="10",
        delivery_neighborhood="Centro",
        save_address=True,
    )

    result = order_service.commit_order(request, cart)

    assert result.order.total_cents == 1500
    assert result.order.delivery_fee_cents == 500
    address = db_session.query(CustomerAddress).filter_by(customer_id=customer.id).one()
    assert (address.street, address.number, address.neighborhood) == ("Rua A", "10", "Centro")


def test_delivery_fee_ignored_for_pickup(db_session, store, bread, make_cart, open_register):
    result = order_service.commit_order(
        _request(store, delivery_fee_cents=500), make_cart(store.id, (bread, None, 1))
    )
    assert result.order.total_cents == 500
    assert result.order.delivery_fee_cents == 0


def test_loyalty_payment_redeems_points(db_session, store, bread, customer, make_cart, open_register):
    cart = make_cart(store.id, (bread, None, 1))

    result = order_service.commit_order(
        _request(store, payment_method="fidelidade", customer_id=customer.id), cart
    )

    assert result.points_redeemed == 9
    assert db_session.get(Customer, customer.id).points == 3
    tx = db_session.query(LoyaltyTransaction).filter_by(order_id=result.order.id).one()
    assert (tx.transaction_type, tx.points) == ("redeem", -9)


def test_reservation_skips_register(db_session, store, bread, make_cart):
    availability_service.set_weekly_hours(store.id, 1, is_open=True, open_time=time(8, 0), close_time=time(18, 0))

    result = order_service.commit_order(
        _request(store, reservation=True, reservation_date=MONDAY, pickup_time=time(10, 30)),
        make_cart(store.id, (bread, None, 1)),
    )

    assert result.order.cash_register_id is None
    assert result.order.reservation_date == MONDAY
    assert result.order.pickup_time == time(10, 30)


def test_cash_change_for(db_session, store, bread, make_cart, open_register):
    result = order_service.commit_order(
        _request(store, payment_method="dinheiro", change_for_cents=1000),
        make_cart(store.id, (bread, None, 1)),
    )
    assert result.order.change_for_cents == 1000


# =============================================================================
# ATOMICITY
# =============================================================================

def test_stale_stock_rolls_back_everything(db_session, store, bread, coffee, coffee_small, customer,
                                           make_cart, open_register, events):
    cart = make_cart(store.id, (bread, None, 2), (coffee, coffee_small, 5))
    # Another terminal sells the small coffees after the cart was built
    db_session.query(ProductVariation).filter_by(id=coffee_small.id).update({"stock_quantity": 4})
    db_session.commit()

    with pytest.raises(StaleCeilingError) as exc_info:
        order_service.commit_order(
            _request(store, payment_method="fidelidade", customer_id=customer.id), cart
        )

    assert exc_info.value.code == "stale_ceiling"
    assert exc_info.value.details["variation_id"] == coffee_small.id
    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderItem).count() == 0
    assert db_session.get(Product, bread.id).stock_quantity == 10
    assert db_session.get(ProductVariation, coffee_small.id).stock_quantity == 4
    assert db_session.get(Customer, customer.id).points == 12
    assert db_session.query(LoyaltyTransaction).count() == 0
    assert len(cart) == 2
    assert events == []


def test_stale_points_rolls_back_stock(db_session, store, bread, customer, make_cart, open_register, monkeypatch):
    real_validate = order_service.validate_order

    def _spend_points_after_validation(request, cart):
        checked = real_validate(request, cart)
        loyalty_service.redeem(customer.id, None, 9, "Spent at another terminal")
        return checked

    monkeypatch.setattr(order_service, "validate_order", _spend_points_after_validation)
    cart = make_cart(store.id, (bread, None, 3))

    with pytest.raises(StalePointsError) as exc_info:
        order_service.commit_order(
            _request(store, payment_method="fidelidade", customer_id=customer.id), cart
        )

    assert exc_info.value.code == "stale_points"
    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderItem).count() == 0
    assert db_session.get(Product, bread.id).stock_quantity == 10
    assert db_session.get(Customer, customer.id).points == 3
    assert [t.description for t in db_session.query(LoyaltyTransaction)] == ["Spent at another terminal"]


def test_stock_is_conserved_across_commits(db_session, store, bread, make_cart, open_register):
    late_cart = make_cart(store.id, (bread, None, 2))

    for quantity in (3, 2, 4):
        order_service.commit_order(_request(store), make_cart(store.id, (bread, None, quantity)))

    assert db_session.get(Product, bread.id).stock_quantity == 10 - (3 + 2 + 4)

    with pytest.raises(CartError):
        make_cart(store.id, (bread, None, 2))
    with pytest.raises(StaleCeilingError):
        order_service.commit_order(_request(store), late_cart)

    assert db_session.get(Product, bread.id).stock_quantity == 1
    assert db_session.query(Order).count() == 3
    assert db_session.query(OrderItem).count() == 3


def test_register_closed_during_checkout_rejects_till_order(db_session, store, bread, make_cart,
                                                            open_register, monkeypatch):
    real_validate = order_service.validate_order

    def _close_after_validation(request, cart):
        checked = real_validate(request, cart)
        register_service.confirm_close(open_register.id)
        return checked

    monkeypatch.setattr(order_service, "validate_order", _close_after_validation)

    with pytest.raises(OrderValidationError) as exc_info:
        order_service.commit_order(_request(store), make_cart(store.id, (bread, None, 2)))

    assert _codes(exc_info) == "register_closed"
    assert db_session.query(Order).count() == 0
    assert db_session.get(Product, bread.id).stock_quantity == 10


def test_register_closed_during_checkout_leaves_storefront_order_unattached(db_session, store, bread, make_cart,
                                                                          open_register, monkeypatch):
    real_validate = order_service.validate_order

    def _close_after_validation(request, cart):
        checked = real_validate(request, cart)
        register_service.confirm_close(open_register.id)
        return checked

    monkeypatch.setattr(order_service, "validate_order", _close_after_validation)

    result = order_service.commit_order(
        _request(store, channel="storefront", source="messaging"), make_cart(store.id, (bread, None, 1))
    )

    assert result.order.cash_register_id is None
    assert register_service.get_session_orders(open_register.id) == []


def test_persistence_failure_is_reported_and_rolled_back(db_session, store, bread, make_cart,
                                                         open_register, monkeypatch):
    def _broken(*args, **kwargs):
        raise IntegrityError("UPDATE products", {}, Exception("constraint failed"))

    monkeypatch.setattr(order_service, "decrement_stock", _broken)

    with pytest.raises(OrderCommitError, match="Could not save the order"):
        order_service.commit_order(_request(store), make_cart(store.id, (bread, None, 1)))

    assert db_session.query(Order).count() == 0


def test_transient_lock_is_retried(db_session, store, bread, make_cart, open_register, monkeypatch):
    real_decrement = order_service.decrement_stock
    calls = []

    def _flaky(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))
        return real_decrement(*args, **kwargs)

    monkeypatch.setattr(order_service, "decrement_stock", _flaky)

    result = order_service.commit_order(_request(store), make_cart(store.id, (bread, None, 2)))

    assert len(calls) == 2
    assert db_session.query(Order).count() == 1
    assert db_session.query(OrderItem).filter_by(order_id=result.order.id).count() == 1
    assert db_session.get(Product, bread.id).stock_quantity == 8


def test_persistent_lock_gives_up(db_session, store, bread, make_cart, open_register, monkeypatch):
    def _locked(*args, **kwargs):
        raise OperationalError("UPDATE products", {}, Exception("database is locked"))

    monkeypatch.setattr(order_service, "decrement_stock", _locked)

    with pytest.raises(OrderCommitError):
        order_service.commit_order(_request(store), make_cart(store.id, (bread, None, 1)))
    assert db_session.query(Order).count() == 0


# =============================================================================
# ORDER NUMBERS AND HAND-OFF
# =============================================================================

def test_order_number_uses_last_six_millisecond_digits(db_session, store):
    assert order_service.generate_order_number(store.id, now_ms=1760000123456) == "PED-123456"


def test_order_number_collision_is_redrawn(db_session, store, bread, make_cart, open_register):
    result = order_service.commit_order(_request(store), make_cart(store.id, (bread, None, 1)))
    result.order.order_number = "PED-123456"
    db_session.commit()

    assert order_service.generate_order_number(store.id, now_ms=1760000123456) == "PED-123457"


def test_delivery_message_and_courier_link(db_session, store, bread, customer, make_cart, open_register):
    result = order_service.commit_order(
        _request(
            store,
            customer_id=customer.id,
            delivery=True,
            delivery_fee_cents=500,
            delivery_street="Rua A",
            delivery_number="10",
            delivery_neighborhood="Centro",
            delivery_reference="Portao azul",
        ),
        make_cart(store.id, (bread, None, 3)),
    )
    order = order_service.get_order(result.order.id)

    message = order_service.compose_delivery_message(order)

    assert f"*Pedido:* #{order.order_number}" in message
    assert "*Cliente:* Maria" in message
    assert "*Endereço:* Rua A, 10 - Centro" in message
    assert "*Referência:* Portao azul" in message
    assert "*Total:* R$ 20.00" in message
    assert "*Pagamento:* Pix" in message
    assert "- 3x Pao de Queijo" in message

    link = order_service.courier_link(store, order)
    assert link.startswith("https://wa.me/5511999990000?text=")

    store.courier_phone = None
    assert order_service.courier_link(store, order) is None
