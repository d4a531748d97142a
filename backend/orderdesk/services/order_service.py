# Overview: Order commit protocol; validates a cart and commits order, items, stock and points atomically.

"""
Order Commit Protocol

WHY: Every surface (POS, kiosk, storefront, relayed messaging orders) turns
a cart into an order the same way. The commit is the one place where stock
and loyalty balances change because of a sale.

FLOW:
1. validate_order: every precondition fails fast with a specific code
   before anything is written
2. one transaction: order row, item snapshots, conditional stock
   decrements, loyalty redeem
3. after commit: order.created event, best-effort address save, cart cleared

DESIGN PRINCIPLES:
- All-or-nothing: a failure after the order insert rolls back items, stock
  and points too; nothing is reported as saved unless the commit succeeded
- The cart's stock ceiling is a hint; the conditional decrement is the
  guard. A lost race surfaces as OrderConflictError and is not retried
- Transient database errors (locks) are retried by run_with_retry
"""

from __future__ import annotations

import time as _time
from dataclasses import dataclass, field
from datetime import date, time
from urllib.parse import quote

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import (
    CashRegisterSession, Customer, Order, OrderItem, Store,
    ORDER_CHANNELS, ORDER_SOURCES, PAYMENT_METHODS,
)
from ..validation import MAX_AMOUNT_CENTS
from .availability_service import is_store_open
from .cart_service import Cart
from .catalog_service import StaleStockError, decrement_stock
from .concurrency import RetryDeadlineExceeded, lock_for_update, run_with_retry
from .customer_service import save_address
from .loyalty_service import InsufficientPointsError, get_redeem_cost, loyalty_payment_method, redeem
from .realtime_service import ORDER_CREATED, publish_order_event
from .register_service import get_open_session
from .status_service import first_active_status


MAX_ORDER_NUMBER_ATTEMPTS = 5


class OrderError(Exception):
    """Base class for order commit errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderValidationError(OrderError):
    """A precondition failed; nothing was written."""
    def __init__(self, code: str, message: str, details: dict | None = None):
        super().__init__(message, details)
        self.code = code


class OrderConflictError(OrderError):
    """Concurrent change invalidated the cart; refresh and retry."""
    code = "conflict"


class StaleCeilingError(OrderConflictError):
    code = "stale_ceiling"


class StalePointsError(OrderConflictError):
    code = "stale_points"


class OrderCommitError(OrderError):
    """Persistence failed; the order was not saved."""


@dataclass
class OrderRequest:
    store_id: int
    source: str
    channel: str
    payment_method: str | None
    customer_id: int | None = None
    created_by: int | None = None
    notes: str | None = None
    change_for_cents: int | None = None

    delivery: bool = False
    delivery_fee_cents: int = 0
    delivery_street: str | None = None
    delivery_number: str | None = None
    delivery_neighborhood: str | None = None
    delivery_reference: str | None = None
    delivery_postal_code: str | None = None
    save_address: bool = False

    reservation: bool = False
    reservation_date: date | None = None
    pickup_time: time | None = None


@dataclass
class CommitResult:
    order: Order
    order_number: str
    points_redeemed: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(include_items=True),
            "order_number": self.order_number,
            "points_redeemed": self.points_redeemed,
            "warnings": list(self.warnings),
        }


@dataclass
class _Checked:
    store: Store
    customer: Customer | None
    register: CashRegisterSession | None
    redeem_cost: int
    initial_status: str


def _fail(code: str, message: str, **details) -> OrderValidationError:
    return OrderValidationError(code, message, details=details)


def _is_blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def till_required(channel: str) -> bool:
    return channel in current_app.config.get("TILL_REQUIRED_CHANNELS", ("pos", "kiosk"))


def validate_order(request: OrderRequest, cart: Cart) -> _Checked:
    """
    Check every precondition of a commit without writing anything.

    Raises:
        OrderValidationError: with one of the codes empty_cart,
            cart_store_mismatch, store_not_found, store_inactive, invalid_source, invalid_channel,
            payment_method_required, invalid_payment_method,
            customer_not_found, customer_required, insufficient_points,
            reservation_date_required, pickup_time_required, store_closed,
            delivery_address_required, invalid_delivery_fee,
            invalid_change_for, register_closed
    """
    if not cart or not cart.lines:
        raise _fail("empty_cart", "Cart is empty")
    if cart.store_id != request.store_id:
        raise _fail("cart_store_mismatch", "Cart belongs to another store", cart_store_id=cart.store_id)

    store = db.session.query(Store).filter_by(id=request.store_id).first()
    if not store:
        raise _fail("store_not_found", "Store not found", store_id=request.store_id)
    if not store.is_active:
        raise _fail("store_inactive", "Store is not accepting orders", store_id=store.id)

    if request.source not in ORDER_SOURCES:
        raise _fail("invalid_source", f"Invalid order source: {request.source}", allowed=list(ORDER_SOURCES))
    if request.channel not in ORDER_CHANNELS:
        raise _fail("invalid_channel", f"Invalid order channel: {request.channel}", allowed=list(ORDER_CHANNELS))

    if _is_blank(request.payment_method):
        raise _fail("payment_method_required", "Select a payment method")
    if request.payment_method not in PAYMENT_METHODS:
        raise _fail(
            "invalid_payment_method",
            f"Invalid payment method: {request.payment_method}",
            allowed=list(PAYMENT_METHODS),
        )

    customer = None
    if request.customer_id is not None:
        customer = db.session.query(Customer).filter_by(id=request.customer_id).first()
        if not customer or customer.store_id != store.id:
            raise _fail("customer_not_found", "Customer not found", customer_id=request.customer_id)

    redeem_cost = 0
    if request.payment_method == loyalty_payment_method():
        if customer is None:
            raise _fail("customer_required", "Identify the customer to pay with points")
        redeem_cost = get_redeem_cost(store.id)
        if customer.points < redeem_cost:
            raise _fail(
                "insufficient_points",
                f"Insufficient points: {redeem_cost} required, {customer.points} available",
                required=redeem_cost,
                available=customer.points,
            )

    if request.reservation:
        if request.reservation_date is None:
            raise _fail("reservation_date_required", "Select a pickup date")
        if request.pickup_time is None:
            raise _fail("pickup_time_required", "Select a pickup time")
        if not is_store_open(store.id, request.reservation_date, request.pickup_time):
            raise _fail(
                "store_closed",
                "Store is closed at the selected date and time",
                reservation_date=request.reservation_date.isoformat(),
                pickup_time=request.pickup_time.strftime("%H:%M"),
            )

    if request.delivery:
        if _is_blank(request.delivery_street) or _is_blank(request.delivery_neighborhood):
            raise _fail("delivery_address_required", "Street and neighborhood are required for delivery")
        fee = request.delivery_fee_cents
        if fee is None or fee < 0 or fee > MAX_AMOUNT_CENTS:
            raise _fail("invalid_delivery_fee", "Delivery fee must be zero or positive", delivery_fee_cents=fee)

    if request.change_for_cents is not None:
        total = order_total_cents(request, cart)
        if request.payment_method != "dinheiro" or request.change_for_cents < total:
            raise _fail(
                "invalid_change_for",
                "Change is only given for cash payments covering the total",
                total_cents=total,
            )

    register = None
    if not request.reservation:
        register = get_open_session(store.id)
        if register is None and till_required(request.channel):
            raise _fail("register_closed", "Open the cash register before taking orders", channel=request.channel)

    return _Checked(
        store=store,
        customer=customer,
        register=register,
        redeem_cost=redeem_cost,
        initial_status=first_active_status(store.id),
    )


def order_total_cents(request: OrderRequest, cart: Cart) -> int:
    """Items subtotal plus the delivery fee (only for delivery orders)."""
    fee = (request.delivery_fee_cents or 0) if request.delivery else 0
    return cart.subtotal_cents + fee


def generate_order_number(store_id: int, now_ms: int | None = None) -> str:
    """
    Time-derived display number, e.g. "PED-482913".

    The last six digits of epoch milliseconds; a number already used by the
    store is re-drawn a few times. Uniqueness is best effort only.
    """
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "PED")
    ms = now_ms if now_ms is not None else _time.time_ns() // 1_000_000

    candidate = None
    for attempt in range(MAX_ORDER_NUMBER_ATTEMPTS):
        candidate = f"{prefix}-{str(ms + attempt)[-6:]}"
        taken = db.session.query(Order.id).filter_by(
            store_id=store_id,
            order_number=candidate
        ).first()
        if not taken:
            return candidate
    current_app.logger.warning("Order number %s reused in store %s", candidate, store_id)
    return candidate


def _lock_open_register(request: OrderRequest) -> CashRegisterSession | None:
    """Open session of the store, read again inside the commit transaction."""
    return lock_for_update(
        db.session.query(CashRegisterSession).filter(
            CashRegisterSession.store_id == request.store_id,
            CashRegisterSession.closed_at.is_(None),
        )
    ).first()


def _write_order(request: OrderRequest, cart: Cart, checked: _Checked) -> Order:
    register = None if request.reservation else _lock_open_register(request)
    if register is None and not request.reservation and till_required(request.channel):
        raise _fail("register_closed", "The cash register was closed while the order was being placed",
                    channel=request.channel)

    order_number = generate_order_number(request.store_id)

    order = Order(
        store_id=request.store_id,
        order_number=order_number,
        customer_id=checked.customer.id if checked.customer else None,
        source=request.source,
        channel=request.channel,
        status=checked.initial_status,
        total_cents=order_total_cents(request, cart),
        delivery_fee_cents=(request.delivery_fee_cents or 0) if request.delivery else 0,
        payment_method=request.payment_method,
        change_for_cents=request.change_for_cents,
        delivery=request.delivery,
        reservation_date=request.reservation_date if request.reservation else None,
        pickup_time=request.pickup_time if request.reservation else None,
        cash_register_id=register.id if register else None,
        created_by=request.created_by,
        notes=request.notes,
    )
    if request.delivery:
        order.delivery_street = request.delivery_street
        order.delivery_number = request.delivery_number
        order.delivery_neighborhood = request.delivery_neighborhood
        order.delivery_reference = request.delivery_reference
        order.delivery_postal_code = request.delivery_postal_code

    db.session.add(order)
    db.session.flush()

    for line in cart.lines:
        db.session.add(OrderItem(
            order_id=order.id,
            product_id=line.product_id,
            variation_id=line.variation_id,
            product_name=line.product_name,
            variation_name=line.variation_name,
            unit_price_cents=line.unit_price_cents,
            quantity=line.quantity,
            subtotal_cents=line.subtotal_cents,
        ))
        decrement_stock(line.product_id, line.variation_id, line.quantity)

    if checked.redeem_cost:
        redeem(
            checked.customer.id,
            order.id,
            checked.redeem_cost,
            description=f"Payment for order {order_number}",
            commit=False,
        )

    return order


def commit_order(request: OrderRequest, cart: Cart) -> CommitResult:
    """
    Turn a cart into a committed order.

    Raises:
        OrderValidationError: a precondition failed (nothing written)
        StaleCeilingError: stock ran out since the cart was built
        StalePointsError: points were spent since validation
        OrderCommitError: the database rejected the transaction
    """
    checked = validate_order(request, cart)

    def _op():
        order = _write_order(request, cart, checked)
        db.session.commit()
        return order

    try:
        order = run_with_retry(_op)
    except StaleStockError as exc:
        db.session.rollback()
        raise StaleCeilingError(
            "Stock changed while the order was being placed. Review the cart and try again.",
            details={
                "product_id": exc.product_id,
                "variation_id": exc.variation_id,
                "requested": exc.requested,
            },
        ) from exc
    except InsufficientPointsError as exc:
        db.session.rollback()
        raise StalePointsError(
            "Points balance changed while the order was being placed",
            details=exc.details,
        ) from exc
    except (SQLAlchemyError, RetryDeadlineExceeded) as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to commit order for store %s", request.store_id)
        raise OrderCommitError("Could not save the order. Please try again.") from exc
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s committed (store=%s channel=%s register=%s)",
        order.order_number, order.store_id, order.channel, order.cash_register_id,
    )
    publish_order_event(ORDER_CREATED, order)

    result = CommitResult(order=order, order_number=order.order_number, points_redeemed=checked.redeem_cost)

    if request.save_address and request.delivery and order.customer_id:
        saved = save_address(
            order.customer_id,
            street=request.delivery_street,
            number=request.delivery_number,
            neighborhood=request.delivery_neighborhood,
            reference=request.delivery_reference,
            postal_code=request.delivery_postal_code,
        )
        if saved is None:
            result.warnings.append("Delivery address was not saved")

    cart.clear()
    return result


def get_order(order_id: int, store_id: int | None = None) -> Order | None:
    query = db.session.query(Order).filter_by(id=order_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    return query.first()


def list_orders(store_id: int, status: str | None = None, limit: int = 100) -> list[Order]:
    query = db.session.query(Order).filter_by(store_id=store_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def _money(cents: int) -> str:
    return f"R$ {cents / 100:.2f}"


def compose_delivery_message(order: Order) -> str:
    """Courier hand-off text for a delivery order."""
    customer = order.customer
    address = ", ".join(part for part in (order.delivery_street, order.delivery_number) if part)
    if order.delivery_neighborhood:
        address = f"{address} - {order.delivery_neighborhood}"

    lines = [
        "*NOVO PEDIDO DE ENTREGA*",
        "",
        f"*Pedido:* #{order.order_number}",
        f"*Cliente:* {customer.name if customer else 'N/A'}",
        f"*Telefone:* {customer.phone if customer else 'N/A'}",
        f"*Endereço:* {address or 'N/A'}",
    ]
    if order.delivery_reference:
        lines.append(f"*Referência:* {order.delivery_reference}")
    lines.append(f"*Total:* {_money(order.total_cents)}")
    lines.append(f"*Pagamento:* {order.payment_method.capitalize()}")
    lines.append("")
    lines.append("*Itens:*")
    for item in order.items:
        lines.append(f"- {item.quantity}x {item.display_name}")
    return "\n".join(lines)


def courier_link(store: Store, order: Order) -> str | None:
    """wa.me deep link carrying the hand-off message; None without a courier phone."""
    digits = "".join(ch for ch in (store.courier_phone or "") if ch.isdigit())
    if not digits:
        return None
    return f"https://wa.me/{digits}?text={quote(compose_delivery_message(order))}"
