"""
Cash Register Session Management Service

WHY: Orders taken at the till accumulate on the store's open session and are
reconciled when the operator closes it: totals per payment method, products
sold, expected drawer balance.

DESIGN PRINCIPLES:
- At most one open session per store (pre-check plus a partial unique index)
- Sessions are immutable once closed
- Opening a session picks up pending reservations that had no register
- Closing re-computes the summary inside the transaction and moves every
  attached non-terminal order to delivered through the status workflow
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashRegisterSession, Order, Store, PAYMENT_METHODS
from ..time_utils import utcnow, to_utc_z
from ..validation import MAX_AMOUNT_CENTS
from .concurrency import lock_for_update, run_with_retry
from .realtime_service import ORDER_REGISTER_ASSIGNED, ORDER_STATUS_CHANGED, publish_order_event
from .status_service import STATUS_CANCELLED, TERMINAL_STATUSES, first_active_status, mark_delivered


class RegisterError(Exception):
    """Raised for register operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass
class RegisterCloseSummary:
    session_id: int
    store_id: int
    opened_at: datetime | None
    initial_amount_cents: int
    totals_by_payment_method: dict[str, int]
    total_sales_cents: int
    final_amount_cents: int
    order_count: int
    products_sold: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "store_id": self.store_id,
            "opened_at": to_utc_z(self.opened_at),
            "initial_amount_cents": self.initial_amount_cents,
            "totals_by_payment_method": dict(self.totals_by_payment_method),
            "total_sales_cents": self.total_sales_cents,
            "final_amount_cents": self.final_amount_cents,
            "order_count": self.order_count,
            "products_sold": list(self.products_sold),
        }


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def get_open_session(store_id: int) -> CashRegisterSession | None:
    """Get the currently open session for a store, if any."""
    return db.session.query(CashRegisterSession).filter(
        CashRegisterSession.store_id == store_id,
        CashRegisterSession.closed_at.is_(None),
    ).first()


def open_register(store_id: int, opened_by: int | None, initial_amount_cents: int) -> CashRegisterSession:
    """
    Open the store's cash register.

    Pending reservations of the store that have no register yet are attached
    to the new session in the same transaction.

    Raises:
        RegisterError: store missing, invalid amount, or a session is already open
    """
    if not isinstance(initial_amount_cents, int) or isinstance(initial_amount_cents, bool):
        raise RegisterError("initial_amount_cents must be an integer")
    if initial_amount_cents < 0 or initial_amount_cents > MAX_AMOUNT_CENTS:
        raise RegisterError("initial_amount_cents must be between 0 and %d" % MAX_AMOUNT_CENTS)

    store = db.session.query(Store).filter_by(id=store_id).first()
    if not store:
        raise RegisterError("Store not found", details={"store_id": store_id})

    existing_open = get_open_session(store_id)
    if existing_open:
        raise RegisterError(
            f"Store already has an open cash register (session {existing_open.id})",
            details={"session_id": existing_open.id},
        )

    initial_status = first_active_status(store_id)

    def _op():
        session = CashRegisterSession(
            store_id=store_id,
            opened_by=opened_by,
            initial_amount_cents=initial_amount_cents,
            opened_at=utcnow(),
        )
        db.session.add(session)
        db.session.flush()

        reservations = db.session.query(Order).filter(
            Order.store_id == store_id,
            Order.cash_register_id.is_(None),
            Order.reservation_date.isnot(None),
            Order.status == initial_status,
        ).all()
        for order in reservations:
            order.cash_register_id = session.id

        db.session.commit()
        return session, reservations

    try:
        session, attached = run_with_retry(_op)
    except IntegrityError as exc:
        db.session.rollback()
        raise RegisterError("Store already has an open cash register") from exc

    current_app.logger.info(
        "Cash register session %s opened for store %s (%d reservation(s) attached)",
        session.id, store_id, len(attached),
    )
    for order in attached:
        publish_order_event(ORDER_REGISTER_ASSIGNED, order)

    return session


def _summarize(session: CashRegisterSession) -> RegisterCloseSummary:
    orders = db.session.query(Order).filter(
        Order.cash_register_id == session.id,
        Order.status != STATUS_CANCELLED,
    ).order_by(Order.created_at, Order.id).all()

    totals = {method: 0 for method in PAYMENT_METHODS}
    products: dict[str, dict] = {}

    for order in orders:
        totals[order.payment_method] = totals.get(order.payment_method, 0) + order.total_cents
        for item in order.items:
            entry = products.setdefault(
                item.display_name,
                {"name": item.display_name, "quantity": 0, "total_cents": 0},
            )
            entry["quantity"] += item.quantity
            entry["total_cents"] += item.subtotal_cents

    total_sales = sum(totals.values())
    return RegisterCloseSummary(
        session_id=session.id,
        store_id=session.store_id,
        opened_at=session.opened_at,
        initial_amount_cents=session.initial_amount_cents,
        totals_by_payment_method=totals,
        total_sales_cents=total_sales,
        final_amount_cents=session.initial_amount_cents + total_sales,
        order_count=len(orders),
        products_sold=sorted(products.values(), key=lambda p: (-p["quantity"], p["name"])),
    )


def prepare_close(session_id: int) -> RegisterCloseSummary:
    """
    Reconciliation summary shown to the operator before closing.

    Cancelled orders are excluded. Every payment method is present with a
    zero default.
    """
    session = db.session.query(CashRegisterSession).filter_by(id=session_id).first()
    if not session:
        raise RegisterError("Session not found", details={"session_id": session_id})
    return _summarize(session)


def confirm_close(
    session_id: int,
    closed_by: int | None = None,
    expected_total_sales_cents: int | None = None,
) -> CashRegisterSession:
    """
    Close a session and deliver its open orders.

    IMMUTABLE: Once closed, session cannot be reopened or modified.

    Args:
        session_id: Session to close
        closed_by: Operator closing the session
        expected_total_sales_cents: total the operator confirmed; when it no
            longer matches the recomputed total the close is rejected

    Raises:
        RegisterError: unknown or closed session, or stale summary
    """
    def _op():
        session = lock_for_update(
            db.session.query(CashRegisterSession).filter_by(id=session_id)
        ).first()
        if not session:
            raise RegisterError("Session not found", details={"session_id": session_id})
        if not session.is_open:
            raise RegisterError("Session already closed", details={"session_id": session_id})

        summary = _summarize(session)
        if expected_total_sales_cents is not None and expected_total_sales_cents != summary.total_sales_cents:
            raise RegisterError(
                "Sales changed since the summary was shown. Review and confirm again.",
                details={
                    "expected_total_sales_cents": expected_total_sales_cents,
                    "total_sales_cents": summary.total_sales_cents,
                },
            )

        session.closed_at = utcnow()
        session.closed_by = closed_by
        session.total_sales_cents = summary.total_sales_cents
        session.final_amount_cents = summary.final_amount_cents

        delivered = []
        open_orders = db.session.query(Order).filter(
            Order.cash_register_id == session.id,
            Order.status.notin_(TERMINAL_STATUSES),
        ).order_by(Order.id).all()
        for order in open_orders:
            mark_delivered(order)
            delivered.append(order)

        db.session.commit()
        return session, delivered

    try:
        session, delivered = run_with_retry(_op)
    except RegisterError:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Cash register session %s closed: total_sales=%s final=%s (%d order(s) delivered)",
        session.id, session.total_sales_cents, session.final_amount_cents, len(delivered),
    )
    for order in delivered:
        publish_order_event(ORDER_STATUS_CHANGED, order)

    return session


# =============================================================================
# QUERIES
# =============================================================================

def get_session(session_id: int) -> CashRegisterSession | None:
    return db.session.query(CashRegisterSession).filter_by(id=session_id).first()


def get_session_orders(session_id: int) -> list[Order]:
    """Get all orders attached to a session."""
    return db.session.query(Order).filter_by(
        cash_register_id=session_id
    ).order_by(Order.created_at, Order.id).all()


def list_sessions(store_id: int, limit: int = 50) -> list[CashRegisterSession]:
    """Sessions of a store, newest first."""
    return db.session.query(CashRegisterSession).filter_by(
        store_id=store_id
    ).order_by(CashRegisterSession.opened_at.desc(), CashRegisterSession.id.desc()).limit(limit).all()
