# Overview: Configurable order status workflow; advance, cancel, and the delivery path.

"""
Status Workflow

WHY: Each store configures which intermediate steps its board shows
(pending, preparing, ready, ...). Orders walk those steps in display order
and end in one of two terminal states.

LIFECYCLE:
- first active status -> ... -> delivered
- any non-terminal status -> cancelled

DESIGN PRINCIPLES:
- delivered and cancelled are terminal; a terminal order never changes
- delivered and cancelled are never part of the active sequence
- pending and cancelled cannot be deactivated
- Every path into delivered goes through mark_delivered, which runs the
  loyalty accrual exactly once per order
- Cancelling does not restock
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Order, OrderStatusConfig
from ..validation import ModelValidationPolicy, validate_payload
from .concurrency import commit_with_retry, lock_for_update, run_with_retry
from .loyalty_service import accrue_order_points
from .realtime_service import ORDER_STATUS_CHANGED, publish_order_event


STATUS_PENDING = "pending"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"

DEFAULT_STATUSES = (
    ("pending", "Pendente", 1),
    ("preparing", "Em Preparo", 2),
    ("ready", "Pronto", 3),
    ("delivered", "Entregue", 4),
    ("cancelled", "Cancelado", 5),
)

TERMINAL_STATUSES = frozenset({STATUS_DELIVERED, STATUS_CANCELLED})
UNDEACTIVATABLE_STATUSES = frozenset({STATUS_PENDING, STATUS_CANCELLED})

STATUS_CONFIG_POLICY = ModelValidationPolicy(
    writable_fields={"label", "is_active", "display_order"},
)


class StatusError(Exception):
    """Raised for order status transition errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class StatusConfigError(StatusError):
    """Raised when a store's status configuration cannot drive the workflow."""


@dataclass(frozen=True)
class WorkflowStatus:
    key: str
    label: str
    display_order: int
    is_active: bool = True

    @property
    def is_terminal(self) -> bool:
        return self.key in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "status_key": self.key,
            "label": self.label,
            "display_order": self.display_order,
            "is_active": self.is_active,
            "is_terminal": self.is_terminal,
        }


def _defaults() -> list[WorkflowStatus]:
    return [WorkflowStatus(key, label, order) for key, label, order in DEFAULT_STATUSES]


def list_status_configs(store_id: int) -> list[WorkflowStatus]:
    """Every configured status (active or not) by display order; defaults when none."""
    rows = db.session.query(OrderStatusConfig).filter_by(store_id=store_id).order_by(
        OrderStatusConfig.display_order, OrderStatusConfig.id
    ).all()
    if not rows:
        return _defaults()
    return [
        WorkflowStatus(row.status_key, row.label, row.display_order, row.is_active)
        for row in rows
    ]


def get_workflow(store_id: int) -> list[WorkflowStatus]:
    """Active statuses by display order (terminal ones included for labels)."""
    return [s for s in list_status_configs(store_id) if s.is_active]


def _active_sequence(store_id: int) -> list[WorkflowStatus]:
    return [s for s in get_workflow(store_id) if not s.is_terminal]


def seed_default_statuses(store_id: int) -> list[OrderStatusConfig]:
    """Persist the default five-status configuration; keeps existing rows."""
    existing = {
        row.status_key
        for row in db.session.query(OrderStatusConfig).filter_by(store_id=store_id).all()
    }
    created = []
    for key, label, order in DEFAULT_STATUSES:
        if key in existing:
            continue
        row = OrderStatusConfig(
            store_id=store_id,
            status_key=key,
            label=label,
            is_active=True,
            display_order=order,
        )
        db.session.add(row)
        created.append(row)
    db.session.commit()
    return created


def update_status_config(store_id: int, status_key: str, patch: dict) -> OrderStatusConfig:
    """
    Patch label / is_active / display_order of one status.

    Seeds the defaults first when the store has no rows yet so the patch
    applies to a concrete configuration.

    Raises:
        ValidationError: malformed patch
        StatusConfigError: unknown status, or deactivating pending/cancelled
    """
    cleaned = validate_payload(
        model=OrderStatusConfig,
        payload=patch,
        policy=STATUS_CONFIG_POLICY,
    )

    if cleaned.get("is_active") is False and status_key in UNDEACTIVATABLE_STATUSES:
        raise StatusConfigError(
            f"Status '{status_key}' cannot be deactivated",
            details={"status_key": status_key},
        )

    if not db.session.query(OrderStatusConfig.id).filter_by(store_id=store_id).first():
        seed_default_statuses(store_id)

    row = db.session.query(OrderStatusConfig).filter_by(
        store_id=store_id,
        status_key=status_key
    ).first()
    if not row:
        raise StatusConfigError(f"Unknown status '{status_key}'", details={"status_key": status_key})

    for key, value in cleaned.items():
        setattr(row, key, value)

    commit_with_retry()
    return row


def first_active_status(store_id: int) -> str:
    """Status a new order starts in."""
    sequence = _active_sequence(store_id)
    if not sequence:
        raise StatusConfigError("Store has no active order status", details={"store_id": store_id})
    return sequence[0].key


def next_status(store_id: int, current: str) -> str:
    """
    Next active status after `current` by display order, else delivered.

    A current status that was deactivated meanwhile still advances by its
    configured display order.

    Raises:
        StatusError: current status is terminal
    """
    if current in TERMINAL_STATUSES:
        raise StatusError(f"Order is already {current}", details={"status": current})

    configs = {s.key: s for s in list_status_configs(store_id)}
    sequence = _active_sequence(store_id)
    keys = [s.key for s in sequence]

    if current in keys:
        idx = keys.index(current)
        if idx + 1 < len(keys):
            return keys[idx + 1]
        return STATUS_DELIVERED

    current_cfg = configs.get(current)
    if current_cfg is not None:
        for status in sequence:
            if status.display_order > current_cfg.display_order:
                return status.key
    return STATUS_DELIVERED


def mark_delivered(order: Order) -> None:
    """
    Move an order into delivered and credit its loyalty points.

    Does not commit: callers (advance_order, register close) own the
    transaction so the status change and the earn transaction land together.
    """
    if order.status in TERMINAL_STATUSES:
        raise StatusError(f"Order is already {order.status}", details={"order_id": order.id})
    order.status = STATUS_DELIVERED
    accrue_order_points(order, commit=False)


def _load_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise StatusError("Order not found", details={"order_id": order_id})
    return order


def advance_order(order_id: int, actor_id: int | None = None) -> Order:
    """Move an order one step forward; the last step delivers it."""
    def _op():
        order = _load_order_locked(order_id)
        target = next_status(order.store_id, order.status)
        if target == STATUS_DELIVERED:
            mark_delivered(order)
        else:
            order.status = target
        db.session.commit()
        return order

    try:
        order = run_with_retry(_op)
    except StatusError:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s advanced to %s (actor=%s)", order.order_number, order.status, actor_id
    )
    publish_order_event(ORDER_STATUS_CHANGED, order)
    return order


def cancel_order(order_id: int, actor_id: int | None = None) -> Order:
    """Cancel a non-terminal order. Stock is not returned."""
    def _op():
        order = _load_order_locked(order_id)
        if order.status in TERMINAL_STATUSES:
            raise StatusError(f"Order is already {order.status}", details={"order_id": order_id})
        order.status = STATUS_CANCELLED
        db.session.commit()
        return order

    try:
        order = run_with_retry(_op)
    except StatusError:
        db.session.rollback()
        raise

    current_app.logger.info("Order %s cancelled (actor=%s)", order.order_number, actor_id)
    publish_order_event(ORDER_STATUS_CHANGED, order)
    return order


def list_active_orders(store_id: int) -> list[Order]:
    """Non-terminal orders for the fulfillment board, oldest first."""
    return db.session.query(Order).filter(
        Order.store_id == store_id,
        Order.status.notin_(TERMINAL_STATUSES),
    ).order_by(Order.created_at.asc(), Order.id.asc()).all()
