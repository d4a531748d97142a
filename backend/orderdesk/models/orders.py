from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z, to_clock


ORDER_SOURCES = ("kiosk", "messaging", "in_person", "marketplace")
ORDER_CHANNELS = ("pos", "kiosk", "storefront")
PAYMENT_METHODS = ("dinheiro", "pix", "credito", "debito", "fidelidade")


class Order(db.Model):
    """
    Committed customer order.

    WHY: Created exactly once by order_service.commit_order together with its
    items, stock decrements and (for loyalty payments) the points debit, all
    in one transaction. After that only status and cash_register_id change.

    SOURCE vs CHANNEL:
    - source is where the order came from (kiosk, messaging, in_person,
      marketplace) and is what the fulfillment board shows.
    - channel is the surface that committed it (pos, kiosk, storefront) and
      decides whether an open cash register is required.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_store_status_created", "store_id", "status", "created_at"),
        db.Index("ix_orders_store_number", "store_id", "order_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable, time-derived (e.g., "PED-482913"); not a strict serial
    order_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    source = db.Column(db.String(16), nullable=False)
    channel = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(32), nullable=False, index=True)

    # Totals (all amounts in cents); total includes the delivery fee
    total_cents = db.Column(db.Integer, nullable=False)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(16), nullable=False)
    change_for_cents = db.Column(db.Integer, nullable=True)

    # Delivery
    delivery = db.Column(db.Boolean, nullable=False, default=False)
    delivery_street = db.Column(db.String(255), nullable=True)
    delivery_number = db.Column(db.String(32), nullable=True)
    delivery_neighborhood = db.Column(db.String(128), nullable=True)
    delivery_reference = db.Column(db.String(255), nullable=True)
    delivery_postal_code = db.Column(db.String(16), nullable=True)

    # Reservation (future pickup)
    reservation_date = db.Column(db.Date, nullable=True)
    pickup_time = db.Column(db.Time, nullable=True)

    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=True, index=True)

    created_by = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("orders", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    cash_register = db.relationship("CashRegisterSession", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_reservation(self) -> bool:
        return self.reservation_date is not None

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "source": self.source,
            "channel": self.channel,
            "status": self.status,
            "total_cents": self.total_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "payment_method": self.payment_method,
            "change_for_cents": self.change_for_cents,
            "delivery": self.delivery,
            "delivery_street": self.delivery_street,
            "delivery_number": self.delivery_number,
            "delivery_neighborhood": self.delivery_neighborhood,
            "delivery_reference": self.delivery_reference,
            "delivery_postal_code": self.delivery_postal_code,
            "reservation_date": self.reservation_date.isoformat() if self.reservation_date else None,
            "pickup_time": to_clock(self.pickup_time),
            "cash_register_id": self.cash_register_id,
            "created_by": self.created_by,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line with name/price captured at sale time.

    Denormalized so historical orders are immune to later catalog edits.
    Immutable after insert.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variation_id = db.Column(db.Integer, db.ForeignKey("product_variations.id"), nullable=True)

    product_name = db.Column(db.String(255), nullable=False)
    variation_name = db.Column(db.String(128), nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))
    product = db.relationship("Product")

    @property
    def display_name(self) -> str:
        if self.variation_name:
            return f"{self.product_name} ({self.variation_name})"
        return self.product_name

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "product_name": self.product_name,
            "variation_name": self.variation_name,
            "display_name": self.display_name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
        }


class OrderStatusConfig(db.Model):
    """
    Per-store status board configuration.

    Active, non-terminal rows ordered by display_order form the sequence an
    order walks through. delivered and cancelled are terminal and never part
    of the active sequence even when stored here for labeling.
    """
    __tablename__ = "order_status_configs"
    __table_args__ = (
        db.UniqueConstraint("store_id", "status_key", name="uq_order_status_configs_store_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    status_key = db.Column(db.String(32), nullable=False)
    label = db.Column(db.String(64), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("status_configs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "status_key": self.status_key,
            "label": self.label,
            "is_active": self.is_active,
            "display_order": self.display_order,
        }
