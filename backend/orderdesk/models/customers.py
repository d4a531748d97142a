from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class Customer(db.Model):
    """
    Store customer with a loyalty points balance.

    points is mutated only by loyalty_service (earn/redeem) and is guarded by
    a CHECK constraint so a concurrent double redeem can never go negative.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("store_id", "phone", name="uq_customers_store_phone"),
        db.CheckConstraint("points >= 0", name="ck_customers_points_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)

    points = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "points": self.points,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CustomerAddress(db.Model):
    """Reusable delivery address saved from a previous order."""
    __tablename__ = "customer_addresses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    label = db.Column(db.String(64), nullable=False, default="Saved address")
    street = db.Column(db.String(255), nullable=False)
    number = db.Column(db.String(32), nullable=True)
    neighborhood = db.Column(db.String(128), nullable=False)
    reference = db.Column(db.String(255), nullable=True)
    postal_code = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("addresses", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "label": self.label,
            "street": self.street,
            "number": self.number,
            "neighborhood": self.neighborhood,
            "reference": self.reference,
            "postal_code": self.postal_code,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of point movements.

    TRANSACTION TYPES:
    - earn: points credited for a delivered order (positive)
    - redeem: points spent as a payment method (negative)

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # earn, redeem
    points = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for redeem
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("loyalty_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "order_id": self.order_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyRule(db.Model):
    """
    Rewards catalog shown to customers (e.g., "10 points: free coffee").

    Informational only: the redemption cost used at checkout comes from
    loyalty_service.get_redeem_cost, not from this table.
    """
    __tablename__ = "loyalty_rules"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    points_required = db.Column(db.Integer, nullable=False, default=0)
    reward = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("loyalty_rules", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "points_required": self.points_required,
            "reward": self.reward,
            "is_active": self.is_active,
        }
