from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable product of a store.

    STOCK DESIGN:
    - has_variations = false: the product itself is the sellable unit and
      stock_quantity is authoritative.
    - has_variations = true: the parent's own stock and price are inert for
      stock purposes; every sellable unit is a ProductVariation whose price is
      price_cents + price_adjustment_cents.

    Stock is decremented only through the conditional update in
    catalog_service.decrement_stock, never by read-modify-write.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    has_variations = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Loyalty accrual: points per unit sold, credited when the order is delivered
    earns_loyalty_points = db.Column(db.Boolean, nullable=False, default=False)
    loyalty_points_value = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
            "has_variations": self.has_variations,
            "is_active": self.is_active,
            "earns_loyalty_points": self.earns_loyalty_points,
            "loyalty_points_value": float(self.loyalty_points_value or 0),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariation(db.Model):
    """Sellable sub-unit of a product (size, flavor) with its own stock."""
    __tablename__ = "product_variations"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_product_variations_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    price_adjustment_cents = db.Column(db.Integer, nullable=False, default=0)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product", backref=db.backref("variations", lazy=True, order_by="ProductVariation.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "price_adjustment_cents": self.price_adjustment_cents,
            "stock_quantity": self.stock_quantity,
        }
