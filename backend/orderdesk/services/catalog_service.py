# Overview: Read-only catalog snapshot and the conditional stock decrement used at commit.

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import update

from ..extensions import db
from ..models import Product, ProductVariation


class CatalogError(Exception):
    """Raised when a product or variation cannot be sold."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class CatalogNotFoundError(CatalogError):
    """Raised when the product or variation does not exist in the store."""


class StaleStockError(Exception):
    """
    Raised when a conditional stock decrement affects no row.

    The stock ceiling the cart was built against is stale: another order
    consumed the units first. Callers refresh the catalog and retry.
    """
    def __init__(self, product_id: int, variation_id: int | None, requested: int):
        label = f"product {product_id}" if variation_id is None else f"variation {variation_id}"
        super().__init__(f"Insufficient stock for {label}: {requested} requested")
        self.product_id = product_id
        self.variation_id = variation_id
        self.requested = requested


@dataclass(frozen=True)
class CatalogVariation:
    id: int
    product_id: int
    name: str
    price_cents: int
    stock_quantity: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
        }


@dataclass(frozen=True)
class CatalogProduct:
    id: int
    store_id: int
    name: str
    price_cents: int
    stock_quantity: int
    has_variations: bool
    earns_loyalty_points: bool
    variations: tuple[CatalogVariation, ...] = field(default_factory=tuple)

    @property
    def min_price_cents(self) -> int:
        if self.has_variations and self.variations:
            return min(v.price_cents for v in self.variations)
        return self.price_cents

    @property
    def max_price_cents(self) -> int:
        if self.has_variations and self.variations:
            return max(v.price_cents for v in self.variations)
        return self.price_cents

    @property
    def sold_out(self) -> bool:
        if self.has_variations:
            return all(v.stock_quantity == 0 for v in self.variations)
        return self.stock_quantity == 0

    def variation(self, variation_id: int) -> CatalogVariation | None:
        for v in self.variations:
            if v.id == variation_id:
                return v
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "stock_quantity": None if self.has_variations else self.stock_quantity,
            "has_variations": self.has_variations,
            "earns_loyalty_points": self.earns_loyalty_points,
            "min_price_cents": self.min_price_cents,
            "max_price_cents": self.max_price_cents,
            "sold_out": self.sold_out,
            "variations": [v.to_dict() for v in self.variations],
        }


def _snapshot(product: Product, variations: list[ProductVariation]) -> CatalogProduct:
    return CatalogProduct(
        id=product.id,
        store_id=product.store_id,
        name=product.name,
        price_cents=product.price_cents,
        stock_quantity=product.stock_quantity,
        has_variations=product.has_variations,
        earns_loyalty_points=product.earns_loyalty_points,
        variations=tuple(
            CatalogVariation(
                id=v.id,
                product_id=product.id,
                name=v.name,
                price_cents=product.price_cents + v.price_adjustment_cents,
                stock_quantity=v.stock_quantity,
            )
            for v in variations
        ) if product.has_variations else (),
    )


def get_catalog(store_id: int) -> list[CatalogProduct]:
    """Active products of a store with their variations, ordered by name."""
    products = db.session.query(Product).filter_by(
        store_id=store_id,
        is_active=True
    ).order_by(Product.name).all()

    product_ids = [p.id for p in products if p.has_variations]
    by_product: dict[int, list[ProductVariation]] = {}
    if product_ids:
        rows = db.session.query(ProductVariation).filter(
            ProductVariation.product_id.in_(product_ids)
        ).order_by(ProductVariation.id).all()
        for row in rows:
            by_product.setdefault(row.product_id, []).append(row)

    return [_snapshot(p, by_product.get(p.id, [])) for p in products]


def find_sellable(
    store_id: int,
    product_id: int,
    variation_id: int | None = None,
) -> tuple[CatalogProduct, CatalogVariation | None]:
    """
    Resolve a product (and variation) that may be added to a cart.

    Raises:
        CatalogNotFoundError: unknown product, product of another store,
            missing or foreign variation
        CatalogError: inactive product, or the variation choice does not
            match the product
    """
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product or product.store_id != store_id:
        raise CatalogNotFoundError("Product not found", details={"product_id": product_id})
    if not product.is_active:
        raise CatalogError(f"{product.name} is not available", details={"product_id": product_id})

    if not product.has_variations:
        if variation_id is not None:
            raise CatalogError(
                f"{product.name} has no variations",
                details={"product_id": product_id, "variation_id": variation_id},
            )
        return _snapshot(product, []), None

    if variation_id is None:
        raise CatalogError(
            f"Select a variation of {product.name}",
            details={"product_id": product_id},
        )

    variation = db.session.query(ProductVariation).filter_by(
        id=variation_id,
        product_id=product_id
    ).first()
    if not variation:
        raise CatalogNotFoundError(
            "Variation not found",
            details={"product_id": product_id, "variation_id": variation_id},
        )

    snapshot = _snapshot(product, [variation])
    return snapshot, snapshot.variations[0]


def decrement_stock(product_id: int, variation_id: int | None, quantity: int) -> None:
    """
    Atomically take `quantity` units out of stock.

    Single conditional UPDATE ... WHERE stock_quantity >= quantity; no
    read-then-write gap. Does not commit: the caller owns the transaction.

    Raises:
        StaleStockError: not enough stock left (zero rows affected)
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    if variation_id is not None:
        stmt = (
            update(ProductVariation)
            .where(
                ProductVariation.id == variation_id,
                ProductVariation.product_id == product_id,
                ProductVariation.stock_quantity >= quantity,
            )
            .values(stock_quantity=ProductVariation.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
    else:
        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                Product.has_variations.is_(False),
                Product.stock_quantity >= quantity,
            )
            .values(stock_quantity=Product.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )

    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise StaleStockError(product_id, variation_id, quantity)
