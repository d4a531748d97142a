# Overview: Client-held cart with a selection-time stock ceiling.

"""
Cart Builder

WHY: Every order surface (POS, kiosk, storefront) collects items before
commit. The cart enforces the stock ceiling observed when an item was
selected so the operator gets immediate feedback.

DESIGN PRINCIPLES:
- Lines are keyed by (product_id, variation_id); the same product in two
  variations is two lines
- The ceiling check is read-then-compare only. It is a UX hint, not a
  reservation: catalog_service.decrement_stock is the real guard at commit
- A rejected change leaves the cart untouched
- Nothing here touches the database
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..validation import ValidationError
from .catalog_service import CatalogProduct, CatalogVariation, find_sellable


class CartError(Exception):
    """Raised for cart operation errors (user-visible)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass
class CartLine:
    product_id: int
    variation_id: int | None
    product_name: str
    variation_name: str | None
    unit_price_cents: int
    stock_ceiling: int
    quantity: int = 1
    earns_loyalty_points: bool = False

    @property
    def key(self) -> tuple[int, int | None]:
        return (self.product_id, self.variation_id)

    @property
    def display_name(self) -> str:
        if self.variation_name:
            return f"{self.product_name} ({self.variation_name})"
        return self.product_name

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "product_name": self.product_name,
            "variation_name": self.variation_name,
            "display_name": self.display_name,
            "unit_price_cents": self.unit_price_cents,
            "stock_ceiling": self.stock_ceiling,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
        }


def _insufficient(line_name: str, ceiling: int, product_id: int, variation_id: int | None) -> CartError:
    return CartError(
        f"Only {ceiling} unit(s) available for {line_name}",
        details={"product_id": product_id, "variation_id": variation_id, "available": ceiling},
    )


class Cart:
    """In-memory collection of selected items for one checkout."""

    def __init__(self, store_id: int):
        self.store_id = store_id
        self._lines: dict[tuple[int, int | None], CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __bool__(self) -> bool:
        return bool(self._lines)

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    @property
    def subtotal_cents(self) -> int:
        return sum(line.subtotal_cents for line in self._lines.values())

    def get_line(self, product_id: int, variation_id: int | None = None) -> CartLine | None:
        return self._lines.get((product_id, variation_id))

    def add_item(self, product: CatalogProduct, variation: CatalogVariation | None = None) -> CartLine:
        """
        Add one unit of a product (or one of its variations).

        Raises:
            CartError: product/variation mismatch or stock ceiling reached
        """
        if product.store_id != self.store_id:
            raise CartError("Product belongs to another store", details={"product_id": product.id})
        if product.has_variations and variation is None:
            raise CartError(f"Select a variation of {product.name}", details={"product_id": product.id})
        if variation is not None and variation.product_id != product.id:
            raise CartError("Variation does not belong to product", details={"product_id": product.id})

        variation_id = variation.id if variation else None
        ceiling = variation.stock_quantity if variation else product.stock_quantity
        existing = self._lines.get((product.id, variation_id))

        if existing:
            if existing.quantity >= ceiling:
                raise _insufficient(existing.display_name, ceiling, product.id, variation_id)
            existing.quantity += 1
            return existing

        line = CartLine(
            product_id=product.id,
            variation_id=variation_id,
            product_name=product.name,
            variation_name=variation.name if variation else None,
            unit_price_cents=variation.price_cents if variation else product.price_cents,
            stock_ceiling=ceiling,
            quantity=1,
            earns_loyalty_points=product.earns_loyalty_points,
        )
        if ceiling < 1:
            raise _insufficient(line.display_name, ceiling, product.id, variation_id)

        self._lines[line.key] = line
        return line

    def set_quantity(self, product_id: int, variation_id: int | None, quantity: int) -> CartLine | None:
        """
        Set a line's quantity; 0 removes the line.

        Re-validates against the ceiling captured when the line was added.
        Setting the current quantity is a no-op. Returns the line, or None
        when it was removed.
        """
        if quantity < 0:
            raise CartError("Quantity cannot be negative")

        line = self._lines.get((product_id, variation_id))
        if line is None:
            raise CartError("Item not in cart", details={"product_id": product_id, "variation_id": variation_id})

        if quantity == line.quantity:
            return line

        if quantity == 0:
            del self._lines[line.key]
            return None

        if quantity > line.stock_ceiling:
            raise _insufficient(line.display_name, line.stock_ceiling, product_id, variation_id)

        line.quantity = quantity
        return line

    def remove(self, product_id: int, variation_id: int | None = None) -> None:
        self._lines.pop((product_id, variation_id), None)

    def clear(self) -> None:
        self._lines.clear()

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "lines": [line.to_dict() for line in self._lines.values()],
            "subtotal_cents": self.subtotal_cents,
        }


def build_cart(store_id: int, items: Iterable[dict]) -> Cart:
    """
    Rebuild a client-held cart from `[{product_id, variation_id, quantity}]`.

    Every item is resolved against the current catalog and walked through
    add_item/set_quantity, so ceilings are those observed now.

    Raises:
        ValidationError: malformed item
        CartError: quantity above stock
        CatalogError: product/variation cannot be sold
    """
    cart = Cart(store_id)
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each cart item must be an object")

        product_id = raw.get("product_id")
        variation_id = raw.get("variation_id")
        quantity = raw.get("quantity", 1)

        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise ValidationError("product_id must be an integer")
        if variation_id is not None and (not isinstance(variation_id, int) or isinstance(variation_id, bool)):
            raise ValidationError("variation_id must be an integer")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("quantity must be a positive integer")

        product, variation = find_sellable(store_id, product_id, variation_id)
        existing = cart.get_line(product_id, variation_id)
        if existing is None:
            cart.add_item(product, variation)
            cart.set_quantity(product_id, variation_id, quantity)
        else:
            cart.set_quantity(product_id, variation_id, existing.quantity + quantity)
    return cart
