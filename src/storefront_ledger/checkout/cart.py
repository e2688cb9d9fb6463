"""Shopping cart owned by a single checkout session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ValidationError
from ..tax_calculation.totals import cart_subtotal
from ..utils.logging import get_logger
from .interfaces import CatalogService

logger = get_logger(__name__)

CartKey = Tuple[str, Optional[str], Optional[str]]


@dataclass
class CartEntry:
    product_id: str
    name: str
    price: float
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None

    @property
    def key(self) -> CartKey:
        return (self.product_id, self.size, self.color)

    def to_order_item(self) -> Dict[str, Any]:
        return {"product": self.product_id, "quantity": self.quantity, "price": self.price}


class Cart:
    """Entries keyed by product, size and color."""

    def __init__(self, catalog: Optional[CatalogService] = None) -> None:
        self._catalog = catalog
        self._entries: Dict[CartKey, CartEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def items(self) -> List[CartEntry]:
        return list(self._entries.values())

    def is_empty(self) -> bool:
        return not self._entries

    def subtotal(self) -> float:
        return cart_subtotal(self.order_items())

    def order_items(self) -> List[Dict[str, Any]]:
        return [entry.to_order_item() for entry in self._entries.values()]

    def _check_stock(self, product_id: str, quantity: int) -> Optional[Dict[str, Any]]:
        if quantity < 1:
            raise ValidationError(f"Quantity must be at least 1, got {quantity}")
        if self._catalog is None:
            return None
        product = self._catalog.get_product(product_id)
        if product is None:
            raise ValidationError(f"Unknown product {product_id}")
        if product.get("status", "active") != "active":
            raise ValidationError(f"{product.get('name') or product_id} is no longer available")
        stock = product.get("stock")
        if stock is not None and quantity > int(stock):
            raise ValidationError(f"Only {stock} in stock")
        return product

    def add(
        self,
        product_id: str,
        quantity: int = 1,
        price: Optional[float] = None,
        name: str = "",
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> CartEntry:
        """Add a product, merging with an existing entry of the same variant."""
        key = (product_id, size, color)
        existing = self._entries.get(key)
        new_quantity = quantity + (existing.quantity if existing else 0)
        product = self._check_stock(product_id, new_quantity) or {}

        if existing:
            existing.quantity = new_quantity
            return existing

        unit_price = product.get("price", price)
        if unit_price is None:
            raise ValidationError(f"No price known for product {product_id}")
        entry = CartEntry(
            product_id=product_id,
            name=name or product.get("name", ""),
            price=float(unit_price),
            quantity=quantity,
            size=size,
            color=color,
        )
        self._entries[key] = entry
        return entry

    def update_quantity(
        self,
        product_id: str,
        quantity: int,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> CartEntry:
        key = (product_id, size, color)
        if key not in self._entries:
            raise ValidationError(f"Product {product_id} is not in the cart")
        self._check_stock(product_id, quantity)
        self._entries[key].quantity = quantity
        return self._entries[key]

    def remove(self, product_id: str, size: Optional[str] = None, color: Optional[str] = None) -> None:
        self._entries.pop((product_id, size, color), None)

    def clear(self) -> None:
        logger.debug(f"Clearing cart with {len(self._entries)} entries")
        self._entries.clear()
