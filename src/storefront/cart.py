"""Shopping cart for storefront."""

import logging
import threading
from decimal import Decimal

from .models import KINDS, CartLine, CatalogItem
from .utils import to_decimal

logger = logging.getLogger(__name__)


class CartService:
    """
    In-memory shopping cart keyed by product ID.

    Each product ID maps to a single CartLine, so an item and its quantity
    can never get out of step. All operations hold the cart lock.
    """

    def __init__(self):
        self._lines: dict[int, CartLine] = {}
        self._lock = threading.RLock()

    # --- Mutations ---

    def add_item(self, item: CatalogItem) -> None:
        """Add one unit of item, creating its line if needed."""
        with self._lock:
            line = self._lines.get(item.id)
            quantity = line.quantity + 1 if line else 1
            self._lines[item.id] = CartLine(item=item, quantity=quantity)
        logger.debug("Added to cart: %s (qty %d)", item.name, quantity)

    def remove_item(self, item_id: int) -> None:
        """Remove the whole line for item_id. Unknown IDs are ignored."""
        with self._lock:
            removed = self._lines.pop(item_id, None)
        if removed:
            logger.debug("Removed from cart: %s", removed.item.name)

    def decrease_quantity(self, item_id: int) -> None:
        """Take one unit off a line; the line goes away when it reaches zero."""
        with self._lock:
            line = self._lines.get(item_id)
            if line is None:
                return
            if line.quantity > 1:
                self._lines[item_id] = CartLine(item=line.item, quantity=line.quantity - 1)
            else:
                self.remove_item(item_id)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
        logger.debug("Cart cleared")

    # --- Queries ---

    def total(self) -> Decimal:
        with self._lock:
            return sum((line.subtotal for line in self._lines.values()), Decimal("0"))

    def lines(self) -> list[CartLine]:
        """Snapshot of the cart lines in insertion order."""
        with self._lock:
            return list(self._lines.values())

    def items(self) -> list[CatalogItem]:
        with self._lock:
            return [line.item for line in self._lines.values()]

    def quantity_of(self, item_id: int) -> int:
        with self._lock:
            line = self._lines.get(item_id)
            return line.quantity if line else 0

    def items_of_kind(self, kind: str | type) -> list[CatalogItem]:
        """
        Items of one catalog variant.

        Args:
            kind: A kind tag ("ELECTRONICS", "clothing", ...) or the variant class.

        Raises:
            ValueError: If kind is a string that names no variant.
        """
        if isinstance(kind, type):
            tag = getattr(kind, "kind", None)
        else:
            tag = kind.upper()
        if tag not in KINDS:
            raise ValueError(f"Unknown product kind: {kind!r}")
        return [item for item in self.items() if item.kind == tag]

    def search(self, term: str) -> list[CatalogItem]:
        """Items whose name contains term, ignoring case."""
        needle = term.lower()
        return [item for item in self.items() if needle in item.name.lower()]

    def items_in_price_range(self, min_price: object, max_price: object) -> list[CatalogItem]:
        """Items priced between min_price and max_price, both inclusive."""
        low, high = to_decimal(min_price), to_decimal(max_price)
        return [item for item in self.items() if low <= item.price <= high]

    def total_item_count(self) -> int:
        with self._lock:
            return sum(line.quantity for line in self._lines.values())

    def is_empty(self) -> bool:
        with self._lock:
            return not self._lines

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return item_id in self._lines
