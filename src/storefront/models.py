"""Data models for storefront."""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Iterable, Protocol, runtime_checkable

from .config import DEFAULT_CUSTOMER
from .errors import InvalidProductError
from .utils import (
    format_money,
    format_receipt_date,
    format_record_date,
    to_decimal,
)

logger = logging.getLogger(__name__)

ORDER_ID_SEED = 1000

ELECTRONICS = "ELECTRONICS"
CLOTHING = "CLOTHING"
KINDS = (ELECTRONICS, CLOTHING)


def _validate_common(item: "Electronics | Clothing") -> None:
    if isinstance(item.id, bool) or not isinstance(item.id, int) or item.id <= 0:
        raise InvalidProductError("id", item.id, "must be a positive integer")
    if not isinstance(item.name, str) or not item.name.strip():
        raise InvalidProductError("name", item.name, "must be a non-empty string")
    try:
        price = to_decimal(item.price)
    except ValueError as e:
        raise InvalidProductError("price", item.price, str(e)) from None
    if price < 0:
        raise InvalidProductError("price", item.price, "must not be negative")
    # frozen dataclass: normalize in place during construction
    object.__setattr__(item, "price", price)


@dataclass(frozen=True)
class Electronics:
    """An electronics catalog item."""

    kind: ClassVar[str] = ELECTRONICS
    label: ClassVar[str] = "Electronics"

    id: int
    name: str
    price: Decimal
    brand: str = ""
    warranty_months: int = 0

    def __post_init__(self) -> None:
        _validate_common(self)
        if (
            isinstance(self.warranty_months, bool)
            or not isinstance(self.warranty_months, int)
            or self.warranty_months < 0
        ):
            raise InvalidProductError(
                "warranty_months", self.warranty_months, "must be a non-negative integer"
            )

    def with_price(self, price: object) -> "Electronics":
        return replace(self, price=price)

    @property
    def description(self) -> str:
        return describe(self)

    def __str__(self) -> str:
        return display_name(self)


@dataclass(frozen=True)
class Clothing:
    """A clothing catalog item."""

    kind: ClassVar[str] = CLOTHING
    label: ClassVar[str] = "Clothing"

    id: int
    name: str
    price: Decimal
    size: str = ""
    material: str = ""

    def __post_init__(self) -> None:
        _validate_common(self)

    def with_price(self, price: object) -> "Clothing":
        return replace(self, price=price)

    @property
    def description(self) -> str:
        return describe(self)

    def __str__(self) -> str:
        return display_name(self)


CatalogItem = Electronics | Clothing


def display_name(item: CatalogItem) -> str:
    """Short one-line representation used in carts and receipts."""
    match item:
        case Electronics(name=name, brand=brand, price=price):
            return f"[Electronics] {name} ({brand}) - {format_money(price)}"
        case Clothing(name=name, size=size, price=price):
            return f"[Clothing] {name} (Size: {size}) - {format_money(price)}"
    raise TypeError(f"Not a catalog item: {item!r}")


def describe(item: CatalogItem) -> str:
    """Long product description shown when browsing the catalog."""
    match item:
        case Electronics(name=name, brand=brand, price=price, warranty_months=months):
            return (
                f"Electronics: {name} by {brand} | Price: {format_money(price)}"
                f" | Warranty: {months} months"
            )
        case Clothing(name=name, size=size, material=material, price=price):
            return (
                f"Clothing: {name} | Size: {size} | Material: {material}"
                f" | Price: {format_money(price)}"
            )
    raise TypeError(f"Not a catalog item: {item!r}")


def catalog_item_to_dict(item: CatalogItem) -> dict[str, Any]:
    result: dict[str, Any] = {
        "kind": item.kind,
        "id": item.id,
        "name": item.name,
        "price": str(item.price),
    }
    match item:
        case Electronics():
            result["brand"] = item.brand
            result["warranty_months"] = item.warranty_months
        case Clothing():
            result["size"] = item.size
            result["material"] = item.material
    return result


def catalog_item_from_dict(data: dict[str, Any]) -> CatalogItem:
    """
    Build a catalog item from its dict form.

    Raises:
        InvalidProductError: If the kind is unknown or a field is invalid.
    """
    kind = str(data.get("kind", "")).upper()
    match kind:
        case "ELECTRONICS":
            return Electronics(
                id=data["id"],
                name=data["name"],
                price=data["price"],
                brand=data.get("brand", ""),
                warranty_months=data.get("warranty_months", 0),
            )
        case "CLOTHING":
            return Clothing(
                id=data["id"],
                name=data["name"],
                price=data["price"],
                size=data.get("size", ""),
                material=data.get("material", ""),
            )
    raise InvalidProductError("kind", data.get("kind"), f"expected one of {', '.join(KINDS)}")


@dataclass(frozen=True)
class CartLine:
    """A catalog item together with how many units of it are in the cart."""

    item: CatalogItem
    quantity: int

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError(f"quantity must be at least 1, got {self.quantity}")

    @property
    def subtotal(self) -> Decimal:
        return self.item.price * self.quantity


class OrderIdSequence:
    """Thread-safe source of order IDs: seed + 1, seed + 2, ..."""

    def __init__(self, seed: int = ORDER_ID_SEED):
        self._value = seed
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def advance_past(self, order_id: int) -> None:
        """Ensure the next ID handed out is greater than order_id."""
        with self._lock:
            if order_id > self._value:
                self._value = order_id

    @property
    def current(self) -> int:
        with self._lock:
            return self._value


@runtime_checkable
class Payable(Protocol):
    """Anything that can be totalled and paid for."""

    def calculate_total(self) -> Decimal: ...

    def process_payment(self) -> bool: ...

    def get_payment_summary(self) -> str: ...


@dataclass
class Order:
    """A checkout snapshot of the cart plus its payment status.

    Quantities are not tracked separately: each unit bought is its own entry
    in ``items``.
    """

    order_id: int
    customer_name: str = DEFAULT_CUSTOMER
    created_at: datetime = field(default_factory=datetime.now)
    items: list[CatalogItem] = field(default_factory=list)
    paid: bool = False

    @classmethod
    def create(
        cls,
        customer_name: str | None = None,
        lines: Iterable[CartLine | tuple[CatalogItem, int]] | None = None,
        *,
        sequence: OrderIdSequence,
    ) -> "Order":
        """Create a new unpaid order with the next ID and the current time."""
        items: list[CatalogItem] = []
        for line in lines or ():
            if isinstance(line, CartLine):
                item, quantity = line.item, line.quantity
            else:
                item, quantity = line
            items.extend([item] * quantity)

        return cls(
            order_id=sequence.next(),
            customer_name=customer_name or DEFAULT_CUSTOMER,
            created_at=datetime.now(),
            items=items,
            paid=False,
        )

    @classmethod
    def restore(
        cls, order_id: int, customer_name: str, created_at: datetime, paid: bool
    ) -> "Order":
        """Rebuild a persisted order summary. Line items are not persisted."""
        return cls(
            order_id=order_id,
            customer_name=customer_name,
            created_at=created_at,
            items=[],
            paid=paid,
        )

    def calculate_total(self) -> Decimal:
        return sum((item.price for item in self.items), Decimal("0"))

    def process_payment(self) -> bool:
        """
        Mark the order as paid.

        Returns False for an order without items. Paying an order that is
        already paid succeeds again without changing anything.
        """
        if not self.items:
            logger.warning("Cannot process payment: order #%d is empty", self.order_id)
            return False
        if self.paid:
            logger.debug("Order #%d is already paid", self.order_id)
            return True
        self.paid = True
        logger.info("Payment processed for order #%d", self.order_id)
        return True

    def get_payment_summary(self) -> str:
        lines = [
            "========== ORDER SUMMARY ==========",
            f"Order ID: {self.order_id}",
            f"Customer: {self.customer_name}",
            f"Date: {format_receipt_date(self.created_at)}",
            "-----------------------------------",
            "Items:",
        ]
        lines.extend(f"  - {item}" for item in self.items)
        lines.extend(
            [
                "-----------------------------------",
                f"Total: {format_money(self.calculate_total())}",
                f"Status: {self.status}",
                "===================================",
            ]
        )
        return "\n".join(lines) + "\n"

    @property
    def status(self) -> str:
        return "PAID" if self.paid else "PENDING"

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def formatted_date(self) -> str:
        return format_record_date(self.created_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "customer_name": self.customer_name,
            "created_at": self.formatted_date,
            "items": [catalog_item_to_dict(item) for item in self.items],
            "total": str(self.calculate_total()),
            "paid": self.paid,
        }

    def __str__(self) -> str:
        return (
            f"Order #{self.order_id} - {self.customer_name} - "
            f"{format_money(self.calculate_total())} - {self.status}"
        )
