"""CSV storage for the product catalog and order history."""

import csv
import logging
import threading
from pathlib import Path
from typing import Iterable

from .config import DATA_DIR, ORDERS_FILE, PRODUCTS_FILE
from .errors import InvalidProductError
from .models import CLOTHING, ELECTRONICS, CatalogItem, Clothing, Electronics, Order
from .utils import format_amount, parse_bool, parse_record_date

logger = logging.getLogger(__name__)

PRODUCT_HEADER = ["TYPE", "ID", "NAME", "PRICE", "EXTRA1", "EXTRA2"]
ORDER_HEADER = ["ORDER_ID", "CUSTOMER", "DATE", "TOTAL", "PAID"]


def sample_catalog() -> list[CatalogItem]:
    """The demo catalog written when no products file exists yet."""
    return [
        Electronics(1, "Laptop", "9999.00", "Dell", 24),
        Electronics(2, "Smartphone", "6999.00", "Samsung", 12),
        Electronics(3, "Headphones", "1499.00", "Sony", 12),
        Electronics(4, "Tablet", "4499.00", "Apple", 12),
        Electronics(5, "Smart Watch", "2999.00", "Xiaomi", 12),
        Clothing(6, "Djellaba", "450.00", "L", "Cotton"),
        Clothing(7, "Caftan", "1200.00", "M", "Silk"),
        Clothing(8, "Babouche", "180.00", "42", "Leather"),
        Clothing(9, "T-Shirt", "149.00", "M", "Cotton"),
        Clothing(10, "Jeans", "350.00", "L", "Denim"),
    ]


def product_to_row(item: CatalogItem) -> list[str]:
    match item:
        case Electronics(id=id_, name=name, price=price, brand=brand, warranty_months=months):
            return [ELECTRONICS, str(id_), name, format_amount(price), brand, str(months)]
        case Clothing(id=id_, name=name, price=price, size=size, material=material):
            return [CLOTHING, str(id_), name, format_amount(price), size, material]
    raise TypeError(f"Not a catalog item: {item!r}")


def row_to_product(row: list[str]) -> CatalogItem | None:
    """
    Parse one products.csv row.

    Returns None for rows with an unknown type tag.

    Raises:
        ValueError: If the row is too short or a number doesn't parse.
        InvalidProductError: If the parsed values are invalid.
    """
    if len(row) < 6:
        raise ValueError(f"expected 6 fields, got {len(row)}")
    kind, raw_id, name, price, extra1, extra2 = (field.strip() for field in row[:6])
    match kind.upper():
        case "ELECTRONICS":
            return Electronics(int(raw_id), name, price, extra1, int(extra2))
        case "CLOTHING":
            return Clothing(int(raw_id), name, price, extra1, extra2)
    return None


def order_to_row(order: Order) -> list[str]:
    return [
        str(order.order_id),
        order.customer_name,
        order.formatted_date,
        format_amount(order.calculate_total()),
        "true" if order.paid else "false",
    ]


def row_to_order(row: list[str]) -> Order:
    """
    Parse one orders.csv row into an items-less Order.

    Raises:
        ValueError: If the row is too short or a field doesn't parse.
    """
    if len(row) < 5:
        raise ValueError(f"expected 5 fields, got {len(row)}")
    return Order.restore(
        order_id=int(row[0]),
        customer_name=row[1],
        created_at=parse_record_date(row[2]),
        paid=parse_bool(row[4]),
    )


class FileStore:
    """
    Best-effort CSV persistence.

    Nothing here raises on I/O trouble: failed loads are logged and return
    an empty list, failed writes are logged and return False.
    """

    def __init__(self, data_dir: Path | None = None):
        """
        Initialize FileStore.

        Args:
            data_dir: Override data directory (for testing).
        """
        self.data_dir = Path(data_dir) if data_dir is not None else DATA_DIR
        self.products_path = self.data_dir / PRODUCTS_FILE
        self.orders_path = self.data_dir / ORDERS_FILE
        self._write_lock = threading.Lock()

    def _ensure_dir(self) -> None:
        """Ensure data directory exists."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    # --- Catalog ---

    def load_catalog(self) -> list[CatalogItem]:
        """Load products; missing file, unreadable file or bad rows yield fewer items, never an error."""
        if not self.products_path.exists():
            logger.info("Products file %s not found, starting with an empty catalog", self.products_path)
            return []

        items: list[CatalogItem] = []
        try:
            with open(self.products_path, "r", encoding="utf-8", newline="") as f:
                reader = csv.reader(f)
                next(reader, None)  # header
                for line_no, row in enumerate(reader, start=2):
                    if not row or not any(field.strip() for field in row):
                        continue
                    try:
                        item = row_to_product(row)
                    except (ValueError, InvalidProductError) as e:
                        logger.warning("Skipping products.csv line %d: %s", line_no, e)
                        continue
                    if item is None:
                        logger.warning("Skipping products.csv line %d: unknown type %r", line_no, row[0])
                        continue
                    items.append(item)
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            logger.error("Error loading products from %s: %s", self.products_path, e)
            return []

        logger.info("Loaded %d products from %s", len(items), self.products_path)
        return items

    def save_catalog(self, items: Iterable[CatalogItem]) -> bool:
        """Rewrite products.csv with items. Returns False if the write failed."""
        try:
            with self._write_lock:
                self._ensure_dir()
                with open(self.products_path, "w", encoding="utf-8", newline="") as f:
                    writer = csv.writer(f)
                    writer.writerow(PRODUCT_HEADER)
                    count = 0
                    for item in items:
                        writer.writerow(product_to_row(item))
                        count += 1
        except OSError as e:
            logger.error("Error saving products to %s: %s", self.products_path, e)
            return False

        logger.info("Saved %d products to %s", count, self.products_path)
        return True

    def create_sample_catalog(self) -> list[CatalogItem]:
        """Write the sample catalog and return it."""
        items = sample_catalog()
        self.save_catalog(items)
        logger.info("Sample product data created")
        return items

    def load_or_create_catalog(self) -> list[CatalogItem]:
        items = self.load_catalog()
        if items:
            return items
        logger.info("No products found, creating sample data")
        return self.create_sample_catalog()

    # --- Orders ---

    def append_order(self, order: Order) -> bool:
        """Append an order summary row, writing the header first if the file is new."""
        try:
            with self._write_lock:
                self._ensure_dir()
                is_new = not self.orders_path.exists()
                with open(self.orders_path, "a", encoding="utf-8", newline="") as f:
                    writer = csv.writer(f)
                    if is_new:
                        writer.writerow(ORDER_HEADER)
                    writer.writerow(order_to_row(order))
        except OSError as e:
            logger.error("Error saving order #%d to %s: %s", order.order_id, self.orders_path, e)
            return False

        logger.info("Order #%d saved to %s", order.order_id, self.orders_path)
        return True

    def load_order_history(self) -> list[Order]:
        """Load persisted orders. They come back without line items."""
        if not self.orders_path.exists():
            return []

        orders: list[Order] = []
        try:
            with open(self.orders_path, "r", encoding="utf-8", newline="") as f:
                reader = csv.reader(f)
                next(reader, None)  # header
                for line_no, row in enumerate(reader, start=2):
                    if not row:
                        continue
                    try:
                        orders.append(row_to_order(row))
                    except ValueError as e:
                        logger.warning("Skipping orders.csv line %d: %s", line_no, e)
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            logger.error("Error loading orders from %s: %s", self.orders_path, e)
            return []

        return orders
