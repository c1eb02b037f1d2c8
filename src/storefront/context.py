"""Application context wiring the cart, catalog, processor and storage together."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .cart import CartService
from .config import DEFAULT_CUSTOMER, ProcessorSettings
from .errors import EmptyCartError, OrderNotFoundError, ProductNotFoundError, StorefrontError
from .file_store import FileStore
from .models import KINDS, CatalogItem, Order, OrderIdSequence
from .processor import EventChannel, OrderProcessor, ProcessingHandle, ProcessingObserver
from .utils import to_decimal

logger = logging.getLogger(__name__)


class ProcessingState(str, Enum):
    """Where an order is in its processing lifecycle."""

    SUBMITTED = "SUBMITTED"
    STARTED = "STARTED"
    PROGRESSING = "PROGRESSING"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class OrderStatus:
    """Last known processing status of an order placed this session."""

    order_id: int
    state: ProcessingState = ProcessingState.SUBMITTED
    progress: int = 0
    success: bool | None = None
    message: str = ""
    saved: bool = False

    @property
    def finished(self) -> bool:
        return self.state in (ProcessingState.COMPLETED, ProcessingState.FAILED)


class OrderTracker:
    """
    Observer registered with the processor.

    Keeps the status of every order placed this session and saves orders
    that complete successfully. A failed save is logged and leaves the
    payment as it is. Each notification is forwarded to the optional
    listener afterwards.
    """

    def __init__(self, store: FileStore, listener: ProcessingObserver | None = None):
        self.store = store
        self.listener = listener
        self._orders: dict[int, Order] = {}
        self._statuses: dict[int, OrderStatus] = {}
        self._lock = threading.Lock()
        self._finished = threading.Condition(self._lock)

    def track(self, order: Order) -> OrderStatus:
        with self._lock:
            self._orders[order.order_id] = order
            status = OrderStatus(order_id=order.order_id)
            self._statuses[order.order_id] = status
            return status

    def untrack(self, order_id: int) -> None:
        """Forget an order that never reached the processor."""
        with self._lock:
            self._orders.pop(order_id, None)
            self._statuses.pop(order_id, None)

    def order(self, order_id: int) -> Order:
        with self._lock:
            try:
                return self._orders[order_id]
            except KeyError:
                raise OrderNotFoundError(order_id) from None

    def status(self, order_id: int) -> OrderStatus:
        with self._lock:
            try:
                return self._statuses[order_id]
            except KeyError:
                raise OrderNotFoundError(order_id) from None

    def orders(self) -> list[Order]:
        with self._lock:
            return list(self._orders.values())

    def wait_finished(self, order_id: int, timeout: float | None = None) -> bool:
        """Block until the order's completion has been delivered. Needs a running dispatcher."""
        with self._finished:
            return self._finished.wait_for(
                lambda: order_id in self._statuses and self._statuses[order_id].finished,
                timeout=timeout,
            )

    # --- ProcessingObserver ---

    def on_started(self, order_id: int) -> None:
        with self._lock:
            status = self._statuses.setdefault(order_id, OrderStatus(order_id=order_id))
            status.state = ProcessingState.STARTED
        if self.listener:
            self.listener.on_started(order_id)

    def on_progress(self, order_id: int, percent: int) -> None:
        with self._lock:
            status = self._statuses.setdefault(order_id, OrderStatus(order_id=order_id))
            status.progress = percent
            status.state = ProcessingState.FINALIZING if percent >= 100 else ProcessingState.PROGRESSING
        if self.listener:
            self.listener.on_progress(order_id, percent)

    def on_completed(self, order_id: int, success: bool, message: str) -> None:
        with self._lock:
            order = self._orders.get(order_id)
        saved = False
        if success and order is not None:
            saved = self.store.append_order(order)
            if not saved:
                logger.warning("Order #%d was paid but could not be saved", order_id)

        with self._finished:
            status = self._statuses.setdefault(order_id, OrderStatus(order_id=order_id))
            status.state = ProcessingState.COMPLETED if success else ProcessingState.FAILED
            status.success = success
            status.message = message
            status.saved = saved
            self._finished.notify_all()

        if self.listener:
            self.listener.on_completed(order_id, success, message)


class StorefrontContext:
    """
    Everything one running storefront needs, built once at startup.

    Presentation code receives the context explicitly instead of reaching
    for module-level singletons.
    """

    def __init__(
        self,
        store: FileStore,
        processor: OrderProcessor,
        cart: CartService | None = None,
        sequence: OrderIdSequence | None = None,
        catalog: list[CatalogItem] | None = None,
    ):
        self.store = store
        self.processor = processor
        self.channel = processor.channel
        self.cart = cart or CartService()
        self.sequence = sequence or OrderIdSequence()
        self.tracker = OrderTracker(store)
        self.processor.set_observer(self.tracker)
        self._catalog: dict[int, CatalogItem] = {}
        self._closed = False
        if catalog is not None:
            self.set_catalog(catalog)

    @classmethod
    def create(
        cls,
        settings: ProcessorSettings | None = None,
        data_dir: Path | None = None,
    ) -> "StorefrontContext":
        """Build a context: load (or seed) the catalog and resume order numbering."""
        store = FileStore(data_dir)
        processor = OrderProcessor(settings or ProcessorSettings.from_env(), EventChannel())
        sequence = OrderIdSequence()
        for past in store.load_order_history():
            sequence.advance_past(past.order_id)
        return cls(
            store=store,
            processor=processor,
            sequence=sequence,
            catalog=store.load_or_create_catalog(),
        )

    # --- Catalog ---

    def set_catalog(self, items: list[CatalogItem]) -> None:
        self._catalog = {item.id: item for item in items}

    @property
    def catalog(self) -> list[CatalogItem]:
        return list(self._catalog.values())

    def find_product(self, product_id: int) -> CatalogItem:
        try:
            return self._catalog[product_id]
        except KeyError:
            raise ProductNotFoundError(product_id) from None

    def browse(
        self,
        kind: str | None = None,
        term: str | None = None,
        min_price: object = None,
        max_price: object = None,
    ) -> list[CatalogItem]:
        """
        Catalog items matching every filter given.

        Args:
            kind: "electronics" or "clothing", any case.
            term: Case-insensitive substring of the product name.
            min_price: Inclusive lower price bound.
            max_price: Inclusive upper price bound.

        Raises:
            ValueError: If kind names no catalog variant or a bound isn't a number.
        """
        tag = kind.upper() if kind else None
        if tag is not None and tag not in KINDS:
            raise ValueError(f"Unknown product kind: {kind!r}")
        needle = term.lower() if term else ""
        low = to_decimal(min_price) if min_price is not None else None
        high = to_decimal(max_price) if max_price is not None else None
        return [
            item
            for item in self._catalog.values()
            if (tag is None or item.kind == tag)
            and needle in item.name.lower()
            and (low is None or item.price >= low)
            and (high is None or item.price <= high)
        ]

    # --- Cart ---

    def add_to_cart(self, product_id: int) -> CatalogItem:
        item = self.find_product(product_id)
        self.cart.add_item(item)
        return item

    # --- Orders ---

    def checkout(self, customer_name: str | None = None) -> Order:
        """
        Turn the cart into an order and hand it to the processor.

        The cart is cleared once the processor has accepted the order. If it
        refuses, the cart is left as it was.

        Raises:
            EmptyCartError: If the cart is empty.
            ProcessorShutdownError: If the context has been shut down.
        """
        lines = self.cart.lines()
        if not lines:
            raise EmptyCartError()
        order = Order.create(customer_name or DEFAULT_CUSTOMER, lines, sequence=self.sequence)
        self.submit(order)
        self.cart.clear()
        return order

    def submit(self, order: Order) -> ProcessingHandle:
        # Tracked first: the dispatcher may deliver its first event at once
        self.tracker.track(order)
        try:
            return self.processor.submit(order)
        except StorefrontError:
            self.tracker.untrack(order.order_id)
            raise

    def get_order(self, order_id: int) -> Order:
        return self.tracker.order(order_id)

    def order_status(self, order_id: int) -> OrderStatus:
        return self.tracker.status(order_id)

    def order_history(self) -> list[Order]:
        return self.store.load_order_history()

    # --- Lifecycle ---

    def shutdown(self) -> None:
        """Shut the processor down and deliver whatever events are left. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self.processor.shutdown()
        if self.channel.dispatcher_running:
            self.channel.stop_dispatcher()
        self.channel.dispatch_pending()
        logger.info("Storefront closed")

    def __enter__(self) -> "StorefrontContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
