"""Custom exceptions for storefront."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class InvalidProductError(StorefrontError):
    """Raised when a catalog item is constructed with invalid attributes."""

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid product {field} {value!r}: {reason}")


class ProductNotFoundError(StorefrontError):
    """Raised when a product ID doesn't exist in the catalog."""

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFoundError(StorefrontError):
    """Raised when an order ID is unknown to the current session."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class EmptyCartError(StorefrontError):
    """Raised when checking out with nothing in the cart."""

    def __init__(self):
        super().__init__("Your cart is empty!")


class InvalidOrderError(StorefrontError):
    """Raised when a missing or malformed order is handed to the processor."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid order: {reason}")


class ProcessorShutdownError(StorefrontError):
    """Raised when submitting to a processor that has been shut down."""

    def __init__(self, order_id: int | None = None):
        self.order_id = order_id
        msg = "Order processor is shut down"
        if order_id is not None:
            msg = f"{msg}; order #{order_id} was not accepted"
        super().__init__(msg)


class ProcessingTimeoutError(StorefrontError):
    """Raised when waiting for an order result exceeds the timeout."""

    def __init__(self, order_id: int, timeout: float):
        self.order_id = order_id
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s waiting for order #{order_id}")
