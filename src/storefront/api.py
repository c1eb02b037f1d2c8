"""FastAPI REST API for the storefront."""

import threading
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .context import OrderStatus, StorefrontContext
from .errors import (
    EmptyCartError,
    InvalidOrderError,
    InvalidProductError,
    OrderNotFoundError,
    ProcessingTimeoutError,
    ProcessorShutdownError,
    ProductNotFoundError,
    StorefrontError,
)
from .models import CartLine, CatalogItem, Order, catalog_item_to_dict


# --- Pydantic Schemas ---


class ProductSchema(BaseModel):
    kind: str  # "ELECTRONICS" | "CLOTHING"
    id: int
    name: str
    price: str  # decimal string, e.g. "9999.00"
    description: str
    brand: Optional[str] = None
    warranty_months: Optional[int] = None
    size: Optional[str] = None
    material: Optional[str] = None


class ProductListResponse(BaseModel):
    products: list[ProductSchema]
    count: int


class CartLineSchema(BaseModel):
    product: ProductSchema
    quantity: int
    subtotal: str


class CartResponse(BaseModel):
    lines: list[CartLineSchema]
    total: str
    item_count: int


class AddToCartRequest(BaseModel):
    """Request body for adding one unit of a product to the cart."""

    product_id: int = Field(..., gt=0)


class CheckoutRequest(BaseModel):
    customer_name: Optional[str] = Field(
        None, description="Name on the order (defaults to 'Customer')"
    )


class OrderStatusSchema(BaseModel):
    state: str  # "SUBMITTED"|"STARTED"|"PROGRESSING"|"FINALIZING"|"COMPLETED"|"FAILED"
    progress: int
    success: Optional[bool] = None
    message: str = ""
    saved: bool = False


class OrderSchema(BaseModel):
    order_id: int
    customer_name: str
    created_at: str
    items: list[ProductSchema]
    total: str
    paid: bool
    status: OrderStatusSchema
    receipt: Optional[str] = None


class OrderHistoryEntrySchema(BaseModel):
    order_id: int
    customer_name: str
    created_at: str
    paid: bool


class OrderHistoryResponse(BaseModel):
    orders: list[OrderHistoryEntrySchema]
    count: int


class ErrorResponse(BaseModel):
    detail: str
    error_type: str


# --- Helper Functions ---

_context_lock = threading.Lock()


def get_context(request: Request) -> StorefrontContext:
    """Get the app's StorefrontContext, building it on first use."""
    app = request.app
    with _context_lock:
        context = getattr(app.state, "context", None)
        if context is None:
            context = StorefrontContext.create()
            context.channel.start_dispatcher()
            app.state.context = context
    return context


def product_to_schema(item: CatalogItem) -> ProductSchema:
    """Convert a catalog item to its Pydantic schema."""
    return ProductSchema(description=item.description, **catalog_item_to_dict(item))


def cart_line_to_schema(line: CartLine) -> CartLineSchema:
    return CartLineSchema(
        product=product_to_schema(line.item),
        quantity=line.quantity,
        subtotal=str(line.subtotal),
    )


def cart_to_response(context: StorefrontContext) -> CartResponse:
    cart = context.cart
    return CartResponse(
        lines=[cart_line_to_schema(line) for line in cart.lines()],
        total=str(cart.total()),
        item_count=cart.total_item_count(),
    )


def order_to_schema(order: Order, status: OrderStatus) -> OrderSchema:
    receipt = order.get_payment_summary() if status.finished and status.success else None
    return OrderSchema(
        order_id=order.order_id,
        customer_name=order.customer_name,
        created_at=order.formatted_date,
        items=[product_to_schema(item) for item in order.items],
        total=str(order.calculate_total()),
        paid=order.paid,
        status=OrderStatusSchema(
            state=status.state.value,
            progress=status.progress,
            success=status.success,
            message=status.message,
            saved=status.saved,
        ),
        receipt=receipt,
    )


# --- Routes ---

router = APIRouter(prefix="/api")


@router.get("/health")
def health_check(request: Request):
    """Health check endpoint."""
    context = get_context(request)
    return {
        "status": "shutting_down" if context.processor.is_shutdown else "ok",
        "product_count": len(context.catalog),
        "active_orders": context.processor.active_count,
    }


# --- Product Endpoints ---


@router.get("/products", response_model=ProductListResponse)
def list_products(
    request: Request,
    kind: Optional[str] = Query(default=None, description="'electronics' or 'clothing'"),
    search: Optional[str] = Query(default=None, description="Case-insensitive name filter"),
    min_price: Optional[Decimal] = Query(default=None, ge=0),
    max_price: Optional[Decimal] = Query(default=None, ge=0),
):
    """List catalog products, optionally filtered."""
    context = get_context(request)
    try:
        items = context.browse(kind=kind, term=search, min_price=min_price, max_price=max_price)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ProductListResponse(
        products=[product_to_schema(item) for item in items],
        count=len(items),
    )


@router.get("/products/{product_id}", response_model=ProductSchema)
def get_product(request: Request, product_id: int):
    """Get a single product by ID."""
    context = get_context(request)
    return product_to_schema(context.find_product(product_id))


# --- Cart Endpoints ---


@router.get("/cart", response_model=CartResponse)
def get_cart(request: Request):
    return cart_to_response(get_context(request))


@router.post("/cart/items", response_model=CartResponse, status_code=201)
def add_to_cart(request: Request, body: AddToCartRequest):
    """Add one unit of a product to the cart."""
    context = get_context(request)
    context.add_to_cart(body.product_id)
    return cart_to_response(context)


@router.post("/cart/items/{product_id}/decrease", response_model=CartResponse)
def decrease_cart_item(request: Request, product_id: int):
    """Remove one unit of a product; the line disappears at zero."""
    context = get_context(request)
    context.cart.decrease_quantity(product_id)
    return cart_to_response(context)


@router.delete("/cart/items/{product_id}", response_model=CartResponse)
def remove_cart_item(request: Request, product_id: int):
    context = get_context(request)
    context.cart.remove_item(product_id)
    return cart_to_response(context)


@router.delete("/cart", response_model=CartResponse)
def clear_cart(request: Request):
    context = get_context(request)
    context.cart.clear()
    return cart_to_response(context)


# --- Order Endpoints ---


@router.post("/checkout", response_model=OrderSchema, status_code=202)
def checkout(request: Request, body: Optional[CheckoutRequest] = None):
    """
    Check out the cart.

    Processing continues in the background; poll GET /api/orders/{order_id}
    for progress.
    """
    context = get_context(request)
    customer_name = body.customer_name if body else None
    order = context.checkout(customer_name)
    return order_to_schema(order, context.order_status(order.order_id))


@router.get("/orders", response_model=OrderHistoryResponse)
def list_orders(request: Request):
    """List saved orders (summaries without line items)."""
    context = get_context(request)
    orders = context.order_history()
    return OrderHistoryResponse(
        orders=[
            OrderHistoryEntrySchema(
                order_id=o.order_id,
                customer_name=o.customer_name,
                created_at=o.formatted_date,
                paid=o.paid,
            )
            for o in orders
        ],
        count=len(orders),
    )


@router.get("/orders/{order_id}", response_model=OrderSchema)
def get_order(request: Request, order_id: int):
    """Get an order placed this session with its processing status."""
    context = get_context(request)
    order = context.get_order(order_id)
    return order_to_schema(order, context.order_status(order_id))


# --- Global Exception Handler ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    ProductNotFoundError: 404,
    OrderNotFoundError: 404,
    EmptyCartError: 409,
    InvalidOrderError: 400,
    InvalidProductError: 400,
    ProcessorShutdownError: 503,
    ProcessingTimeoutError: 504,
}


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Map StorefrontError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


# --- FastAPI App ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    context = getattr(app.state, "context", None)
    if context is not None:
        context.shutdown()


def create_app(context: StorefrontContext | None = None) -> FastAPI:
    """
    Build the API application.

    Args:
        context: Context to serve. When omitted, one is built from the
            default data directory on the first request.
    """
    app = FastAPI(
        title="storefront API",
        description="REST API for browsing the catalog, managing the cart and placing orders",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://localhost:3000",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.include_router(router)

    app.state.context = context
    if context is not None:
        # No UI thread here: one dispatcher thread delivers processing events
        context.channel.start_dispatcher()
    return app


app = create_app()
