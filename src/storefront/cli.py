"""Command-line interface for storefront."""

import argparse
import json
import sys
from pathlib import Path

from . import __version__
from .config import DEFAULT_CUSTOMER, ProcessorSettings
from .context import StorefrontContext
from .errors import StorefrontError
from .file_store import FileStore, sample_catalog
from .logging_config import setup_logging
from .models import catalog_item_to_dict
from .utils import format_money


class ProgressPrinter:
    """Prints processing notifications as the main loop delivers them."""

    def __init__(self, quiet: bool = False):
        self.quiet = quiet

    def on_started(self, order_id: int) -> None:
        if not self.quiet:
            print(f"Processing Order #{order_id}...")

    def on_progress(self, order_id: int, percent: int) -> None:
        if not self.quiet:
            print(f"Order #{order_id} - {percent}% complete")

    def on_completed(self, order_id: int, success: bool, message: str) -> None:
        if not self.quiet:
            mark = "OK" if success else "FAILED"
            print(f"[{mark}] {message}")


def _data_dir(args: argparse.Namespace) -> Path | None:
    return Path(args.data_dir) if getattr(args, "data_dir", None) else None


def create_context(args: argparse.Namespace) -> StorefrontContext:
    """Build the application context for one CLI invocation."""
    return StorefrontContext.create(ProcessorSettings.from_env(), _data_dir(args))


def cmd_catalog_list(args: argparse.Namespace) -> int:
    """List catalog products."""
    try:
        context = create_context(args)
        try:
            items = context.browse(kind=args.kind, term=args.search)
        finally:
            context.shutdown()

        if args.json:
            print(json.dumps([catalog_item_to_dict(item) for item in items], indent=2))
            return 0

        if not items:
            print("No products found.")
            return 0

        print(f"Products ({len(items)}):")
        for item in items:
            print(f"  {item.id:>3}  {item.description}")
        return 0

    except (StorefrontError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_catalog_sample(args: argparse.Namespace) -> int:
    """Write the sample catalog."""
    store = FileStore(_data_dir(args))
    if store.products_path.exists() and not args.force:
        print(
            f"Error: {store.products_path} already exists. Use --force to overwrite.",
            file=sys.stderr,
        )
        return 1

    items = sample_catalog()
    if not store.save_catalog(items):
        print(f"Error: could not write {store.products_path}", file=sys.stderr)
        return 1
    print(f"Wrote {len(items)} sample products to {store.products_path}")
    return 0


def cmd_checkout(args: argparse.Namespace) -> int:
    """Fill a cart with the given products, check out and wait for processing."""
    try:
        context = create_context(args)
    except (StorefrontError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        for product_id in args.product_ids:
            context.add_to_cart(product_id)

        if not args.json:
            print("========== SHOPPING CART ==========")
            for line in context.cart.lines():
                print(f"{line.item} x {line.quantity} = {format_money(line.subtotal)}")
            print("-----------------------------------")
            print(f"Total: {format_money(context.cart.total())}")
            print()

        context.tracker.listener = ProgressPrinter(quiet=args.json)
        order = context.checkout(args.customer)

        # This thread is the interactive context: deliver events until done
        status = context.order_status(order.order_id)
        while not status.finished:
            context.channel.dispatch(timeout=0.1)

        if args.json:
            data = order.to_dict()
            data["status"] = status.state.value
            data["message"] = status.message
            data["saved"] = status.saved
            print(json.dumps(data, indent=2))
        elif status.success:
            print()
            print(order.get_payment_summary(), end="")

        return 0 if status.success else 2

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        context.shutdown()


def cmd_orders_list(args: argparse.Namespace) -> int:
    """List saved orders."""
    store = FileStore(_data_dir(args))
    orders = store.load_order_history()

    if args.json:
        data = [
            {
                "order_id": o.order_id,
                "customer_name": o.customer_name,
                "created_at": o.formatted_date,
                "paid": o.paid,
            }
            for o in orders
        ]
        print(json.dumps(data, indent=2))
        return 0

    if not orders:
        print("No orders yet.")
        return 0

    print(f"Orders ({len(orders)}):")
    for o in orders:
        print(f"  #{o.order_id}  {o.formatted_date}  {o.customer_name}  {o.status}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        print("Starting storefront API server...")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "storefront.api:app" if args.reload else None
        if app_target is None:
            from .api import create_app
            app_target = create_app(StorefrontContext.create(data_dir=_data_dir(args)))

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=1,  # Single worker: the cart lives in process memory
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="storefront",
        description="Browse a small catalog, fill a cart and process orders",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", help="Also append the log to this file")
    parser.add_argument(
        "--data-dir", help="Directory holding products.csv and orders.csv (default: ./data)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # catalog (subcommand group)
    catalog_parser = subparsers.add_parser("catalog", help="Browse the product catalog")
    catalog_subparsers = catalog_parser.add_subparsers(dest="catalog_command")

    # catalog list
    catalog_list_parser = catalog_subparsers.add_parser("list", help="List products")
    catalog_list_parser.add_argument(
        "--kind", "-k", choices=["electronics", "clothing"], help="Only this kind of product"
    )
    catalog_list_parser.add_argument("--search", "-s", help="Case-insensitive name filter")
    catalog_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # catalog sample
    catalog_sample_parser = catalog_subparsers.add_parser(
        "sample", help="Write the sample product catalog"
    )
    catalog_sample_parser.add_argument(
        "--force", "-f", action="store_true", help="Overwrite an existing catalog"
    )

    # checkout
    checkout_parser = subparsers.add_parser(
        "checkout", help="Buy products (repeat an ID to buy more than one)"
    )
    checkout_parser.add_argument("product_ids", nargs="+", type=int, help="Product IDs")
    checkout_parser.add_argument(
        "--customer", "-c", default=DEFAULT_CUSTOMER, help="Customer name"
    )
    checkout_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # orders
    orders_parser = subparsers.add_parser("orders", help="Order history")
    orders_subparsers = orders_parser.add_subparsers(dest="orders_command")
    orders_list_parser = orders_subparsers.add_parser("list", help="List saved orders")
    orders_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(
        verbose=args.verbose,
        log_file=Path(args.log_file) if args.log_file else None,
    )

    if not args.command:
        parser.print_help()
        return 0

    # Handle catalog subcommands
    if args.command == "catalog":
        if not getattr(args, "catalog_command", None):
            parser.parse_args(["catalog", "--help"])
            return 0
        if args.catalog_command == "list":
            return cmd_catalog_list(args)
        elif args.catalog_command == "sample":
            return cmd_catalog_sample(args)

    # Handle orders subcommands
    if args.command == "orders":
        if not getattr(args, "orders_command", None):
            parser.parse_args(["orders", "--help"])
            return 0
        if args.orders_command == "list":
            return cmd_orders_list(args)

    commands = {
        "checkout": cmd_checkout,
        "serve": cmd_serve,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
