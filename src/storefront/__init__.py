"""storefront - a small catalog, cart and background order processing."""

__version__ = "0.1.0"
