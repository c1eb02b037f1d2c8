"""Utility functions for storefront."""

from datetime import datetime
from decimal import Decimal, InvalidOperation

from .config import CURRENCY

RECEIPT_DATE_FORMAT = "%Y-%m-%d %H:%M"
RECORD_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_CENTS = Decimal("0.01")


def to_decimal(value: object) -> Decimal:
    """
    Coerce a price-like value to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary
    expansion.

    Raises:
        ValueError: If the value cannot be read as a number.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"not a price: {value!r}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value.strip() if isinstance(value, str) else value)
        except InvalidOperation:
            raise ValueError(f"not a price: {value!r}") from None
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise ValueError(f"not a price: {value!r}")

    if not result.is_finite():
        raise ValueError(f"not a price: {value!r}")
    return result


def format_amount(amount: Decimal) -> str:
    """Format an amount with two decimals, e.g. '390.00'."""
    return str(amount.quantize(_CENTS))


def format_money(amount: Decimal) -> str:
    """Format an amount with two decimals and the currency suffix."""
    return f"{format_amount(amount)} {CURRENCY}"


def format_receipt_date(value: datetime) -> str:
    return value.strftime(RECEIPT_DATE_FORMAT)


def format_record_date(value: datetime) -> str:
    return value.strftime(RECORD_DATE_FORMAT)


def parse_record_date(value: str) -> datetime:
    """
    Parse a timestamp written by format_record_date.

    Raises:
        ValueError: If the value doesn't match the record format.
    """
    return datetime.strptime(value.strip(), RECORD_DATE_FORMAT)


def parse_bool(value: str) -> bool:
    """Parse a persisted boolean; anything but 'true' (any case) is False."""
    return value.strip().lower() == "true"
