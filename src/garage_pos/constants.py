"""Enumerations and policy constants shared across Garage POS modules.

The store layer, the transaction engine, the validation schemas and the
transports all read identifiers from here so a collection or status name is
spelled in exactly one place.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Workbook layout version expected by the store; bumped whenever a sheet or
# column is added.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Flat GST applied to every sale subtotal.
TAX_RATE = Decimal("0.18")

# Largest manual stock correction accepted in one call.
MAX_ADJUST_DELTA = 500

# Items below this many units are reported as low on stock.
LOW_STOCK_THRESHOLD = 5

DEFAULT_MAX_TRANSACTION_ATTEMPTS = 5

# Loose phone pattern: optional leading "+" then 6-20 digits, dashes or spaces.
PHONE_PATTERN = r"^\+?[0-9\- ]{6,20}$"


class Collection(str, Enum):
    """Document collections held by the store, one worksheet each."""

    INVENTORY = "Inventory"
    CUSTOMERS = "Customers"
    SALES = "Sales"
    PAYMENTS = "Payments"


class SaleStatus(str, Enum):
    """Lifecycle states of a sale record."""

    COMPLETED = "completed"
    DELETED = "deleted"


class PaymentMethod(str, Enum):
    """Tender types accepted by the payment recorder."""

    CASH = "cash"
    UPI = "upi"
    CARD = "card"
    BANK = "bank"


class ErrorKind(str, Enum):
    """Error categories surfaced to callers of the remote procedures."""

    UNAUTHENTICATED = "unauthenticated"
    INVALID_ARGUMENT = "invalid-argument"
    NOT_FOUND = "not-found"
    FAILED_PRECONDITION = "failed-precondition"
    INTERNAL = "internal"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "TAX_RATE",
    "MAX_ADJUST_DELTA",
    "LOW_STOCK_THRESHOLD",
    "DEFAULT_MAX_TRANSACTION_ATTEMPTS",
    "PHONE_PATTERN",
    "Collection",
    "SaleStatus",
    "PaymentMethod",
    "ErrorKind",
]
