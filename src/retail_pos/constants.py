"""Enumerations shared across the retail POS modules.

Centralises domain constants so that the data access layer, the transaction
managers, and the CLI agree on status labels, sheet names and policy values.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "2.0.0"

DEFAULT_ALERT_THRESHOLD = 5
DEFAULT_LOYALTY_UNIT = Decimal("10000")
DEFAULT_PROFIT_MARGIN = Decimal("0.30")
SALES_WINDOW_DAYS = 7
RECENT_ORDERS_LIMIT = 5
RECENT_ACTIVITY_LIMIT = 10


class OrderStatus(str, Enum):
    """Lifecycle states of a sales order."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PurchaseStatus(str, Enum):
    """Lifecycle states of an inbound supplier purchase."""

    PENDING = "pending"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for orders."""

    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"


class UserRole(str, Enum):
    """Staff roles carried on user records."""

    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    CASHIER = "cashier"


class NegativeStockPolicy(str, Enum):
    """Whether a stock mutation may drive a product below zero."""

    ALLOW = "allow"
    REJECT = "reject"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    USERS = "Users"
    CATEGORIES = "Categories"
    PRODUCTS = "Products"
    CUSTOMERS = "Customers"
    SUPPLIERS = "Suppliers"
    ORDERS = "Orders"
    ORDER_ITEMS = "OrderItems"
    PURCHASES = "Purchases"
    PURCHASE_ITEMS = "PurchaseItems"
    ACTIVITY_LOG = "ActivityLog"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_ALERT_THRESHOLD",
    "DEFAULT_LOYALTY_UNIT",
    "DEFAULT_PROFIT_MARGIN",
    "SALES_WINDOW_DAYS",
    "RECENT_ORDERS_LIMIT",
    "RECENT_ACTIVITY_LIMIT",
    "OrderStatus",
    "PurchaseStatus",
    "PaymentMethod",
    "UserRole",
    "NegativeStockPolicy",
    "SheetName",
]
