"""Pure stock and pricing rules shared by the order and purchase managers.

Nothing in this module touches the workbook. Each helper takes rows or
drafts and returns new values, so the transaction managers can compute the
complete effect of an operation before opening an atomic unit.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Protocol, Sequence, Tuple

from . import log
from .constants import NegativeStockPolicy, OrderStatus, PurchaseStatus
from .data_manager import ProductRow
from .errors import ConflictError, NotFoundError, ValidationError


ORDER_TRANSITIONS: Mapping[str, frozenset[str]] = {
    OrderStatus.PENDING.value: frozenset({OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value}),
}

PURCHASE_TRANSITIONS: Mapping[str, frozenset[str]] = {
    PurchaseStatus.PENDING.value: frozenset({PurchaseStatus.RECEIVED.value, PurchaseStatus.CANCELLED.value}),
    PurchaseStatus.RECEIVED.value: frozenset({PurchaseStatus.CANCELLED.value}),
}

DOCUMENT_NUMBER_ATTEMPTS = 1000


class QuantityLine(Protocol):
    """Anything carrying a product reference and a quantity."""

    @property
    def product_id(self) -> int: ...

    @property
    def quantity(self) -> int: ...


class CostLine(QuantityLine, Protocol):
    @property
    def unit_cost(self) -> Decimal: ...


@dataclass(frozen=True)
class PricedLine:
    """An order line after the product's selling price has been snapshotted."""

    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class CostedLine:
    """A purchase line carrying the supplier's invoiced unit cost."""

    product_id: int
    quantity: int
    unit_cost: Decimal
    subtotal: Decimal


def require_positive_quantity(quantity: object) -> int:
    """Validate that a line quantity is a whole number of at least one.

    Raises:
        ValidationError: If ``quantity`` is not an ``int`` or is below one.
    """

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r is not a whole number", quantity)
        raise ValidationError(f"Quantity must be a whole number, got {quantity!r}")
    if quantity < 1:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be at least 1")
    return quantity


def require_nonnegative_money(amount: object, *, label: str = "Amount") -> Decimal:
    """Validate that a monetary value is a nonnegative :class:`Decimal`.

    Integers are accepted and converted; floats are rejected so that binary
    rounding never leaks into stored totals.

    Raises:
        ValidationError: If ``amount`` is not numeric or is negative.
    """

    if isinstance(amount, bool) or not isinstance(amount, (int, Decimal)):
        log.error("%s validation failed: %r is not a Decimal", label, amount)
        raise ValidationError(f"{label} must be a Decimal or int, got {amount!r}")
    value = Decimal(amount)
    if not value.is_finite() or value < 0:
        log.error("%s validation failed: %s", label, value)
        raise ValidationError(f"{label} must be zero or positive")
    return value


def price_order_lines(lines: Sequence[QuantityLine], products: Mapping[int, ProductRow]) -> List[PricedLine]:
    """Snapshot each line's unit price from the product's current selling price.

    The caller never supplies a price: whatever the client believes the price
    to be, the stored ``unit_price`` is the product's ``selling_price`` at the
    moment of processing.

    Args:
        lines (Sequence[QuantityLine]): Requested product/quantity pairs, in
            order.
        products (Mapping[int, ProductRow]): Products keyed by id.

    Returns:
        list[PricedLine]: One priced line per input line, same order.

    Raises:
        ValidationError: If ``lines`` is empty or a quantity is invalid.
        NotFoundError: If a referenced product is absent from ``products``.
    """

    if not lines:
        raise ValidationError("An order requires at least one line")
    priced: List[PricedLine] = []
    for line in lines:
        quantity = require_positive_quantity(line.quantity)
        product = products.get(line.product_id)
        if product is None:
            log.warning("Order line references unknown product '%s'", line.product_id)
            raise NotFoundError(f"Unknown product id: {line.product_id}")
        unit_price = product.selling_price
        priced.append(
            PricedLine(
                product_id=product.product_id,
                quantity=quantity,
                unit_price=unit_price,
                subtotal=unit_price * quantity,
            )
        )
    return priced


def cost_purchase_lines(lines: Sequence[CostLine], products: Mapping[int, ProductRow]) -> List[CostedLine]:
    """Validate purchase lines and compute their subtotals from invoiced cost.

    Raises:
        ValidationError: If ``lines`` is empty, a quantity is invalid, or a
            unit cost is negative.
        NotFoundError: If a referenced product is absent from ``products``.
    """

    if not lines:
        raise ValidationError("A purchase requires at least one line")
    costed: List[CostedLine] = []
    for line in lines:
        quantity = require_positive_quantity(line.quantity)
        unit_cost = require_nonnegative_money(line.unit_cost, label="Unit cost")
        if line.product_id not in products:
            log.warning("Purchase line references unknown product '%s'", line.product_id)
            raise NotFoundError(f"Unknown product id: {line.product_id}")
        costed.append(
            CostedLine(
                product_id=line.product_id,
                quantity=quantity,
                unit_cost=unit_cost,
                subtotal=unit_cost * quantity,
            )
        )
    return costed


def order_totals(lines: Iterable[PricedLine], discount: Decimal) -> Tuple[Decimal, Decimal]:
    """Return ``(total_amount, final_amount)`` for priced lines and a discount.

    Raises:
        ValidationError: If the discount is negative or exceeds the total.
    """

    discount = require_nonnegative_money(discount, label="Discount")
    total = sum((line.subtotal for line in lines), Decimal("0"))
    if discount > total:
        log.error("Discount %s exceeds order total %s", discount, total)
        raise ValidationError("Discount cannot exceed the order total")
    return total, total - discount


def order_stock_deltas(lines: Iterable[QuantityLine]) -> Dict[int, int]:
    """Signed stock changes for creating an order: every line depletes stock."""

    return _aggregate(lines, sign=-1)


def cancellation_stock_deltas(lines: Iterable[QuantityLine]) -> Dict[int, int]:
    """Signed stock changes that undo an order's depletion on cancellation."""

    return _aggregate(lines, sign=1)


def receipt_stock_deltas(lines: Iterable[QuantityLine]) -> Dict[int, int]:
    """Signed stock changes for receiving a purchase."""

    return _aggregate(lines, sign=1)


def receipt_cost_updates(lines: Iterable[CostLine]) -> Dict[int, Decimal]:
    """Latest unit cost per product, processing lines in input order."""

    costs: Dict[int, Decimal] = {}
    for line in lines:
        costs[line.product_id] = line.unit_cost
    return costs


def apply_stock_deltas(
    products: Mapping[int, ProductRow],
    deltas: Mapping[int, int],
    policy: NegativeStockPolicy = NegativeStockPolicy.ALLOW,
) -> Dict[int, ProductRow]:
    """Return updated copies of the products touched by ``deltas``.

    Under :attr:`NegativeStockPolicy.REJECT` any product whose resulting
    quantity would be negative aborts the whole computation. Under
    :attr:`NegativeStockPolicy.ALLOW` oversold stock simply goes negative.

    Raises:
        NotFoundError: If a delta references a product not in ``products``.
        ConflictError: If the reject policy is active and stock would drop
            below zero.
    """

    updated: Dict[int, ProductRow] = {}
    for product_id, delta in deltas.items():
        product = products.get(product_id)
        if product is None:
            raise NotFoundError(f"Unknown product id: {product_id}")
        new_quantity = product.stock_quantity + delta
        if new_quantity < 0 and policy is NegativeStockPolicy.REJECT:
            log.error(
                "Insufficient stock for product '%s': on hand %s, change %s",
                product_id,
                product.stock_quantity,
                delta,
            )
            raise ConflictError(
                f"Insufficient stock for product {product.sku}: "
                f"{product.stock_quantity} on hand, {-delta} requested"
            )
        if new_quantity < 0:
            log.warning("Product '%s' oversold; stock now %s", product_id, new_quantity)
        updated[product_id] = replace(product, stock_quantity=new_quantity)
    return updated


def apply_cost_updates(products: Mapping[int, ProductRow], costs: Mapping[int, Decimal]) -> Dict[int, ProductRow]:
    """Return copies of the products in ``costs`` with their cost price replaced."""

    updated: Dict[int, ProductRow] = {}
    for product_id, unit_cost in costs.items():
        product = products.get(product_id)
        if product is None:
            raise NotFoundError(f"Unknown product id: {product_id}")
        updated[product_id] = replace(product, cost_price=unit_cost)
    return updated


def loyalty_points_for(final_amount: Decimal, unit: Decimal) -> int:
    """Points earned for ``final_amount``: one per full ``unit`` spent."""

    if final_amount <= 0:
        return 0
    return int((final_amount / unit).to_integral_value(rounding=ROUND_FLOOR))


def require_transition(kind: str, current: str, target: str, table: Mapping[str, frozenset[str]]) -> None:
    """Reject any status change that is not listed in ``table``.

    Raises:
        ConflictError: If ``current -> target`` is not an allowed transition.
    """

    if target not in table.get(current, frozenset()):
        log.error("Illegal %s transition %s -> %s", kind, current, target)
        raise ConflictError(f"Cannot move {kind} from '{current}' to '{target}'")


def generate_document_number(
    prefix: str,
    when: datetime,
    exists: Callable[[str], bool],
    *,
    attempts: int = DOCUMENT_NUMBER_ATTEMPTS,
) -> str:
    """Build a ``{prefix}-YYYYMMDD-NNNNN`` number unique against ``exists``.

    ``NNNNN`` is the low five digits of the epoch milliseconds of ``when``.
    On a collision successive millisecond values are probed.

    Raises:
        ConflictError: If every probed number is already taken.
    """

    local = when.astimezone() if when.tzinfo is not None else when
    millis = int(when.timestamp() * 1000)
    date_part = local.strftime("%Y%m%d")
    for offset in range(attempts):
        candidate = f"{prefix}-{date_part}-{(millis + offset) % 100000:05d}"
        if not exists(candidate):
            return candidate
    raise ConflictError(f"Could not allocate a unique {prefix} number for {date_part}")


def _aggregate(lines: Iterable[QuantityLine], *, sign: int) -> Dict[int, int]:
    deltas: Dict[int, int] = {}
    for line in lines:
        deltas[line.product_id] = deltas.get(line.product_id, 0) + sign * line.quantity
    return deltas
