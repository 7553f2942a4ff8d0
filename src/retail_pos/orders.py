"""Order transaction manager.

Creating an order and moving it through its status machine each touch the
order header, its lines, the stock of every referenced product, optionally a
customer's loyalty balance, and the activity log. Every such operation runs
inside one :func:`~retail_pos.core_logic.atomic` unit.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from . import core_logic, log
from .constants import RECENT_ORDERS_LIMIT, NegativeStockPolicy, OrderStatus, PaymentMethod, SheetName
from .core_logic import RuntimeContext
from .data_manager import CustomerRow, OrderLineRow, OrderRow, ProductRow, UserRow
from .errors import NotFoundError, ValidationError
from .stock_ledger import (
    ORDER_TRANSITIONS,
    apply_stock_deltas,
    cancellation_stock_deltas,
    generate_document_number,
    loyalty_points_for,
    order_stock_deltas,
    order_totals,
    price_order_lines,
    require_nonnegative_money,
    require_positive_quantity,
    require_transition,
)

ORDER_NUMBER_PREFIX = "ORD"


@dataclass(frozen=True)
class OrderLineDraft:
    """Requested product and quantity. The unit price is never caller supplied."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class OrderDraft:
    """Header fields for a new order.

    ``user_id`` falls back to the configured default staff id. ``status`` may
    be ``completed`` for walk-in sales, in which case loyalty points are
    credited immediately.
    """

    user_id: Optional[int] = None
    customer_id: Optional[int] = None
    payment_method: str = PaymentMethod.CASH.value
    discount: Decimal = Decimal("0")
    notes: Optional[str] = None
    status: str = OrderStatus.PENDING.value
    order_date: Optional[datetime] = None


@dataclass(frozen=True)
class OrderLineDetails:
    line: OrderLineRow
    product: Optional[ProductRow]


@dataclass(frozen=True)
class OrderDetails:
    """An order together with its lines and the records it references."""

    order: OrderRow
    lines: Tuple[OrderLineDetails, ...]
    customer: Optional[CustomerRow]
    user: Optional[UserRow]


def _coerce_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError as exc:
        log.error("Unknown order status '%s'", value)
        raise ValidationError(f"Unknown order status: {value}") from exc


def _coerce_payment_method(value: str) -> str:
    try:
        return PaymentMethod(value).value
    except ValueError as exc:
        log.error("Unknown payment method '%s'", value)
        raise ValidationError(f"Unknown payment method: {value}") from exc


def create_order(context: RuntimeContext, draft: OrderDraft, lines: Sequence[OrderLineDraft]) -> OrderRow:
    """Create an order with its lines and deplete stock, as one unit.

    Unit prices are snapshotted from each product's current selling price.
    Stock is decremented for every line at creation time whatever the initial
    status; under the ``reject`` negative-stock policy an oversell aborts the
    order. When the order is created directly as ``completed`` the customer
    (if any) is credited loyalty points straight away.

    Args:
        context (RuntimeContext): Runtime context supplying the workbook.
        draft (OrderDraft): Header fields.
        lines (Sequence[OrderLineDraft]): At least one product/quantity pair.

    Returns:
        OrderRow: The persisted header with ``order_id`` and
            ``order_number`` populated.

    Raises:
        ValidationError: If ``lines`` is empty, a quantity is below one, the
            discount is negative or exceeds the total, or the status or
            payment method is unknown.
        NotFoundError: If the staff user, customer or a product is unknown.
        ConflictError: If stock would go negative under the reject policy.
        StorageError: If the workbook cannot be written.
    """

    if not lines:
        log.error("Rejected order without lines")
        raise ValidationError("An order requires at least one line")
    for line in lines:
        require_positive_quantity(line.quantity)
    discount = require_nonnegative_money(draft.discount, label="Discount")
    status = _coerce_status(draft.status)
    if status is OrderStatus.CANCELLED:
        raise ValidationError("An order cannot be created as cancelled")
    payment_method = _coerce_payment_method(draft.payment_method)

    with core_logic.atomic(context, "create order"):
        user_id = core_logic.resolve_user_id(context, draft.user_id)
        core_logic.require_active_user(context, user_id)
        customer = None
        if draft.customer_id is not None:
            customer = core_logic.get_customer(context, draft.customer_id)

        products = core_logic.products_by_id(context)
        priced = price_order_lines(lines, products)
        total, final = order_totals(priced, discount)
        depleted = apply_stock_deltas(products, order_stock_deltas(priced), context.settings.negative_stock)

        taken = {order.order_number for order in list_orders(context)}
        order_number = generate_document_number(ORDER_NUMBER_PREFIX, context.now(), taken.__contains__)
        order = core_logic.insert_record(
            context,
            OrderRow(
                order_id=0,
                order_number=order_number,
                customer_id=draft.customer_id,
                user_id=user_id,
                order_date_iso=core_logic.timestamp_iso(context, draft.order_date),
                status=status.value,
                total_amount=total,
                discount=discount,
                final_amount=final,
                payment_method=payment_method,
                notes=draft.notes,
            ),
        )
        for line in priced:
            core_logic.insert_record(
                context,
                OrderLineRow(
                    line_id=0,
                    order_id=order.order_id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    subtotal=line.subtotal,
                ),
            )
        core_logic.save_products(context, depleted)
        core_logic.log_activity(
            context,
            user_id=user_id,
            action="Order created",
            details=f"Order {order_number} was created for {final}",
        )
        if status is OrderStatus.COMPLETED and customer is not None:
            _credit_loyalty(context, order, user_id)

    log.info("Created order '%s' (%s) with %d lines", order.order_id, order.order_number, len(priced))
    return order


def update_order_status(
    context: RuntimeContext,
    order_id: int,
    status: str,
    *,
    user_id: Optional[int] = None,
) -> OrderRow:
    """Move an order from ``pending`` to ``completed`` or ``cancelled``.

    Completion credits the customer's loyalty points exactly once; a second
    completion is an illegal transition. Cancellation returns every line's
    quantity to stock.

    Raises:
        ValidationError: If ``status`` is not a known order status.
        NotFoundError: If the order is unknown.
        ConflictError: If the transition is not allowed from the current
            status.
    """

    target = _coerce_status(status)
    with core_logic.atomic(context, "update order status"):
        order = get_order(context, order_id)
        require_transition("order", order.status, target.value, ORDER_TRANSITIONS)
        acting_user_id = core_logic.resolve_user_id(context, user_id)

        if target is OrderStatus.CANCELLED:
            # Restoring stock only ever adds, so the reject policy cannot trip.
            restored = apply_stock_deltas(
                core_logic.products_by_id(context),
                cancellation_stock_deltas(get_order_lines(context, order_id)),
                NegativeStockPolicy.ALLOW,
            )
            core_logic.save_products(context, restored)

        updated = core_logic.save_record(context, replace(order, status=target.value))
        core_logic.log_activity(
            context,
            user_id=acting_user_id,
            action="Order status updated",
            details=f"Order {order.order_number} changed from {order.status} to {target.value}",
        )
        if target is OrderStatus.COMPLETED and order.customer_id is not None:
            _credit_loyalty(context, updated, acting_user_id)

    log.info("Order '%s' moved %s -> %s", order_id, order.status, target.value)
    return updated


def _credit_loyalty(context: RuntimeContext, order: OrderRow, user_id: int) -> None:
    points = loyalty_points_for(order.final_amount, context.settings.loyalty_unit)
    if points:
        core_logic.update_customer_loyalty(context, order.customer_id, points, acting_user_id=user_id)


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


def list_orders(context: RuntimeContext, *, status: Optional[str] = None) -> List[OrderRow]:
    """Return orders in sheet order, optionally filtered by ``status``."""

    orders = core_logic.list_records(context, SheetName.ORDERS)
    if status is not None:
        wanted = _coerce_status(status).value
        orders = [order for order in orders if order.status == wanted]
    return orders


def get_order(context: RuntimeContext, order_id: int) -> OrderRow:
    return core_logic.get_record(context, SheetName.ORDERS, order_id, "Order")


def get_order_by_number(context: RuntimeContext, order_number: str) -> OrderRow:
    for order in list_orders(context):
        if order.order_number == order_number:
            return order
    raise NotFoundError(f"Unknown order number: {order_number}")


def get_order_lines(context: RuntimeContext, order_id: int) -> List[OrderLineRow]:
    """Lines belonging to ``order_id`` in the order they were created."""

    lines = [line for line in core_logic.list_records(context, SheetName.ORDER_ITEMS) if line.order_id == order_id]
    lines.sort(key=lambda line: line.line_id)
    return lines


def get_order_details(context: RuntimeContext, order_id: int) -> OrderDetails:
    """Resolve an order with its lines, products, customer and staff user.

    References that no longer resolve are reported as ``None`` rather than
    failing the read.
    """

    order = get_order(context, order_id)
    products = core_logic.products_by_id(context)
    lines = tuple(
        OrderLineDetails(line=line, product=products.get(line.product_id))
        for line in get_order_lines(context, order_id)
    )
    customer = None
    if order.customer_id is not None:
        customer = _optional(core_logic.get_customer, context, order.customer_id)
    user = _optional(core_logic.get_user, context, order.user_id)
    return OrderDetails(order=order, lines=lines, customer=customer, user=user)


def _optional(lookup, context: RuntimeContext, key: int):
    try:
        return lookup(context, key)
    except NotFoundError:
        return None


def recent_orders(context: RuntimeContext, limit: int = RECENT_ORDERS_LIMIT) -> List[OrderDetails]:
    """The newest ``limit`` orders by order date, with details."""

    orders = sorted(
        list_orders(context),
        key=lambda order: (core_logic.parse_timestamp(order.order_date_iso), order.order_id),
        reverse=True,
    )
    return [get_order_details(context, order.order_id) for order in orders[:limit]]


def orders_by_customer(context: RuntimeContext, customer_id: int) -> List[OrderRow]:
    """Orders placed by ``customer_id``.

    Raises:
        NotFoundError: If the customer is unknown.
    """

    core_logic.get_customer(context, customer_id)
    return [order for order in list_orders(context) if order.customer_id == customer_id]
