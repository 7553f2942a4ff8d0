"""Tests for the pure stock, pricing and status rules."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from retail_pos import stock_ledger
from retail_pos.constants import NegativeStockPolicy
from retail_pos.data_manager import ProductRow
from retail_pos.errors import ConflictError, NotFoundError, ValidationError
from retail_pos.orders import OrderLineDraft
from retail_pos.purchases import PurchaseLineDraft


def _product(product_id: int, *, price: str = "10", stock: int = 10) -> ProductRow:
    return ProductRow(
        product_id=product_id,
        product_name=f"Item {product_id}",
        sku=f"SKU-{product_id}",
        barcode=None,
        description=None,
        category_id=None,
        cost_price=Decimal("1"),
        selling_price=Decimal(price),
        stock_quantity=stock,
        alert_threshold=5,
    )


@pytest.fixture
def products() -> dict[int, ProductRow]:
    return {1: _product(1, price="15000", stock=10), 2: _product(2, price="2500", stock=3)}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True, None])
def test_require_positive_quantity_rejects_bad_values(quantity):
    with pytest.raises(ValidationError):
        stock_ledger.require_positive_quantity(quantity)


def test_require_nonnegative_money_rejects_floats():
    """Floats are refused so binary rounding never reaches stored totals."""

    with pytest.raises(ValidationError):
        stock_ledger.require_nonnegative_money(0.1)


def test_require_nonnegative_money_accepts_int_and_decimal():
    assert stock_ledger.require_nonnegative_money(5) == Decimal("5")
    assert stock_ledger.require_nonnegative_money(Decimal("0.00")) == Decimal("0")


def test_require_nonnegative_money_rejects_negative():
    with pytest.raises(ValidationError):
        stock_ledger.require_nonnegative_money(Decimal("-0.01"), label="Discount")


# ---------------------------------------------------------------------------
# Pricing and totals
# ---------------------------------------------------------------------------


def test_price_order_lines_snapshots_selling_price(products):
    priced = stock_ledger.price_order_lines(
        [OrderLineDraft(product_id=1, quantity=3), OrderLineDraft(product_id=2, quantity=1)], products
    )

    assert [(line.unit_price, line.subtotal) for line in priced] == [
        (Decimal("15000"), Decimal("45000")),
        (Decimal("2500"), Decimal("2500")),
    ]


def test_price_order_lines_requires_lines(products):
    with pytest.raises(ValidationError):
        stock_ledger.price_order_lines([], products)


def test_price_order_lines_unknown_product(products):
    with pytest.raises(NotFoundError):
        stock_ledger.price_order_lines([OrderLineDraft(product_id=99, quantity=1)], products)


def test_cost_purchase_lines_keeps_invoiced_cost(products):
    costed = stock_ledger.cost_purchase_lines(
        [PurchaseLineDraft(product_id=1, quantity=4, unit_cost=Decimal("8000"))], products
    )

    assert costed[0].unit_cost == Decimal("8000")
    assert costed[0].subtotal == Decimal("32000")


def test_cost_purchase_lines_rejects_negative_cost(products):
    with pytest.raises(ValidationError):
        stock_ledger.cost_purchase_lines(
            [PurchaseLineDraft(product_id=1, quantity=1, unit_cost=Decimal("-1"))], products
        )


def test_order_totals_subtracts_discount(products):
    priced = stock_ledger.price_order_lines([OrderLineDraft(product_id=1, quantity=3)], products)

    assert stock_ledger.order_totals(priced, Decimal("2500")) == (Decimal("45000"), Decimal("42500"))


def test_order_totals_rejects_discount_above_total(products):
    priced = stock_ledger.price_order_lines([OrderLineDraft(product_id=2, quantity=1)], products)

    with pytest.raises(ValidationError):
        stock_ledger.order_totals(priced, Decimal("2500.01"))


# ---------------------------------------------------------------------------
# Stock and cost deltas
# ---------------------------------------------------------------------------


def test_stock_deltas_aggregate_per_product():
    lines = [
        OrderLineDraft(product_id=1, quantity=2),
        OrderLineDraft(product_id=2, quantity=1),
        OrderLineDraft(product_id=1, quantity=3),
    ]

    assert stock_ledger.order_stock_deltas(lines) == {1: -5, 2: -1}
    assert stock_ledger.cancellation_stock_deltas(lines) == {1: 5, 2: 1}
    assert stock_ledger.receipt_stock_deltas(lines) == {1: 5, 2: 1}


def test_receipt_cost_updates_last_cost_wins():
    lines = [
        PurchaseLineDraft(product_id=1, quantity=1, unit_cost=Decimal("10")),
        PurchaseLineDraft(product_id=2, quantity=1, unit_cost=Decimal("4")),
        PurchaseLineDraft(product_id=1, quantity=1, unit_cost=Decimal("12")),
    ]

    assert stock_ledger.receipt_cost_updates(lines) == {1: Decimal("12"), 2: Decimal("4")}


def test_apply_stock_deltas_allows_oversell_by_default(products):
    updated = stock_ledger.apply_stock_deltas(products, {2: -5})

    assert updated[2].stock_quantity == -2
    assert products[2].stock_quantity == 3


def test_apply_stock_deltas_reject_policy_raises(products):
    with pytest.raises(ConflictError):
        stock_ledger.apply_stock_deltas(products, {1: -1, 2: -4}, NegativeStockPolicy.REJECT)


def test_apply_stock_deltas_reject_policy_allows_exact_depletion(products):
    updated = stock_ledger.apply_stock_deltas(products, {2: -3}, NegativeStockPolicy.REJECT)

    assert updated[2].stock_quantity == 0


def test_apply_cost_updates_replaces_cost_price(products):
    updated = stock_ledger.apply_cost_updates(products, {1: Decimal("7")})

    assert updated[1].cost_price == Decimal("7")
    assert set(updated) == {1}


# ---------------------------------------------------------------------------
# Loyalty, transitions and document numbers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("amount", "expected"),
    [("47500", 4), ("9999.99", 0), ("10000", 1), ("0", 0), ("-5", 0)],
)
def test_loyalty_points_for_floors(amount, expected):
    assert stock_ledger.loyalty_points_for(Decimal(amount), Decimal("10000")) == expected


@pytest.mark.parametrize("target", ["completed", "cancelled"])
def test_require_transition_allows_from_pending(target):
    stock_ledger.require_transition("order", "pending", target, stock_ledger.ORDER_TRANSITIONS)


@pytest.mark.parametrize(
    ("current", "target"),
    [("completed", "completed"), ("completed", "cancelled"), ("cancelled", "completed"), ("pending", "pending")],
)
def test_require_transition_rejects_terminal_states(current, target):
    with pytest.raises(ConflictError):
        stock_ledger.require_transition("order", current, target, stock_ledger.ORDER_TRANSITIONS)


def test_purchase_transitions_allow_cancel_after_receipt():
    stock_ledger.require_transition("purchase", "received", "cancelled", stock_ledger.PURCHASE_TRANSITIONS)
    with pytest.raises(ConflictError):
        stock_ledger.require_transition("purchase", "cancelled", "received", stock_ledger.PURCHASE_TRANSITIONS)


def test_generate_document_number_format():
    when = datetime(2026, 3, 18, 12, 0, tzinfo=UTC)
    millis = int(when.timestamp() * 1000) % 100000
    date_part = when.astimezone().strftime("%Y%m%d")

    number = stock_ledger.generate_document_number("ORD", when, lambda candidate: False)

    assert number == f"ORD-{date_part}-{millis:05d}"


def test_generate_document_number_probes_past_collisions():
    when = datetime(2026, 3, 18, 12, 0, tzinfo=UTC)
    taken = {stock_ledger.generate_document_number("ORD", when, lambda candidate: False)}

    number = stock_ledger.generate_document_number("ORD", when, taken.__contains__)

    assert number not in taken
    assert number[:-5] == next(iter(taken))[:-5]


def test_generate_document_number_gives_up():
    when = datetime(2026, 3, 18, 12, 0, tzinfo=UTC)
    with pytest.raises(ConflictError):
        stock_ledger.generate_document_number("PUR", when, lambda candidate: True, attempts=3)
