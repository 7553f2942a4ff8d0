"""Purchase transaction manager: inbound stock from suppliers."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from . import core_logic, log
from .constants import NegativeStockPolicy, PurchaseStatus, SheetName
from .core_logic import RuntimeContext
from .data_manager import ProductRow, PurchaseLineRow, PurchaseRow
from .errors import ValidationError
from .stock_ledger import (
    PURCHASE_TRANSITIONS,
    CostLine,
    apply_cost_updates,
    apply_stock_deltas,
    cost_purchase_lines,
    generate_document_number,
    receipt_cost_updates,
    receipt_stock_deltas,
    require_positive_quantity,
    require_transition,
)

PURCHASE_NUMBER_PREFIX = "PUR"


@dataclass(frozen=True)
class PurchaseLineDraft:
    """Product, quantity and the supplier's invoiced unit cost."""

    product_id: int
    quantity: int
    unit_cost: Decimal


@dataclass(frozen=True)
class PurchaseDraft:
    user_id: Optional[int] = None
    supplier_id: Optional[int] = None
    notes: Optional[str] = None
    status: str = PurchaseStatus.PENDING.value
    purchase_date: Optional[datetime] = None


def _coerce_status(value: str) -> PurchaseStatus:
    try:
        return PurchaseStatus(value)
    except ValueError as exc:
        log.error("Unknown purchase status '%s'", value)
        raise ValidationError(f"Unknown purchase status: {value}") from exc


def _receive(context: RuntimeContext, lines: Sequence[CostLine]) -> None:
    """Add received quantities to stock and apply last-cost-wins cost prices."""

    products = core_logic.products_by_id(context)
    stocked = apply_stock_deltas(products, receipt_stock_deltas(lines), NegativeStockPolicy.ALLOW)
    merged: Dict[int, ProductRow] = {**products, **stocked}
    costed = apply_cost_updates(merged, receipt_cost_updates(lines))
    core_logic.save_products(context, {**stocked, **costed})


def create_purchase(
    context: RuntimeContext,
    draft: PurchaseDraft,
    lines: Sequence[PurchaseLineDraft],
) -> PurchaseRow:
    """Record a purchase and its lines as one unit.

    Unit costs come from the lines, not from the products. A purchase created
    directly as ``received`` increases stock and updates cost prices
    immediately.

    Raises:
        ValidationError: If ``lines`` is empty, a quantity or unit cost is
            invalid, or the status is unknown or ``cancelled``.
        NotFoundError: If the staff user, supplier or a product is unknown.
    """

    if not lines:
        log.error("Rejected purchase without lines")
        raise ValidationError("A purchase requires at least one line")
    for line in lines:
        require_positive_quantity(line.quantity)
    status = _coerce_status(draft.status)
    if status is PurchaseStatus.CANCELLED:
        raise ValidationError("A purchase cannot be created as cancelled")

    with core_logic.atomic(context, "create purchase"):
        user_id = core_logic.resolve_user_id(context, draft.user_id)
        core_logic.require_active_user(context, user_id)
        if draft.supplier_id is not None:
            core_logic.get_supplier(context, draft.supplier_id)

        costed = cost_purchase_lines(lines, core_logic.products_by_id(context))
        total = sum((line.subtotal for line in costed), Decimal("0"))

        taken = {purchase.purchase_number for purchase in list_purchases(context)}
        purchase_number = generate_document_number(PURCHASE_NUMBER_PREFIX, context.now(), taken.__contains__)
        purchase = core_logic.insert_record(
            context,
            PurchaseRow(
                purchase_id=0,
                purchase_number=purchase_number,
                supplier_id=draft.supplier_id,
                user_id=user_id,
                purchase_date_iso=core_logic.timestamp_iso(context, draft.purchase_date),
                status=status.value,
                total_amount=total,
                notes=draft.notes,
            ),
        )
        for line in costed:
            core_logic.insert_record(
                context,
                PurchaseLineRow(
                    line_id=0,
                    purchase_id=purchase.purchase_id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_cost=line.unit_cost,
                    subtotal=line.subtotal,
                ),
            )
        if status is PurchaseStatus.RECEIVED:
            _receive(context, costed)
        core_logic.log_activity(
            context,
            user_id=user_id,
            action="Purchase created",
            details=f"Purchase {purchase_number} was created for {total}",
        )

    log.info("Created purchase '%s' (%s) with %d lines", purchase.purchase_id, purchase.purchase_number, len(costed))
    return purchase


def update_purchase_status(
    context: RuntimeContext,
    purchase_id: int,
    status: str,
    *,
    user_id: Optional[int] = None,
) -> PurchaseRow:
    """Receive or cancel a purchase.

    ``pending -> received`` applies the stock increase and cost updates once.
    Cancelling, from either ``pending`` or ``received``, never reverses stock.

    Raises:
        ValidationError: If ``status`` is unknown.
        NotFoundError: If the purchase is unknown.
        ConflictError: If the transition is not allowed.
    """

    target = _coerce_status(status)
    with core_logic.atomic(context, "update purchase status"):
        purchase = get_purchase(context, purchase_id)
        require_transition("purchase", purchase.status, target.value, PURCHASE_TRANSITIONS)
        if target is PurchaseStatus.RECEIVED:
            _receive(context, get_purchase_lines(context, purchase_id))
        updated = core_logic.save_record(context, replace(purchase, status=target.value))
        core_logic.log_activity(
            context,
            user_id=core_logic.resolve_user_id(context, user_id),
            action="Purchase status updated",
            details=f"Purchase {purchase.purchase_number} changed from {purchase.status} to {target.value}",
        )

    log.info("Purchase '%s' moved %s -> %s", purchase_id, purchase.status, target.value)
    return updated


def list_purchases(context: RuntimeContext, *, status: Optional[str] = None) -> List[PurchaseRow]:
    purchases = core_logic.list_records(context, SheetName.PURCHASES)
    if status is not None:
        wanted = _coerce_status(status).value
        purchases = [purchase for purchase in purchases if purchase.status == wanted]
    return purchases


def get_purchase(context: RuntimeContext, purchase_id: int) -> PurchaseRow:
    return core_logic.get_record(context, SheetName.PURCHASES, purchase_id, "Purchase")


def get_purchase_lines(context: RuntimeContext, purchase_id: int) -> List[PurchaseLineRow]:
    """Lines belonging to ``purchase_id`` in input order."""

    lines = [
        line for line in core_logic.list_records(context, SheetName.PURCHASE_ITEMS) if line.purchase_id == purchase_id
    ]
    lines.sort(key=lambda line: line.line_id)
    return lines


def purchases_by_supplier(context: RuntimeContext, supplier_id: int) -> List[PurchaseRow]:
    """Purchases from ``supplier_id``; raises ``NotFoundError`` for unknown suppliers."""

    core_logic.get_supplier(context, supplier_id)
    return [purchase for purchase in list_purchases(context) if purchase.supplier_id == supplier_id]
