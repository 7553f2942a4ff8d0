"""Tests for the runtime context, atomic units and catalog accessors."""

from __future__ import annotations

import threading
from datetime import datetime
from decimal import Decimal

import pytest

from retail_pos import core_logic, data_manager
from retail_pos.constants import SheetName
from retail_pos.errors import ConflictError, NotFoundError, StorageError, ValidationError
from retail_pos.orders import OrderDraft, OrderLineDraft, create_order
from retail_pos.purchases import PurchaseDraft, PurchaseLineDraft, create_purchase


def _actions(context) -> list[str]:
    return [entry.action for entry in core_logic.list_records(context, SheetName.ACTIVITY_LOG)]


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def test_load_runtime_context_reads_settings(runtime_context):
    assert runtime_context.settings.store_name == "Test Store"
    assert runtime_context.settings.default_user_id == 1
    assert core_logic.get_user(runtime_context, 1).username == "admin"


def test_ensure_schema_version_rejects_mismatch(config_factory):
    bundle = config_factory(schema_version="0.9.0")
    context = core_logic.load_runtime_context(bundle.config_path)

    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(context)


def test_persist_context_requires_data_file(context):
    with pytest.raises(StorageError):
        core_logic.persist_context(context)


def test_refresh_context_discards_unsaved_changes(config_factory, clock):
    bundle = config_factory(autosave=False)
    context = core_logic.load_runtime_context(bundle.config_path, clock=clock)
    core_logic.create_category(context, name="Drinks")

    refreshed = core_logic.refresh_context(context)

    assert core_logic.list_categories(context)[0].category_name == "Drinks"
    assert core_logic.list_categories(refreshed) == []


def test_autosave_persists_each_committed_unit(runtime_context):
    core_logic.create_category(runtime_context, name="Drinks")

    reloaded = core_logic.refresh_context(runtime_context)
    assert [category.category_name for category in core_logic.list_categories(reloaded)] == ["Drinks"]


# ---------------------------------------------------------------------------
# Atomic units and caches
# ---------------------------------------------------------------------------


def test_atomic_rolls_back_every_write_on_domain_error(context, catalog):
    before = data_manager.snapshot_workbook(context.workbook)

    with pytest.raises(ConflictError):
        with core_logic.atomic(context, "test"):
            core_logic.create_category(context, name="Drinks")
            core_logic.update_product(context, catalog.widget_id, field_values={"stock_quantity": 0})
            raise ConflictError("boom")

    assert data_manager.snapshot_workbook(context.workbook) == before
    assert core_logic.list_categories(context) == []
    assert core_logic.get_product(context, catalog.widget_id).stock_quantity == 10


def test_atomic_wraps_unexpected_errors_as_storage_error(context):
    with pytest.raises(StorageError) as excinfo:
        with core_logic.atomic(context, "explode"):
            core_logic.create_category(context, name="Drinks")
            raise ZeroDivisionError("nope")

    assert isinstance(excinfo.value.__cause__, ZeroDivisionError)
    assert core_logic.list_categories(context) == []


def test_atomic_rolls_back_when_autosave_fails(runtime_context, monkeypatch):
    """A failed save undoes the in-memory changes of the unit."""

    def _fail(workbook, destination):
        raise OSError("read-only volume")

    monkeypatch.setattr(data_manager, "save_workbook", _fail)

    with pytest.raises(StorageError):
        core_logic.create_category(runtime_context, name="Drinks")

    assert core_logic.list_categories(runtime_context) == []


def test_atomic_rolls_back_on_keyboard_interrupt(context, catalog):
    before = data_manager.snapshot_workbook(context.workbook)

    with pytest.raises(KeyboardInterrupt):
        with core_logic.atomic(context, "interrupted"):
            core_logic.create_category(context, name="Drinks")
            raise KeyboardInterrupt

    assert data_manager.snapshot_workbook(context.workbook) == before
    assert core_logic.list_categories(context) == []
    assert context._tx.depth == 0


def test_interrupted_order_leaves_no_header_or_stock_change(context, catalog, monkeypatch):
    original = core_logic.log_activity

    def _interrupt(ctx, *, action, **kwargs):
        if action == "Order created":
            raise KeyboardInterrupt
        return original(ctx, action=action, **kwargs)

    monkeypatch.setattr(core_logic, "log_activity", _interrupt)

    with pytest.raises(KeyboardInterrupt):
        create_order(context, OrderDraft(), [OrderLineDraft(catalog.widget_id, 3)])

    assert core_logic.get_product(context, catalog.widget_id).stock_quantity == 10
    assert core_logic.list_records(context, SheetName.ORDERS) == []


def test_reads_wait_for_a_unit_in_progress(context, catalog):
    """Another thread never observes a unit that later rolls back."""

    entered = threading.Event()
    release = threading.Event()
    seen: list[tuple[int, int]] = []

    def _writer() -> None:
        try:
            with core_logic.atomic(context, "held"):
                core_logic.update_product(context, catalog.widget_id, field_values={"stock_quantity": 0})
                entered.set()
                release.wait(timeout=5)
                raise ConflictError("abandoned")
        except ConflictError:
            pass

    def _reader() -> None:
        stock = core_logic.get_product(context, catalog.widget_id).stock_quantity
        seen.append((stock, len(core_logic.list_records(context, SheetName.ACTIVITY_LOG))))

    activity_before = len(core_logic.list_records(context, SheetName.ACTIVITY_LOG))
    writer = threading.Thread(target=_writer)
    writer.start()
    assert entered.wait(timeout=5)

    reader = threading.Thread(target=_reader)
    reader.start()
    reader.join(timeout=0.2)
    assert reader.is_alive()

    release.set()
    writer.join(timeout=5)
    reader.join(timeout=5)

    assert seen == [(10, activity_before)]


def test_cache_is_reused_until_a_commit(context, monkeypatch):
    calls = []
    original = data_manager.iter_records

    def _counting(workbook, sheet):
        calls.append(sheet)
        return original(workbook, sheet)

    monkeypatch.setattr(data_manager, "iter_records", _counting)

    core_logic.list_users(context)
    core_logic.get_user(context, 1)
    assert calls.count(SheetName.USERS) == 1

    core_logic.create_user(context, username="sam", full_name="Sam Okafor")
    core_logic.list_users(context)
    assert calls.count(SheetName.USERS) >= 2


def test_insert_record_requires_atomic_unit(context):
    with pytest.raises(RuntimeError):
        core_logic.insert_record(context, data_manager.CategoryRow(0, "Drinks", None))


# ---------------------------------------------------------------------------
# Users and activity log
# ---------------------------------------------------------------------------


def test_create_user_rejects_duplicate_username(context):
    core_logic.create_user(context, username="sam", full_name="Sam Okafor")

    with pytest.raises(ConflictError):
        core_logic.create_user(context, username="sam", full_name="Another Sam")


def test_create_user_rejects_unknown_role(context):
    with pytest.raises(ValidationError):
        core_logic.create_user(context, username="sam", full_name="Sam", role="owner")


def test_require_active_user_rejects_disabled_account(context):
    user = core_logic.create_user(context, username="sam", full_name="Sam", is_active=False)

    with pytest.raises(ValidationError):
        core_logic.require_active_user(context, user.user_id)


def test_delete_user_refused_while_orders_reference_it(context, catalog):
    user = core_logic.create_user(context, username="sam", full_name="Sam")
    create_order(context, OrderDraft(user_id=user.user_id), [OrderLineDraft(catalog.gadget_id, 1)])

    with pytest.raises(ConflictError):
        core_logic.delete_user(context, user.user_id)


def test_every_mutation_appends_activity(context):
    category = core_logic.create_category(context, name="Drinks")
    core_logic.update_category(context, category.category_id, field_values={"description": "Cold"})
    core_logic.delete_category(context, category.category_id)

    assert _actions(context) == ["Category created", "Category updated", "Category deleted"]


def test_recent_activity_is_newest_first(context, clock):
    for name in ("A", "B", "C"):
        core_logic.create_category(context, name=name)
        clock.advance(minutes=1)

    details = [entry.details for entry in core_logic.recent_activity(context, limit=2)]
    assert details == ["Category C was created", "Category B was created"]


def test_activity_timestamps_come_from_clock(context, clock):
    entry = core_logic.log_activity(context, user_id=1, action="Login")

    assert entry.timestamp_iso == clock().isoformat()


def test_naive_timestamps_are_utc_both_ways(context):
    stored = core_logic.timestamp_iso(context, datetime(2026, 1, 2, 9, 30))

    assert stored == "2026-01-02T09:30:00+00:00"
    assert core_logic.parse_timestamp("2026-01-02T09:30:00") == core_logic.parse_timestamp(stored)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def test_create_product_rejects_duplicate_sku(context, catalog):
    with pytest.raises(ConflictError):
        core_logic.create_product(context, name="Copy", sku="W-1", selling_price=Decimal("1"))


def test_create_product_rejects_duplicate_barcode(context, catalog):
    with pytest.raises(ConflictError):
        core_logic.create_product(context, name="Copy", sku="W-2", barcode="8900001", selling_price=Decimal("1"))


def test_create_product_validates_prices(context):
    with pytest.raises(ValidationError):
        core_logic.create_product(context, name="Bad", sku="B-1", selling_price=Decimal("-1"))


def test_create_product_requires_known_category(context):
    with pytest.raises(NotFoundError):
        core_logic.create_product(context, name="X", sku="X-1", selling_price=Decimal("1"), category_id=4)


def test_product_lookups(context, catalog):
    assert core_logic.get_product_by_sku(context, "G-1").product_id == catalog.gadget_id
    assert core_logic.get_product_by_barcode(context, "8900001").product_id == catalog.widget_id
    with pytest.raises(NotFoundError):
        core_logic.get_product(context, 999)


def test_search_products_is_case_insensitive(context, catalog):
    assert [product.sku for product in core_logic.search_products(context, "gadg")] == ["G-1"]
    assert [product.sku for product in core_logic.search_products(context, "89000")] == ["W-1"]
    assert len(core_logic.search_products(context, "  ")) == 2


def test_update_product_rechecks_uniqueness(context, catalog):
    with pytest.raises(ConflictError):
        core_logic.update_product(context, catalog.gadget_id, field_values={"sku": "W-1"})


def test_update_product_rejects_unknown_fields(context, catalog):
    with pytest.raises(ValidationError):
        core_logic.update_product(context, catalog.gadget_id, field_values={"colour": "red"})


def test_update_product_logs_stock_adjustment(context, catalog):
    core_logic.update_product(context, catalog.gadget_id, field_values={"stock_quantity": 25})

    assert _actions(context)[-2:] == ["Product updated", "Stock adjusted"]


def test_delete_product_refused_while_referenced(context, catalog):
    create_order(context, OrderDraft(), [OrderLineDraft(catalog.widget_id, 1)])

    with pytest.raises(ConflictError):
        core_logic.delete_product(context, catalog.widget_id)
    assert core_logic.get_product(context, catalog.widget_id)


def test_delete_product_refused_while_purchase_references_it(context, catalog):
    create_purchase(context, PurchaseDraft(), [PurchaseLineDraft(catalog.gadget_id, 1, Decimal("1000"))])

    with pytest.raises(ConflictError):
        core_logic.delete_product(context, catalog.gadget_id)


def test_delete_unreferenced_product(context, catalog):
    core_logic.delete_product(context, catalog.gadget_id)

    with pytest.raises(NotFoundError):
        core_logic.get_product(context, catalog.gadget_id)


def test_low_stock_uses_inclusive_threshold(context):
    core_logic.create_product(context, name="At", sku="A", selling_price=Decimal("1"), stock_quantity=5)
    core_logic.create_product(context, name="Above", sku="B", selling_price=Decimal("1"), stock_quantity=6)
    core_logic.create_product(
        context, name="Unset", sku="C", selling_price=Decimal("1"), stock_quantity=4, alert_threshold=None
    )

    assert [product.sku for product in core_logic.low_stock_products(context)] == ["A", "C"]


def test_delete_category_refused_while_products_use_it(context):
    category = core_logic.create_category(context, name="Drinks")
    core_logic.create_product(context, name="Cola", sku="C-1", selling_price=Decimal("3"), category_id=category.category_id)

    with pytest.raises(ConflictError):
        core_logic.delete_category(context, category.category_id)


# ---------------------------------------------------------------------------
# Customers and suppliers
# ---------------------------------------------------------------------------


def test_create_customer_starts_without_points(context, clock):
    customer = core_logic.create_customer(context, name="  Ana  ", phone="")

    assert customer.customer_name == "Ana"
    assert customer.phone is None
    assert customer.loyalty_points == 0
    assert customer.created_iso == clock().isoformat()


def test_update_customer_cannot_touch_points(context, catalog):
    with pytest.raises(ValidationError):
        core_logic.update_customer(context, catalog.customer_id, field_values={"loyalty_points": 100})


def test_update_customer_loyalty_adds_delta(context, catalog):
    core_logic.update_customer_loyalty(context, catalog.customer_id, 3)
    updated = core_logic.update_customer_loyalty(context, catalog.customer_id, -1)

    assert updated.loyalty_points == 2
    assert core_logic.get_customer(context, catalog.customer_id).loyalty_points == 2


def test_update_customer_loyalty_refuses_negative_balance(context, catalog):
    with pytest.raises(ConflictError):
        core_logic.update_customer_loyalty(context, catalog.customer_id, -1)


def test_update_customer_loyalty_unknown_customer(context):
    with pytest.raises(NotFoundError):
        core_logic.update_customer_loyalty(context, 404, 1)


def test_search_customers_matches_contact_fields(context, catalog):
    assert [customer.customer_id for customer in core_logic.search_customers(context, "0101")] == [catalog.customer_id]
    assert core_logic.search_customers(context, "nobody") == []


def test_delete_customer_refused_while_orders_reference_it(context, catalog):
    create_order(context, OrderDraft(customer_id=catalog.customer_id), [OrderLineDraft(catalog.gadget_id, 1)])

    with pytest.raises(ConflictError):
        core_logic.delete_customer(context, catalog.customer_id)


def test_delete_supplier_refused_while_purchases_reference_it(context, catalog):
    create_purchase(
        context,
        PurchaseDraft(supplier_id=catalog.supplier_id),
        [PurchaseLineDraft(catalog.gadget_id, 1, Decimal("1000"))],
    )

    with pytest.raises(ConflictError):
        core_logic.delete_supplier(context, catalog.supplier_id)


def test_update_supplier_strips_blank_fields(context, catalog):
    supplier = core_logic.update_supplier(
        context, catalog.supplier_id, field_values={"phone": "  ", "contact_person": "Kim"}
    )

    assert supplier.phone is None
    assert supplier.contact_person == "Kim"
