"""Business logic layer for the retail POS.

This module owns the runtime context (settings, live workbook, clock, lock
and read caches), the atomic unit every mutation runs inside, and the thin
catalog accessors for users, categories, products, customers and suppliers.
The order and purchase transaction managers build on these primitives.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import (
    DEFAULT_ALERT_THRESHOLD,
    EXPECTED_SCHEMA_VERSION,
    RECENT_ACTIVITY_LIMIT,
    SheetName,
    UserRole,
)
from .errors import ConflictError, NotFoundError, POSError, StorageError, ValidationError
from .setup_excel import build_master_workbook
from .stock_ledger import require_nonnegative_money


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class _TransactionState:
    depth: int = 0


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the workbook and shared runtime state.

    ``clock`` supplies timestamps for order dates, activity entries and
    document numbers. ``lock`` serialises every atomic unit so that two
    concurrent mutations never read the same stale stock value.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    clock: Callable[[], datetime] = field(default=_utc_now, repr=False, compare=False)
    lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _tx: _TransactionState = field(default_factory=_TransactionState, repr=False, compare=False)

    def now(self) -> datetime:
        return self.clock()


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> RuntimeContext:
    """Load configuration settings and a live workbook.

    Args:
        config_path (Path | None): Optional override path for ``config.ini``.
            When omitted the data layer searches upward from the working
            directory.
        clock (Callable[[], datetime] | None): Optional replacement for the
            UTC wall clock.

    Returns:
        RuntimeContext: Fully populated context ready for the transaction
            managers.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options or sheets are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook, clock=clock or _utc_now)


def create_memory_context(
    settings: Optional[data_manager.ConfigSettings] = None,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> RuntimeContext:
    """Build a context over a fresh in-memory workbook that is never saved."""

    if settings is None:
        settings = data_manager.ConfigSettings(
            data_file=None,
            store_name="In-memory store",
            schema_version=EXPECTED_SCHEMA_VERSION,
            default_user_id=1,
            autosave=False,
        )
    workbook = build_master_workbook(default_user_id=settings.default_user_id)
    return RuntimeContext(settings=settings, workbook=workbook, clock=clock or _utc_now)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist the in-memory workbook to its configured data file.

    Raises:
        StorageError: If the context has no data file or the save fails.
    """
    if context.settings.data_file is None:
        raise StorageError("Context has no data file to persist to")
    with context.lock:
        try:
            data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
        except OSError as exc:
            log.error("Failed to persist workbook '%s': %s", context.settings.data_file, exc)
            raise StorageError(f"Unable to save workbook: {exc}") from exc
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook from disk, discarding unsaved modifications.

    A new :class:`RuntimeContext` is returned, so caches from the previous
    context are dropped.
    """
    if context.settings.data_file is None:
        raise StorageError("Context has no data file to reload from")
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, clock=context.clock)


@contextmanager
def atomic(context: RuntimeContext, label: str) -> Iterator[None]:
    """Run the enclosed writes as one all-or-nothing unit.

    The context lock is held for the whole unit. On entry every managed sheet
    is snapshotted; if the body raises, the workbook is restored to that
    snapshot and all caches are dropped, so no partial header, line or stock
    change stays visible. Domain errors propagate unchanged and anything else
    surfaces as :class:`StorageError`.

    When ``settings.autosave`` is on and the context has a data file, the
    workbook is saved before the unit counts as committed; a failed save rolls
    the in-memory state back as well.

    Interrupts such as KeyboardInterrupt also roll back and propagate as-is.
    Nested calls join the outermost unit.
    """

    with context.lock:
        if context._tx.depth:
            context._tx.depth += 1
            try:
                yield
            finally:
                context._tx.depth -= 1
            return

        snapshot = data_manager.snapshot_workbook(context.workbook)
        context._tx.depth = 1
        try:
            yield
            _invalidate_cache(context, *_ALL_BUCKETS)
            if context.settings.autosave and context.settings.data_file is not None:
                persist_context(context)
        except POSError:
            _rollback(context, snapshot, label)
            raise
        except Exception as exc:
            _rollback(context, snapshot, label)
            raise StorageError(f"{label} failed: {exc}") from exc
        except BaseException:
            _rollback(context, snapshot, label)
            raise
        finally:
            context._tx.depth = 0
    log.debug("Committed '%s'", label)


def _rollback(context: RuntimeContext, snapshot: data_manager.WorkbookSnapshot, label: str) -> None:
    data_manager.restore_workbook(context.workbook, snapshot)
    _invalidate_cache(context, *_ALL_BUCKETS)
    log.warning("Rolled back '%s'", label)


_ALL_BUCKETS = tuple(sheet.value for sheet in SheetName)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after the workbook changed."""

    if not names:
        return

    for name in names:
        context._cache.pop(name, None)


def _ensure_cache(context: RuntimeContext, sheet: SheetName) -> Dict[str, Any]:
    """Populate the ``all`` and ``by_id`` buckets for ``sheet`` on demand.

    Rows are read once per cache generation; any commit or rollback clears
    every bucket so the next read rebuilds from the workbook. Callers must
    hold the context lock so a unit in progress on another thread is never
    observed half-applied.
    """

    with context.lock:
        bucket = _get_cache_bucket(context, sheet.value)
        if "all" not in bucket:
            rows = list(data_manager.iter_records(context.workbook, sheet))
            bucket["all"] = rows
            bucket["by_id"] = {data_manager.primary_key(row): row for row in rows}
            log.debug("Populated %s cache with %d entries", sheet.value, len(rows))
        return bucket


def list_records(context: RuntimeContext, sheet: SheetName) -> List[Any]:
    """Return a copy of every cached record on ``sheet`` in sheet order."""

    with context.lock:
        return list(_ensure_cache(context, sheet)["all"])


def get_record(context: RuntimeContext, sheet: SheetName, key: int, label: str) -> Any:
    try:
        with context.lock:
            return _ensure_cache(context, sheet)["by_id"][key]
    except KeyError as exc:
        log.warning("%s lookup failed for id '%s'", label, key)
        raise NotFoundError(f"Unknown {label.lower()} id: {key}") from exc


def _insert(context: RuntimeContext, record: Any) -> Any:
    """Allocate the next id for ``record``'s sheet and append it."""

    sheet = data_manager.sheet_for(record)
    key_field = fields(record)[0].name
    record = replace(record, **{key_field: data_manager.next_identifier(context.workbook, sheet)})
    data_manager.append_record(context.workbook, record)
    _invalidate_cache(context, sheet.value)
    return record


def _save(context: RuntimeContext, record: Any) -> Any:
    data_manager.update_record(context.workbook, record)
    _invalidate_cache(context, data_manager.sheet_for(record).value)
    return record


def _remove(context: RuntimeContext, sheet: SheetName, key: int) -> None:
    data_manager.delete_record(context.workbook, sheet, key)
    _invalidate_cache(context, sheet.value)


def _apply_changes(record: Any, field_values: Mapping[str, Any], allowed: frozenset[str]) -> Any:
    unknown = set(field_values) - allowed
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")
    return replace(record, **field_values)


def _require_text(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        log.error("%s validation failed: %r", label, value)
        raise ValidationError(f"{label} is required")
    return value.strip()


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def timestamp_iso(context: RuntimeContext, when: Optional[datetime] = None) -> str:
    """Normalise ``when`` (default: the context clock) to a UTC ISO-8601 string.

    Naive datetimes are taken as UTC, matching :func:`parse_timestamp`.
    """

    moment = context.now() if when is None else when
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ISO-8601 timestamp; naive values are read as UTC."""

    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def resolve_user_id(context: RuntimeContext, user_id: Optional[int]) -> int:
    """Return ``user_id`` or the configured default staff id."""

    return context.settings.default_user_id if user_id is None else user_id


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


def log_activity(
    context: RuntimeContext,
    *,
    user_id: Optional[int],
    action: str,
    details: Optional[str] = None,
) -> data_manager.ActivityRow:
    """Append one entry to the activity log.

    Entries are never updated or deleted. Called inside another atomic unit
    the entry commits or rolls back together with it.
    """

    entry = data_manager.ActivityRow(
        activity_id=0,
        user_id=user_id,
        action=action,
        details=details,
        timestamp_iso=timestamp_iso(context),
    )
    with atomic(context, f"log activity '{action}'"):
        entry = _insert(context, entry)
    return entry


def recent_activity(context: RuntimeContext, limit: int = RECENT_ACTIVITY_LIMIT) -> List[data_manager.ActivityRow]:
    """Return the newest ``limit`` activity entries, newest first."""

    entries = list_records(context, SheetName.ACTIVITY_LOG)
    entries.sort(key=lambda entry: (entry.timestamp_iso, entry.activity_id), reverse=True)
    return entries[:limit]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

_USER_FIELDS = frozenset({"username", "full_name", "email", "role", "is_active"})


def list_users(context: RuntimeContext) -> List[data_manager.UserRow]:
    return list_records(context, SheetName.USERS)


def get_user(context: RuntimeContext, user_id: int) -> data_manager.UserRow:
    """Resolve a staff user by id or raise :class:`NotFoundError`."""

    return get_record(context, SheetName.USERS, user_id, "User")


def get_user_by_username(context: RuntimeContext, username: str) -> data_manager.UserRow:
    for user in list_users(context):
        if user.username == username:
            return user
    raise NotFoundError(f"Unknown username: {username}")


def require_active_user(context: RuntimeContext, user_id: int) -> data_manager.UserRow:
    """Resolve ``user_id`` and reject inactive staff accounts."""

    user = get_user(context, user_id)
    if not user.is_active:
        log.warning("Inactive user '%s' attempted a mutation", user_id)
        raise ValidationError(f"User '{user.username}' is inactive")
    return user


def _validate_user(user: data_manager.UserRow) -> data_manager.UserRow:
    try:
        role = UserRole(user.role).value
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {user.role}") from exc
    return replace(
        user,
        username=_require_text(user.username, "Username"),
        full_name=_require_text(user.full_name, "Full name"),
        email=_optional_text(user.email),
        role=role,
        is_active=bool(user.is_active),
    )


def _ensure_unique_username(context: RuntimeContext, username: str, *, exclude_id: Optional[int] = None) -> None:
    for user in list_users(context):
        if user.username == username and user.user_id != exclude_id:
            raise ConflictError(f"Username already exists: {username}")


def create_user(
    context: RuntimeContext,
    *,
    username: str,
    full_name: str,
    email: Optional[str] = None,
    role: str = UserRole.STAFF.value,
    is_active: bool = True,
    acting_user_id: Optional[int] = None,
) -> data_manager.UserRow:
    """Register a staff member; usernames are unique."""

    candidate = _validate_user(
        data_manager.UserRow(0, username, full_name, email, role, is_active)
    )
    with atomic(context, "create user"):
        _ensure_unique_username(context, candidate.username)
        user = _insert(context, candidate)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="User created",
            details=f"User {user.username} was created",
        )
    log.info("Created user '%s' (%s)", user.user_id, user.username)
    return user


def update_user(
    context: RuntimeContext,
    user_id: int,
    *,
    field_values: Mapping[str, Any],
    acting_user_id: Optional[int] = None,
) -> data_manager.UserRow:
    with atomic(context, "update user"):
        existing = get_user(context, user_id)
        updated = _validate_user(_apply_changes(existing, field_values, _USER_FIELDS))
        if updated.username != existing.username:
            _ensure_unique_username(context, updated.username, exclude_id=user_id)
        _save(context, updated)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="User updated",
            details=f"User {existing.username} was updated",
        )
    return updated


def delete_user(context: RuntimeContext, user_id: int, *, acting_user_id: Optional[int] = None) -> None:
    """Delete a user that no order or purchase references."""

    with atomic(context, "delete user"):
        user = get_user(context, user_id)
        referenced = any(order.user_id == user_id for order in list_records(context, SheetName.ORDERS)) or any(
            purchase.user_id == user_id for purchase in list_records(context, SheetName.PURCHASES)
        )
        if referenced:
            raise ConflictError(f"User '{user.username}' is referenced by orders or purchases")
        _remove(context, SheetName.USERS, user_id)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="User deleted",
            details=f"User {user.username} was deleted",
        )


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

_CATEGORY_FIELDS = frozenset({"category_name", "description"})


def list_categories(context: RuntimeContext) -> List[data_manager.CategoryRow]:
    return list_records(context, SheetName.CATEGORIES)


def get_category(context: RuntimeContext, category_id: int) -> data_manager.CategoryRow:
    return get_record(context, SheetName.CATEGORIES, category_id, "Category")


def create_category(
    context: RuntimeContext,
    *,
    name: str,
    description: Optional[str] = None,
    acting_user_id: Optional[int] = None,
) -> data_manager.CategoryRow:
    candidate = data_manager.CategoryRow(0, _require_text(name, "Category name"), _optional_text(description))
    with atomic(context, "create category"):
        category = _insert(context, candidate)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Category created",
            details=f"Category {category.category_name} was created",
        )
    return category


def update_category(
    context: RuntimeContext,
    category_id: int,
    *,
    field_values: Mapping[str, Any],
    acting_user_id: Optional[int] = None,
) -> data_manager.CategoryRow:
    with atomic(context, "update category"):
        existing = get_category(context, category_id)
        updated = _apply_changes(existing, field_values, _CATEGORY_FIELDS)
        updated = replace(
            updated,
            category_name=_require_text(updated.category_name, "Category name"),
            description=_optional_text(updated.description),
        )
        _save(context, updated)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Category updated",
            details=f"Category {existing.category_name} was updated",
        )
    return updated


def delete_category(context: RuntimeContext, category_id: int, *, acting_user_id: Optional[int] = None) -> None:
    """Delete a category no product belongs to."""

    with atomic(context, "delete category"):
        category = get_category(context, category_id)
        if any(product.category_id == category_id for product in list_products(context)):
            raise ConflictError(f"Category '{category.category_name}' still has products")
        _remove(context, SheetName.CATEGORIES, category_id)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Category deleted",
            details=f"Category {category.category_name} was deleted",
        )


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

_PRODUCT_FIELDS = frozenset(
    {
        "product_name",
        "sku",
        "barcode",
        "description",
        "category_id",
        "cost_price",
        "selling_price",
        "stock_quantity",
        "alert_threshold",
    }
)


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return every product in sheet order."""

    return list_records(context, SheetName.PRODUCTS)


def get_product(context: RuntimeContext, product_id: int) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        NotFoundError: If ``product_id`` is absent from the workbook.
    """
    return get_record(context, SheetName.PRODUCTS, product_id, "Product")


def get_product_by_sku(context: RuntimeContext, sku: str) -> data_manager.ProductRow:
    for product in list_products(context):
        if product.sku == sku:
            return product
    raise NotFoundError(f"Unknown SKU: {sku}")


def get_product_by_barcode(context: RuntimeContext, barcode: str) -> data_manager.ProductRow:
    for product in list_products(context):
        if product.barcode is not None and product.barcode == barcode:
            return product
    raise NotFoundError(f"Unknown barcode: {barcode}")


def products_by_id(context: RuntimeContext) -> Dict[int, data_manager.ProductRow]:
    """Return a fresh ``{product_id: ProductRow}`` mapping."""

    with context.lock:
        return dict(_ensure_cache(context, SheetName.PRODUCTS)["by_id"])


def search_products(context: RuntimeContext, query: str) -> List[data_manager.ProductRow]:
    """Case-insensitive substring search over name, SKU, barcode and description."""

    needle = (query or "").strip().lower()
    if not needle:
        return list_products(context)
    return [
        product
        for product in list_products(context)
        if any(
            needle in value.lower()
            for value in (product.product_name, product.sku, product.barcode, product.description)
            if value
        )
    ]


def effective_alert_threshold(context: RuntimeContext, product: data_manager.ProductRow) -> int:
    """The product's own threshold, or the configured default when unset."""

    if product.alert_threshold is not None:
        return product.alert_threshold
    return context.settings.low_stock_threshold


def is_low_stock(context: RuntimeContext, product: data_manager.ProductRow) -> bool:
    return product.stock_quantity <= effective_alert_threshold(context, product)


def low_stock_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Products whose stock is at or below their alert threshold."""

    return [product for product in list_products(context) if is_low_stock(context, product)]


def _validate_product(context: RuntimeContext, product: data_manager.ProductRow) -> data_manager.ProductRow:
    stock = product.stock_quantity
    if isinstance(stock, bool) or not isinstance(stock, int):
        raise ValidationError(f"Stock quantity must be a whole number, got {stock!r}")
    threshold = product.alert_threshold
    if threshold is not None and (isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0):
        raise ValidationError(f"Alert threshold must be a nonnegative whole number, got {threshold!r}")
    if product.category_id is not None:
        get_category(context, product.category_id)
    return replace(
        product,
        product_name=_require_text(product.product_name, "Product name"),
        sku=_require_text(product.sku, "SKU"),
        barcode=_optional_text(product.barcode),
        description=_optional_text(product.description),
        cost_price=require_nonnegative_money(product.cost_price, label="Cost price"),
        selling_price=require_nonnegative_money(product.selling_price, label="Selling price"),
    )


def _ensure_unique_product_codes(
    context: RuntimeContext,
    product: data_manager.ProductRow,
    *,
    exclude_id: Optional[int] = None,
) -> None:
    for other in list_products(context):
        if other.product_id == exclude_id:
            continue
        if other.sku == product.sku:
            raise ConflictError(f"Product with SKU '{product.sku}' already exists")
        if product.barcode is not None and other.barcode == product.barcode:
            raise ConflictError(f"Product with barcode '{product.barcode}' already exists")


def create_product(
    context: RuntimeContext,
    *,
    name: str,
    sku: str,
    selling_price: Decimal,
    cost_price: Decimal = Decimal("0"),
    stock_quantity: int = 0,
    barcode: Optional[str] = None,
    description: Optional[str] = None,
    category_id: Optional[int] = None,
    alert_threshold: Optional[int] = DEFAULT_ALERT_THRESHOLD,
    acting_user_id: Optional[int] = None,
) -> data_manager.ProductRow:
    """Register a product with a unique SKU and, when given, a unique barcode.

    Raises:
        ValidationError: On blank names/SKUs, negative prices or non-integer
            quantities.
        NotFoundError: If ``category_id`` is unknown.
        ConflictError: If the SKU or barcode is already taken.
    """
    candidate = data_manager.ProductRow(
        product_id=0,
        product_name=name,
        sku=sku,
        barcode=barcode,
        description=description,
        category_id=category_id,
        cost_price=cost_price,
        selling_price=selling_price,
        stock_quantity=stock_quantity,
        alert_threshold=alert_threshold,
    )
    with atomic(context, "create product"):
        candidate = _validate_product(context, candidate)
        _ensure_unique_product_codes(context, candidate)
        product = _insert(context, candidate)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Product created",
            details=f"Product {product.product_name} was created",
        )
    log.info("Created product '%s' (sku=%s)", product.product_id, product.sku)
    return product


def update_product(
    context: RuntimeContext,
    product_id: int,
    *,
    field_values: Mapping[str, Any],
    acting_user_id: Optional[int] = None,
) -> data_manager.ProductRow:
    """Edit product attributes.

    A direct ``stock_quantity`` edit is recorded as its own ``Stock adjusted``
    activity entry so the audit trail explains every stock movement.
    """
    with atomic(context, "update product"):
        existing = get_product(context, product_id)
        updated = _validate_product(context, _apply_changes(existing, field_values, _PRODUCT_FIELDS))
        _ensure_unique_product_codes(context, updated, exclude_id=product_id)
        _save(context, updated)
        user_id = resolve_user_id(context, acting_user_id)
        log_activity(
            context,
            user_id=user_id,
            action="Product updated",
            details=f"Product {existing.product_name} was updated",
        )
        if updated.stock_quantity != existing.stock_quantity:
            log_activity(
                context,
                user_id=user_id,
                action="Stock adjusted",
                details=(
                    f"Product {existing.sku} stock changed from "
                    f"{existing.stock_quantity} to {updated.stock_quantity}"
                ),
            )
    return updated


def delete_product(context: RuntimeContext, product_id: int, *, acting_user_id: Optional[int] = None) -> None:
    """Delete a product that no order or purchase line references.

    Raises:
        NotFoundError: If the product does not exist.
        ConflictError: If historical lines still reference it.
    """
    with atomic(context, "delete product"):
        product = get_product(context, product_id)
        referenced = any(
            line.product_id == product_id for line in list_records(context, SheetName.ORDER_ITEMS)
        ) or any(line.product_id == product_id for line in list_records(context, SheetName.PURCHASE_ITEMS))
        if referenced:
            log.warning("Refusing to delete referenced product '%s'", product_id)
            raise ConflictError(f"Product '{product.sku}' is referenced by order or purchase lines")
        _remove(context, SheetName.PRODUCTS, product_id)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Product deleted",
            details=f"Product {product.product_name} was deleted",
        )


def save_products(context: RuntimeContext, products: Mapping[int, data_manager.ProductRow]) -> None:
    """Write already-computed product rows; only valid inside an atomic unit."""

    if not context._tx.depth:
        raise RuntimeError("save_products must run inside an atomic unit")
    for product in products.values():
        _save(context, product)


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------

_CUSTOMER_FIELDS = frozenset({"customer_name", "phone", "email", "address"})


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    return list_records(context, SheetName.CUSTOMERS)


def get_customer(context: RuntimeContext, customer_id: int) -> data_manager.CustomerRow:
    """Resolve a customer by id or raise :class:`NotFoundError`."""

    return get_record(context, SheetName.CUSTOMERS, customer_id, "Customer")


def search_customers(context: RuntimeContext, query: str) -> List[data_manager.CustomerRow]:
    """Case-insensitive substring search over name, phone, email and address."""

    needle = (query or "").strip().lower()
    if not needle:
        return list_customers(context)
    return [
        customer
        for customer in list_customers(context)
        if any(
            needle in value.lower()
            for value in (customer.customer_name, customer.phone, customer.email, customer.address)
            if value
        )
    ]


def _clean_customer(customer: data_manager.CustomerRow) -> data_manager.CustomerRow:
    return replace(
        customer,
        customer_name=_require_text(customer.customer_name, "Customer name"),
        phone=_optional_text(customer.phone),
        email=_optional_text(customer.email),
        address=_optional_text(customer.address),
    )


def create_customer(
    context: RuntimeContext,
    *,
    name: str,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    acting_user_id: Optional[int] = None,
) -> data_manager.CustomerRow:
    """Register a customer with a zero loyalty balance."""

    candidate = _clean_customer(
        data_manager.CustomerRow(0, name, phone, email, address, 0, timestamp_iso(context))
    )
    with atomic(context, "create customer"):
        customer = _insert(context, candidate)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Customer created",
            details=f"Customer {customer.customer_name} was created",
        )
    return customer


def update_customer(
    context: RuntimeContext,
    customer_id: int,
    *,
    field_values: Mapping[str, Any],
    acting_user_id: Optional[int] = None,
) -> data_manager.CustomerRow:
    """Edit contact details. Loyalty points are not editable here."""

    with atomic(context, "update customer"):
        existing = get_customer(context, customer_id)
        updated = _clean_customer(_apply_changes(existing, field_values, _CUSTOMER_FIELDS))
        _save(context, updated)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Customer updated",
            details=f"Customer {existing.customer_name} was updated",
        )
    return updated


def update_customer_loyalty(
    context: RuntimeContext,
    customer_id: int,
    delta: int,
    *,
    acting_user_id: Optional[int] = None,
) -> data_manager.CustomerRow:
    """Add ``delta`` points to a customer's balance.

    Raises:
        NotFoundError: If the customer does not exist.
        ConflictError: If the balance would drop below zero.
    """

    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError(f"Loyalty delta must be a whole number, got {delta!r}")
    with atomic(context, "update customer loyalty"):
        customer = get_customer(context, customer_id)
        new_balance = customer.loyalty_points + delta
        if new_balance < 0:
            raise ConflictError(f"Customer '{customer_id}' has only {customer.loyalty_points} points")
        updated = _save(context, replace(customer, loyalty_points=new_balance))
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Loyalty points adjusted",
            details=f"Customer {customer.customer_name} points {customer.loyalty_points} -> {new_balance}",
        )
    log.info("Customer '%s' loyalty %+d (now %d)", customer_id, delta, new_balance)
    return updated


def delete_customer(context: RuntimeContext, customer_id: int, *, acting_user_id: Optional[int] = None) -> None:
    """Delete a customer that no order references."""

    with atomic(context, "delete customer"):
        customer = get_customer(context, customer_id)
        if any(order.customer_id == customer_id for order in list_records(context, SheetName.ORDERS)):
            raise ConflictError(f"Customer '{customer.customer_name}' is referenced by orders")
        _remove(context, SheetName.CUSTOMERS, customer_id)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Customer deleted",
            details=f"Customer {customer.customer_name} was deleted",
        )


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

_SUPPLIER_FIELDS = frozenset({"supplier_name", "contact_person", "phone", "email", "address"})


def list_suppliers(context: RuntimeContext) -> List[data_manager.SupplierRow]:
    return list_records(context, SheetName.SUPPLIERS)


def get_supplier(context: RuntimeContext, supplier_id: int) -> data_manager.SupplierRow:
    return get_record(context, SheetName.SUPPLIERS, supplier_id, "Supplier")


def _clean_supplier(supplier: data_manager.SupplierRow) -> data_manager.SupplierRow:
    return replace(
        supplier,
        supplier_name=_require_text(supplier.supplier_name, "Supplier name"),
        contact_person=_optional_text(supplier.contact_person),
        phone=_optional_text(supplier.phone),
        email=_optional_text(supplier.email),
        address=_optional_text(supplier.address),
    )


def create_supplier(
    context: RuntimeContext,
    *,
    name: str,
    contact_person: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    acting_user_id: Optional[int] = None,
) -> data_manager.SupplierRow:
    candidate = _clean_supplier(data_manager.SupplierRow(0, name, contact_person, phone, email, address))
    with atomic(context, "create supplier"):
        supplier = _insert(context, candidate)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Supplier created",
            details=f"Supplier {supplier.supplier_name} was created",
        )
    return supplier


def update_supplier(
    context: RuntimeContext,
    supplier_id: int,
    *,
    field_values: Mapping[str, Any],
    acting_user_id: Optional[int] = None,
) -> data_manager.SupplierRow:
    with atomic(context, "update supplier"):
        existing = get_supplier(context, supplier_id)
        updated = _clean_supplier(_apply_changes(existing, field_values, _SUPPLIER_FIELDS))
        _save(context, updated)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Supplier updated",
            details=f"Supplier {existing.supplier_name} was updated",
        )
    return updated


def delete_supplier(context: RuntimeContext, supplier_id: int, *, acting_user_id: Optional[int] = None) -> None:
    """Delete a supplier that no purchase references."""

    with atomic(context, "delete supplier"):
        supplier = get_supplier(context, supplier_id)
        if any(purchase.supplier_id == supplier_id for purchase in list_records(context, SheetName.PURCHASES)):
            raise ConflictError(f"Supplier '{supplier.supplier_name}' is referenced by purchases")
        _remove(context, SheetName.SUPPLIERS, supplier_id)
        log_activity(
            context,
            user_id=resolve_user_id(context, acting_user_id),
            action="Supplier deleted",
            details=f"Supplier {supplier.supplier_name} was deleted",
        )


def insert_record(context: RuntimeContext, record: Any) -> Any:
    """Append ``record`` under a freshly allocated id; only valid inside an atomic unit."""

    if not context._tx.depth:
        raise RuntimeError("insert_record must run inside an atomic unit")
    return _insert(context, record)


def save_record(context: RuntimeContext, record: Any) -> Any:
    """Overwrite an existing row; only valid inside an atomic unit."""

    if not context._tx.depth:
        raise RuntimeError("save_record must run inside an atomic unit")
    return _save(context, record)
