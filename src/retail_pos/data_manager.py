"""Data access layer for the retail POS.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating or
   deleting individual rows.
4. Snapshots: capturing and restoring every managed sheet so callers can
   undo a partially applied unit of work.
"""


from __future__ import annotations

import configparser
import os
import tempfile
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from openpyxl.workbook import Workbook
import openpyxl

from .constants import (
    DEFAULT_ALERT_THRESHOLD,
    DEFAULT_LOYALTY_UNIT,
    DEFAULT_PROFIT_MARGIN,
    NegativeStockPolicy,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"

# Column order of every managed sheet. The first column is the primary key.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.USERS.value: ["UserID", "Username", "FullName", "Email", "Role", "IsActive"],
    SheetName.CATEGORIES.value: ["CategoryID", "CategoryName", "Description"],
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "SKU",
        "Barcode",
        "Description",
        "CategoryID",
        "CostPrice",
        "SellingPrice",
        "StockQuantity",
        "AlertThreshold",
    ],
    SheetName.CUSTOMERS.value: [
        "CustomerID",
        "CustomerName",
        "Phone",
        "Email",
        "Address",
        "LoyaltyPoints",
        "CreatedAt",
    ],
    SheetName.SUPPLIERS.value: [
        "SupplierID",
        "SupplierName",
        "ContactPerson",
        "Phone",
        "Email",
        "Address",
    ],
    SheetName.ORDERS.value: [
        "OrderID",
        "OrderNumber",
        "CustomerID",
        "UserID",
        "OrderDate",
        "Status",
        "TotalAmount",
        "Discount",
        "FinalAmount",
        "PaymentMethod",
        "Notes",
    ],
    SheetName.ORDER_ITEMS.value: [
        "OrderItemID",
        "OrderID",
        "ProductID",
        "Quantity",
        "UnitPrice",
        "Subtotal",
    ],
    SheetName.PURCHASES.value: [
        "PurchaseID",
        "PurchaseNumber",
        "SupplierID",
        "UserID",
        "PurchaseDate",
        "Status",
        "TotalAmount",
        "Notes",
    ],
    SheetName.PURCHASE_ITEMS.value: [
        "PurchaseItemID",
        "PurchaseID",
        "ProductID",
        "Quantity",
        "UnitCost",
        "Subtotal",
    ],
    SheetName.ACTIVITY_LOG.value: ["ActivityID", "UserID", "Action", "Details", "Timestamp"],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about.

    ``data_file`` is ``None`` for purely in-memory contexts that are never
    written to disk.
    """

    data_file: Optional[Path]
    store_name: str
    schema_version: str
    default_user_id: int
    autosave: bool = True
    negative_stock: NegativeStockPolicy = NegativeStockPolicy.ALLOW
    loyalty_unit: Decimal = DEFAULT_LOYALTY_UNIT
    low_stock_threshold: int = DEFAULT_ALERT_THRESHOLD
    profit_margin: Decimal = DEFAULT_PROFIT_MARGIN


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: int
    username: str
    full_name: str
    email: Optional[str]
    role: str
    is_active: bool


@dataclass(frozen=True)
class CategoryRow:
    """In-memory view of a row from the ``Categories`` sheet."""

    category_id: int
    category_name: str
    description: Optional[str]


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: int
    product_name: str
    sku: str
    barcode: Optional[str]
    description: Optional[str]
    category_id: Optional[int]
    cost_price: Decimal
    selling_price: Decimal
    stock_quantity: int
    alert_threshold: Optional[int]


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: int
    customer_name: str
    phone: Optional[str]
    email: Optional[str]
    address: Optional[str]
    loyalty_points: int
    created_iso: str


@dataclass(frozen=True)
class SupplierRow:
    """In-memory view of a row from the ``Suppliers`` sheet."""

    supplier_id: int
    supplier_name: str
    contact_person: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    address: Optional[str]


@dataclass(frozen=True)
class OrderRow:
    """In-memory view of a row from the ``Orders`` sheet."""

    order_id: int
    order_number: str
    customer_id: Optional[int]
    user_id: int
    order_date_iso: str
    status: str
    total_amount: Decimal
    discount: Decimal
    final_amount: Decimal
    payment_method: str
    notes: Optional[str]


@dataclass(frozen=True)
class OrderLineRow:
    """In-memory view of a row from the ``OrderItems`` sheet."""

    line_id: int
    order_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class PurchaseRow:
    """In-memory view of a row from the ``Purchases`` sheet."""

    purchase_id: int
    purchase_number: str
    supplier_id: Optional[int]
    user_id: int
    purchase_date_iso: str
    status: str
    total_amount: Decimal
    notes: Optional[str]


@dataclass(frozen=True)
class PurchaseLineRow:
    """In-memory view of a row from the ``PurchaseItems`` sheet."""

    line_id: int
    purchase_id: int
    product_id: int
    quantity: int
    unit_cost: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class ActivityRow:
    """In-memory view of a row from the append-only ``ActivityLog`` sheet."""

    activity_id: int
    user_id: Optional[int]
    action: str
    details: Optional[str]
    timestamp_iso: str


Record = Union[
    UserRow,
    CategoryRow,
    ProductRow,
    CustomerRow,
    SupplierRow,
    OrderRow,
    OrderLineRow,
    PurchaseRow,
    PurchaseLineRow,
    ActivityRow,
]

# Raw row values per sheet, excluding the header row.
WorkbookSnapshot = Dict[str, List[Tuple[Any, ...]]]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration
            data. Validation of required entries happens in
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Required entries live under ``[System]`` and ``[Defaults]``. The optional
    ``[Policy]`` section tunes stock, loyalty and dashboard behaviour and
    falls back to the package defaults entry by entry. Relative ``DataFile``
    paths are anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a policy entry cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
        default_user_id = parser.getint("Defaults", "DefaultUserID")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    autosave = parser.getboolean("System", "AutoSave", fallback=True)
    negative_stock = NegativeStockPolicy(
        parser.get("Policy", "NegativeStock", fallback=NegativeStockPolicy.ALLOW.value).strip().lower()
    )
    try:
        loyalty_unit = Decimal(parser.get("Policy", "LoyaltyUnit", fallback=str(DEFAULT_LOYALTY_UNIT)))
        profit_margin = Decimal(parser.get("Policy", "ProfitMargin", fallback=str(DEFAULT_PROFIT_MARGIN)))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid numeric policy entry: {exc}") from exc
    low_stock_threshold = parser.getint("Policy", "LowStockThreshold", fallback=DEFAULT_ALERT_THRESHOLD)
    if loyalty_unit <= 0:
        raise ValueError("LoyaltyUnit must be greater than zero")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        default_user_id=default_user_id,
        autosave=autosave,
        negative_stock=negative_stock,
        loyalty_unit=loyalty_unit,
        low_stock_threshold=low_stock_threshold,
        profit_margin=profit_margin,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
        KeyError: If one of the managed sheets is missing.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    validate_workbook(wb)
    return wb


def validate_workbook(workbook: Workbook) -> None:
    """Ensure every managed sheet exists with the expected header row.

    Raises:
        KeyError: If a sheet is missing or its headers do not match
            :data:`SHEET_COLUMNS`.
    """

    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name not in workbook.sheetnames:
            raise KeyError(f"Workbook is missing sheet: {sheet_name}")
        headers = [cell.value for cell in workbook[sheet_name][1]][: len(columns)]
        if headers != list(columns):
            raise KeyError(f"Unexpected headers on sheet {sheet_name}: {headers}")


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination`` without leaving a torn file.

    The workbook is first written to a temporary file in the destination
    directory and then moved over the target with :func:`os.replace`, so a
    crash mid-save leaves the previous file intact.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        workbook.save(tmp_path)
        os.replace(tmp_path, dest)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def iter_records(workbook: Workbook, sheet: SheetName) -> Iterable[Record]:
    """Iterate over the typed records stored on ``sheet``.

    The header row and fully empty rows are skipped. Each remaining row is
    converted through the sheet's deserializer.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet (SheetName): Managed sheet to read.

    Yields:
        Record: One structured row for each meaningful record in the sheet.
    """

    deserialize = _DESERIALIZERS[sheet]
    width = len(SHEET_COLUMNS[sheet.value])
    for raw in workbook[sheet.value].iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize(_pad(raw, width))


def append_record(workbook: Workbook, record: Record) -> None:
    """Append ``record`` as a new row on the sheet that owns its type."""

    sheet = workbook[sheet_for(record).value]
    _write_row(sheet, sheet.max_row + 1, serialize_record(record))


def update_record(workbook: Workbook, record: Record) -> None:
    """Overwrite the row whose primary key matches ``record``.

    Raises:
        KeyError: If no row carries the record's primary key.
    """

    sheet_name = sheet_for(record)
    key_column = SHEET_COLUMNS[sheet_name.value][0]
    key_value = primary_key(record)
    row_index = locate_row(workbook, sheet_name.value, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name.value} row not found: {key_value}")
    _write_row(workbook[sheet_name.value], row_index, serialize_record(record))


def delete_record(workbook: Workbook, sheet: SheetName, key_value: int) -> None:
    """Remove the row identified by ``key_value`` from ``sheet``.

    Raises:
        KeyError: If no row carries ``key_value``.
    """

    key_column = SHEET_COLUMNS[sheet.value][0]
    row_index = locate_row(workbook, sheet.value, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet.value} row not found: {key_value}")
    workbook[sheet.value].delete_rows(row_index, 1)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: Any) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (Any): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and cell_value == key_value:
            return row_idx

    return None


def next_identifier(workbook: Workbook, sheet: SheetName) -> int:
    """Return the next free integer primary key for ``sheet`` (max + 1)."""

    highest = 0
    for raw in workbook[sheet.value].iter_rows(min_row=2, max_col=1, values_only=True):
        value = raw[0]
        if value is not None:
            highest = max(highest, int(value))
    return highest + 1


def snapshot_workbook(workbook: Workbook) -> WorkbookSnapshot:
    """Capture the raw values of every managed sheet below the header row."""

    return {
        sheet_name: [tuple(raw) for raw in workbook[sheet_name].iter_rows(min_row=2, values_only=True)]
        for sheet_name in SHEET_COLUMNS
    }


def restore_workbook(workbook: Workbook, snapshot: WorkbookSnapshot) -> None:
    """Rewrite every sheet in ``snapshot`` back to its captured values.

    Header rows (and their formatting) are left untouched.
    """

    for sheet_name, rows in snapshot.items():
        sheet = workbook[sheet_name]
        if sheet.max_row > 1:
            sheet.delete_rows(2, sheet.max_row - 1)
        for offset, values in enumerate(rows):
            _write_row(sheet, offset + 2, values)


def sheet_for(record: Record) -> SheetName:
    """Return the sheet that stores records of ``record``'s type."""

    try:
        return _SHEET_BY_TYPE[type(record)]
    except KeyError as exc:
        raise TypeError(f"Unsupported record type: {type(record).__name__}") from exc


def primary_key(record: Record) -> int:
    """Return the primary key value of ``record`` (its first field)."""

    return getattr(record, fields(record)[0].name)


def serialize_record(record: Record) -> list[object]:
    """Convert a row dataclass into its worksheet column ordering.

    Field order on every row dataclass mirrors :data:`SHEET_COLUMNS`, and
    :class:`~decimal.Decimal` values are kept as-is so Excel preserves their
    precision.
    """

    return [getattr(record, field.name) for field in fields(record)]


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw ``Users`` row into a :class:`UserRow`."""

    user_id, username, full_name, email, role, is_active = raw_row[:6]
    return UserRow(
        user_id=_to_int(user_id),
        username=_to_str(username),
        full_name=_to_str(full_name),
        email=_to_optional_str(email),
        role=_to_str(role),
        is_active=bool(is_active),
    )


def deserialize_category(raw_row: Sequence[object]) -> CategoryRow:
    """Convert a raw ``Categories`` row into a :class:`CategoryRow`."""

    category_id, category_name, description = raw_row[:3]
    return CategoryRow(
        category_id=_to_int(category_id),
        category_name=_to_str(category_name),
        description=_to_optional_str(description),
    )


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Prices become :class:`~decimal.Decimal` instances, identifiers and
    quantities become ``int``, and blank optional cells stay ``None``. A blank
    ``AlertThreshold`` is preserved as ``None`` so readers can apply the
    configured default.
    """

    (
        product_id,
        product_name,
        sku,
        barcode,
        description,
        category_id,
        cost_raw,
        selling_raw,
        stock_raw,
        threshold_raw,
    ) = raw_row[:10]
    return ProductRow(
        product_id=_to_int(product_id),
        product_name=_to_str(product_name),
        sku=_to_str(sku),
        barcode=_to_optional_str(barcode),
        description=_to_optional_str(description),
        category_id=_to_optional_int(category_id),
        cost_price=_to_decimal(cost_raw),
        selling_price=_to_decimal(selling_raw),
        stock_quantity=_to_int(stock_raw),
        alert_threshold=_to_optional_int(threshold_raw),
    )


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    """Convert a raw ``Customers`` row into a :class:`CustomerRow`."""

    customer_id, customer_name, phone, email, address, points, created = raw_row[:7]
    return CustomerRow(
        customer_id=_to_int(customer_id),
        customer_name=_to_str(customer_name),
        phone=_to_optional_str(phone),
        email=_to_optional_str(email),
        address=_to_optional_str(address),
        loyalty_points=_to_int(points),
        created_iso=_to_str(created),
    )


def deserialize_supplier(raw_row: Sequence[object]) -> SupplierRow:
    """Convert a raw ``Suppliers`` row into a :class:`SupplierRow`."""

    supplier_id, supplier_name, contact_person, phone, email, address = raw_row[:6]
    return SupplierRow(
        supplier_id=_to_int(supplier_id),
        supplier_name=_to_str(supplier_name),
        contact_person=_to_optional_str(contact_person),
        phone=_to_optional_str(phone),
        email=_to_optional_str(email),
        address=_to_optional_str(address),
    )


def deserialize_order(raw_row: Sequence[object]) -> OrderRow:
    """Convert a raw ``Orders`` row into an :class:`OrderRow`."""

    (
        order_id,
        order_number,
        customer_id,
        user_id,
        order_date,
        status,
        total_raw,
        discount_raw,
        final_raw,
        payment_method,
        notes,
    ) = raw_row[:11]
    return OrderRow(
        order_id=_to_int(order_id),
        order_number=_to_str(order_number),
        customer_id=_to_optional_int(customer_id),
        user_id=_to_int(user_id),
        order_date_iso=_to_str(order_date),
        status=_to_str(status),
        total_amount=_to_decimal(total_raw),
        discount=_to_decimal(discount_raw),
        final_amount=_to_decimal(final_raw),
        payment_method=_to_str(payment_method),
        notes=_to_optional_str(notes),
    )


def deserialize_order_line(raw_row: Sequence[object]) -> OrderLineRow:
    """Convert a raw ``OrderItems`` row into an :class:`OrderLineRow`."""

    line_id, order_id, product_id, quantity, unit_price, subtotal = raw_row[:6]
    return OrderLineRow(
        line_id=_to_int(line_id),
        order_id=_to_int(order_id),
        product_id=_to_int(product_id),
        quantity=_to_int(quantity),
        unit_price=_to_decimal(unit_price),
        subtotal=_to_decimal(subtotal),
    )


def deserialize_purchase(raw_row: Sequence[object]) -> PurchaseRow:
    """Convert a raw ``Purchases`` row into a :class:`PurchaseRow`."""

    purchase_id, purchase_number, supplier_id, user_id, purchase_date, status, total_raw, notes = raw_row[:8]
    return PurchaseRow(
        purchase_id=_to_int(purchase_id),
        purchase_number=_to_str(purchase_number),
        supplier_id=_to_optional_int(supplier_id),
        user_id=_to_int(user_id),
        purchase_date_iso=_to_str(purchase_date),
        status=_to_str(status),
        total_amount=_to_decimal(total_raw),
        notes=_to_optional_str(notes),
    )


def deserialize_purchase_line(raw_row: Sequence[object]) -> PurchaseLineRow:
    """Convert a raw ``PurchaseItems`` row into a :class:`PurchaseLineRow`."""

    line_id, purchase_id, product_id, quantity, unit_cost, subtotal = raw_row[:6]
    return PurchaseLineRow(
        line_id=_to_int(line_id),
        purchase_id=_to_int(purchase_id),
        product_id=_to_int(product_id),
        quantity=_to_int(quantity),
        unit_cost=_to_decimal(unit_cost),
        subtotal=_to_decimal(subtotal),
    )


def deserialize_activity(raw_row: Sequence[object]) -> ActivityRow:
    """Convert a raw ``ActivityLog`` row into an :class:`ActivityRow`."""

    activity_id, user_id, action, details, timestamp = raw_row[:5]
    return ActivityRow(
        activity_id=_to_int(activity_id),
        user_id=_to_optional_int(user_id),
        action=_to_str(action),
        details=_to_optional_str(details),
        timestamp_iso=_to_str(timestamp),
    )


def _write_row(sheet: Any, row_index: int, values: Sequence[object]) -> None:
    for column_index, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column_index, value=value)


def _pad(raw_row: Sequence[object], width: int) -> Sequence[object]:
    if len(raw_row) >= width:
        return raw_row
    return tuple(raw_row) + (None,) * (width - len(raw_row))


def _to_int(value: object, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(Decimal(str(value)))


def _to_optional_int(value: object) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(Decimal(str(value)))


def _to_decimal(value: object) -> Decimal:
    return Decimal(str(value)) if value is not None and value != "" else Decimal("0.00")


def _to_str(value: object) -> str:
    return str(value) if value is not None else ""


def _to_optional_str(value: object) -> Optional[str]:
    return str(value) if value is not None and value != "" else None


_SHEET_BY_TYPE: Dict[type, SheetName] = {
    UserRow: SheetName.USERS,
    CategoryRow: SheetName.CATEGORIES,
    ProductRow: SheetName.PRODUCTS,
    CustomerRow: SheetName.CUSTOMERS,
    SupplierRow: SheetName.SUPPLIERS,
    OrderRow: SheetName.ORDERS,
    OrderLineRow: SheetName.ORDER_ITEMS,
    PurchaseRow: SheetName.PURCHASES,
    PurchaseLineRow: SheetName.PURCHASE_ITEMS,
    ActivityRow: SheetName.ACTIVITY_LOG,
}

_DESERIALIZERS: Dict[SheetName, Callable[[Sequence[object]], Record]] = {
    SheetName.USERS: deserialize_user,
    SheetName.CATEGORIES: deserialize_category,
    SheetName.PRODUCTS: deserialize_product,
    SheetName.CUSTOMERS: deserialize_customer,
    SheetName.SUPPLIERS: deserialize_supplier,
    SheetName.ORDERS: deserialize_order,
    SheetName.ORDER_ITEMS: deserialize_order_line,
    SheetName.PURCHASES: deserialize_purchase,
    SheetName.PURCHASE_ITEMS: deserialize_purchase_line,
    SheetName.ACTIVITY_LOG: deserialize_activity,
}
