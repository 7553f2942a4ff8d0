"""Command-line entry points for the retail POS.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the drafts consumed by the transaction managers.
Keeping the CLI thin means the same parser configuration can be reused by
tests, scripts, or any other front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, dashboard, log, orders, purchases
from .constants import OrderStatus, PaymentMethod, PurchaseStatus, UserRole
from .errors import ConflictError, NotFoundError, StorageError, ValidationError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="retail-pos",
        description="Command-line tools for the retail POS workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    configure: Callable[[argparse.ArgumentParser], None],
    *,
    mutates: bool,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        configure(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=mutates)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as orders and purchases."""
    specs = {
        "add-user": register_add_user_command(subparsers),
        "add-category": register_add_category_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "add-supplier": register_add_supplier_command(subparsers),
        "order": register_order_command(subparsers),
        "order-status": register_order_status_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "purchase-status": register_purchase_status_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and the dashboard."""
    specs = {
        "products": register_products_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "orders": register_orders_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "activity": register_activity_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_acting_user(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--user-id", type=int, default=None, help="Acting staff id (defaults to DefaultUserID).")


def register_add_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-user``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--username", required=True)
        parser.add_argument("--full-name", required=True)
        parser.add_argument("--email", default=None)
        parser.add_argument("--role", choices=[member.value for member in UserRole], default=UserRole.STAFF.value)
        parser.add_argument("--inactive", action="store_true", help="Create the account disabled.")
        _add_acting_user(parser)

    return _simple_command("add-user", "Register a staff member.", run_add_user, configure, mutates=True)


def register_add_category_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-category``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--description", default=None)
        _add_acting_user(parser)

    return _simple_command("add-category", "Register a product category.", run_add_category, configure, mutates=True)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--sku", required=True)
        parser.add_argument("--selling-price", required=True)
        parser.add_argument("--cost-price", default="0")
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--barcode", default=None)
        parser.add_argument("--description", default=None)
        parser.add_argument("--category-id", type=int, default=None)
        parser.add_argument("--alert-threshold", type=int, default=None)
        _add_acting_user(parser)

    return _simple_command("add-product", "Register a new product.", run_add_product, configure, mutates=True)


def _add_contact_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--phone", default=None)
    parser.add_argument("--email", default=None)
    parser.add_argument("--address", default=None)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        _add_contact_arguments(parser)
        _add_acting_user(parser)

    return _simple_command("add-customer", "Register a customer.", run_add_customer, configure, mutates=True)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--contact-person", default=None)
        _add_contact_arguments(parser)
        _add_acting_user(parser)

    return _simple_command("add-supplier", "Register a supplier.", run_add_supplier, configure, mutates=True)


def register_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``order``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            default=[],
            metavar="PRODUCT_ID:QTY",
            help="Order line; repeat for several products.",
        )
        parser.add_argument("--customer-id", type=int, default=None)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--discount", default="0")
        parser.add_argument("--completed", action="store_true", help="Create the order already completed.")
        parser.add_argument("--notes", default=None)
        _add_acting_user(parser)

    return _simple_command("order", "Record a sales order.", run_order, configure, mutates=True)


def register_order_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``order-status``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--order-id", type=int, required=True)
        parser.add_argument(
            "--status",
            choices=[OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value],
            required=True,
        )
        _add_acting_user(parser)

    return _simple_command("order-status", "Complete or cancel an order.", run_order_status, configure, mutates=True)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            default=[],
            metavar="PRODUCT_ID:QTY:UNIT_COST",
            help="Purchase line; repeat for several products.",
        )
        parser.add_argument("--supplier-id", type=int, default=None)
        parser.add_argument("--received", action="store_true", help="Record the goods as already received.")
        parser.add_argument("--notes", default=None)
        _add_acting_user(parser)

    return _simple_command("purchase", "Record a supplier purchase.", run_purchase, configure, mutates=True)


def register_purchase_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase-status``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--purchase-id", type=int, required=True)
        parser.add_argument(
            "--status",
            choices=[PurchaseStatus.RECEIVED.value, PurchaseStatus.CANCELLED.value],
            required=True,
        )
        _add_acting_user(parser)

    return _simple_command(
        "purchase-status", "Receive or cancel a purchase.", run_purchase_status, configure, mutates=True
    )


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default="", help="Substring to match against name, SKU, barcode.")

    return _simple_command("products", "List products.", run_products_report, configure, mutates=False)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    return _simple_command(
        "low-stock", "List products at or below their alert threshold.", run_low_stock_report, _no_arguments,
        mutates=False,
    )


def register_orders_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``orders``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--status", choices=[member.value for member in OrderStatus], default=None)

    return _simple_command("orders", "List orders.", run_orders_report, configure, mutates=False)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    return _simple_command(
        "dashboard", "Display monthly figures and the 7-day sales series.", run_dashboard_report, _no_arguments,
        mutates=False,
    )


def register_activity_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``activity``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--limit", type=int, default=10)

    return _simple_command("activity", "Display the activity log.", run_activity_report, configure, mutates=False)


def _no_arguments(parser: argparse.ArgumentParser) -> None:
    return None


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_decimal(raw: str, label: str) -> Decimal:
    """Parse a money argument, reporting bad input as a validation error."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError(f"{label} must be a number, got {raw!r}") from exc


def _split_item(raw: str, parts: int, usage: str) -> List[str]:
    pieces = raw.split(":")
    if len(pieces) != parts:
        raise ValidationError(f"Item must look like {usage}, got {raw!r}")
    return pieces


def _parse_int(raw: str, label: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{label} must be a whole number, got {raw!r}") from exc


def translate_order(args: argparse.Namespace) -> tuple[orders.OrderDraft, List[orders.OrderLineDraft]]:
    """Translate CLI args into an order draft and its lines."""
    lines = []
    for raw in args.items:
        product_id, quantity = _split_item(raw, 2, "PRODUCT_ID:QTY")
        lines.append(
            orders.OrderLineDraft(
                product_id=_parse_int(product_id, "Product id"),
                quantity=_parse_int(quantity, "Quantity"),
            )
        )
    draft = orders.OrderDraft(
        user_id=args.user_id,
        customer_id=args.customer_id,
        payment_method=args.payment_method,
        discount=parse_decimal(args.discount, "Discount"),
        notes=args.notes,
        status=OrderStatus.COMPLETED.value if args.completed else OrderStatus.PENDING.value,
    )
    return draft, lines


def translate_purchase(args: argparse.Namespace) -> tuple[purchases.PurchaseDraft, List[purchases.PurchaseLineDraft]]:
    """Translate CLI args into a purchase draft and its lines."""
    lines = []
    for raw in args.items:
        product_id, quantity, unit_cost = _split_item(raw, 3, "PRODUCT_ID:QTY:UNIT_COST")
        lines.append(
            purchases.PurchaseLineDraft(
                product_id=_parse_int(product_id, "Product id"),
                quantity=_parse_int(quantity, "Quantity"),
                unit_cost=parse_decimal(unit_cost, "Unit cost"),
            )
        )
    draft = purchases.PurchaseDraft(
        user_id=args.user_id,
        supplier_id=args.supplier_id,
        notes=args.notes,
        status=PurchaseStatus.RECEIVED.value if args.received else PurchaseStatus.PENDING.value,
    )
    return draft, lines


def run_add_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    user = core_logic.create_user(
        context,
        username=args.username,
        full_name=args.full_name,
        email=args.email,
        role=args.role,
        is_active=not args.inactive,
        acting_user_id=args.user_id,
    )
    print(f"Created user {user.user_id} ({user.username})")
    return 0


def run_add_category(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    category = core_logic.create_category(
        context, name=args.name, description=args.description, acting_user_id=args.user_id
    )
    print(f"Created category {category.category_id} ({category.category_name})")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.create_product(
        context,
        name=args.name,
        sku=args.sku,
        selling_price=parse_decimal(args.selling_price, "Selling price"),
        cost_price=parse_decimal(args.cost_price, "Cost price"),
        stock_quantity=args.stock,
        barcode=args.barcode,
        description=args.description,
        category_id=args.category_id,
        alert_threshold=args.alert_threshold,
        acting_user_id=args.user_id,
    )
    print(f"Created product {product.product_id} ({product.sku})")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.create_customer(
        context,
        name=args.name,
        phone=args.phone,
        email=args.email,
        address=args.address,
        acting_user_id=args.user_id,
    )
    print(f"Created customer {customer.customer_id} ({customer.customer_name})")
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    supplier = core_logic.create_supplier(
        context,
        name=args.name,
        contact_person=args.contact_person,
        phone=args.phone,
        email=args.email,
        address=args.address,
        acting_user_id=args.user_id,
    )
    print(f"Created supplier {supplier.supplier_id} ({supplier.supplier_name})")
    return 0


def run_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the order workflow via the order manager."""
    draft, lines = translate_order(args)
    order = orders.create_order(context, draft, lines)
    print(f"Created order {order.order_id} {order.order_number} [{order.status}] total {order.final_amount}")
    return 0


def run_order_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    order = orders.update_order_status(context, args.order_id, args.status, user_id=args.user_id)
    print(f"Order {order.order_number} is now {order.status}")
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the purchase manager."""
    draft, lines = translate_purchase(args)
    purchase = purchases.create_purchase(context, draft, lines)
    print(
        f"Created purchase {purchase.purchase_id} {purchase.purchase_number} "
        f"[{purchase.status}] total {purchase.total_amount}"
    )
    return 0


def run_purchase_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    purchase = purchases.update_purchase_status(context, args.purchase_id, args.status, user_id=args.user_id)
    print(f"Purchase {purchase.purchase_number} is now {purchase.status}")
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print products matching ``--search``."""
    for product in core_logic.search_products(context, args.search):
        print(
            f"{product.product_id}\t{product.sku}\t{product.product_name}\t"
            f"{product.selling_price}\t{product.stock_quantity}"
        )
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for product in core_logic.low_stock_products(context):
        threshold = core_logic.effective_alert_threshold(context, product)
        print(f"{product.product_id}\t{product.sku}\t{product.stock_quantity}/{threshold}")
    return 0


def run_orders_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for order in orders.list_orders(context, status=args.status):
        print(f"{order.order_id}\t{order.order_number}\t{order.status}\t{order.final_amount}\t{order.order_date_iso}")
    return 0


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the dashboard aggregates."""
    data = dashboard.get_dashboard_data(context)
    stats = data.stats
    print(f"Revenue: {stats.revenue}")
    print(f"Orders: {stats.orders}")
    print(f"New customers: {stats.new_customers}")
    print(f"Profit: {stats.profit}")
    print("Sales by day:")
    for entry in data.sales_by_day:
        print(f"  {entry.day.isoformat()}\t{entry.amount}")
    print(f"Low stock: {len(data.low_stock_products)} product(s)")
    return 0


def run_activity_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for entry in core_logic.recent_activity(context, args.limit):
        print(f"{entry.timestamp_iso}\t{entry.user_id}\t{entry.action}\t{entry.details or ''}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, ValidationError):
        return 2
    if isinstance(error, (NotFoundError, FileNotFoundError)):
        return 3
    if isinstance(error, ConflictError):
        return 4
    if isinstance(error, StorageError):
        return 5
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    core_logic.persist_context(context)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        # With AutoSave on every committed unit has already been written.
        if exit_code == 0 and command_table[args.command].mutates and not context.settings.autosave:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
