"""Shared pytest fixtures and utilities for retail POS tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from retail_pos import cli, constants, core_logic, data_manager  # noqa: E402
from retail_pos.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_USER_ID = 1
FIXED_NOW = datetime(2026, 3, 18, 12, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
    "AutoSave = {autosave}\n\n"
    "[Defaults]\n"
    "DefaultUserID = {default_user_id}\n\n"
    "[Policy]\n"
    "NegativeStock = {negative_stock}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    default_user_id: int
    schema_version: str
    store_name: str


class FakeClock:
    """Deterministic clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


@dataclass(frozen=True)
class Catalog:
    """Ids of the records seeded by the ``catalog`` fixture."""

    widget_id: int
    gadget_id: int
    customer_id: int
    supplier_id: int


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        default_user_id: int = DEFAULT_USER_ID,
        filename: str = "retail_pos.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, default_user_id=default_user_id, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_user_id: int = DEFAULT_USER_ID,
        autosave: bool = True,
        negative_stock: str = "allow",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir_name, default_user_id=default_user_id)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                autosave=str(autosave).lower(),
                default_user_id=default_user_id,
                negative_stock=negative_stock,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            default_user_id=default_user_id,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def runtime_context(config_file: Path, clock: FakeClock) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file, clock=clock)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def settings_factory() -> Callable[..., data_manager.ConfigSettings]:
    """Build in-memory settings with optional policy overrides."""

    def _build(**overrides) -> data_manager.ConfigSettings:
        values = dict(
            data_file=None,
            store_name="Test Store",
            schema_version=constants.EXPECTED_SCHEMA_VERSION,
            default_user_id=DEFAULT_USER_ID,
            autosave=False,
        )
        values.update(overrides)
        return data_manager.ConfigSettings(**values)

    return _build


@pytest.fixture
def context(settings_factory, clock: FakeClock) -> core_logic.RuntimeContext:
    """An in-memory context over a freshly built workbook."""

    return core_logic.create_memory_context(settings_factory(), clock=clock)


@pytest.fixture
def catalog(context: core_logic.RuntimeContext) -> Catalog:
    """Seed two products, a customer and a supplier."""

    widget = core_logic.create_product(
        context,
        name="Widget",
        sku="W-1",
        barcode="8900001",
        selling_price=Decimal("15000"),
        cost_price=Decimal("9000"),
        stock_quantity=10,
    )
    gadget = core_logic.create_product(
        context,
        name="Gadget",
        sku="G-1",
        selling_price=Decimal("2500"),
        cost_price=Decimal("1200"),
        stock_quantity=20,
    )
    customer = core_logic.create_customer(context, name="Ana Reyes", phone="555-0101", email="ana@example.com")
    supplier = core_logic.create_supplier(context, name="Acme Wholesale", contact_person="Lee")
    return Catalog(
        widget_id=widget.product_id,
        gadget_id=gadget.product_id,
        customer_id=customer.customer_id,
        supplier_id=supplier.supplier_id,
    )


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="retail-pos", description="Retail POS CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
