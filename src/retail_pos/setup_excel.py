"""Utility for initializing the retail POS master workbook.

The module doubles as a script (``python -m retail_pos.setup_excel``) and as a
library used by tests or other tooling. Shared helpers keep the workbook
bootstrap logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, MutableMapping, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from .constants import SheetName, UserRole
from .data_manager import SHEET_COLUMNS

# Seeded so that orders can be attributed before any staff is registered.
DEFAULT_USER: MutableMapping[str, object] = {
    "UserID": 1,
    "Username": "admin",
    "FullName": "Store Administrator",
    "Email": None,
    "Role": UserRole.ADMIN.value,
    "IsActive": True,
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    default_user_id: int


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
        default_user_id = parser.getint("Defaults", "DefaultUserID")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path, default_user_id=default_user_id)


def build_master_workbook(
    *,
    default_user_id: int = 1,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    default_user_template: Mapping[str, object] = DEFAULT_USER,
) -> Workbook:
    """Build an empty master workbook in memory.

    Every managed sheet receives a bold header row, and the ``Users`` sheet is
    seeded with the default administrator under ``default_user_id``.
    """

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    default_user = dict(default_user_template)
    default_user["UserID"] = default_user_id
    users_sheet = workbook[SheetName.USERS.value]
    users_sheet.append([default_user[column] for column in sheet_columns[SheetName.USERS.value]])
    return workbook


def create_master_workbook(
    destination: Path,
    *,
    default_user_id: int = 1,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook = build_master_workbook(default_user_id=default_user_id)
    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        default_user_id=settings.default_user_id,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the retail POS data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Retail POS Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\nSuccessfully created '{output_path}'.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
