"""Utility for initializing the Taminot workbook.

The module doubles as a script (``taminot-setup``) and as a library used by
tests or other tooling. It writes the managed sheets with bold headers and
seeds the administrator account, whose id is the central warehouse ledger id.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import ADMIN_ORG_ID, UserRole

CONFIG_FILE = data_manager.CONFIG_FILE_NAME
ADMIN_DISPLAY_NAME = "Administrator"


@dataclass(frozen=True)
class SetupSettings:
    """Configuration values used during setup."""

    data_file: Path
    admin_login: str
    admin_password: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory, exactly as the runtime does.
    """

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    return SetupSettings(
        data_file=settings.data_file,
        admin_login=settings.admin_login,
        admin_password=settings.admin_password,
    )


def build_master_workbook(
    *,
    admin_login: str,
    admin_password: str,
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
) -> Workbook:
    """Return a new in-memory workbook with headers and the admin account."""

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

    data_manager.append_user(
        workbook,
        data_manager.UserRow(
            user_id=ADMIN_ORG_ID,
            name=ADMIN_DISPLAY_NAME,
            username=admin_login,
            password=admin_password,
            role=UserRole.ADMIN.value,
        ),
    )
    return workbook


def create_master_workbook(
    destination: Path,
    *,
    admin_login: str,
    admin_password: str,
    overwrite: bool = False,
) -> Path:
    """Create the Taminot workbook at ``destination``.

    Raises:
        FileExistsError: If the target exists and ``overwrite`` is ``False``.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing workbook: {destination}"
        )

    workbook = build_master_workbook(admin_login=admin_login, admin_password=admin_password)
    data_manager.save_workbook(workbook, destination)
    log.info("Created workbook '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        admin_login=settings.admin_login,
        admin_password=settings.admin_password,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="taminot-setup", description="Initialize the Taminot data file")
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

    print("--- Taminot Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
