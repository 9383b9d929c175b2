"""Tests for the workbook bootstrap script."""

from __future__ import annotations

import pytest

from taminot import data_manager, setup_workbook
from taminot.constants import ADMIN_ORG_ID, UserRole


def test_build_master_workbook_creates_managed_sheets():
    """Every managed sheet exists with its header row in bold."""

    workbook = setup_workbook.build_master_workbook(admin_login="root", admin_password="pw")

    assert workbook.sheetnames == list(data_manager.SHEET_COLUMNS)
    for sheet_name, columns in data_manager.SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == list(columns)
        assert workbook[sheet_name].cell(row=1, column=1).font.bold


def test_build_master_workbook_seeds_admin():
    """The administrator owns the central warehouse ledger id."""

    workbook = setup_workbook.build_master_workbook(admin_login="root", admin_password="pw")
    (admin,) = data_manager.iter_users(workbook)
    assert admin.user_id == ADMIN_ORG_ID
    assert admin.username == "root"
    assert admin.role == UserRole.ADMIN.value


def test_create_master_workbook_refuses_overwrite(tmp_path):
    """Existing files are kept unless overwrite is requested."""

    target = tmp_path / "taminot.xlsx"
    setup_workbook.create_master_workbook(target, admin_login="a", admin_password="b")
    with pytest.raises(FileExistsError):
        setup_workbook.create_master_workbook(target, admin_login="a", admin_password="b")
    setup_workbook.create_master_workbook(target, admin_login="c", admin_password="d", overwrite=True)

    (admin,) = data_manager.iter_users(data_manager.open_workbook(target))
    assert admin.username == "c"


def test_main_creates_workbook_from_config(tmp_path, capsys):
    """The script reads config.ini and creates the configured data file."""

    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = data/taminot.xlsx\nSchemaVersion = 1.0.0\n"
        "[Defaults]\nAdminLogin = admin\nAdminPassword = secret\n",
        encoding="utf-8",
    )

    assert setup_workbook.main(["--config", str(config_path)]) == 0
    assert (tmp_path / "data" / "taminot.xlsx").exists()
    assert "SUCCESS" in capsys.readouterr().out

    assert setup_workbook.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out


def test_main_reports_missing_config(tmp_path, capsys):
    """A missing config file is reported, not raised."""

    assert setup_workbook.main(["--config", str(tmp_path / "nope.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
