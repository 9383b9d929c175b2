"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from dataclasses import replace
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from taminot import constants, data_manager
from taminot.setup_workbook import build_master_workbook


def _blank_workbook() -> OpenpyxlWorkbook:
    return build_master_workbook(admin_login="admin", admin_password="secret")


def _transaction(transaction_id: str, **overrides) -> data_manager.StockTransactionRow:
    values = dict(
        transaction_id=transaction_id,
        org_id="U1",
        product_id="P1",
        variant=None,
        quantity=4,
        movement_type="IN",
        comment=None,
        timestamp_iso="2026-01-01T10:00:00+00:00",
        requisition_id=None,
    )
    values.update(overrides)
    return data_manager.StockTransactionRow(**values)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile=taminot.xlsx\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_path


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("Defaults", "AdminLogin") == "admin"
    assert parser.get("System", "SchemaVersion") == constants.EXPECTED_SCHEMA_VERSION


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.admin_password == "secret"
    assert settings.request_timeout == 5.0


def test_parse_settings_defaults_request_timeout(tmp_path):
    """The Network section is optional."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=x.xlsx\nSchemaVersion=1.0.0\n"
        "[Defaults]\nAdminLogin=a\nAdminPassword=b\n"
    )
    settings = data_manager.parse_settings(parser, base_path=tmp_path)
    assert settings.request_timeout == data_manager.DEFAULT_REQUEST_TIMEOUT


def test_parse_settings_rejects_non_positive_timeout(tmp_path):
    """A zero timeout would make every HTTP call fail immediately."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=x.xlsx\nSchemaVersion=1.0.0\n"
        "[Defaults]\nAdminLogin=a\nAdminPassword=b\n"
        "[Network]\nRequestTimeout=0\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(workbook_factory):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(workbook_factory())
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert data_manager.missing_sheets(workbook) == []


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_workbook_persists_changes(workbook_factory, tmp_path):
    """save_workbook should write to the destination, creating folders."""

    workbook = data_manager.open_workbook(workbook_factory())
    data_manager.append_product(
        workbook, data_manager.ProductRow("P1", "Plasma", "dose", ("250 ml", "450 ml")))
    copy_path = tmp_path / "nested" / "copy.xlsx"
    data_manager.save_workbook(workbook, copy_path)

    reloaded = openpyxl.load_workbook(copy_path)
    rows = list(reloaded[data_manager.PRODUCTS_SHEET].iter_rows(min_row=2, values_only=True))
    assert rows == [("P1", "Plasma", "dose", "250 ml, 450 ml")]


def test_refresh_workbook_discards_unsaved_changes(workbook_factory):
    """refresh_workbook should reload what is on disk."""

    path = workbook_factory()
    workbook = data_manager.open_workbook(path)
    data_manager.append_product(workbook, data_manager.ProductRow("P1", "Gloves", "box"))

    reloaded = data_manager.refresh_workbook(path)
    assert reloaded is not workbook
    assert list(data_manager.iter_products(reloaded)) == []


def test_missing_sheets_reports_absent_tabs():
    """missing_sheets should list managed sheets not present in the workbook."""

    workbook = _blank_workbook()
    workbook.remove(workbook[data_manager.STOCK_LOG_SHEET])
    assert data_manager.missing_sheets(workbook) == [data_manager.STOCK_LOG_SHEET]


# ---------------------------------------------------------------------------
# Sheet reads and writes
# ---------------------------------------------------------------------------


def test_iter_users_yields_seeded_admin():
    """A new workbook contains exactly the administrator account."""

    users = list(data_manager.iter_users(_blank_workbook()))
    assert users == [
        data_manager.UserRow(
            user_id=constants.ADMIN_ORG_ID,
            name="Administrator",
            username="admin",
            password="secret",
            role=constants.UserRole.ADMIN.value,
        )
    ]


def test_iter_users_coerces_numeric_cells_to_text():
    """Numeric logins typed into Excel should still compare as text."""

    workbook = _blank_workbook()
    workbook[data_manager.USERS_SHEET].append(["U1", "Clinic", 1234, 5678, "ORG"])
    user = list(data_manager.iter_users(workbook))[-1]
    assert user.username == "1234"
    assert user.password == "5678"


def test_iter_rows_skip_blank_lines():
    """Fully empty rows between records are ignored."""

    workbook = _blank_workbook()
    sheet = workbook[data_manager.STOCK_LOG_SHEET]
    data_manager.append_transaction(workbook, _transaction("T1"))
    sheet.append([None] * 9)
    data_manager.append_transaction(workbook, _transaction("T2"))

    assert [row.transaction_id for row in data_manager.iter_transactions(workbook)] == ["T1", "T2"]


def test_transaction_blank_optionals_read_back_as_none():
    """Blank variant, comment, and requisition cells become None."""

    workbook = _blank_workbook()
    workbook[data_manager.STOCK_LOG_SHEET].append(
        ["T1", "U1", "P1", "  ", "3", "OUT", "", "2026-01-01T10:00:00+00:00", None])
    row = next(iter(data_manager.iter_transactions(workbook)))

    assert row.variant is None
    assert row.comment is None
    assert row.requisition_id is None
    assert row.quantity == 3


def test_requisition_round_trips_through_sheet():
    """Appended requisitions are read back unchanged."""

    workbook = _blank_workbook()
    record = data_manager.RequisitionRow(
        requisition_id="R1",
        org_id="U1",
        org_name="City Hospital",
        product_id="P1",
        product_name="Plasma",
        unit="dose",
        variant="250 ml",
        blood_group="O(I) Rh+",
        patient_name="Ivanov",
        quantity=2,
        comment=None,
        status="PENDING",
        date_iso="2026-01-01T10:00:00+00:00",
    )
    data_manager.append_requisition(workbook, record)
    assert list(data_manager.iter_requisitions(workbook)) == [record]


def test_update_requisition_overwrites_matching_row():
    """update_requisition rewrites only the row with the same id."""

    workbook = _blank_workbook()
    base = data_manager.RequisitionRow(
        "R1", "U1", "Org", "P1", "Gloves", "box", None, None, None, 1, None, "PENDING", "2026-01-01")
    other = data_manager.RequisitionRow(
        "R2", "U1", "Org", "P1", "Gloves", "box", None, None, None, 5, None, "PENDING", "2026-01-02")
    data_manager.append_requisition(workbook, base)
    data_manager.append_requisition(workbook, other)

    data_manager.update_requisition(workbook, replace(base, status="APPROVED"))
    rows = {row.requisition_id: row for row in data_manager.iter_requisitions(workbook)}
    assert rows["R1"].status == "APPROVED"
    assert rows["R2"] == other


def test_update_requisition_unknown_id_raises():
    """Overwriting a missing row is a KeyError."""

    workbook = _blank_workbook()
    record = data_manager.RequisitionRow(
        "R404", "U1", "Org", "P1", "Gloves", "box", None, None, None, 1, None, "PENDING", "2026-01-01")
    with pytest.raises(KeyError):
        data_manager.update_requisition(workbook, record)


def test_delete_row_removes_record():
    """delete_row should drop the matching row only."""

    workbook = _blank_workbook()
    data_manager.append_product(workbook, data_manager.ProductRow("P1", "Gloves", "box"))
    data_manager.append_product(workbook, data_manager.ProductRow("P2", "Masks", "pack"))

    data_manager.delete_row(workbook, data_manager.PRODUCTS_SHEET, "ProductID", "P1")
    assert [row.product_id for row in data_manager.iter_products(workbook)] == ["P2"]

    with pytest.raises(KeyError):
        data_manager.delete_row(workbook, data_manager.PRODUCTS_SHEET, "ProductID", "P1")


def test_locate_row_unknown_column_raises():
    """Looking up by a column that is not in the header is an error."""

    with pytest.raises(KeyError):
        data_manager.locate_row(_blank_workbook(), data_manager.USERS_SHEET, "Missing", "x")


def test_replace_rows_shrinks_sheet():
    """replace_rows keeps the header and drops rows beyond the new data."""

    workbook = _blank_workbook()
    for index in range(3):
        data_manager.append_transaction(workbook, _transaction(f"T{index}"))

    data_manager.replace_rows(
        workbook,
        data_manager.STOCK_LOG_SHEET,
        [data_manager.serialize_transaction(_transaction("T9", quantity=7))],
    )

    rows = list(data_manager.iter_transactions(workbook))
    assert [(row.transaction_id, row.quantity) for row in rows] == [("T9", 7)]
    assert workbook[data_manager.STOCK_LOG_SHEET].cell(row=1, column=1).value == "TransactionID"


def test_replace_rows_grows_sheet():
    """replace_rows also handles more rows than were present."""

    workbook = _blank_workbook()
    data_manager.replace_rows(
        workbook,
        data_manager.PRODUCTS_SHEET,
        [data_manager.serialize_product(data_manager.ProductRow(f"P{i}", "Item", "pc")) for i in range(4)],
    )
    assert len(list(data_manager.iter_products(workbook))) == 4


def test_write_setting_upserts():
    """write_setting inserts new keys and overwrites existing ones."""

    workbook = _blank_workbook()
    data_manager.write_setting(workbook, "telegram.chat_id", "1")
    data_manager.write_setting(workbook, "telegram.chat_id", "2")
    data_manager.write_setting(workbook, "github.repo", "")

    assert data_manager.read_settings(workbook) == {"telegram.chat_id": "2", "github.repo": ""}


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, ()),
        ("", ()),
        ("250 ml, 450 ml", ("250 ml", "450 ml")),
        (" A ,, B ", ("A", "B")),
        (["x", " ", "y "], ("x", "y")),
    ],
)
def test_split_variants(raw, expected):
    """Variant lists are trimmed and blanks dropped."""

    assert data_manager.split_variants(raw) == expected


def test_serialize_product_without_variants_writes_blank_cell():
    """An empty variant tuple is stored as an empty cell."""

    assert data_manager.serialize_product(data_manager.ProductRow("P1", "Gloves", "box")) == [
        "P1",
        "Gloves",
        "box",
        None,
    ]
