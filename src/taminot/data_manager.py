"""Data access layer for Taminot.

This module provides low-level helpers that read from and write to the
Taminot workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, overwriting,
   deleting, or wholesale replacing individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import SheetName


CONFIG_FILE_NAME = "config.ini"
DEFAULT_REQUEST_TIMEOUT = 10.0

USERS_SHEET = SheetName.USERS.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
REQUISITIONS_SHEET = SheetName.REQUISITIONS.value
STOCK_LOG_SHEET = SheetName.STOCK_LOG.value
SETTINGS_SHEET = SheetName.SETTINGS.value

# Column layout of every managed sheet, in worksheet order.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    USERS_SHEET: [
        "UserID",
        "Name",
        "Username",
        "Password",
        "Role",
    ],
    PRODUCTS_SHEET: [
        "ProductID",
        "ProductName",
        "Unit",
        "Variants",
    ],
    REQUISITIONS_SHEET: [
        "RequisitionID",
        "OrgID",
        "OrgName",
        "ProductID",
        "ProductName",
        "Unit",
        "Variant",
        "BloodGroup",
        "PatientName",
        "Quantity",
        "Comment",
        "Status",
        "Date",
    ],
    STOCK_LOG_SHEET: [
        "TransactionID",
        "OrgID",
        "ProductID",
        "Variant",
        "Quantity",
        "Type",
        "Comment",
        "Timestamp",
        "RequisitionID",
    ],
    SETTINGS_SHEET: [
        "Key",
        "Value",
    ],
}

VARIANT_SEPARATOR = ","


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    admin_login: str
    admin_password: str
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: str
    name: str
    username: str
    password: str
    role: str


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    unit: str
    variants: tuple[str, ...] = ()


@dataclass(frozen=True)
class RequisitionRow:
    """In-memory view of a row from the ``Requisitions`` sheet."""

    requisition_id: str
    org_id: str
    org_name: str
    product_id: str
    product_name: str
    unit: str
    variant: Optional[str]
    blood_group: Optional[str]
    patient_name: Optional[str]
    quantity: int
    comment: Optional[str]
    status: str
    date_iso: str


@dataclass(frozen=True)
class StockTransactionRow:
    """In-memory view of a row from the ``StockLog`` sheet."""

    transaction_id: str
    org_id: str
    product_id: str
    variant: Optional[str]
    quantity: int
    movement_type: str
    comment: Optional[str]
    timestamp_iso: str
    requisition_id: Optional[str] = None


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

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
            absolute. User home references (``~``) are expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Validation of required entries happens in
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must provide ``DataFile`` and ``SchemaVersion`` and
    ``[Defaults]`` must provide ``AdminLogin`` and ``AdminPassword``. The
    optional ``[Network]`` section may override ``RequestTimeout`` (seconds)
    used by the Telegram and GitHub collaborators. Relative ``DataFile``
    entries are anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative data file
            paths. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If ``RequestTimeout`` is not a positive number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
        admin_login = parser.get("Defaults", "AdminLogin")
        admin_password = parser.get("Defaults", "AdminPassword")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    request_timeout = parser.getfloat(
        "Network", "RequestTimeout", fallback=DEFAULT_REQUEST_TIMEOUT)
    if request_timeout <= 0:
        raise ValueError("RequestTimeout must be greater than zero")

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        admin_login=admin_login,
        admin_password=admin_password,
        request_timeout=request_timeout,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the Taminot workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def missing_sheets(workbook: Workbook) -> list[str]:
    """Return the managed sheet names absent from ``workbook``."""

    return [name for name in SHEET_COLUMNS if name not in workbook.sheetnames]


def _iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Iterate over the ``Users`` worksheet and yield typed records."""

    for raw in _iter_raw_rows(workbook, USERS_SHEET):
        yield deserialize_user(raw)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The iterator skips the header row and any fully empty rows. Each remaining
    row is converted into a :class:`ProductRow` via
    :func:`deserialize_product`, which also splits the comma separated variant
    list.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.

    Yields:
        ProductRow: One structured row for each meaningful record in the sheet.
    """

    for raw in _iter_raw_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_requisitions(workbook: Workbook) -> Iterable[RequisitionRow]:
    """Iterate over the ``Requisitions`` worksheet and yield typed records."""

    for raw in _iter_raw_rows(workbook, REQUISITIONS_SHEET):
        yield deserialize_requisition(raw)


def iter_transactions(workbook: Workbook) -> Iterable[StockTransactionRow]:
    """Stream stock movements from the ``StockLog`` worksheet.

    Rows are yielded in worksheet order, which is the order they were
    appended. Quantities become ``int`` and blank optional columns (variant,
    comment, requisition link) become ``None``.

    Args:
        workbook (Workbook): Workbook containing the stock log sheet.

    Yields:
        StockTransactionRow: Normalized transaction record for each populated
            row.
    """

    for raw in _iter_raw_rows(workbook, STOCK_LOG_SHEET):
        yield deserialize_transaction(raw)


def read_settings(workbook: Workbook) -> Dict[str, str]:
    """Return the ``Settings`` sheet as a key/value dictionary.

    Blank values are returned as empty strings so callers can treat an unset
    option and an explicitly cleared option the same way.
    """

    settings: Dict[str, str] = {}
    for key, value in _iter_raw_rows(workbook, SETTINGS_SHEET):
        if key is None:
            continue
        settings[str(key)] = "" if value is None else str(value)
    return settings


def write_setting(workbook: Workbook, key: str, value: str) -> None:
    """Insert or overwrite a single ``Settings`` entry."""

    row_index = locate_row(workbook, SETTINGS_SHEET, "Key", key)
    sheet = workbook[SETTINGS_SHEET]
    if row_index is None:
        sheet.append([key, value])
        return
    sheet.cell(row=row_index, column=2, value=value)


def append_user(workbook: Workbook, record: UserRow) -> None:
    """Append a user record to the ``Users`` worksheet."""

    workbook[USERS_SHEET].append(serialize_user(record))


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_requisition(workbook: Workbook, record: RequisitionRow) -> None:
    """Append a requisition record to the ``Requisitions`` worksheet."""

    workbook[REQUISITIONS_SHEET].append(serialize_requisition(record))


def append_transaction(workbook: Workbook, record: StockTransactionRow) -> None:
    """Append a stock movement to the ``StockLog`` worksheet.

    The stock log is append-only: this is the only helper in the module that
    writes to it outside of a wholesale :func:`replace_rows` restore.

    Args:
        workbook (Workbook): Workbook containing the stock log.
        record (StockTransactionRow): Transaction to persist.
    """

    workbook[STOCK_LOG_SHEET].append(serialize_transaction(record))


def update_user(workbook: Workbook, record: UserRow) -> None:
    """Overwrite the ``Users`` row whose id matches ``record.user_id``.

    Raises:
        KeyError: If no row carries the identifier.
    """

    _overwrite_row(workbook, USERS_SHEET, "UserID", record.user_id, serialize_user(record))


def update_product(workbook: Workbook, record: ProductRow) -> None:
    """Overwrite the ``Products`` row whose id matches ``record.product_id``.

    Raises:
        KeyError: If no row carries the identifier.
    """

    _overwrite_row(workbook, PRODUCTS_SHEET, "ProductID", record.product_id, serialize_product(record))


def update_requisition(workbook: Workbook, record: RequisitionRow) -> None:
    """Overwrite the ``Requisitions`` row matching ``record.requisition_id``.

    Raises:
        KeyError: If no row carries the identifier.
    """

    _overwrite_row(
        workbook,
        REQUISITIONS_SHEET,
        "RequisitionID",
        record.requisition_id,
        serialize_requisition(record),
    )


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    """Remove the row whose ``key_column`` equals ``key_value``.

    Raises:
        KeyError: If no matching row exists.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def replace_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> None:
    """Drop every data row of ``sheet_name`` and append ``rows`` in order.

    The header row is kept. This is used by restore operations that replace
    local state wholesale.

    Args:
        workbook (Workbook): Workbook containing ``sheet_name``.
        sheet_name (str): Worksheet to rewrite.
        rows (Iterable[Sequence[object]]): Serialized rows in column order.
    """

    sheet = workbook[sheet_name]
    previous_count = sheet.max_row - 1
    written = 0
    for row_index, row in enumerate(rows, start=2):
        for column_index, value in enumerate(row, start=1):
            sheet.cell(row=row_index, column=column_index, value=value)
        written += 1
    if previous_count > written:
        sheet.delete_rows(written + 2, previous_count - written)
    log.debug("Replaced %s with %d rows (previously %d)", sheet_name, written, previous_count)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def _header_map(workbook: Workbook, sheet_name: str) -> Dict[Any, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _overwrite_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, values: Sequence[object]) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {key_value}")
    sheet = workbook[sheet_name]
    for column_index, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column_index, value=value)
    log.debug("Overwrote %s row %d (%s)", sheet_name, row_index, key_value)


def _optional_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _quantity(value: object) -> int:
    return int(value) if value is not None else 0


def split_variants(raw: object) -> tuple[str, ...]:
    """Split a comma separated variant list, trimming blanks.

    Args:
        raw (object): Cell value or user input such as ``"250 ml, 450 ml"``.
            Sequences are accepted as-is and trimmed item by item.

    Returns:
        tuple[str, ...]: Ordered, non-empty variant names.
    """

    if raw is None:
        return ()
    if isinstance(raw, str):
        parts: Iterable[object] = raw.split(VARIANT_SEPARATOR)
    else:
        parts = raw  # type: ignore[assignment]
    return tuple(str(part).strip() for part in parts if str(part).strip())


def serialize_user(record: UserRow) -> list[object]:
    """Return ``[UserID, Name, Username, Password, Role]``."""

    return [record.user_id, record.name, record.username, record.password, record.role]


def serialize_product(record: ProductRow) -> list[object]:
    """Return ``[ProductID, ProductName, Unit, Variants]``.

    Variants are joined with ``", "``; an empty tuple is stored as a blank
    cell.
    """

    variants = ", ".join(record.variants) if record.variants else None
    return [record.product_id, record.product_name, record.unit, variants]


def serialize_requisition(record: RequisitionRow) -> list[object]:
    """Convert a requisition dataclass into the worksheet column ordering."""

    return [
        record.requisition_id,
        record.org_id,
        record.org_name,
        record.product_id,
        record.product_name,
        record.unit,
        record.variant,
        record.blood_group,
        record.patient_name,
        record.quantity,
        record.comment,
        record.status,
        record.date_iso,
    ]


def serialize_transaction(record: StockTransactionRow) -> list[object]:
    """Convert a stock transaction into the stock log column order."""

    return [
        record.transaction_id,
        record.org_id,
        record.product_id,
        record.variant,
        record.quantity,
        record.movement_type,
        record.comment,
        record.timestamp_iso,
        record.requisition_id,
    ]


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw worksheet row into a :class:`UserRow`.

    Every column is coerced to ``str`` so that numeric-looking usernames or
    passwords typed directly into Excel still compare as text.
    """

    user_id, name, username, password, role = raw_row[:5]
    return UserRow(
        user_id=_text(user_id),
        name=_text(name),
        username=_text(username),
        password=_text(password),
        role=_text(role),
    )


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record."""

    product_id, product_name, unit, variants = raw_row[:4]
    return ProductRow(
        product_id=_text(product_id),
        product_name=_text(product_name),
        unit=_text(unit),
        variants=split_variants(variants),
    )


def deserialize_requisition(raw_row: Sequence[object]) -> RequisitionRow:
    """Convert a raw worksheet row into a strongly typed requisition record.

    Args:
        raw_row (Sequence[object]): Raw cell values in worksheet order.

    Returns:
        RequisitionRow: Dataclass with ``int`` quantity and ``None`` for blank
            optional columns.
    """

    (
        requisition_id,
        org_id,
        org_name,
        product_id,
        product_name,
        unit,
        variant,
        blood_group,
        patient_name,
        quantity,
        comment,
        status,
        date_iso,
    ) = raw_row[:13]

    return RequisitionRow(
        requisition_id=_text(requisition_id),
        org_id=_text(org_id),
        org_name=_text(org_name),
        product_id=_text(product_id),
        product_name=_text(product_name),
        unit=_text(unit),
        variant=_optional_text(variant),
        blood_group=_optional_text(blood_group),
        patient_name=_optional_text(patient_name),
        quantity=_quantity(quantity),
        comment=_optional_text(comment),
        status=_text(status),
        date_iso=_text(date_iso),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> StockTransactionRow:
    """Convert a raw worksheet row into a strongly typed stock transaction."""

    (
        transaction_id,
        org_id,
        product_id,
        variant,
        quantity,
        movement_type,
        comment,
        timestamp_iso,
        requisition_id,
    ) = raw_row[:9]

    return StockTransactionRow(
        transaction_id=_text(transaction_id),
        org_id=_text(org_id),
        product_id=_text(product_id),
        variant=_optional_text(variant),
        quantity=_quantity(quantity),
        movement_type=_text(movement_type),
        comment=_optional_text(comment),
        timestamp_iso=_text(timestamp_iso),
        requisition_id=_optional_text(requisition_id),
    )
