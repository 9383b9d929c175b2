"""Snapshot backup and restore.

A snapshot is the JSON-friendly shape ``{users, products, requests, stock,
exportedAt}``. It can be written to a local file or pushed to a file in a
GitHub repository through the contents API. Restoring replaces the four
entity sheets wholesale; the settings sheet is left alone so a restore never
wipes the credentials needed to perform it.

Rows are written with the row dataclass field names (``org_id``,
``product_id``). Restore also reads the camelCase layout of the earlier web
app backups (``id``, ``orgId``, ``productId``, ``type``, ``date``), where
absent optional fields are taken as empty.
"""

from __future__ import annotations

import base64
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from . import core_logic, data_manager, log
from .core_logic import BusinessRuleViolation, GithubConfig, RuntimeContext, ServiceUnavailable


GITHUB_CONTENTS_URL = "https://api.github.com/repos/{owner}/{repo}/contents/{path}"
GITHUB_ACCEPT = "application/vnd.github+json"

SNAPSHOT_KEYS = ("users", "products", "requests", "stock")

Snapshot = Dict[str, Any]


def _product_from_mapping(item: Mapping[str, Any]) -> data_manager.ProductRow:
    values = dict(item)
    values["variants"] = data_manager.split_variants(values.get("variants"))
    return data_manager.ProductRow(**values)


# snapshot key -> (sheet, row type constructor, serializer)
_SECTIONS: Dict[str, tuple[str, Callable[[Mapping[str, Any]], Any], Callable[[Any], list[object]]]] = {
    "users": (
        data_manager.USERS_SHEET,
        lambda item: data_manager.UserRow(**item),
        data_manager.serialize_user,
    ),
    "products": (
        data_manager.PRODUCTS_SHEET,
        _product_from_mapping,
        data_manager.serialize_product,
    ),
    "requests": (
        data_manager.REQUISITIONS_SHEET,
        lambda item: data_manager.RequisitionRow(**item),
        data_manager.serialize_requisition,
    ),
    "stock": (
        data_manager.STOCK_LOG_SHEET,
        lambda item: data_manager.StockTransactionRow(**item),
        data_manager.serialize_transaction,
    ),
}


# camelCase field names of the web app backups -> row field names
_FIELD_ALIASES: Dict[str, Dict[str, str]] = {
    "users": {"id": "user_id"},
    "products": {"id": "product_id", "name": "product_name"},
    "requests": {
        "id": "requisition_id",
        "orgId": "org_id",
        "orgName": "org_name",
        "productId": "product_id",
        "productName": "product_name",
        "bloodGroup": "blood_group",
        "patientName": "patient_name",
        "date": "date_iso",
    },
    "stock": {
        "id": "transaction_id",
        "orgId": "org_id",
        "productId": "product_id",
        "type": "movement_type",
        "date": "timestamp_iso",
        "requestId": "requisition_id",
    },
}
_IGNORED_FIELDS: Dict[str, frozenset[str]] = {"stock": frozenset({"productName"})}
_OPTIONAL_FIELDS: Dict[str, tuple[str, ...]] = {
    "requests": ("variant", "blood_group", "patient_name", "comment"),
    "stock": ("variant", "comment"),
}


def _normalize_item(section: str, item: Any) -> Dict[str, Any]:
    if not isinstance(item, Mapping):
        raise TypeError(f"expected an object, got {type(item).__name__}")
    aliases = _FIELD_ALIASES[section]
    ignored = _IGNORED_FIELDS.get(section, frozenset())
    values = {aliases.get(key, key): value for key, value in item.items() if key not in ignored}
    for name in _OPTIONAL_FIELDS.get(section, ()):
        values.setdefault(name, None)
    return values


def _as_dict(row: Any) -> Dict[str, Any]:
    values = asdict(row)
    if "variants" in values:
        values["variants"] = list(values["variants"])
    return values


def build_snapshot(context: RuntimeContext) -> Snapshot:
    """Collect every entity row into a JSON-serializable snapshot.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.

    Returns:
        dict[str, Any]: ``users``, ``products``, ``requests``, and ``stock`` as
            lists of plain dictionaries, plus an ``exportedAt`` timestamp.
    """
    snapshot: Snapshot = {
        "users": [_as_dict(row) for row in core_logic.list_users(context)],
        "products": [_as_dict(row) for row in core_logic.list_products(context)],
        "requests": [_as_dict(row) for row in core_logic.list_requisitions(context)],
        "stock": [_as_dict(row) for row in core_logic.list_transactions(context)],
        "exportedAt": core_logic.resolve_timestamp(None).isoformat(),
    }
    log.info(
        "Built snapshot: %d users, %d products, %d requests, %d stock rows",
        len(snapshot["users"]),
        len(snapshot["products"]),
        len(snapshot["requests"]),
        len(snapshot["stock"]),
    )
    return snapshot


def parse_snapshot(snapshot: Mapping[str, Any]) -> Dict[str, List[Any]]:
    """Validate ``snapshot`` and convert its sections into typed rows.

    Entries may use either the row field names or the camelCase names of the
    web app backups.

    Raises:
        BusinessRuleViolation: If a section is missing, is not a list, or
            contains entries that do not match the row layout.
    """
    missing = [key for key in SNAPSHOT_KEYS if key not in snapshot]
    if missing:
        raise BusinessRuleViolation(f"Snapshot is missing sections: {', '.join(missing)}")

    parsed: Dict[str, List[Any]] = {}
    for key, (_, build, _) in _SECTIONS.items():
        items = snapshot[key]
        if not isinstance(items, list):
            raise BusinessRuleViolation(f"Snapshot section '{key}' must be a list")
        try:
            parsed[key] = [build(_normalize_item(key, item)) for item in items]
        except (TypeError, ValueError) as exc:
            raise BusinessRuleViolation(f"Snapshot section '{key}' is malformed: {exc}") from exc
    return parsed


def apply_snapshot(context: RuntimeContext, snapshot: Mapping[str, Any]) -> None:
    """Replace users, products, requisitions, and the stock log wholesale.

    The snapshot is fully parsed before any sheet is touched.

    Raises:
        BusinessRuleViolation: If the snapshot is malformed.
    """
    parsed = parse_snapshot(snapshot)
    for key, (sheet_name, _, serialize) in _SECTIONS.items():
        data_manager.replace_rows(context.workbook, sheet_name, (serialize(row) for row in parsed[key]))
    core_logic.invalidate_cache(context, "users", "products", "requisitions", "transactions")
    log.info("Applied snapshot exported at %s", snapshot.get("exportedAt", "unknown time"))


def encode_snapshot(snapshot: Mapping[str, Any]) -> str:
    """Serialize a snapshot as indented UTF-8 JSON text."""
    return json.dumps(snapshot, ensure_ascii=False, indent=2)


def decode_snapshot(text: str) -> Snapshot:
    """Parse JSON text produced by :func:`encode_snapshot`.

    Raises:
        BusinessRuleViolation: If the text is not a JSON object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BusinessRuleViolation(f"Backup is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise BusinessRuleViolation("Backup must contain a JSON object")
    return data


def write_snapshot_file(context: RuntimeContext, destination: Path) -> Path:
    """Write the current snapshot to ``destination`` and return its path."""
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(encode_snapshot(build_snapshot(context)), encoding="utf-8")
    log.info("Wrote snapshot file '%s'", destination)
    return destination


def read_snapshot_file(context: RuntimeContext, source: Path) -> None:
    """Restore from a snapshot file written by :func:`write_snapshot_file`.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        BusinessRuleViolation: If the file is not a valid snapshot.
    """
    source = Path(source).expanduser().resolve()
    if not source.exists():
        raise FileNotFoundError(f"Backup file not found: {source}")
    apply_snapshot(context, decode_snapshot(source.read_text(encoding="utf-8")))


def _contents_url(config: GithubConfig) -> str:
    return GITHUB_CONTENTS_URL.format(
        owner=config.owner, repo=config.repo, path=config.path.lstrip("/"))


def _headers(config: GithubConfig) -> Dict[str, str]:
    return {"Authorization": f"Bearer {config.token}", "Accept": GITHUB_ACCEPT}


def _require_configured(config: GithubConfig) -> None:
    if not config.is_configured:
        raise BusinessRuleViolation("GitHub token, owner, repository, and path are required")


def fetch_remote_file(config: GithubConfig, *, timeout: float) -> Optional[Dict[str, Any]]:
    """Return the contents API payload for the backup file, or ``None`` if absent.

    Raises:
        ServiceUnavailable: On network errors or unexpected HTTP statuses.
    """
    params = {"ref": config.branch} if config.branch else None
    try:
        response = requests.get(_contents_url(config), headers=_headers(config), params=params, timeout=timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as exc:
        log.error("GitHub fetch failed: %s", exc)
        raise ServiceUnavailable(f"GitHub request failed: {exc}") from exc


def push_snapshot(config: GithubConfig, snapshot: Mapping[str, Any], *, timeout: float) -> Dict[str, Any]:
    """Create or update the backup file with ``snapshot``.

    The current file's ``sha`` is fetched first so an existing backup is
    overwritten instead of rejected.

    Args:
        config (GithubConfig): Target repository file and token.
        snapshot (Mapping[str, Any]): Snapshot produced by
            :func:`build_snapshot`.
        timeout (float): Seconds allowed per HTTP call.

    Returns:
        dict[str, Any]: GitHub's response payload.

    Raises:
        BusinessRuleViolation: If the configuration is incomplete.
        ServiceUnavailable: On network errors or non-success HTTP statuses.
    """
    _require_configured(config)
    existing = fetch_remote_file(config, timeout=timeout)
    body: Dict[str, Any] = {
        "message": f"Taminot backup {snapshot.get('exportedAt', '')}".strip(),
        "content": base64.b64encode(encode_snapshot(snapshot).encode("utf-8")).decode("ascii"),
    }
    if existing and existing.get("sha"):
        body["sha"] = existing["sha"]
    if config.branch:
        body["branch"] = config.branch

    try:
        response = requests.put(_contents_url(config), headers=_headers(config), json=body, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        log.error("GitHub upload failed: %s", exc)
        raise ServiceUnavailable(f"GitHub upload failed: {exc}") from exc

    log.info("Pushed backup to %s/%s:%s", config.owner, config.repo, config.path)
    return response.json()


def fetch_snapshot(config: GithubConfig, *, timeout: float) -> Snapshot:
    """Download and decode the backup file.

    Raises:
        BusinessRuleViolation: If the configuration is incomplete or the file
            does not decode to a JSON object.
        ServiceUnavailable: If the request fails or the file does not exist.
    """
    _require_configured(config)
    payload = fetch_remote_file(config, timeout=timeout)
    if payload is None:
        raise ServiceUnavailable(f"No backup found at {config.owner}/{config.repo}:{config.path}")
    try:
        text = base64.b64decode(payload.get("content", "")).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        raise BusinessRuleViolation(f"Backup content could not be decoded: {exc}") from exc
    return decode_snapshot(text)


def backup_to_github(context: RuntimeContext) -> Snapshot:
    """Push the current snapshot using the stored GitHub settings."""
    snapshot = build_snapshot(context)
    push_snapshot(core_logic.get_github_config(context), snapshot, timeout=context.settings.request_timeout)
    return snapshot


def restore_from_github(context: RuntimeContext) -> Snapshot:
    """Replace local state with the snapshot stored on GitHub."""
    snapshot = fetch_snapshot(core_logic.get_github_config(context), timeout=context.settings.request_timeout)
    apply_snapshot(context, snapshot)
    return snapshot
