"""Business logic layer for Taminot.

This module owns the :class:`RuntimeContext`, the single application state
container handed to every command and query. It consumes the Data Access
Layer (DAL) for all I/O and applies the domain rules for users, products, the
two configuration blobs, and manual stock movements. The requisition state
machine lives in :mod:`taminot.workflow` and balance folding in
:mod:`taminot.ledger`; both build on the helpers defined here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from openpyxl.workbook import Workbook

from . import data_manager, ledger, log
from .constants import (
    ADMIN_ORG_ID,
    EXPECTED_SCHEMA_VERSION,
    MovementType,
    RequestStatus,
    UserRole,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced user, product, requisition, or transaction is unknown."""


class InvalidQuantityError(BusinessRuleViolation, ValueError):
    """Raised when a quantity is not a positive integer."""


class AuthenticationError(MissingReferenceError):
    """Raised when a login/password pair does not match any account."""


class ServiceUnavailable(Exception):
    """Raised when an external collaborator (HTTP API, backup store) fails."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL.

    ``outbox`` collects notification texts produced by commands; they are
    delivered only after the workbook has been saved.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    outbox: List[str] = field(default_factory=list, repr=False, compare=False)


@dataclass(frozen=True)
class OperationResult:
    """Success flag plus payload or message, for callers that avoid exceptions."""

    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class TelegramConfig:
    """Bot credentials used by the notification sender."""

    bot_token: str = ""
    chat_id: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)


@dataclass(frozen=True)
class GithubConfig:
    """Repository file used as the remote backup store."""

    token: str = ""
    owner: str = ""
    repo: str = ""
    path: str = ""
    branch: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.token and self.owner and self.repo and self.path)


@dataclass(frozen=True)
class ConsumptionCommand:
    """Organization intent for recording stock it used up."""

    org_id: str
    product_id: str
    variant: Optional[str]
    quantity: int
    comment: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CentralIntakeCommand:
    """Administrator intent for adding stock to the central warehouse."""

    product_id: str
    variant: Optional[str]
    quantity: int
    comment: Optional[str] = None
    timestamp: Optional[datetime] = None

DEFAULT_CONSUMPTION_COMMENT = "Consumed"

_TELEGRAM_KEYS = {"bot_token": "telegram.bot_token", "chat_id": "telegram.chat_id"}
_GITHUB_KEYS = {
    "token": "github.token",
    "owner": "github.owner",
    "repo": "github.repo",
    "path": "github.path",
    "branch": "github.branch",
}


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def capture(operation: Callable[..., Any], *args: Any, **kwargs: Any) -> OperationResult:
    """Run ``operation`` and fold domain failures into an :class:`OperationResult`.

    Business rule violations, invalid quantities, and collaborator failures
    become ``OperationResult(success=False, error=<message>)``. Any other
    exception propagates untouched.

    Args:
        operation (Callable[..., Any]): Command or query to execute.
        *args (Any): Positional arguments forwarded to ``operation``.
        **kwargs (Any): Keyword arguments forwarded to ``operation``.

    Returns:
        OperationResult: ``ok`` with the return value, or ``failure`` with the
            exception message.
    """

    try:
        return OperationResult.ok(operation(*args, **kwargs))
    except (BusinessRuleViolation, ServiceUnavailable, ValueError) as exc:
        log.warning("Operation %s failed: %s", getattr(operation, "__name__", operation), exc)
        return OperationResult.failure(str(exc))


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The business logic layer maintains in-memory caches keyed by entity set
    (users, products, requisitions, transactions, settings). Buckets store the
    full row list plus derived lookups, so repeated queries do not rescan the
    workbook.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache
            dictionary.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict[str, Any]: Mutable mapping for the requested entity set.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored. Calling without names evicts every bucket.
    """

    targets = names or tuple(context._cache)
    log.debug("Invalidating cache buckets: %s", ", ".join(targets))
    for name in targets:
        context._cache.pop(name, None)


def _ensure_rows(context: RuntimeContext, name: str, loader: Callable[[Workbook], Iterable[Any]], key: str) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        rows = list(loader(context.workbook))
        bucket["all"] = rows
        bucket["by_id"] = {getattr(row, key): row for row in rows}
        log.debug("Populated %s cache with %d entries", name, len(rows))
    return bucket


def _users(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows(context, "users", data_manager.iter_users, "user_id")


def _products(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows(context, "products", data_manager.iter_products, "product_id")


def _requisitions(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows(context, "requisitions", data_manager.iter_requisitions, "requisition_id")


def _transactions(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows(context, "transactions", data_manager.iter_transactions, "transaction_id")


def _settings(context: RuntimeContext) -> Dict[str, str]:
    bucket = _get_cache_bucket(context, "settings")
    if "values" not in bucket:
        bucket["values"] = data_manager.read_settings(context.workbook)
    return bucket["values"]


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Resolves ``config.ini``, parses settings, and opens the workbook that
    stores every entity. The resulting :class:`RuntimeContext` bundles the
    immutable settings with the workbook handle, an empty cache, and an empty
    notification outbox.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for commands and queries.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION`` or the workbook lacks a managed sheet.
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

    missing = data_manager.missing_sheets(context.workbook)
    if missing:
        log.error("Workbook is missing sheets: %s", ", ".join(missing))
        raise RuntimeError(f"Workbook is missing sheets: {', '.join(missing)}")

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file.

    Every command of a CLI invocation lands in the same workbook object, so a
    single save writes a requisition status change and its stock transaction
    together.
    """
    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook, discarding unsaved modifications and caches.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def generate_id(prefix: str, *, when: Optional[datetime] = None, taken: Iterable[str] = ()) -> str:
    """Generate a sortable identifier such as ``R20260101120000000000``.

    Args:
        prefix (str): Entity designator (``U`` users, ``P`` products, ``R``
            requisitions, ``T`` stock transactions).
        when (datetime | None): Timestamp encoded into the identifier. Defaults
            to the current UTC time.
        taken (Iterable[str]): Identifiers already in use. When the candidate
            collides, a ``-2``, ``-3``... suffix is appended.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}[-n]``.
    """
    when = when or resolve_timestamp(None)
    candidate = f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"
    used = set(taken)
    if candidate not in used:
        return candidate
    suffix = 2
    while f"{candidate}-{suffix}" in used:
        suffix += 1
    return f"{candidate}-{suffix}"


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a strictly positive integer.

    Raises:
        InvalidQuantityError: If ``quantity`` is not an ``int`` (``bool`` is
            rejected too) or is zero or negative.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %r", quantity)
        raise InvalidQuantityError("Quantity must be a positive integer")


def require_text(value: Optional[str], label: str) -> str:
    """Return ``value`` stripped, raising when it is blank."""
    text = (value or "").strip()
    if not text:
        log.error("Required field '%s' is empty", label)
        raise BusinessRuleViolation(f"{label} is required")
    return text


def _clean_optional(value: Optional[str]) -> Optional[str]:
    text = (value or "").strip()
    return text or None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def list_users(context: RuntimeContext, *, role: Optional[UserRole] = None) -> List[data_manager.UserRow]:
    """Return user rows in sheet order, optionally restricted to ``role``."""
    rows = _users(context)["all"]
    if role is None:
        return list(rows)
    return [row for row in rows if row.role == role.value]


def list_organizations(context: RuntimeContext) -> List[data_manager.UserRow]:
    """Return the accounts that raise requisitions."""
    return list_users(context, role=UserRole.ORG)


def get_user(context: RuntimeContext, user_id: str) -> data_manager.UserRow:
    """Resolve a user by identifier.

    Raises:
        MissingReferenceError: If ``user_id`` is unknown.
    """
    try:
        return _users(context)["by_id"][user_id]
    except KeyError as exc:
        log.warning("User lookup failed for id '%s'", user_id)
        raise MissingReferenceError(f"Unknown user id: {user_id}") from exc


def authenticate(context: RuntimeContext, username: str, password: str) -> data_manager.UserRow:
    """Return the account matching ``username`` and ``password``.

    Credentials are compared as stored; there is no hashing.

    Raises:
        AuthenticationError: If no account matches.
    """
    for user in _users(context)["all"]:
        if user.username == username and user.password == password:
            log.info("User '%s' authenticated as %s", username, user.role)
            return user
    log.warning("Authentication failed for '%s'", username)
    raise AuthenticationError("Invalid login or password")


def _require_unique_username(context: RuntimeContext, username: str, *, exclude_id: Optional[str] = None) -> None:
    for user in _users(context)["all"]:
        if user.username == username and user.user_id != exclude_id:
            log.warning("Duplicate login '%s' rejected", username)
            raise BusinessRuleViolation(f"Login '{username}' is already taken")


def add_user(
    context: RuntimeContext,
    *,
    name: str,
    username: str,
    password: str,
    role: UserRole = UserRole.ORG,
) -> data_manager.UserRow:
    """Register a new account.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        name (str): Display name of the organization or administrator.
        username (str): Login, unique across all accounts.
        password (str): Plaintext password.
        role (UserRole): Account role, organizations by default.

    Returns:
        data_manager.UserRow: Newly appended user row.

    Raises:
        BusinessRuleViolation: If a field is blank or the login is taken.
    """
    clean_name = require_text(name, "Name")
    clean_username = require_text(username, "Login")
    clean_password = require_text(password, "Password")
    _require_unique_username(context, clean_username)

    user_id = generate_id("U", taken=_users(context)["by_id"])
    record = data_manager.UserRow(
        user_id=user_id,
        name=clean_name,
        username=clean_username,
        password=clean_password,
        role=UserRole(role).value,
    )
    data_manager.append_user(context.workbook, record)
    invalidate_cache(context, "users")
    log.info("Added %s user '%s' (%s)", record.role, record.username, record.user_id)
    return record


def update_user(context: RuntimeContext, record: data_manager.UserRow) -> data_manager.UserRow:
    """Overwrite name, login, and password of an existing account.

    The administrator account keeps its role whatever ``record`` says.

    Raises:
        MissingReferenceError: If the account does not exist.
        BusinessRuleViolation: If a field is blank or the login is taken.
    """
    current = get_user(context, record.user_id)
    clean_username = require_text(record.username, "Login")
    _require_unique_username(context, clean_username, exclude_id=record.user_id)
    role = current.role if current.user_id == ADMIN_ORG_ID else UserRole(record.role).value
    updated = data_manager.UserRow(
        user_id=current.user_id,
        name=require_text(record.name, "Name"),
        username=clean_username,
        password=require_text(record.password, "Password"),
        role=role,
    )
    data_manager.update_user(context.workbook, updated)
    invalidate_cache(context, "users")
    log.info("Updated user '%s'", updated.user_id)
    return updated


def delete_user(context: RuntimeContext, user_id: str) -> None:
    """Remove an account. Its requisitions and stock log entries are kept.

    Raises:
        MissingReferenceError: If the account does not exist.
        BusinessRuleViolation: When targeting the administrator.
    """
    user = get_user(context, user_id)
    if user.user_id == ADMIN_ORG_ID:
        raise BusinessRuleViolation("The administrator account cannot be deleted")
    data_manager.delete_row(context.workbook, data_manager.USERS_SHEET, "UserID", user_id)
    invalidate_cache(context, "users")
    log.info("Deleted user '%s'", user_id)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return a copy of the cached product catalogue in sheet order."""
    return list(_products(context)["all"])


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    try:
        return _products(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def add_product(
    context: RuntimeContext,
    *,
    product_name: str,
    unit: str,
    variants: Union[str, Sequence[str], None] = None,
) -> data_manager.ProductRow:
    """Register a new product.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        product_name (str): Display name.
        unit (str): Unit of measure, e.g. ``"dose"`` or ``"ml"``.
        variants (str | Sequence[str] | None): Comma separated string or
            sequence of variant names. Blank entries are dropped.

    Returns:
        data_manager.ProductRow: Newly appended product row.

    Raises:
        BusinessRuleViolation: If the name or unit is blank.
    """
    record = data_manager.ProductRow(
        product_id=generate_id("P", taken=_products(context)["by_id"]),
        product_name=require_text(product_name, "Product name"),
        unit=require_text(unit, "Unit"),
        variants=data_manager.split_variants(variants),
    )
    data_manager.append_product(context.workbook, record)
    invalidate_cache(context, "products")
    log.info("Added product '%s' (%s) with %d variants", record.product_name, record.product_id, len(record.variants))
    return record


def update_product(context: RuntimeContext, record: data_manager.ProductRow) -> data_manager.ProductRow:
    """Overwrite name, unit, and variants of an existing product.

    Existing requisitions keep the product name and unit they were created
    with.

    Raises:
        MissingReferenceError: If the product does not exist.
        BusinessRuleViolation: If the name or unit is blank.
    """
    get_product(context, record.product_id)
    updated = data_manager.ProductRow(
        product_id=record.product_id,
        product_name=require_text(record.product_name, "Product name"),
        unit=require_text(record.unit, "Unit"),
        variants=data_manager.split_variants(record.variants),
    )
    data_manager.update_product(context.workbook, updated)
    invalidate_cache(context, "products")
    log.info("Updated product '%s'", updated.product_id)
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product from the catalogue. History rows are kept.

    Raises:
        MissingReferenceError: If the product does not exist.
    """
    get_product(context, product_id)
    data_manager.delete_row(context.workbook, data_manager.PRODUCTS_SHEET, "ProductID", product_id)
    invalidate_cache(context, "products")
    log.info("Deleted product '%s'", product_id)


def resolve_variant(product: data_manager.ProductRow, variant: Optional[str]) -> Optional[str]:
    """Check ``variant`` against the product's variant list.

    Args:
        product (data_manager.ProductRow): Product being moved or requested.
        variant (str | None): Requested variant; blank means none.

    Returns:
        str | None: The cleaned variant, or ``None`` for variant-less products.

    Raises:
        BusinessRuleViolation: If a variant is required but missing, unknown,
            or supplied for a product without variants.
    """
    clean = _clean_optional(variant)
    if not product.variants:
        if clean is not None:
            raise BusinessRuleViolation(
                f"Product '{product.product_id}' has no variants (got '{clean}')")
        return None
    if clean is None:
        raise BusinessRuleViolation(
            f"Product '{product.product_id}' requires a variant: {', '.join(product.variants)}")
    if clean not in product.variants:
        raise BusinessRuleViolation(
            f"Unknown variant '{clean}' for product '{product.product_id}'")
    return clean


# ---------------------------------------------------------------------------
# Requisition queries
# ---------------------------------------------------------------------------


def list_requisitions(
    context: RuntimeContext,
    *,
    status: Optional[RequestStatus] = None,
    org_id: Optional[str] = None,
) -> List[data_manager.RequisitionRow]:
    """Return requisitions in sheet order, optionally filtered."""
    rows = _requisitions(context)["all"]
    return [
        row
        for row in rows
        if (status is None or row.status == status.value)
        and (org_id is None or row.org_id == org_id)
    ]


def get_requisition(context: RuntimeContext, requisition_id: str) -> data_manager.RequisitionRow:
    """Resolve a requisition by identifier.

    Raises:
        MissingReferenceError: If ``requisition_id`` is unknown.
    """
    try:
        return _requisitions(context)["by_id"][requisition_id]
    except KeyError as exc:
        log.warning("Requisition lookup failed for id '%s'", requisition_id)
        raise MissingReferenceError(f"Unknown requisition id: {requisition_id}") from exc


def requisition_ids(context: RuntimeContext) -> Iterable[str]:
    """Identifiers currently present on the requisitions sheet."""
    return _requisitions(context)["by_id"].keys()


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------


def list_transactions(context: RuntimeContext, *, org_id: Optional[str] = None) -> List[data_manager.StockTransactionRow]:
    """Snapshot of the stock log in append order, optionally for one ledger."""
    rows = _transactions(context)["all"]
    if org_id is None:
        return list(rows)
    return [row for row in rows if row.org_id == org_id]


def calculate_balances(
    context: RuntimeContext,
    org_id: str,
    *,
    as_of: Optional[datetime] = None,
    include_catalogue: bool = True,
) -> Dict[str, int]:
    """Compute current balances for a ledger from the stock log.

    The reduction is recomputed on every call; only the raw rows are cached.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        org_id (str): Organization id, or ``"admin"`` for the central warehouse.
        as_of (datetime | None): Optional inclusive cut-off.
        include_catalogue (bool): When ``True`` every catalogue key is present
            with at least a zero balance.

    Returns:
        dict[str, int]: Mapping of ``productId::variant`` to signed balance.
    """
    products = list_products(context) if include_catalogue else None
    return ledger.reduce_balances(
        _transactions(context)["all"],
        org_id,
        products=products,
        as_of=as_of,
    )


def get_balance(
    context: RuntimeContext,
    org_id: str,
    product_id: str,
    variant: Optional[str] = None,
    *,
    as_of: Optional[datetime] = None,
) -> int:
    """Balance for a single ``(org, product, variant)`` key; zero if unseen."""
    return ledger.balance_for(_transactions(context)["all"], org_id, product_id, variant, as_of=as_of)


def emit_transaction(
    context: RuntimeContext,
    *,
    org_id: str,
    product_id: str,
    variant: Optional[str],
    quantity: int,
    movement_type: MovementType,
    comment: Optional[str],
    timestamp: datetime,
    requisition_id: Optional[str] = None,
) -> data_manager.StockTransactionRow:
    """Append one stock movement to the log and invalidate the log cache.

    Callers validate product, variant, and quantity beforehand; this helper
    only builds the row and writes it.
    """
    transaction = data_manager.StockTransactionRow(
        transaction_id=generate_id("T", when=timestamp, taken=_transactions(context)["by_id"]),
        org_id=org_id,
        product_id=product_id,
        variant=variant,
        quantity=quantity,
        movement_type=MovementType(movement_type).value,
        comment=_clean_optional(comment),
        timestamp_iso=timestamp.isoformat(),
        requisition_id=requisition_id,
    )
    data_manager.append_transaction(context.workbook, transaction)
    invalidate_cache(context, "transactions")
    log.info(
        "Recorded %s transaction '%s' for ledger '%s' (product=%s, variant=%s, quantity=%d)",
        transaction.movement_type,
        transaction.transaction_id,
        org_id,
        product_id,
        variant,
        quantity,
    )
    return transaction


def record_consumption(context: RuntimeContext, command: ConsumptionCommand) -> data_manager.StockTransactionRow:
    """Record an organization's own consumption as an ``OUT`` transaction.

    No check is made against the current balance: the ledger accepts negative
    balances and only a warning is logged when one appears.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (ConsumptionCommand): Structured consumption intent.

    Returns:
        data_manager.StockTransactionRow: Newly appended ``OUT`` entry.

    Raises:
        MissingReferenceError: If the organization or product is unknown.
        BusinessRuleViolation: If the account is not an organization, or the
            variant does not fit the product.
        InvalidQuantityError: If the quantity is not a positive integer.
    """
    org = get_user(context, command.org_id)
    if org.role != UserRole.ORG.value:
        raise BusinessRuleViolation(f"User '{org.user_id}' is not an organization")
    product = get_product(context, command.product_id)
    variant = resolve_variant(product, command.variant)
    require_positive_quantity(command.quantity)

    transaction = emit_transaction(
        context,
        org_id=command.org_id,
        product_id=product.product_id,
        variant=variant,
        quantity=command.quantity,
        movement_type=MovementType.OUT,
        comment=command.comment or DEFAULT_CONSUMPTION_COMMENT,
        timestamp=resolve_timestamp(command.timestamp),
    )
    balance = get_balance(context, command.org_id, product.product_id, variant)
    if balance < 0:
        log.warning(
            "Ledger '%s' is negative for %s: %d",
            command.org_id,
            ledger.balance_key(product.product_id, variant),
            balance,
        )
    return transaction


def record_central_intake(context: RuntimeContext, command: CentralIntakeCommand) -> data_manager.StockTransactionRow:
    """Record goods received by the central warehouse as an ``IN`` transaction.

    Raises:
        MissingReferenceError: If the product is unknown.
        BusinessRuleViolation: If the variant does not fit the product.
        InvalidQuantityError: If the quantity is not a positive integer.
    """
    product = get_product(context, command.product_id)
    variant = resolve_variant(product, command.variant)
    require_positive_quantity(command.quantity)

    return emit_transaction(
        context,
        org_id=ADMIN_ORG_ID,
        product_id=product.product_id,
        variant=variant,
        quantity=command.quantity,
        movement_type=MovementType.IN,
        comment=command.comment,
        timestamp=resolve_timestamp(command.timestamp),
    )


# ---------------------------------------------------------------------------
# Configuration blobs
# ---------------------------------------------------------------------------


def get_telegram_config(context: RuntimeContext) -> TelegramConfig:
    """Read the Telegram settings blob; unset keys come back empty."""
    values = _settings(context)
    return TelegramConfig(**{attr: values.get(key, "") for attr, key in _TELEGRAM_KEYS.items()})


def save_telegram_config(context: RuntimeContext, config: TelegramConfig) -> None:
    """Overwrite the Telegram settings blob."""
    for attr, key in _TELEGRAM_KEYS.items():
        data_manager.write_setting(context.workbook, key, getattr(config, attr).strip())
    invalidate_cache(context, "settings")
    log.info("Saved Telegram settings (configured=%s)", config.is_configured)


def get_github_config(context: RuntimeContext) -> GithubConfig:
    """Read the GitHub backup settings blob; unset keys come back empty."""
    values = _settings(context)
    return GithubConfig(**{attr: values.get(key, "") for attr, key in _GITHUB_KEYS.items()})


def save_github_config(context: RuntimeContext, config: GithubConfig) -> None:
    """Overwrite the GitHub backup settings blob."""
    for attr, key in _GITHUB_KEYS.items():
        data_manager.write_setting(context.workbook, key, getattr(config, attr).strip())
    invalidate_cache(context, "settings")
    log.info("Saved GitHub backup settings for %s/%s", config.owner, config.repo)
