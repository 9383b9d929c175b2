"""Stock ledger reducer.

Balances are never stored: every figure reported for an
``(org, product, variant)`` key is obtained by folding the append-only stock
log. The functions here are pure and operate on the typed rows produced by
:mod:`taminot.data_manager`; the runtime context in :mod:`taminot.core_logic`
feeds them the cached rows.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Dict, Iterable, Optional

from . import log
from .constants import DEFAULT_VARIANT, MovementType
from .data_manager import ProductRow, StockTransactionRow


KEY_SEPARATOR = "::"


def variant_key(variant: Optional[str]) -> str:
    """Normalize an optional variant into the ledger key component."""

    if variant is None or not variant.strip():
        return DEFAULT_VARIANT
    return variant


def balance_key(product_id: str, variant: Optional[str]) -> str:
    """Return the ``productId::variant`` key used in balance mappings."""

    return f"{product_id}{KEY_SEPARATOR}{variant_key(variant)}"


def split_balance_key(key: str) -> tuple[str, str]:
    """Split a balance key back into ``(product_id, variant)``."""

    product_id, _, variant = key.partition(KEY_SEPARATOR)
    return product_id, variant


def catalogue_keys(products: Iterable[ProductRow]) -> list[str]:
    """Every balance key a product catalogue can produce, in catalogue order.

    Products without variants contribute a single ``default`` key.
    """

    keys: list[str] = []
    for product in products:
        variants = product.variants or (DEFAULT_VARIANT,)
        keys.extend(balance_key(product.product_id, variant) for variant in variants)
    return keys


def signed_quantity(transaction: StockTransactionRow) -> int:
    """Return the quantity as a signed delta: positive for IN, negative for OUT.

    Raises:
        ValueError: If the row carries an unknown movement type.
    """

    if transaction.movement_type == MovementType.IN.value:
        return transaction.quantity
    if transaction.movement_type == MovementType.OUT.value:
        return -transaction.quantity
    raise ValueError(f"Unknown movement type: {transaction.movement_type!r}")


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with stored timestamps."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp stored in the stock log."""

    return as_utc(datetime.fromisoformat(value))


def reduce_balances(
    transactions: Iterable[StockTransactionRow],
    org_id: str,
    *,
    products: Optional[Iterable[ProductRow]] = None,
    as_of: Optional[datetime] = None,
) -> Dict[str, int]:
    """Fold the stock log into per-key balances for a single ledger.

    Only transactions whose ``org_id`` matches are considered. Addition is
    commutative, so the input order does not matter. When ``products`` is
    supplied every catalogue key starts at zero, which lets callers list
    products that never moved. When ``as_of`` is supplied, transactions with a
    later timestamp are ignored.

    Balances may be negative: consumption is never checked against stock.

    Args:
        transactions (Iterable[StockTransactionRow]): Stock log rows, any order.
        org_id (str): Ledger scope, ``"admin"`` for the central warehouse.
        products (Iterable[ProductRow] | None): Optional catalogue used to
            seed zero balances.
        as_of (datetime | None): Optional inclusive cut-off. Naive values
            are read as UTC.

    Returns:
        dict[str, int]: Mapping of ``productId::variant`` to signed balance.
    """

    if as_of is not None:
        as_of = as_utc(as_of)

    balances: Dict[str, int] = {}
    if products is not None:
        for key in catalogue_keys(products):
            balances[key] = 0

    for transaction in transactions:
        if transaction.org_id != org_id:
            continue
        if as_of is not None and parse_timestamp(transaction.timestamp_iso) > as_of:
            continue
        key = balance_key(transaction.product_id, transaction.variant)
        balances[key] = balances.get(key, 0) + signed_quantity(transaction)

    log.debug("Reduced %d balance keys for ledger '%s'", len(balances), org_id)
    return balances


def balance_for(
    transactions: Iterable[StockTransactionRow],
    org_id: str,
    product_id: str,
    variant: Optional[str],
    *,
    as_of: Optional[datetime] = None,
) -> int:
    """Balance of a single key; zero when the key never moved."""

    balances = reduce_balances(transactions, org_id, as_of=as_of)
    return balances.get(balance_key(product_id, variant), 0)
