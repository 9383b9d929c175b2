"""Read-only summaries over requisitions and ledgers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from . import core_logic, data_manager, ledger
from .constants import ADMIN_ORG_ID, RequestStatus
from .core_logic import RuntimeContext


@dataclass(frozen=True)
class RequisitionSummary:
    """Aggregates shown on the statistics screen."""

    approved_quantity_by_product: Dict[str, int] = field(default_factory=dict)
    approved_count_by_org: Dict[str, int] = field(default_factory=dict)
    count_by_status: Dict[str, int] = field(default_factory=dict)
    approved: List[data_manager.RequisitionRow] = field(default_factory=list)


@dataclass(frozen=True)
class BalanceLine:
    """One row of a stock report."""

    product_id: str
    product_name: str
    variant: str
    unit: str
    balance: int


def product_label(requisition: data_manager.RequisitionRow) -> str:
    """``"Name (variant)"``, or just the name for variant-less products."""
    if requisition.variant:
        return f"{requisition.product_name} ({requisition.variant})"
    return requisition.product_name


def summarize_requisitions(
    context: RuntimeContext,
    *,
    org_id: Optional[str] = None,
    patient_filter: Optional[str] = None,
) -> RequisitionSummary:
    """Aggregate requisitions for the statistics view.

    Only approved requisitions feed the product and organization totals;
    ``count_by_status`` covers every matching requisition. ``patient_filter``
    is a case-insensitive substring match on the patient name.
    """
    needle = (patient_filter or "").strip().lower()
    rows = [
        row
        for row in core_logic.list_requisitions(context, org_id=org_id)
        if not needle or needle in (row.patient_name or "").lower()
    ]

    by_product: Dict[str, int] = {}
    by_org: Dict[str, int] = {}
    by_status: Dict[str, int] = {status.value: 0 for status in RequestStatus}
    approved: List[data_manager.RequisitionRow] = []
    for row in rows:
        by_status[row.status] = by_status.get(row.status, 0) + 1
        if row.status != RequestStatus.APPROVED.value:
            continue
        approved.append(row)
        label = product_label(row)
        by_product[label] = by_product.get(label, 0) + row.quantity
        by_org[row.org_name] = by_org.get(row.org_name, 0) + 1

    return RequisitionSummary(
        approved_quantity_by_product=by_product,
        approved_count_by_org=by_org,
        count_by_status=by_status,
        approved=approved,
    )


def stock_report(context: RuntimeContext, org_id: str = ADMIN_ORG_ID) -> List[BalanceLine]:
    """Balances of a ledger joined with catalogue names and units.

    Keys whose product was removed from the catalogue are still listed, with
    the product id standing in for the name.
    """
    products = {product.product_id: product for product in core_logic.list_products(context)}
    lines: List[BalanceLine] = []
    for key, balance in core_logic.calculate_balances(context, org_id).items():
        product_id, variant = ledger.split_balance_key(key)
        product = products.get(product_id)
        lines.append(
            BalanceLine(
                product_id=product_id,
                product_name=product.product_name if product else product_id,
                variant=variant,
                unit=product.unit if product else "",
                balance=balance,
            )
        )
    return lines
