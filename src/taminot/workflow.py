"""Requisition workflow.

A requisition starts ``PENDING`` and the administrator moves it to
``APPROVED`` or ``REJECTED``; both are terminal. Approval is a single command
that updates the requisition row and appends the matching ``IN`` transaction
to the requesting organization's ledger. Everything is validated before the
first write, and both writes land in the same workbook so one save persists
them together.

Field edits and deletions are allowed in any state and never touch the stock
log.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from . import core_logic, data_manager, log
from .constants import BLOOD_GROUPS, MovementType, RequestStatus, UserRole
from .core_logic import BusinessRuleViolation, RuntimeContext


class InvalidTransitionError(BusinessRuleViolation):
    """Raised when a status change is not allowed from the current state."""


ALLOWED_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED}),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
}

DELIVERY_COMMENT = "Delivered for requisition {requisition_id}"


@dataclass(frozen=True)
class RequisitionDraft:
    """Organization intent for a new requisition."""

    product_id: str
    quantity: int
    variant: Optional[str] = None
    blood_group: Optional[str] = None
    patient_name: Optional[str] = None
    comment: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RequisitionEdit:
    """Administrator overwrite of a requisition's mutable fields."""

    requisition_id: str
    product_id: str
    quantity: int
    variant: Optional[str] = None
    blood_group: Optional[str] = None
    patient_name: Optional[str] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class StatusChange:
    """Outcome of :func:`update_status`."""

    requisition: data_manager.RequisitionRow
    transaction: Optional[data_manager.StockTransactionRow] = None


def _clean(value: Optional[str]) -> Optional[str]:
    text = (value or "").strip()
    return text or None


def validate_blood_group(blood_group: Optional[str]) -> Optional[str]:
    """Return the cleaned blood group, or ``None`` when blank.

    Raises:
        BusinessRuleViolation: If the value is not one of ``BLOOD_GROUPS``.
    """
    clean = _clean(blood_group)
    if clean is not None and clean not in BLOOD_GROUPS:
        raise BusinessRuleViolation(f"Unknown blood group: {clean}")
    return clean


def _as_status(value: str) -> RequestStatus:
    try:
        return RequestStatus(value)
    except ValueError as exc:
        raise InvalidTransitionError(f"Unknown requisition status: {value}") from exc


def validate_transition(current: str, target: str) -> RequestStatus:
    """Check ``current -> target`` against :data:`ALLOWED_TRANSITIONS`.

    Returns:
        RequestStatus: The validated target state.

    Raises:
        InvalidTransitionError: If either status is unknown or the move is
            not allowed.
    """
    source = _as_status(current)
    destination = _as_status(target)
    if destination not in ALLOWED_TRANSITIONS[source]:
        log.warning("Rejected status transition %s -> %s", source.value, destination.value)
        raise InvalidTransitionError(
            f"Cannot move a {source.value} requisition to {destination.value}")
    return destination


def create_requisition(
    context: RuntimeContext,
    draft: RequisitionDraft,
    requesting_org_id: str,
) -> data_manager.RequisitionRow:
    """Validate and append a new ``PENDING`` requisition.

    Organization name, product name, and unit are copied onto the row so the
    requisition reads the same after the catalogue changes.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        draft (RequisitionDraft): Structured request from the organization.
        requesting_org_id (str): Identifier of the organization account.

    Returns:
        data_manager.RequisitionRow: Newly appended requisition.

    Raises:
        MissingReferenceError: If the organization or product is unknown.
        BusinessRuleViolation: If the account is not an organization, or the
            variant or blood group is invalid.
        InvalidQuantityError: If the quantity is not a positive integer.
    """
    org = core_logic.get_user(context, requesting_org_id)
    if org.role != UserRole.ORG.value:
        raise BusinessRuleViolation(f"User '{org.user_id}' is not an organization")
    product = core_logic.get_product(context, draft.product_id)
    variant = core_logic.resolve_variant(product, draft.variant)
    core_logic.require_positive_quantity(draft.quantity)
    blood_group = validate_blood_group(draft.blood_group)

    timestamp = core_logic.resolve_timestamp(draft.timestamp)
    requisition = data_manager.RequisitionRow(
        requisition_id=core_logic.generate_id(
            "R", when=timestamp, taken=core_logic.requisition_ids(context)),
        org_id=org.user_id,
        org_name=org.name,
        product_id=product.product_id,
        product_name=product.product_name,
        unit=product.unit,
        variant=variant,
        blood_group=blood_group,
        patient_name=_clean(draft.patient_name),
        quantity=draft.quantity,
        comment=_clean(draft.comment),
        status=RequestStatus.PENDING.value,
        date_iso=timestamp.isoformat(),
    )
    data_manager.append_requisition(context.workbook, requisition)
    core_logic.invalidate_cache(context, "requisitions")
    log.info(
        "Created requisition '%s' from '%s' for %d %s of '%s'",
        requisition.requisition_id,
        org.user_id,
        requisition.quantity,
        requisition.unit,
        requisition.product_id,
    )
    return requisition


def update_status(
    context: RuntimeContext,
    requisition_id: str,
    new_status: RequestStatus,
    *,
    timestamp: Optional[datetime] = None,
) -> StatusChange:
    """Move a ``PENDING`` requisition to ``APPROVED`` or ``REJECTED``.

    Approval also appends exactly one ``IN`` transaction to the requesting
    organization's ledger for the requisition's product, variant, and
    quantity, linked back through ``requisition_id``. A second call on the
    same requisition fails before writing anything, so no duplicate
    transaction can be emitted.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        requisition_id (str): Requisition to transition.
        new_status (RequestStatus): Target state.
        timestamp (datetime | None): Moment of the delivery transaction;
            defaults to now.

    Returns:
        StatusChange: Updated requisition plus the emitted transaction, if any.

    Raises:
        MissingReferenceError: If the requisition does not exist.
        InvalidTransitionError: If the requisition is not ``PENDING`` or the
            target is not a terminal state.
    """
    current = core_logic.get_requisition(context, requisition_id)
    target = validate_transition(current.status, new_status)

    updated = replace(current, status=target.value)
    data_manager.update_requisition(context.workbook, updated)
    core_logic.invalidate_cache(context, "requisitions")

    transaction = None
    if target is RequestStatus.APPROVED:
        transaction = core_logic.emit_transaction(
            context,
            org_id=current.org_id,
            product_id=current.product_id,
            variant=current.variant,
            quantity=current.quantity,
            movement_type=MovementType.IN,
            comment=DELIVERY_COMMENT.format(requisition_id=current.requisition_id),
            timestamp=core_logic.resolve_timestamp(timestamp),
            requisition_id=current.requisition_id,
        )

    log.info("Requisition '%s' moved %s -> %s", requisition_id, current.status, target.value)
    return StatusChange(requisition=updated, transaction=transaction)


def approve(context: RuntimeContext, requisition_id: str, *, timestamp: Optional[datetime] = None) -> StatusChange:
    """Shorthand for ``update_status(..., RequestStatus.APPROVED)``."""
    return update_status(context, requisition_id, RequestStatus.APPROVED, timestamp=timestamp)


def reject(context: RuntimeContext, requisition_id: str) -> StatusChange:
    """Shorthand for ``update_status(..., RequestStatus.REJECTED)``."""
    return update_status(context, requisition_id, RequestStatus.REJECTED)


def edit_requisition(context: RuntimeContext, edit: RequisitionEdit) -> data_manager.RequisitionRow:
    """Overwrite product, variant, blood group, quantity, patient, and comment.

    Allowed in every state. Stock transactions already emitted for an
    approved requisition are left as they are, so the ledger no longer matches
    the edited row; a warning is logged in that case.

    Raises:
        MissingReferenceError: If the requisition or product is unknown.
        BusinessRuleViolation: If the variant or blood group is invalid.
        InvalidQuantityError: If the quantity is not a positive integer.
    """
    current = core_logic.get_requisition(context, edit.requisition_id)
    product = core_logic.get_product(context, edit.product_id)
    variant = core_logic.resolve_variant(product, edit.variant)
    core_logic.require_positive_quantity(edit.quantity)
    blood_group = validate_blood_group(edit.blood_group)

    updated = replace(
        current,
        product_id=product.product_id,
        product_name=product.product_name,
        unit=product.unit,
        variant=variant,
        blood_group=blood_group,
        patient_name=_clean(edit.patient_name),
        quantity=edit.quantity,
        comment=_clean(edit.comment),
    )
    data_manager.update_requisition(context.workbook, updated)
    core_logic.invalidate_cache(context, "requisitions")
    if current.status == RequestStatus.APPROVED.value:
        log.warning(
            "Edited approved requisition '%s'; its delivery transaction was not adjusted",
            current.requisition_id,
        )
    log.info("Edited requisition '%s'", current.requisition_id)
    return updated


def delete_requisition(context: RuntimeContext, requisition_id: str) -> data_manager.RequisitionRow:
    """Remove a requisition permanently; emitted transactions are kept.

    Returns:
        data_manager.RequisitionRow: The row that was removed.

    Raises:
        MissingReferenceError: If the requisition does not exist.
    """
    current = core_logic.get_requisition(context, requisition_id)
    data_manager.delete_row(
        context.workbook, data_manager.REQUISITIONS_SHEET, "RequisitionID", requisition_id)
    core_logic.invalidate_cache(context, "requisitions")
    log.info("Deleted requisition '%s' (status %s)", requisition_id, current.status)
    return current


def _newest_first(rows: List[data_manager.RequisitionRow]) -> List[data_manager.RequisitionRow]:
    return sorted(rows, key=lambda row: row.date_iso, reverse=True)


def pending_requisitions(context: RuntimeContext, *, org_id: Optional[str] = None) -> List[data_manager.RequisitionRow]:
    """Requisitions awaiting a decision, newest first."""
    return _newest_first(core_logic.list_requisitions(context, status=RequestStatus.PENDING, org_id=org_id))


def requisition_history(context: RuntimeContext, *, org_id: Optional[str] = None) -> List[data_manager.RequisitionRow]:
    """Decided requisitions, newest first."""
    rows = [
        row
        for row in core_logic.list_requisitions(context, org_id=org_id)
        if row.status != RequestStatus.PENDING.value
    ]
    return _newest_first(rows)
