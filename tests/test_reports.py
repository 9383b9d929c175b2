"""Tests for statistics and stock reports."""

from __future__ import annotations

from taminot import core_logic, reports, workflow
from taminot.constants import ADMIN_ORG_ID


def _request(context, org, product, quantity, *, variant=None, patient=None):
    draft = workflow.RequisitionDraft(
        product_id=product.product_id, quantity=quantity, variant=variant, patient_name=patient)
    return workflow.create_requisition(context, draft, org.user_id)


def test_summarize_requisitions_counts_only_approved(context, hospital, plasma, gloves):
    """Product and organization totals include approved requisitions only."""

    first = _request(context, hospital, plasma, 2, variant="250 ml", patient="Ivanov")
    second = _request(context, hospital, plasma, 3, variant="250 ml")
    third = _request(context, hospital, gloves, 7)
    _request(context, hospital, gloves, 1)
    workflow.approve(context, first.requisition_id)
    workflow.approve(context, second.requisition_id)
    workflow.reject(context, third.requisition_id)

    summary = reports.summarize_requisitions(context)

    assert summary.approved_quantity_by_product == {"Plasma (250 ml)": 5}
    assert summary.approved_count_by_org == {"City Hospital": 2}
    assert summary.count_by_status == {"PENDING": 1, "APPROVED": 2, "REJECTED": 1}
    assert {row.requisition_id for row in summary.approved} == {first.requisition_id, second.requisition_id}


def test_summarize_requisitions_patient_filter_is_case_insensitive(context, hospital, gloves):
    """The patient filter is a case-insensitive substring match."""

    match = _request(context, hospital, gloves, 1, patient="Anna Ivanova")
    _request(context, hospital, gloves, 1, patient="Boris")
    _request(context, hospital, gloves, 1)
    workflow.approve(context, match.requisition_id)

    summary = reports.summarize_requisitions(context, patient_filter="ivan")
    assert summary.count_by_status["APPROVED"] == 1
    assert sum(summary.count_by_status.values()) == 1


def test_summarize_requisitions_empty_has_zero_counts(context):
    """Every status is present even when nothing was requested."""

    summary = reports.summarize_requisitions(context)
    assert summary.count_by_status == {"PENDING": 0, "APPROVED": 0, "REJECTED": 0}
    assert summary.approved == []


def test_stock_report_joins_catalogue(context, plasma, gloves):
    """Balance lines carry product names and units."""

    core_logic.record_central_intake(context, core_logic.CentralIntakeCommand(plasma.product_id, "450 ml", 4))

    lines = {(line.product_name, line.variant): line for line in reports.stock_report(context, ADMIN_ORG_ID)}

    assert lines[("Plasma", "450 ml")].balance == 4
    assert lines[("Plasma", "250 ml")].balance == 0
    assert lines[("Gloves", "default")].unit == "box"


def test_stock_report_keeps_removed_products(context, gloves):
    """Keys of deleted products still appear, named by their id."""

    core_logic.record_central_intake(context, core_logic.CentralIntakeCommand(gloves.product_id, None, 2))
    core_logic.delete_product(context, gloves.product_id)

    lines = reports.stock_report(context)
    assert [(line.product_name, line.balance) for line in lines] == [(gloves.product_id, 2)]


def test_product_label(context, hospital, plasma, gloves):
    """Labels include the variant only when there is one."""

    assert reports.product_label(_request(context, hospital, plasma, 1, variant="250 ml")) == "Plasma (250 ml)"
    assert reports.product_label(_request(context, hospital, gloves, 1)) == "Gloves"


def test_stock_report_variant_containing_key_separator(context):
    """Variants holding ``::`` still resolve to their product."""

    product = core_logic.add_product(context, product_name="Serum", unit="vial", variants=["A::B"])
    core_logic.record_central_intake(context, core_logic.CentralIntakeCommand(product.product_id, "A::B", 3))

    (line,) = reports.stock_report(context)
    assert (line.product_id, line.product_name, line.variant, line.balance) == (product.product_id, "Serum", "A::B", 3)
