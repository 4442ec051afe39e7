"""
Response dict builders for workflow documents.

These are plain functions over model instances; views return their output
unchanged and the live feed uses them for snapshots.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from procurement.models import (
    AppUser,
    DeliveryOrder,
    FormRequestBarang,
    GoodsPreparationChecklist,
    GoodsReceipt,
    Item,
    Project,
    PurchaseOrder,
    PurchaseRequest,
    RejectionReport,
    Supplier,
    TandaTerimaBarang,
)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_user(u: AppUser) -> Dict[str, Any]:
    return {
        "user_id": u.user_id,
        "username": u.username,
        "name": u.name,
        "email": u.email,
        "role": u.role,
        "is_active": u.is_active,
    }


def serialize_project(p: Project) -> Dict[str, Any]:
    return {
        "project_id": p.project_id,
        "project_name": p.project_name,
        "pm_id": p.pm_id,
        "project_po_ref": p.project_po_ref,
    }


def serialize_item(i: Item) -> Dict[str, Any]:
    return {
        "item_id": i.item_id,
        "item_name": i.item_name,
        "description": i.description,
        "unit": i.unit,
        "current_stock": i.current_stock,
        "estimated_unit_price": str(i.estimated_unit_price),
        "version_nbr": i.version_nbr,
    }


def serialize_supplier(s: Supplier) -> Dict[str, Any]:
    return {
        "supplier_id": s.supplier_id,
        "supplier_name": s.supplier_name,
        "contact_person": s.contact_person,
        "phone_no": s.phone_no,
        "email_text": s.email_text,
        "status_code": s.status_code,
    }


def serialize_frb(frb: FormRequestBarang) -> Dict[str, Any]:
    items = []
    for line in frb.items.select_related("item").order_by("frb_item_id"):
        items.append(
            {
                "frb_item_id": line.frb_item_id,
                "item_id": line.item_id,
                "item_name": line.item.item_name,
                "unit": line.item.unit,
                "requested_qty": line.requested_qty,
                "approved_qty": line.approved_qty,
                "estimated_unit_price": str(line.estimated_unit_price),
                "line_total": str(line.requested_qty * line.estimated_unit_price),
            }
        )
    return {
        "frb_id": frb.frb_id,
        "frb_no": frb.frb_no,
        "project_id": frb.project_id,
        "project_name": frb.project.project_name,
        "pm_id": frb.pm_id,
        "submission_date": _iso(frb.submission_date),
        "delivery_deadline": _iso(frb.delivery_deadline),
        "recipient_name": frb.recipient_name,
        "recipient_contact": frb.recipient_contact,
        "delivery_address": frb.delivery_address,
        "project_po_ref": frb.project_po_ref,
        "status_code": frb.status_code,
        "total_requested_value": str(frb.total_requested_value),
        "director_approval_date": _iso(frb.director_approval_date),
        "director_rejection_reason": frb.director_rejection_reason,
        "purchasing_validation_date": _iso(frb.purchasing_validation_date),
        "purchasing_validation_notes": frb.purchasing_validation_notes,
        "items": items,
        "delivery_order_nos": list(
            frb.delivery_orders.order_by("do_id").values_list("do_no", flat=True)
        ),
        "purchase_request_nos": list(
            frb.purchase_requests.order_by("pr_id").values_list("pr_no", flat=True)
        ),
        "version_nbr": frb.version_nbr,
    }


def serialize_pr(pr: PurchaseRequest) -> Dict[str, Any]:
    items = [
        {
            "pr_item_id": line.pr_item_id,
            "item_id": line.item_id,
            "item_name": line.item.item_name,
            "quantity_to_purchase": line.quantity_to_purchase,
        }
        for line in pr.items.select_related("item").order_by("pr_item_id")
    ]
    po_no = None
    if hasattr(pr, "purchase_order"):
        po_no = pr.purchase_order.po_no
    return {
        "pr_id": pr.pr_id,
        "pr_no": pr.pr_no,
        "frb_id": pr.frb_id,
        "frb_no": pr.frb.frb_no,
        "pm_id": pr.pm_id,
        "purchasing_id": pr.purchasing_id,
        "request_date": _iso(pr.request_date),
        "status_code": pr.status_code,
        "director_approval_date": _iso(pr.director_approval_date),
        "director_rejection_reason": pr.director_rejection_reason,
        "po_no": po_no,
        "items": items,
        "version_nbr": pr.version_nbr,
    }


def serialize_po(po: PurchaseOrder) -> Dict[str, Any]:
    return {
        "po_id": po.po_id,
        "po_no": po.po_no,
        "pr_id": po.pr_id,
        "pr_no": po.pr.pr_no,
        "supplier": serialize_supplier(po.supplier),
        "order_date": _iso(po.order_date),
        "expected_delivery_date": _iso(po.expected_delivery_date),
        "actual_delivery_date": _iso(po.actual_delivery_date),
        "shipped_at": _iso(po.shipped_at),
        "total_price": str(po.total_price),
        "status_code": po.status_code,
        "notes_text": po.notes_text or "",
        "goods_receipt_nos": list(
            po.goods_receipts.order_by("grn_id").values_list("grn_no", flat=True)
        ),
        "version_nbr": po.version_nbr,
    }


def serialize_grn(grn: GoodsReceipt) -> Dict[str, Any]:
    items = [
        {
            "grn_item_id": line.grn_item_id,
            "item_id": line.item_id,
            "item_name": line.item.item_name,
            "received_qty": line.received_qty,
            "condition_at_receipt": line.condition_at_receipt,
            "damaged_qty": line.damaged_qty,
            "action_taken": line.action_taken,
            "repaired_qty": line.repaired_qty,
            "stocked_qty": line.stocked_qty,
            "photo_ref": line.photo_ref,
        }
        for line in grn.items.select_related("item").order_by("grn_item_id")
    ]
    return {
        "grn_id": grn.grn_id,
        "grn_no": grn.grn_no,
        "po_id": grn.po_id,
        "po_no": grn.po.po_no,
        "warehouse_id": grn.warehouse_id,
        "receipt_date": _iso(grn.receipt_date),
        "overall_condition": grn.overall_condition,
        "notes_text": grn.notes_text or "",
        "items": items,
    }


def serialize_do(do: DeliveryOrder) -> Dict[str, Any]:
    items = [
        {
            "do_item_id": line.do_item_id,
            "item_id": line.item_id,
            "item_name": line.item.item_name,
            "delivered_qty": line.delivered_qty,
        }
        for line in do.items.select_related("item").order_by("do_item_id")
    ]
    return {
        "do_id": do.do_id,
        "do_no": do.do_no,
        "frb_id": do.frb_id,
        "frb_no": do.frb.frb_no,
        "purchasing_id": do.purchasing_id,
        "source_pr_id": do.source_pr_id,
        "creation_date": _iso(do.creation_date),
        "sent_at": _iso(do.sent_at),
        "status_code": do.status_code,
        "items": items,
        "version_nbr": do.version_nbr,
    }


def serialize_checklist(checklist: GoodsPreparationChecklist) -> Dict[str, Any]:
    items = [
        {
            "checklist_item_id": line.checklist_item_id,
            "item_id": line.item_id,
            "item_name": line.item.item_name,
            "prepared_qty": line.prepared_qty,
            "condition_status": line.condition_status,
            "functionality_status": line.functionality_status,
            "notes_text": line.notes_text,
            "photo_ref": line.photo_ref,
        }
        for line in checklist.items.select_related("item").order_by("checklist_item_id")
    ]
    return {
        "checklist_id": checklist.checklist_id,
        "checklist_no": checklist.checklist_no,
        "do_id": checklist.delivery_order_id,
        "warehouse_id": checklist.warehouse_id,
        "check_date": _iso(checklist.check_date),
        "overall_status": checklist.overall_status,
        "items": items,
    }


def serialize_rejection_report(report: RejectionReport) -> Dict[str, Any]:
    return {
        "report_id": report.report_id,
        "report_no": report.report_no,
        "ttb_id": report.ttb_id,
        "ttb_no": report.ttb.ttb_no,
        "warehouse_id": report.warehouse_id,
        "reporting_date": _iso(report.reporting_date),
        "reason_code": report.reason_code,
        "detailed_reason": report.detailed_reason,
        "photo_refs": list(report.photo_refs or []),
        "reconciliation_status": report.reconciliation_status,
        "resolution_notes": report.resolution_notes,
        "resolution_date": _iso(report.resolution_date),
        "resolved_by_id": report.resolved_by_id,
        "version_nbr": report.version_nbr,
    }


def serialize_ttb(ttb: TandaTerimaBarang) -> Dict[str, Any]:
    items = [
        {
            "ttb_item_id": line.ttb_item_id,
            "item_id": line.item_id,
            "item_name": line.item.item_name,
            "delivered_qty": line.delivered_qty,
            "condition_at_acceptance": line.condition_at_acceptance,
        }
        for line in ttb.items.select_related("item").order_by("ttb_item_id")
    ]
    report = None
    if hasattr(ttb, "rejection_report"):
        report = serialize_rejection_report(ttb.rejection_report)
    return {
        "ttb_id": ttb.ttb_id,
        "ttb_no": ttb.ttb_no,
        "do_id": ttb.delivery_order_id,
        "do_no": ttb.delivery_order.do_no,
        "warehouse_id": ttb.warehouse_id,
        "recipient_name": ttb.recipient_name,
        "recipient_contact": ttb.recipient_contact,
        "delivery_address": ttb.delivery_address,
        "recipient_signature_ref": ttb.recipient_signature_ref,
        "photo_refs": list(ttb.photo_refs or []),
        "recipient_statement": ttb.recipient_statement,
        "acceptance_date": _iso(ttb.acceptance_date),
        "status_code": ttb.status_code,
        "items": items,
        "rejection_report": report,
    }
