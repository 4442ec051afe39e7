"""
Delivery order preparation, dispatch and recipient confirmation.

The warehouse checklist is where stock leaves the shelf; a rejected TTB puts
the same quantities back and opens a rejection report for reconciliation.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from django.db import transaction
from django.utils import timezone

from procurement import rules
from procurement.exceptions import InvalidTransition, ValidationError
from procurement.log_sanitizer import sanitize_for_log
from procurement.models import (
    ChecklistItem,
    DeliveryOrder,
    FormRequestBarang,
    GoodsPreparationChecklist,
    RejectionReport,
    TandaTerimaBarang,
    TTBItem,
)
from procurement.roles import Actor, Capability, Role, require_capability
from procurement.serializers import (
    serialize_checklist,
    serialize_do,
    serialize_rejection_report,
    serialize_ttb,
)
from procurement.services import activity, stock_ledger
from procurement.services.common import (
    audit_fields,
    get_document,
    lock_document,
    parse_choice,
    parse_int,
    parse_refs,
    require_text,
    save_document,
)
from procurement.services.frb import mark_rejected_by_recipient, refresh_completion
from procurement.services.numbering import create_numbered

logger = logging.getLogger("sipb.audit")

_DO_LINK = "/purchasing/delivery-orders"
_RECON_LINK = "/reconciliation"


def _move(do: DeliveryOrder, target: str) -> str:
    previous = do.status_code
    rules.validate_transition(rules.DO_TRANSITIONS, previous, target, "DO")
    do.status_code = target
    return previous


def _log_do_change(do: DeliveryOrder, actor: Actor, event: str, previous: str, **extra) -> None:
    logger.info(
        event,
        extra={
            "event_type": "STATE_CHANGE",
            "user_id": actor.user_id,
            "do_no": do.do_no,
            "from_status": previous,
            "to_status": do.status_code,
            **extra,
        },
    )


# ── Preparation ─────────────────────────────────────────────────────────────


def _parse_checklist_lines(raw_items: Any, planned: Dict[int, int]) -> List[Dict[str, Any]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one checklist line is required.", field="items")

    lines: List[Dict[str, Any]] = []
    seen: set[int] = set()
    for raw in raw_items:
        if not isinstance(raw, Mapping):
            raise ValidationError("Checklist lines must be objects.", field="items")
        item_id = parse_int(raw.get("item_id"), "item_id", minimum=1)
        if item_id not in planned:
            raise ValidationError(f"Item {item_id} is not on this delivery order.", field="items")
        if item_id in seen:
            raise ValidationError(f"Item {item_id} appears more than once.", field="items")
        seen.add(item_id)
        prepared = parse_int(
            raw.get("prepared_qty", raw.get("prepared_quantity")), "prepared_qty", minimum=0
        )
        if prepared != planned[item_id]:
            raise ValidationError(
                f"Item {item_id} must be prepared in full ({planned[item_id]} on the DO).",
                field="prepared_qty",
            )
        lines.append(
            {
                "item_id": item_id,
                "prepared_qty": prepared,
                "condition_status": parse_choice(
                    raw.get("condition_status"), "condition_status",
                    rules.ITEM_CONDITION_CHOICES, default="GOOD",
                ),
                "functionality_status": parse_choice(
                    raw.get("functionality_status"), "functionality_status",
                    rules.ITEM_FUNCTIONALITY_CHOICES, default="WORKING",
                ),
                "notes_text": str(raw.get("notes") or raw.get("notes_text") or "").strip() or None,
                "photo_ref": str(raw.get("photo_ref") or "").strip() or None,
            }
        )
    missing = sorted(set(planned) - seen)
    if missing:
        raise ValidationError(
            "Checklist is missing DO items: " + ", ".join(str(i) for i in missing) + ".",
            field="items",
        )
    return lines


@transaction.atomic
def record_checklist(
    do_id: int, actor: Actor, items: Any, overall_status: Optional[str] = None
) -> Dict[str, Any]:
    """
    Record the warehouse preparation of a DO and take the prepared quantities
    out of stock. Every DO line is prepared in full; any line short of stock
    aborts the whole checklist and the DO stays CREATED.
    """
    require_capability(actor, Capability.CHECKLIST_RECORD)
    do = lock_document(DeliveryOrder, do_id, "DO", select_related=("frb",))
    if do.status_code != rules.DO_CREATED:
        raise InvalidTransition(
            f"DO in {do.status_code} has already been prepared.", field="status"
        )

    planned = {line.item_id: line.delivered_qty for line in do.items.all()}
    lines = _parse_checklist_lines(items, planned)
    status = parse_choice(
        overall_status, "overall_status", rules.CHECKLIST_STATUS_CHOICES,
        default=rules.CHECKLIST_READY_TO_SHIP,
    )

    checklist = create_numbered(
        GoodsPreparationChecklist,
        "checklist_no",
        rules.DOCUMENT_PREFIXES["checklist"],
        delivery_order=do,
        warehouse_id=actor.user_id,
        check_date=timezone.now(),
        overall_status=status,
        **audit_fields(actor),
    )
    for line in lines:
        ChecklistItem.objects.create(checklist=checklist, **line, **audit_fields(actor))
        if line["prepared_qty"] > 0:
            stock_ledger.adjust(
                line["item_id"],
                line["prepared_qty"],
                stock_ledger.SUBTRACT,
                actor=actor,
                reason=f"Prepared for {do.do_no}",
                reference_no=do.do_no,
            )

    previous = _move(do, rules.DO_PREPARED_BY_WAREHOUSE)
    save_document(do, actor, ["status_code"])

    activity.log_activity(
        actor, f"Prepared goods for DO {do.do_no} ({checklist.checklist_no})", do.do_no
    )
    activity.notify_role(
        Role.PURCHASING, f"Goods for DO {do.do_no} have been prepared by the warehouse.", _DO_LINK
    )
    _log_do_change(do, actor, "do_prepared", previous, checklist_no=checklist.checklist_no)
    return {"checklist": serialize_checklist(checklist), "delivery_order": serialize_do(do)}


@transaction.atomic
def mark_sent(do_id: int, actor: Actor) -> Dict[str, Any]:
    require_capability(actor, Capability.DO_SEND)
    do = lock_document(DeliveryOrder, do_id, "DO", select_related=("frb",))
    previous = _move(do, rules.DO_SENT)
    do.sent_at = timezone.now()
    save_document(do, actor, ["status_code", "sent_at"])
    activity.log_activity(actor, f"Dispatched DO {do.do_no}", do.do_no)
    activity.notify(
        f"Goods for FRB {do.frb.frb_no} are on the way ({do.do_no}).", do.frb.pm_id, "/frb"
    )
    _log_do_change(do, actor, "do_sent", previous)
    return serialize_do(do)


# ── Recipient Confirmation ──────────────────────────────────────────────────


def _shipped_lines(do: DeliveryOrder) -> List[ChecklistItem]:
    return [line for line in do.checklist.items.all() if line.prepared_qty > 0]


@transaction.atomic
def record_ttb(do_id: int, actor: Actor, accepted: bool, data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Record the recipient's receipt (Tanda Terima Barang).

    Acceptance delivers the DO and may complete the FRB. Rejection opens a
    PENDING rejection report and returns every shipped unit to stock.
    """
    require_capability(actor, Capability.TTB_RECORD)
    do = lock_document(DeliveryOrder, do_id, "DO", select_related=("frb",))
    if hasattr(do, "ttb"):
        raise InvalidTransition(f"DO {do.do_no} already has TTB {do.ttb.ttb_no}.", field="status")
    target = rules.DO_DELIVERED if accepted else rules.DO_REJECTED_BY_RECIPIENT
    rules.validate_transition(rules.DO_TRANSITIONS, do.status_code, target, "DO")

    frb = lock_document(FormRequestBarang, do.frb_id, "FRB", select_related=("project",))
    signature = str(data.get("recipient_signature_ref") or "").strip() or None
    if accepted and not signature:
        raise ValidationError("Recipient signature is required.", field="recipient_signature_ref")
    if not accepted:
        reason_code = parse_choice(
            data.get("reason_for_rejection", data.get("reason_code")),
            "reason_code",
            rules.REJECTION_REASON_CHOICES,
        )
        detailed = require_text(
            data.get("detailed_reason"), "detailed_reason", "Detailed reason is required."
        )
    photo_refs = parse_refs(data.get("photo_refs"), "photo_refs")

    ttb = create_numbered(
        TandaTerimaBarang,
        "ttb_no",
        rules.DOCUMENT_PREFIXES["ttb"],
        delivery_order=do,
        warehouse_id=actor.user_id,
        recipient_name=str(data.get("recipient_name") or frb.recipient_name).strip(),
        recipient_contact=str(data.get("recipient_contact") or frb.recipient_contact or "").strip() or None,
        delivery_address=str(data.get("delivery_address") or frb.delivery_address or "").strip() or None,
        recipient_signature_ref=signature,
        photo_refs=photo_refs,
        recipient_statement=str(data.get("recipient_statement") or "").strip() or None,
        acceptance_date=timezone.now(),
        status_code=rules.TTB_ACCEPTED if accepted else rules.TTB_REJECTED,
        **audit_fields(actor),
    )
    shipped = _shipped_lines(do)
    TTBItem.objects.bulk_create(
        [
            TTBItem(
                ttb=ttb,
                item_id=line.item_id,
                delivered_qty=line.prepared_qty,
                condition_at_acceptance=line.condition_status,
                **audit_fields(actor),
            )
            for line in shipped
        ]
    )

    previous = _move(do, target)
    save_document(do, actor, ["status_code"])

    if accepted:
        activity.log_activity(actor, f"Recorded TTB {ttb.ttb_no}: DO {do.do_no} accepted", ttb.ttb_no)
        activity.notify(f"Goods for FRB {frb.frb_no} were received ({ttb.ttb_no}).", frb.pm_id, "/frb")
        _log_do_change(do, actor, "ttb_accepted", previous, ttb_no=ttb.ttb_no)
        refresh_completion(frb, actor)
    else:
        report = create_numbered(
            RejectionReport,
            "report_no",
            rules.DOCUMENT_PREFIXES["rejection_report"],
            ttb=ttb,
            warehouse_id=actor.user_id,
            reporting_date=timezone.now(),
            reason_code=reason_code,
            detailed_reason=detailed,
            photo_refs=photo_refs,
            reconciliation_status=rules.RECON_PENDING,
            **audit_fields(actor),
        )
        for line in shipped:
            stock_ledger.adjust(
                line.item_id,
                line.prepared_qty,
                stock_ledger.ADD,
                actor=actor,
                reason=f"Returned by recipient ({ttb.ttb_no})",
                reference_no=ttb.ttb_no,
            )
        mark_rejected_by_recipient(frb, actor)
        activity.log_activity(
            actor,
            f"Recorded TTB {ttb.ttb_no}: DO {do.do_no} rejected. Reason: {reason_code}",
            ttb.ttb_no,
        )
        activity.notify_role(
            Role.PURCHASING,
            f"DO {do.do_no} was rejected by the recipient ({report.report_no}).",
            _RECON_LINK,
        )
        _log_do_change(
            do,
            actor,
            "ttb_rejected",
            previous,
            ttb_no=ttb.ttb_no,
            report_no=report.report_no,
            reason=sanitize_for_log(detailed),
        )
    return serialize_ttb(ttb)


# ── Reconciliation ──────────────────────────────────────────────────────────


def _move_report(report: RejectionReport, target: str) -> str:
    previous = report.reconciliation_status
    rules.validate_transition(
        rules.RECONCILIATION_TRANSITIONS, previous, target, "rejection report"
    )
    report.reconciliation_status = target
    return previous


@transaction.atomic
def start_reconciliation(report_id: int, actor: Actor) -> Dict[str, Any]:
    require_capability(actor, Capability.RECONCILE)
    report = lock_document(RejectionReport, report_id, "Report", select_related=("ttb",))
    previous = _move_report(report, rules.RECON_IN_PROGRESS)
    save_document(report, actor, ["reconciliation_status"])
    activity.log_activity(actor, f"Started reconciliation of {report.report_no}", report.report_no)
    logger.info(
        "reconciliation_started",
        extra={"event_type": "STATE_CHANGE", "report_no": report.report_no, "from_status": previous},
    )
    return serialize_rejection_report(report)


@transaction.atomic
def resolve_reconciliation(report_id: int, actor: Actor, resolution_notes: Optional[str]) -> Dict[str, Any]:
    """Close a rejection report. Stock and the DO are left as they are."""
    require_capability(actor, Capability.RECONCILE)
    notes = require_text(resolution_notes, "resolution_notes", "Resolution notes are required.")
    report = lock_document(RejectionReport, report_id, "Report", select_related=("ttb",))
    previous = _move_report(report, rules.RECON_RESOLVED)
    report.resolution_notes = notes
    report.resolution_date = timezone.now()
    report.resolved_by_id = actor.user_id
    save_document(
        report, actor, ["reconciliation_status", "resolution_notes", "resolution_date", "resolved_by"]
    )
    activity.log_activity(actor, f"Resolved {report.report_no}", report.report_no)
    logger.info(
        "reconciliation_resolved",
        extra={
            "event_type": "STATE_CHANGE",
            "user_id": actor.user_id,
            "report_no": report.report_no,
            "from_status": previous,
            "notes": sanitize_for_log(notes),
        },
    )
    return serialize_rejection_report(report)


# ── Queries ─────────────────────────────────────────────────────────────────


def get_do(do_id: int, actor: Actor) -> Dict[str, Any]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    return serialize_do(get_document(DeliveryOrder, do_id, "DO", select_related=("frb",)))


def list_dos(actor: Actor, status: Optional[str] = None) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    qs = DeliveryOrder.objects.select_related("frb")
    if actor.role == Role.PROJECT_MANAGER:
        qs = qs.filter(frb__pm_id=actor.user_id)
    if status:
        qs = qs.filter(status_code=str(status).upper())
    return [serialize_do(do) for do in qs]


def list_ttbs(actor: Actor) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    return [serialize_ttb(t) for t in TandaTerimaBarang.objects.select_related("delivery_order")]


def list_rejection_reports(actor: Actor, status: Optional[str] = None) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    qs = RejectionReport.objects.select_related("ttb")
    if status:
        qs = qs.filter(reconciliation_status=str(status).upper())
    return [serialize_rejection_report(r) for r in qs]
