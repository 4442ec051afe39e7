"""
Purchase order lifecycle and goods receipt (GRN).

Receiving books stock through the ledger line by line and recomputes the PO
receipt status from every GRN recorded against it. Damaged units follow the
line's action: accepted units are stocked, units returned to the supplier are
not, and units sent for repair are stocked later via ``release_repaired``.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional

from django.db import transaction
from django.utils import timezone

from procurement import rules
from procurement.exceptions import InvalidTransition, ValidationError
from procurement.log_sanitizer import sanitize_for_log
from procurement.models import FormRequestBarang, GoodsReceipt, GRNItem, PurchaseOrder
from procurement.roles import Actor, Capability, Role, require_capability
from procurement.serializers import serialize_grn, serialize_po
from procurement.services import activity, stock_ledger
from procurement.services.common import (
    audit_fields,
    get_document,
    lock_document,
    parse_choice,
    parse_int,
    require_text,
    save_document,
)
from procurement.services.frb import refresh_completion
from procurement.services.numbering import create_numbered

logger = logging.getLogger("sipb.audit")

_PO_LINK = "/purchasing/po"


def _move(po: PurchaseOrder, target: str) -> str:
    previous = po.status_code
    rules.validate_transition(rules.PO_TRANSITIONS, previous, target, "PO")
    po.status_code = target
    return previous


@transaction.atomic
def mark_shipped(po_id: int, actor: Actor) -> Dict[str, Any]:
    require_capability(actor, Capability.PO_MANAGE)
    po = lock_document(PurchaseOrder, po_id, "PO", select_related=("pr", "supplier"))
    previous = _move(po, rules.PO_SHIPPED)
    po.shipped_at = timezone.now()
    save_document(po, actor, ["status_code", "shipped_at"])
    activity.log_activity(actor, f"Marked PO {po.po_no} as shipped", po.po_no)
    activity.notify_role(Role.WAREHOUSE, f"PO {po.po_no} has been shipped by the supplier.", _PO_LINK)
    logger.info(
        "po_shipped",
        extra={"event_type": "STATE_CHANGE", "po_no": po.po_no, "from_status": previous, "to_status": po.status_code},
    )
    return serialize_po(po)


@transaction.atomic
def cancel_po(po_id: int, actor: Actor, reason: Optional[str]) -> Dict[str, Any]:
    """Cancel an order that has not been received yet."""
    require_capability(actor, Capability.PO_MANAGE)
    text = require_text(reason, "reason", "Cancellation reason is required.")
    po = lock_document(PurchaseOrder, po_id, "PO", select_related=("pr", "supplier"))
    previous = _move(po, rules.PO_CANCELED)
    po.notes_text = "\n".join(filter(None, [po.notes_text, f"Canceled: {text}"]))
    save_document(po, actor, ["status_code", "notes_text"])

    activity.log_activity(actor, f"Canceled PO {po.po_no}. Reason: {text}", po.po_no)
    logger.info(
        "po_canceled",
        extra={
            "event_type": "STATE_CHANGE",
            "user_id": actor.user_id,
            "po_no": po.po_no,
            "from_status": previous,
            "to_status": po.status_code,
            "reason": sanitize_for_log(text),
        },
    )

    frb = lock_document(FormRequestBarang, po.pr.frb_id, "FRB")
    refresh_completion(frb, actor)
    return serialize_po(po)


def _net_received(po: PurchaseOrder) -> Counter:
    """Received minus returned-to-supplier quantity per item across all GRNs."""
    totals: Counter = Counter()
    for line in GRNItem.objects.filter(grn__po=po):
        totals[line.item_id] += line.received_qty - line.returned_qty
    return totals


def _parse_grn_lines(raw_items: Any, ordered: Dict[int, int], already: Counter) -> List[Dict[str, Any]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one received line is required.", field="items")

    lines: List[Dict[str, Any]] = []
    seen: set[int] = set()
    for raw in raw_items:
        if not isinstance(raw, Mapping):
            raise ValidationError("Received lines must be objects.", field="items")
        item_id = parse_int(raw.get("item_id"), "item_id", minimum=1)
        if item_id not in ordered:
            raise ValidationError(f"Item {item_id} is not on this purchase order.", field="items")
        if item_id in seen:
            raise ValidationError(f"Item {item_id} appears more than once.", field="items")
        seen.add(item_id)

        received = parse_int(
            raw.get("received_qty", raw.get("received_quantity")), "received_qty", minimum=1
        )
        damaged = parse_int(
            raw.get("damaged_qty", raw.get("quantity_damaged", 0)) or 0, "damaged_qty", minimum=0
        )
        if damaged > received:
            raise ValidationError(
                f"Damaged quantity for item {item_id} exceeds the received quantity.",
                field="damaged_qty",
            )
        condition = parse_choice(
            raw.get("condition_at_receipt"),
            "condition_at_receipt",
            rules.RECEIPT_CONDITION_CHOICES,
            default=rules.RECEIPT_GOOD if damaged == 0 else rules.RECEIPT_MINOR_DAMAGE,
        )
        if condition == rules.RECEIPT_GOOD and damaged > 0:
            raise ValidationError(
                f"Item {item_id} has damaged units and cannot be received as GOOD.",
                field="condition_at_receipt",
            )
        action = parse_choice(
            raw.get("action_taken"),
            "action_taken",
            rules.ACTION_TAKEN_CHOICES,
            default=rules.ACTION_ACCEPTED,
        )
        returned = damaged if action == rules.ACTION_RETURNED_TO_SUPPLIER else 0
        outstanding = ordered[item_id] - already[item_id]
        if received - returned > outstanding:
            raise ValidationError(
                f"Item {item_id}: receiving {received - returned} exceeds the outstanding {max(outstanding, 0)}.",
                field="received_qty",
            )
        lines.append(
            {
                "item_id": item_id,
                "received_qty": received,
                "damaged_qty": damaged,
                "condition_at_receipt": condition,
                "action_taken": action,
                "photo_ref": (str(raw.get("photo_ref") or "").strip() or None),
            }
        )
    return lines


def _overall_condition(lines: List[Dict[str, Any]]) -> str:
    damaged = sum(line["damaged_qty"] for line in lines)
    if damaged == 0:
        return rules.GRN_CONDITION_GOOD
    if damaged == sum(line["received_qty"] for line in lines):
        return rules.GRN_CONDITION_DAMAGED
    return rules.GRN_CONDITION_PARTIALLY_DAMAGED


@transaction.atomic
def record_grn(
    po_id: int,
    actor: Actor,
    items: Any,
    overall_condition: Optional[str] = None,
    notes: str = "",
) -> Dict[str, Any]:
    require_capability(actor, Capability.GRN_RECORD)
    po = lock_document(PurchaseOrder, po_id, "PO", select_related=("pr", "supplier"))
    if po.status_code not in rules.PO_RECEIVABLE_STATUSES:
        raise InvalidTransition(f"PO in {po.status_code} cannot receive goods.", field="status")

    ordered = {line.item_id: line.quantity_to_purchase for line in po.pr.items.all()}
    before = _net_received(po)
    lines = _parse_grn_lines(items, ordered, before)
    condition = (
        parse_choice(overall_condition, "overall_condition", rules.GRN_CONDITION_CHOICES)
        if overall_condition
        else _overall_condition(lines)
    )

    grn = create_numbered(
        GoodsReceipt,
        "grn_no",
        rules.DOCUMENT_PREFIXES["grn"],
        po=po,
        warehouse_id=actor.user_id,
        receipt_date=timezone.now(),
        overall_condition=condition,
        notes_text=(notes or "").strip() or None,
        **audit_fields(actor),
    )
    for line in lines:
        grn_item = GRNItem.objects.create(grn=grn, **line, **audit_fields(actor))
        if grn_item.stocked_qty > 0:
            stock_ledger.adjust(
                grn_item.item_id,
                grn_item.stocked_qty,
                stock_ledger.ADD,
                actor=actor,
                reason=f"Goods receipt {grn.grn_no}",
                reference_no=grn.grn_no,
            )

    net = _net_received(po)
    fully = all(net[item_id] >= qty for item_id, qty in ordered.items())
    previous = _move(po, rules.PO_FULLY_RECEIVED if fully else rules.PO_PARTIALLY_RECEIVED)
    fields = ["status_code"]
    if fully:
        po.actual_delivery_date = timezone.now()
        fields.append("actual_delivery_date")
    save_document(po, actor, fields)

    activity.log_activity(actor, f"Recorded GRN {grn.grn_no} for PO {po.po_no}", grn.grn_no)
    if fully:
        activity.notify_role(
            Role.PURCHASING,
            f"PO {po.po_no} is fully received; purchased items are ready for delivery.",
            _PO_LINK,
        )
    logger.info(
        "grn_recorded",
        extra={
            "event_type": "STATE_CHANGE",
            "user_id": actor.user_id,
            "grn_no": grn.grn_no,
            "po_no": po.po_no,
            "from_status": previous,
            "to_status": po.status_code,
            "lines": len(lines),
        },
    )
    return {"grn": serialize_grn(grn), "po": serialize_po(po)}


@transaction.atomic
def release_repaired(grn_item_id: int, actor: Actor, quantity: Any) -> Dict[str, Any]:
    """Move repaired units of a TO_BE_REPAIRED receipt line into stock."""
    require_capability(actor, Capability.GRN_RECORD)
    line = lock_document(GRNItem, grn_item_id, "GRN_item", select_related=("grn",))
    if line.action_taken != rules.ACTION_TO_BE_REPAIRED:
        raise InvalidTransition("Only lines sent for repair can be released.", field="action_taken")
    qty = parse_int(quantity, "quantity", minimum=1)
    pending = line.damaged_qty - line.repaired_qty
    if qty > pending:
        raise ValidationError(
            f"Only {pending} unit(s) are awaiting repair on this line.", field="quantity"
        )

    line.repaired_qty += qty
    save_document(line, actor, ["repaired_qty"])
    balance = stock_ledger.adjust(
        line.item_id,
        qty,
        stock_ledger.ADD,
        actor=actor,
        reason=f"Repaired units from {line.grn.grn_no}",
        reference_no=line.grn.grn_no,
    )
    activity.log_activity(
        actor, f"Released {qty} repaired unit(s) from GRN {line.grn.grn_no}", line.grn.grn_no
    )
    return {
        "grn_item_id": line.grn_item_id,
        "repaired_qty": line.repaired_qty,
        "pending_repair_qty": line.damaged_qty - line.repaired_qty,
        "current_stock": balance,
    }


def get_po(po_id: int, actor: Actor) -> Dict[str, Any]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    return serialize_po(get_document(PurchaseOrder, po_id, "PO", select_related=("pr", "supplier")))


def list_pos(actor: Actor, status: Optional[str] = None) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    qs = PurchaseOrder.objects.select_related("pr", "supplier")
    if status:
        qs = qs.filter(status_code=str(status).upper())
    return [serialize_po(po) for po in qs]


def list_grns(actor: Actor, po_id: Optional[int] = None) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    qs = GoodsReceipt.objects.select_related("po")
    if po_id is not None:
        qs = qs.filter(po_id=po_id)
    return [serialize_grn(grn) for grn in qs]
