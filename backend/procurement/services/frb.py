"""
Form Request Barang (FRB) service.

Covers the PM side (create, edit, submit), the director decision, and the
purchasing validation that splits each approved line into a delivery order
(from stock) and a purchase request (shortfall). Every transition is checked
against ``rules.FRB_TRANSITIONS`` and the actor's capabilities, runs in one
database transaction and is audit-logged.
"""
from __future__ import annotations

import hashlib
import json
import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional

from django.db import transaction
from django.utils import timezone

from procurement import rules
from procurement.exceptions import InvalidTransition, PermissionDenied, ValidationError
from procurement.log_sanitizer import sanitize_for_log
from procurement.models import (
    DeliveryOrder,
    DOItem,
    FormRequestBarang,
    FRBItem,
    Item,
    Project,
    PurchaseRequest,
    PRItem,
    TTBItem,
)
from procurement.roles import Actor, Capability, Role, require_capability
from procurement.serializers import serialize_do, serialize_frb, serialize_pr
from procurement.services import activity
from procurement.services.common import (
    audit_fields,
    get_document,
    lock_document,
    parse_date,
    parse_int,
    require_text,
    save_document,
)
from procurement.services.numbering import create_numbered

logger = logging.getLogger("sipb.audit")

_FRB_LINK = "/frb"
_VALIDATION_LINK = "/purchasing/frb-validation"
_FRB_APPROVAL_LINK = "/director/frb-approval"
_PR_APPROVAL_LINK = "/director/pr-approval"
_DO_LINK = "/warehouse/do-preparation"
_PR_LINK = "/purchasing/pr"


def _move(frb: FormRequestBarang, target: str) -> str:
    previous = frb.status_code
    rules.validate_transition(rules.FRB_TRANSITIONS, previous, target, "FRB")
    frb.status_code = target
    return previous


def _log_state_change(frb: FormRequestBarang, actor: Actor, event: str, previous: str, **extra) -> None:
    logger.info(
        event,
        extra={
            "event_type": "STATE_CHANGE",
            "user_id": actor.user_id,
            "role": actor.role.value,
            "frb_no": frb.frb_no,
            "from_status": previous,
            "to_status": frb.status_code,
            **extra,
        },
    )


def _parse_lines(raw_items: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item line is required.", field="items")

    lines: List[Dict[str, Any]] = []
    seen: set[int] = set()
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Item line {idx} must be an object.", field="items")
        item_id = parse_int(raw.get("item_id"), "item_id", minimum=1)
        qty = parse_int(
            raw.get("requested_qty", raw.get("requested_quantity")), "requested_qty", minimum=1
        )
        if item_id in seen:
            raise ValidationError(f"Item {item_id} appears more than once.", field="items")
        seen.add(item_id)
        lines.append({"item_id": item_id, "requested_qty": qty})

    items = Item.objects.in_bulk([line["item_id"] for line in lines])
    missing = [line["item_id"] for line in lines if line["item_id"] not in items]
    if missing:
        raise ValidationError(f"Unknown item(s): {missing}.", field="items")
    for line in lines:
        line["item"] = items[line["item_id"]]
    return lines


def _parse_header(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "delivery_deadline": parse_date(data.get("delivery_deadline"), "delivery_deadline"),
        "recipient_name": require_text(
            data.get("recipient_name"), "recipient_name", "Recipient name is required."
        ),
        "recipient_contact": require_text(
            data.get("recipient_contact"), "recipient_contact", "Recipient contact is required."
        ),
        "delivery_address": require_text(
            data.get("delivery_address"), "delivery_address", "Delivery address is required."
        ),
        "project_po_ref": (str(data.get("project_po_ref")).strip() or None)
        if data.get("project_po_ref")
        else None,
    }


def _resolve_project(actor: Actor, project_id: Any) -> Project:
    pid = parse_int(project_id, "project_id", minimum=1)
    try:
        project = Project.objects.select_related("pm").get(project_id=pid)
    except Project.DoesNotExist:
        raise ValidationError("Project not found.", field="project_id")
    if actor.role == Role.PROJECT_MANAGER and project.pm_id != actor.user_id:
        raise PermissionDenied("Project managers can only request goods for their own projects.")
    return project


def _write_lines(frb: FormRequestBarang, lines: List[Dict[str, Any]], actor: Actor) -> None:
    FRBItem.objects.bulk_create(
        [
            FRBItem(
                frb=frb,
                item=line["item"],
                requested_qty=line["requested_qty"],
                estimated_unit_price=line["item"].estimated_unit_price,
                **audit_fields(actor),
            )
            for line in lines
        ]
    )


def _announce_submission(frb: FormRequestBarang, actor: Actor) -> None:
    activity.notify_role(
        Role.DIREKTUR, f"New FRB {frb.frb_no} requires approval.", _FRB_APPROVAL_LINK
    )
    activity.log_activity(actor, f"Submitted FRB {frb.frb_no}", frb.frb_no)


def _ensure_owner(frb: FormRequestBarang, actor: Actor) -> None:
    if actor.role != Role.ADMIN and frb.pm_id != actor.user_id:
        raise PermissionDenied("Only the requesting project manager can change this FRB.")


# ── PM Operations ───────────────────────────────────────────────────────────


@transaction.atomic
def create_frb(actor: Actor, data: Mapping[str, Any], as_draft: bool = False) -> Dict[str, Any]:
    """Create an FRB as a draft or submit it straight to the director."""
    require_capability(actor, Capability.FRB_CREATE)
    project = _resolve_project(actor, data.get("project_id"))
    header = _parse_header(data)
    lines = _parse_lines(data.get("items"))

    status = rules.FRB_DRAFT if as_draft else rules.FRB_AWAITING_DIRECTOR_APPROVAL
    frb = create_numbered(
        FormRequestBarang,
        "frb_no",
        rules.DOCUMENT_PREFIXES["frb"],
        project=project,
        pm_id=project.pm_id,
        submission_date=timezone.now(),
        status_code=status,
        **header,
        **audit_fields(actor),
    )
    _write_lines(frb, lines, actor)

    if as_draft:
        activity.log_activity(actor, f"Saved FRB {frb.frb_no} as draft", frb.frb_no)
    else:
        _announce_submission(frb, actor)

    logger.info(
        "frb.created frb_no=%s project=%s actor=%s items=%d status=%s",
        frb.frb_no,
        project.project_id,
        actor.audit_id,
        len(lines),
        status,
    )
    return serialize_frb(frb)


@transaction.atomic
def update_frb(
    frb_id: int, actor: Actor, data: Mapping[str, Any], as_draft: bool = False
) -> Dict[str, Any]:
    """
    Replace header and lines of a draft or director-rejected FRB. Saving
    without ``as_draft`` resubmits it for approval.
    """
    require_capability(actor, Capability.FRB_CREATE)
    frb = lock_document(FormRequestBarang, frb_id, "FRB", select_related=("project",))
    _ensure_owner(frb, actor)
    if frb.status_code not in rules.FRB_EDITABLE_STATUSES:
        raise InvalidTransition(
            "Only draft or director-rejected FRBs can be edited.", field="status"
        )

    header = _parse_header({**_header_of(frb), **dict(data)})
    if "project_id" in data and parse_int(data["project_id"], "project_id", minimum=1) != frb.project_id:
        frb.project = _resolve_project(actor, data["project_id"])
    lines = _parse_lines(data["items"]) if "items" in data else None

    target = rules.FRB_DRAFT if as_draft else rules.FRB_AWAITING_DIRECTOR_APPROVAL
    previous = _move(frb, target)
    for field, value in header.items():
        setattr(frb, field, value)
    frb.submission_date = timezone.now()
    frb.director_rejection_reason = None
    save_document(
        frb,
        actor,
        ["project", "status_code", "submission_date", "director_rejection_reason", *header],
    )

    if lines is not None:
        frb.items.all().delete()
        _write_lines(frb, lines, actor)

    if as_draft:
        activity.log_activity(actor, f"Updated draft FRB {frb.frb_no}", frb.frb_no)
    else:
        _announce_submission(frb, actor)
    _log_state_change(frb, actor, "frb_updated", previous)
    return serialize_frb(frb)


def _header_of(frb: FormRequestBarang) -> Dict[str, Any]:
    return {
        "delivery_deadline": frb.delivery_deadline,
        "recipient_name": frb.recipient_name,
        "recipient_contact": frb.recipient_contact,
        "delivery_address": frb.delivery_address,
        "project_po_ref": frb.project_po_ref,
    }


@transaction.atomic
def submit_frb(frb_id: int, actor: Actor, as_draft: bool = False) -> Dict[str, Any]:
    """Submit an existing draft (or keep it as a draft when ``as_draft``)."""
    require_capability(actor, Capability.FRB_CREATE)
    frb = lock_document(FormRequestBarang, frb_id, "FRB", select_related=("project",))
    _ensure_owner(frb, actor)
    if frb.status_code not in rules.FRB_EDITABLE_STATUSES:
        raise InvalidTransition(
            f"FRB in {frb.status_code} cannot be submitted.", field="status"
        )
    if not frb.items.exists():
        raise ValidationError("Cannot submit an FRB without items.", field="items")

    target = rules.FRB_DRAFT if as_draft else rules.FRB_AWAITING_DIRECTOR_APPROVAL
    previous = _move(frb, target)
    frb.submission_date = timezone.now()
    save_document(frb, actor, ["status_code", "submission_date"])
    if not as_draft:
        _announce_submission(frb, actor)
    _log_state_change(frb, actor, "frb_submitted", previous)
    return serialize_frb(frb)


# ── Director Decision ───────────────────────────────────────────────────────


@transaction.atomic
def director_decide(
    frb_id: int, actor: Actor, approve: bool, reason: Optional[str] = None
) -> Dict[str, Any]:
    require_capability(actor, Capability.FRB_DECIDE)
    frb = lock_document(FormRequestBarang, frb_id, "FRB", select_related=("project",))
    if frb.status_code not in rules.FRB_PENDING_DECISION_STATUSES:
        raise InvalidTransition(
            f"FRB in {frb.status_code} is not awaiting a director decision.", field="status"
        )

    now = timezone.now()
    if approve:
        previous = _move(frb, rules.FRB_APPROVED_BY_DIRECTOR)
        frb.director_approval_date = now
        frb.director_rejection_reason = None
        save_document(frb, actor, ["status_code", "director_approval_date", "director_rejection_reason"])
        activity.notify(f"Your FRB {frb.frb_no} has been approved.", frb.pm_id, _FRB_LINK)
        activity.notify_role(
            Role.PURCHASING, f"FRB {frb.frb_no} approved, ready for validation.", _VALIDATION_LINK
        )
        activity.log_activity(actor, f"Approved FRB {frb.frb_no}", frb.frb_no)
        _log_state_change(frb, actor, "frb_approved", previous)
    else:
        text = require_text(reason, "reason", "Rejection reason is required.")
        previous = _move(frb, rules.FRB_REJECTED_BY_DIRECTOR)
        frb.director_approval_date = now
        frb.director_rejection_reason = text
        save_document(frb, actor, ["status_code", "director_approval_date", "director_rejection_reason"])
        activity.notify(
            f"Your FRB {frb.frb_no} was rejected. Reason: {text}", frb.pm_id, _FRB_LINK
        )
        activity.log_activity(actor, f"Rejected FRB {frb.frb_no}. Reason: {text}", frb.frb_no)
        _log_state_change(frb, actor, "frb_rejected", previous, reason=sanitize_for_log(text))

    return serialize_frb(frb)


# ── Purchasing Validation ───────────────────────────────────────────────────


@transaction.atomic
def begin_validation(frb_id: int, actor: Actor) -> Dict[str, Any]:
    """Purchasing claims an approved FRB: APPROVED_BY_DIRECTOR → IN_PURCHASING_VALIDATION."""
    require_capability(actor, Capability.FRB_VALIDATE)
    frb = lock_document(FormRequestBarang, frb_id, "FRB", select_related=("project",))
    previous = _move(frb, rules.FRB_IN_PURCHASING_VALIDATION)
    save_document(frb, actor, ["status_code"])
    activity.log_activity(actor, f"Started validation of FRB {frb.frb_no}", frb.frb_no)
    _log_state_change(frb, actor, "frb_validation_started", previous)
    return serialize_frb(frb)


def _resolve_approved_quantities(
    lines: List[FRBItem], approved_quantities: Any
) -> Dict[int, int]:
    """Map FRB line id → approved quantity. Missing items default to the request."""
    provided: Dict[int, Any] = {}
    if approved_quantities is None:
        approved_quantities = {}
    if isinstance(approved_quantities, Mapping):
        for key, value in approved_quantities.items():
            provided[parse_int(key, "item_id", minimum=1)] = value
    elif isinstance(approved_quantities, list):
        for entry in approved_quantities:
            if not isinstance(entry, Mapping):
                raise ValidationError("Approved quantity entries must be objects.", field="items")
            provided[parse_int(entry.get("item_id"), "item_id", minimum=1)] = entry.get(
                "approved_qty", entry.get("approved_quantity")
            )
    else:
        raise ValidationError("Approved quantities must be a mapping or list.", field="items")

    by_item = {line.item_id: line for line in lines}
    unknown = sorted(set(provided) - set(by_item))
    if unknown:
        raise ValidationError(f"Item(s) {unknown} are not on this FRB.", field="items")

    resolved: Dict[int, int] = {}
    for line in lines:
        if line.item_id in provided:
            qty = parse_int(provided[line.item_id], "approved_qty", minimum=0)
        else:
            qty = line.requested_qty
        if qty > line.requested_qty:
            raise ValidationError(
                f"Approved quantity for item {line.item_id} exceeds the requested {line.requested_qty}.",
                field="approved_qty",
            )
        resolved[line.frb_item_id] = qty
    return resolved


def _fingerprint(lines: List[FRBItem], approved: Dict[int, int]) -> str:
    payload = sorted((line.item_id, approved[line.frb_item_id]) for line in lines)
    return hashlib.sha256(json.dumps(payload).encode("utf-8")).hexdigest()


def _validation_outcome(frb: FormRequestBarang, replayed: bool) -> Dict[str, Any]:
    delivery_orders = frb.delivery_orders.filter(source_pr__isnull=True).order_by("do_id")
    purchase_requests = frb.purchase_requests.order_by("pr_id")
    return {
        "frb": serialize_frb(frb),
        "delivery_orders": [serialize_do(do) for do in delivery_orders],
        "purchase_requests": [serialize_pr(pr) for pr in purchase_requests],
        "replayed": replayed,
    }


def resulting_status(has_do_lines: bool, has_pr_lines: bool) -> str:
    """FRB status after validation, from which documents it produced."""
    if has_do_lines and not has_pr_lines:
        return rules.FRB_FULLY_STOCKED
    if has_do_lines and has_pr_lines:
        return rules.FRB_PARTIALLY_STOCKED
    if has_pr_lines:
        return rules.FRB_IN_PURCHASING_PROCESS
    return rules.FRB_COMPLETED


@transaction.atomic
def purchasing_validate(
    frb_id: int,
    actor: Actor,
    approved_quantities: Any = None,
    notes: str = "",
) -> Dict[str, Any]:
    """
    Set approved quantities and split the FRB into a DO (covered by current
    stock) and a PR (shortfall to purchase).

    Replaying the call with the same approved quantities returns the first
    outcome without creating documents; different quantities on an already
    validated FRB are rejected.
    """
    require_capability(actor, Capability.FRB_VALIDATE)
    frb = lock_document(FormRequestBarang, frb_id, "FRB", select_related=("project",))
    lines = list(frb.items.select_related("item").order_by("frb_item_id"))
    approved = _resolve_approved_quantities(lines, approved_quantities)
    fingerprint = _fingerprint(lines, approved)

    if frb.validation_fingerprint:
        if frb.validation_fingerprint == fingerprint:
            logger.info(
                "frb_validation_replayed",
                extra={"event_type": "IDEMPOTENT_REPLAY", "frb_no": frb.frb_no, "user_id": actor.user_id},
            )
            return _validation_outcome(frb, replayed=True)
        raise InvalidTransition(
            f"FRB {frb.frb_no} was already validated with different quantities.",
            field="status",
        )
    if frb.status_code not in rules.FRB_VALIDATABLE_STATUSES:
        raise InvalidTransition(
            f"FRB in {frb.status_code} cannot be validated.", field="status"
        )

    stock = dict(
        Item.objects.select_for_update()
        .filter(item_id__in=[line.item_id for line in lines])
        .values_list("item_id", "current_stock")
    )

    do_lines: List[tuple] = []
    pr_lines: List[tuple] = []
    for line in lines:
        qty = approved[line.frb_item_id]
        line.approved_qty = qty
        line.update_by_id = actor.audit_id
        line.save(update_fields=["approved_qty", "update_by_id", "update_dtime"])
        if qty <= 0:
            continue
        on_hand = stock.get(line.item_id, 0)
        from_stock = min(qty, on_hand)
        if from_stock > 0:
            do_lines.append((line.item_id, from_stock))
        shortfall = max(0, qty - on_hand)
        if shortfall > 0:
            pr_lines.append((line.item_id, shortfall))

    now = timezone.now()
    delivery_order = None
    if do_lines:
        delivery_order = create_numbered(
            DeliveryOrder,
            "do_no",
            rules.DOCUMENT_PREFIXES["do"],
            frb=frb,
            purchasing_id=actor.user_id,
            creation_date=now,
            status_code=rules.DO_CREATED,
            **audit_fields(actor),
        )
        DOItem.objects.bulk_create(
            [
                DOItem(delivery_order=delivery_order, item_id=item_id, delivered_qty=qty, **audit_fields(actor))
                for item_id, qty in do_lines
            ]
        )

    purchase_request = None
    if pr_lines:
        purchase_request = create_numbered(
            PurchaseRequest,
            "pr_no",
            rules.DOCUMENT_PREFIXES["pr"],
            frb=frb,
            pm_id=frb.pm_id,
            purchasing_id=actor.user_id,
            request_date=now,
            status_code=rules.PR_AWAITING_DIRECTOR_APPROVAL,
            **audit_fields(actor),
        )
        PRItem.objects.bulk_create(
            [
                PRItem(pr=purchase_request, item_id=item_id, quantity_to_purchase=qty, **audit_fields(actor))
                for item_id, qty in pr_lines
            ]
        )

    previous = _move(frb, resulting_status(bool(do_lines), bool(pr_lines)))
    frb.purchasing_validation_date = now
    frb.purchasing_validation_notes = (notes or "").strip() or None
    frb.validated_by_id = actor.user_id
    frb.validation_fingerprint = fingerprint
    save_document(
        frb,
        actor,
        [
            "status_code",
            "purchasing_validation_date",
            "purchasing_validation_notes",
            "validated_by",
            "validation_fingerprint",
        ],
    )

    if delivery_order is not None:
        activity.log_activity(
            actor, f"Created DO {delivery_order.do_no} for FRB {frb.frb_no}", delivery_order.do_no
        )
        activity.notify_role(
            Role.WAREHOUSE, f"DO {delivery_order.do_no} is ready for preparation.", _DO_LINK
        )
    if purchase_request is not None:
        activity.log_activity(
            actor, f"Created PR {purchase_request.pr_no} for FRB {frb.frb_no}", purchase_request.pr_no
        )
        activity.notify_role(
            Role.DIREKTUR, f"New PR {purchase_request.pr_no} requires approval.", _PR_APPROVAL_LINK
        )
    activity.notify(
        f"FRB {frb.frb_no} validation complete. Status: {frb.get_status_code_display()}.",
        frb.pm_id,
        _FRB_LINK,
    )
    _log_state_change(
        frb,
        actor,
        "frb_validated",
        previous,
        do_no=delivery_order.do_no if delivery_order else None,
        pr_no=purchase_request.pr_no if purchase_request else None,
    )
    return _validation_outcome(frb, replayed=False)


# ── Fulfilment & Completion ─────────────────────────────────────────────────


def _covered_quantities(frb: FormRequestBarang) -> Counter:
    covered: Counter = Counter()
    for line in DOItem.objects.filter(delivery_order__frb=frb):
        covered[line.item_id] += line.delivered_qty
    return covered


def _delivered_quantities(frb: FormRequestBarang) -> Counter:
    delivered: Counter = Counter()
    accepted = TTBItem.objects.filter(
        ttb__delivery_order__frb=frb, ttb__status_code=rules.TTB_ACCEPTED
    )
    for line in accepted:
        delivered[line.item_id] += line.delivered_qty
    return delivered


def _move_if_changed(frb: FormRequestBarang, target: str) -> Optional[str]:
    if frb.status_code == target:
        return None
    return _move(frb, target)


@transaction.atomic
def fulfil_purchased_items(
    frb_id: int, actor: Actor, pr_id: Optional[int] = None
) -> Dict[str, Any]:
    """
    Create follow-up delivery orders for purchase requests whose purchase
    order has been fully received.
    """
    require_capability(actor, Capability.FRB_VALIDATE)
    frb = lock_document(FormRequestBarang, frb_id, "FRB", select_related=("project",))
    if frb.status_code not in (rules.FRB_IN_PURCHASING_PROCESS, rules.FRB_PARTIALLY_STOCKED):
        raise InvalidTransition(
            f"FRB in {frb.status_code} has no purchased items to fulfil.", field="status"
        )

    candidates = frb.purchase_requests.select_for_update().filter(
        status_code=rules.PR_PROCESSED,
        purchase_order__status_code=rules.PO_FULLY_RECEIVED,
    )
    if pr_id is not None:
        candidates = candidates.filter(pr_id=pr_id)
    ready = [pr for pr in candidates.order_by("pr_id") if not pr.delivery_orders.exists()]
    if not ready:
        raise InvalidTransition(
            "No fully received purchase request is waiting for delivery.", field="pr_id"
        )

    now = timezone.now()
    created = []
    for pr in ready:
        delivery_order = create_numbered(
            DeliveryOrder,
            "do_no",
            rules.DOCUMENT_PREFIXES["do"],
            frb=frb,
            purchasing_id=actor.user_id,
            source_pr=pr,
            creation_date=now,
            status_code=rules.DO_CREATED,
            **audit_fields(actor),
        )
        DOItem.objects.bulk_create(
            [
                DOItem(
                    delivery_order=delivery_order,
                    item_id=line.item_id,
                    delivered_qty=line.quantity_to_purchase,
                    **audit_fields(actor),
                )
                for line in pr.items.all()
            ]
        )
        created.append(delivery_order)
        activity.log_activity(
            actor,
            f"Created DO {delivery_order.do_no} for purchased items of {pr.pr_no}",
            delivery_order.do_no,
        )

    covered = _covered_quantities(frb)
    fully_covered = all(
        covered[line.item_id] >= (line.approved_qty or 0) for line in frb.items.all()
    )
    target = rules.FRB_FULLY_STOCKED if fully_covered else rules.FRB_PARTIALLY_STOCKED
    previous = _move_if_changed(frb, target)
    if previous is not None:
        save_document(frb, actor, ["status_code"])
        _log_state_change(frb, actor, "frb_purchased_items_fulfilled", previous)

    activity.notify_role(
        Role.WAREHOUSE,
        f"DO for purchased items of FRB {frb.frb_no} is ready for preparation.",
        _DO_LINK,
    )
    return {
        "frb": serialize_frb(frb),
        "delivery_orders": [serialize_do(do) for do in created],
    }


def refresh_completion(frb: FormRequestBarang, actor: Actor) -> bool:
    """
    Mark the FRB COMPLETED once every delivery order is delivered and the
    quantities on accepted TTBs cover what was approved, less quantities on
    purchase requests that were rejected or whose order was cancelled. Must
    run inside the caller's transaction.
    """
    if frb.status_code not in (
        rules.FRB_IN_PURCHASING_PROCESS,
        rules.FRB_PARTIALLY_STOCKED,
        rules.FRB_FULLY_STOCKED,
    ):
        return False

    delivery_orders = list(frb.delivery_orders.all())
    if any(do.status_code != rules.DO_DELIVERED for do in delivery_orders):
        return False

    dropped: Counter = Counter()
    for line in PRItem.objects.filter(pr__frb=frb).select_related("pr"):
        pr = line.pr
        cancelled = pr.status_code == rules.PR_PROCESSED and pr.purchase_order.status_code == rules.PO_CANCELED
        if pr.status_code == rules.PR_REJECTED or cancelled:
            dropped[line.item_id] += line.quantity_to_purchase

    delivered = _delivered_quantities(frb)
    for line in frb.items.all():
        outstanding = (line.approved_qty or 0) - dropped[line.item_id]
        if delivered[line.item_id] < outstanding:
            return False

    previous = _move(frb, rules.FRB_COMPLETED)
    save_document(frb, actor, ["status_code"])
    activity.notify(f"FRB {frb.frb_no} has been completed.", frb.pm_id, _FRB_LINK)
    activity.log_activity(actor, f"FRB {frb.frb_no} completed", frb.frb_no)
    _log_state_change(frb, actor, "frb_completed", previous)
    return True


def mark_rejected_by_recipient(frb: FormRequestBarang, actor: Actor) -> None:
    """
    Close the FRB after the recipient refused a delivery. Purchase requests
    still waiting for the director are rejected in the same transaction; no
    further order can be placed for this FRB.
    """
    previous = _move_if_changed(frb, rules.FRB_REJECTED_BY_RECIPIENT)
    if previous is None:
        return
    save_document(frb, actor, ["status_code"])
    activity.notify(
        f"Delivery for FRB {frb.frb_no} was rejected by the recipient.", frb.pm_id, _FRB_LINK
    )
    _log_state_change(frb, actor, "frb_rejected_by_recipient", previous)

    pending = frb.purchase_requests.select_for_update().filter(
        status_code=rules.PR_AWAITING_DIRECTOR_APPROVAL
    )
    reason = f"FRB {frb.frb_no} was rejected by the recipient."
    for pr in pending.order_by("pr_id"):
        rules.validate_transition(rules.PR_TRANSITIONS, pr.status_code, rules.PR_REJECTED, "PR")
        pr.status_code = rules.PR_REJECTED
        pr.director_rejection_reason = reason
        save_document(pr, actor, ["status_code", "director_rejection_reason"])
        activity.notify(
            f"PR {pr.pr_no} was withdrawn. Reason: {reason}", pr.purchasing_id, _PR_LINK
        )
        activity.log_activity(actor, f"Withdrew PR {pr.pr_no}. Reason: {reason}", pr.pr_no)
        logger.info(
            "pr_withdrawn",
            extra={
                "event_type": "STATE_CHANGE",
                "user_id": actor.user_id,
                "pr_no": pr.pr_no,
                "frb_no": frb.frb_no,
                "from_status": rules.PR_AWAITING_DIRECTOR_APPROVAL,
                "to_status": rules.PR_REJECTED,
            },
        )


# ── Queries ─────────────────────────────────────────────────────────────────


def get_frb(frb_id: int, actor: Actor) -> Dict[str, Any]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    frb = get_document(FormRequestBarang, frb_id, "FRB", select_related=("project",))
    if actor.role == Role.PROJECT_MANAGER and frb.pm_id != actor.user_id:
        raise PermissionDenied("Project managers can only view their own FRBs.")
    return serialize_frb(frb)


def list_frbs(actor: Actor, status: Optional[str] = None) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    qs = FormRequestBarang.objects.select_related("project")
    if actor.role == Role.PROJECT_MANAGER:
        qs = qs.filter(pm_id=actor.user_id)
    if status:
        qs = qs.filter(status_code=str(status).upper())
    return [serialize_frb(frb) for frb in qs]
