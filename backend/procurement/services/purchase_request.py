"""
Purchase request decisions and purchase order creation.

A PR is only ever created by FRB validation; here the director approves or
rejects it and purchasing turns an approved PR into exactly one PO.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import transaction
from django.utils import timezone

from procurement import rules
from procurement.exceptions import InvalidTransition, ValidationError
from procurement.log_sanitizer import sanitize_for_log
from procurement.models import FormRequestBarang, PurchaseOrder, PurchaseRequest, Supplier
from procurement.roles import Actor, Capability, Role, require_capability
from procurement.serializers import serialize_po, serialize_pr
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
from procurement.services.frb import refresh_completion
from procurement.services.numbering import create_numbered

logger = logging.getLogger("sipb.audit")

_PR_LINK = "/purchasing/pr"
_PO_LINK = "/purchasing/po"


def _ensure_frb_open(pr: PurchaseRequest) -> None:
    if pr.frb.status_code == rules.FRB_REJECTED_BY_RECIPIENT:
        raise InvalidTransition(
            f"FRB {pr.frb.frb_no} was rejected by the recipient; PR {pr.pr_no} is closed.",
            field="status",
        )


@transaction.atomic
def director_decide_pr(
    pr_id: int, actor: Actor, approve: bool, reason: Optional[str] = None
) -> Dict[str, Any]:
    require_capability(actor, Capability.PR_DECIDE)
    pr = lock_document(PurchaseRequest, pr_id, "PR", select_related=("frb",))
    previous = pr.status_code
    target = rules.PR_APPROVED if approve else rules.PR_REJECTED
    rules.validate_transition(rules.PR_TRANSITIONS, previous, target, "PR")
    if approve:
        _ensure_frb_open(pr)

    pr.status_code = target
    pr.director_approval_date = timezone.now()
    if approve:
        pr.director_rejection_reason = None
        message = f"PR {pr.pr_no} has been approved."
        action = f"Approved PR {pr.pr_no}"
    else:
        text = require_text(reason, "reason", "Rejection reason is required.")
        pr.director_rejection_reason = text
        message = f"PR {pr.pr_no} was rejected. Reason: {text}"
        action = f"Rejected PR {pr.pr_no}. Reason: {text}"
    save_document(pr, actor, ["status_code", "director_approval_date", "director_rejection_reason"])

    activity.notify(message, pr.purchasing_id, _PR_LINK)
    activity.log_activity(actor, action, pr.pr_no)
    logger.info(
        "pr_approved" if approve else "pr_rejected",
        extra={
            "event_type": "STATE_CHANGE",
            "user_id": actor.user_id,
            "pr_no": pr.pr_no,
            "frb_no": pr.frb.frb_no,
            "from_status": previous,
            "to_status": target,
            "reason": sanitize_for_log(pr.director_rejection_reason),
        },
    )

    if not approve:
        frb = lock_document(FormRequestBarang, pr.frb_id, "FRB")
        refresh_completion(frb, actor)
    return serialize_pr(pr)


@transaction.atomic
def create_po(
    pr_id: int,
    actor: Actor,
    supplier_id: Any,
    expected_delivery_date: Any,
    notes: str = "",
) -> Dict[str, Any]:
    """
    Order the goods on an approved PR from one supplier.

    The PR moves to PROCESSED; a PR can be ordered only once.
    """
    require_capability(actor, Capability.PO_MANAGE)
    pr = lock_document(PurchaseRequest, pr_id, "PR", select_related=("frb",))
    if hasattr(pr, "purchase_order"):
        raise InvalidTransition(
            f"PR {pr.pr_no} already has purchase order {pr.purchase_order.po_no}.",
            field="status",
        )
    if pr.status_code != rules.PR_APPROVED:
        raise InvalidTransition(
            f"A purchase order requires an approved PR (PR is {pr.status_code}).",
            field="status",
        )
    _ensure_frb_open(pr)

    sid = parse_int(supplier_id, "supplier_id", minimum=1)
    try:
        supplier = Supplier.objects.get(supplier_id=sid)
    except Supplier.DoesNotExist:
        raise ValidationError("Supplier not found.", field="supplier_id")
    if supplier.status_code != "A":
        raise ValidationError("Supplier is inactive.", field="supplier_id")
    expected = parse_date(expected_delivery_date, "expected_delivery_date")

    total = sum(
        (
            Decimal(line.quantity_to_purchase) * line.item.estimated_unit_price
            for line in pr.items.select_related("item")
        ),
        Decimal("0.00"),
    )
    po = create_numbered(
        PurchaseOrder,
        "po_no",
        rules.DOCUMENT_PREFIXES["po"],
        pr=pr,
        supplier=supplier,
        order_date=timezone.now(),
        expected_delivery_date=expected,
        total_price=total,
        status_code=rules.PO_ORDERED,
        notes_text=(notes or "").strip() or None,
        **audit_fields(actor),
    )

    previous = pr.status_code
    rules.validate_transition(rules.PR_TRANSITIONS, previous, rules.PR_PROCESSED, "PR")
    pr.status_code = rules.PR_PROCESSED
    save_document(pr, actor, ["status_code"])

    activity.log_activity(actor, f"Created PO {po.po_no} from PR {pr.pr_no}", po.po_no)
    activity.notify_role(Role.WAREHOUSE, f"PO {po.po_no} has been ordered from {supplier.supplier_name}.", _PO_LINK)
    logger.info(
        "po_created",
        extra={
            "event_type": "CREATE",
            "user_id": actor.user_id,
            "po_no": po.po_no,
            "pr_no": pr.pr_no,
            "supplier_id": supplier.supplier_id,
            "total_price": str(total),
        },
    )
    return serialize_po(po)


def get_pr(pr_id: int, actor: Actor) -> Dict[str, Any]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    return serialize_pr(get_document(PurchaseRequest, pr_id, "PR", select_related=("frb",)))


def list_prs(actor: Actor, status: Optional[str] = None) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.DOCUMENTS_VIEW)
    qs = PurchaseRequest.objects.select_related("frb")
    if actor.role == Role.PROJECT_MANAGER:
        qs = qs.filter(pm_id=actor.user_id)
    if status:
        qs = qs.filter(status_code=str(status).upper())
    return [serialize_pr(pr) for pr in qs]
