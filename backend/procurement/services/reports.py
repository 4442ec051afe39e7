"""System-wide counters for the admin dashboard."""
from __future__ import annotations

from typing import Any, Dict

from django.conf import settings
from django.db.models import Count, Q

from procurement import rules
from procurement.models import (
    DeliveryOrder,
    FormRequestBarang,
    Item,
    PurchaseOrder,
    PurchaseRequest,
    RejectionReport,
)
from procurement.roles import Actor, Capability, require_capability


def system_summary(actor: Actor) -> Dict[str, Any]:
    require_capability(actor, Capability.REPORTS_VIEW)
    threshold = settings.SIPB_LOW_STOCK_THRESHOLD

    frb_counts = FormRequestBarang.objects.aggregate(
        total=Count("frb_id"),
        completed=Count("frb_id", filter=Q(status_code=rules.FRB_COMPLETED)),
        awaiting_director=Count(
            "frb_id", filter=Q(status_code__in=rules.FRB_PENDING_DECISION_STATUSES)
        ),
    )
    frb_by_status = dict(
        FormRequestBarang.objects.order_by().values_list("status_code").annotate(n=Count("frb_id"))
    )

    return {
        "frb_total": frb_counts["total"],
        "frb_completed": frb_counts["completed"],
        "frb_awaiting_director": frb_counts["awaiting_director"],
        "frb_by_status": frb_by_status,
        "pr_total": PurchaseRequest.objects.count(),
        "po_total": PurchaseOrder.objects.count(),
        "do_total": DeliveryOrder.objects.count(),
        "low_stock_threshold": threshold,
        "low_stock_items": Item.objects.filter(current_stock__lt=threshold).count(),
        "open_rejection_reports": RejectionReport.objects.exclude(
            reconciliation_status=rules.RECON_RESOLVED
        ).count(),
    }
