"""
Stock ledger: the only code path allowed to change ``Item.current_stock``.

Each adjustment is a single conditional UPDATE evaluated by the database
(``current_stock = current_stock - q WHERE current_stock >= q``), so concurrent
GRN, checklist and TTB reversals against one item serialize on the row lock
instead of overwriting each other. Every successful adjustment appends a
``StockMovement`` row.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from procurement import feed
from procurement.exceptions import NotFound, StockInsufficient, ValidationError
from procurement.log_sanitizer import sanitize_for_log
from procurement.models import Item, StockMovement
from procurement.roles import Actor, Capability, require_capability
from procurement.services import activity

logger = logging.getLogger("sipb.audit")

ADD = "ADD"
SUBTRACT = "SUBTRACT"
DIRECTIONS = (ADD, SUBTRACT)


def _validate_quantity(quantity: object) -> int:
    if isinstance(quantity, bool):
        raise ValidationError("Quantity must be a whole number.", field="quantity")
    try:
        parsed = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a whole number.", field="quantity")
    if parsed != quantity and str(parsed) != str(quantity).strip():
        raise ValidationError("Quantity must be a whole number.", field="quantity")
    if parsed <= 0:
        raise ValidationError("Quantity must be greater than zero.", field="quantity")
    return parsed


def adjust(
    item_id: int,
    quantity: int,
    direction: str,
    actor: Optional[Actor] = None,
    reason: Optional[str] = None,
    reference_no: Optional[str] = None,
) -> int:
    """
    Apply ``quantity`` to the item in ``direction`` and return the new balance.

    Raises ``StockInsufficient`` (and changes nothing) when a subtraction would
    take the balance below zero.
    """
    qty = _validate_quantity(quantity)
    if direction not in DIRECTIONS:
        raise ValidationError(f"Unknown stock direction {direction!r}.", field="direction")

    actor_id = actor.audit_id if actor else "system"
    delta = F("current_stock") + qty if direction == ADD else F("current_stock") - qty

    with transaction.atomic():
        queryset = Item.objects.filter(item_id=item_id)
        if direction == SUBTRACT:
            queryset = queryset.filter(current_stock__gte=qty)
        updated = queryset.update(
            current_stock=delta,
            version_nbr=F("version_nbr") + 1,
            update_by_id=actor_id,
            update_dtime=timezone.now(),
        )
        if not updated:
            available = (
                Item.objects.filter(item_id=item_id)
                .values_list("current_stock", flat=True)
                .first()
            )
            if available is None:
                raise NotFound(f"Item {item_id} not found.", field="item_id")
            raise StockInsufficient(item_id, qty, available)

        balance = Item.objects.values_list("current_stock", flat=True).get(item_id=item_id)
        StockMovement.objects.create(
            item_id=item_id,
            direction=direction,
            quantity=qty,
            balance_after=balance,
            reason_text=reason,
            reference_no=reference_no,
            actor_user_id=actor_id,
        )
        feed.publish(Item, item_id)

    logger.info(
        "stock_adjusted",
        extra={
            "event_type": "STOCK_CHANGE",
            "item_id": item_id,
            "direction": direction,
            "quantity": qty,
            "balance_after": balance,
            "reference_no": reference_no,
            "actor": actor_id,
        },
    )
    return balance


def try_adjust(
    item_id: int,
    quantity: int,
    direction: str,
    actor: Optional[Actor] = None,
    reason: Optional[str] = None,
    reference_no: Optional[str] = None,
) -> bool:
    """Boolean form of ``adjust``: False when the subtraction is refused."""
    try:
        adjust(item_id, quantity, direction, actor=actor, reason=reason, reference_no=reference_no)
    except StockInsufficient:
        return False
    return True


def _serialize_movement(m: StockMovement) -> Dict[str, Any]:
    return {
        "movement_id": m.movement_id,
        "item_id": m.item_id,
        "direction": m.direction,
        "quantity": m.quantity,
        "balance_after": m.balance_after,
        "reason_text": m.reason_text,
        "reference_no": m.reference_no,
        "actor_user_id": m.actor_user_id,
        "movement_dtime": m.movement_dtime.isoformat() if m.movement_dtime else None,
    }


def manual_adjustment(
    actor: Actor, item_id: int, quantity: int, direction: str, reason: str
) -> Dict[str, Any]:
    """Stock opname correction by the warehouse; a reason is mandatory."""
    require_capability(actor, Capability.STOCK_ADJUST)
    if not reason or not str(reason).strip():
        raise ValidationError("Adjustment reason is required.", field="reason")

    with transaction.atomic():
        balance = adjust(
            item_id,
            quantity,
            direction,
            actor=actor,
            reason=str(reason).strip(),
            reference_no="MANUAL",
        )
        item = Item.objects.get(item_id=item_id)
        activity.log_activity(
            actor,
            f"Adjusted stock of {item.item_name} ({direction} {quantity}). "
            f"Reason: {str(reason).strip()}",
            details={"item_id": item_id, "balance_after": balance},
        )

    logger.info(
        "stock_manual_adjustment item_id=%s direction=%s qty=%s actor=%s reason=%s",
        item_id,
        direction,
        quantity,
        actor.audit_id,
        sanitize_for_log(reason),
    )
    return {"item_id": item_id, "current_stock": balance}


def list_movements(item_id: int, limit: int = 100) -> List[Dict[str, Any]]:
    if not Item.objects.filter(item_id=item_id).exists():
        raise NotFound(f"Item {item_id} not found.", field="item_id")
    qs = StockMovement.objects.filter(item_id=item_id)[: max(1, int(limit))]
    return [_serialize_movement(m) for m in qs]
