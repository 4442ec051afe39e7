"""
Activity log and notification sink.

Writes are deferred until the surrounding transaction commits and any failure
is logged and dropped: the audit trail must never roll back or block the
workflow mutation that produced it.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import transaction

from procurement import feed
from procurement.exceptions import NotFound, PermissionDenied
from procurement.models import ActivityLog, AppUser, Notification
from procurement.roles import Actor, Capability, Role, require_capability

logger = logging.getLogger("sipb.audit")


def log_activity(
    actor: Optional[Actor],
    action: str,
    related_document_no: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    def _write() -> None:
        try:
            ActivityLog.objects.create(
                user_id=actor.user_id if actor else None,
                user_name=actor.name if actor else "system",
                user_role=actor.role.value if actor else "",
                action=action,
                related_document_no=related_document_no,
                details=details,
            )
        except Exception as exc:
            logger.warning(
                "activity_log_write_failed action=%s document=%s error=%s",
                action,
                related_document_no,
                exc,
            )

    transaction.on_commit(_write)


def notify(message: str, user_id: int, link: Optional[str] = None) -> None:
    notify_many(message, [user_id], link)


def notify_many(message: str, user_ids: Iterable[int], link: Optional[str] = None) -> None:
    recipients = sorted({int(uid) for uid in user_ids if uid is not None})
    if not recipients:
        return

    def _write() -> None:
        try:
            created = Notification.objects.bulk_create(
                [Notification(user_id=uid, message=message, link=link) for uid in recipients]
            )
            for n in created:
                feed.publish(Notification, n.pk, feed.CREATED)
        except Exception as exc:
            logger.warning(
                "notification_write_failed recipients=%s error=%s", recipients, exc
            )

    transaction.on_commit(_write)


def notify_role(role: Role, message: str, link: Optional[str] = None) -> None:
    """Notify every active user holding ``role``."""
    user_ids = list(
        AppUser.objects.filter(role=role.value, is_active=True).values_list("user_id", flat=True)
    )
    notify_many(message, user_ids, link)


def _serialize_notification(n: Notification) -> Dict[str, Any]:
    return {
        "notification_id": n.notification_id,
        "user_id": n.user_id,
        "message": n.message,
        "link": n.link,
        "is_read": n.is_read,
        "create_dtime": n.create_dtime.isoformat() if n.create_dtime else None,
    }


def _serialize_activity(entry: ActivityLog) -> Dict[str, Any]:
    return {
        "log_id": entry.log_id,
        "user_id": entry.user_id,
        "user_name": entry.user_name,
        "user_role": entry.user_role,
        "action": entry.action,
        "related_document_no": entry.related_document_no,
        "details": entry.details,
        "action_dtime": entry.action_dtime.isoformat() if entry.action_dtime else None,
    }


def list_notifications(actor: Actor, unread_only: bool = False) -> List[Dict[str, Any]]:
    qs = Notification.objects.filter(user_id=actor.user_id)
    if unread_only:
        qs = qs.filter(is_read=False)
    return [_serialize_notification(n) for n in qs]


def unread_count(actor: Actor) -> int:
    return Notification.objects.filter(user_id=actor.user_id, is_read=False).count()


def mark_read(actor: Actor, notification_id: int) -> Dict[str, Any]:
    try:
        n = Notification.objects.get(notification_id=notification_id)
    except Notification.DoesNotExist:
        raise NotFound("Notification not found.", field="notification_id")
    if n.user_id != actor.user_id:
        raise PermissionDenied("Notification belongs to another user.")
    if not n.is_read:
        n.is_read = True
        n.save(update_fields=["is_read"])
    return _serialize_notification(n)


def mark_all_read(actor: Actor) -> int:
    return Notification.objects.filter(user_id=actor.user_id, is_read=False).update(is_read=True)


def list_activity(actor: Actor, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    require_capability(actor, Capability.ACTIVITY_VIEW)
    cap = settings.SIPB_ACTIVITY_LOG_LIMIT
    limit = cap if limit is None else max(1, min(int(limit), cap))
    return [_serialize_activity(entry) for entry in ActivityLog.objects.all()[:limit]]
